"""HTTP surface tests: routing, validation and domain error → status mapping."""
import httpx
import pytest

from licitaradar.api.routes import (
    get_classifier, get_edital_analyzer, get_object_storage, get_pncp_client,
)
from licitaradar.core.database import get_session
from licitaradar.main import app
from licitaradar.services.classifier import RelevanceClassifier
from licitaradar.services.documents import DocumentFetcher
from licitaradar.services.edital_analyzer import EditalAnalyzer
from licitaradar.services.object_storage import ObjectStorage
from licitaradar.services.openrouter_client import OpenRouterClient
from licitaradar.services.pncp_client import PNCPClient


@pytest.fixture
async def api(session_factory):
    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# ─── App ──────────────────────────────────────────────────────────────────────

class TestApp:
    async def test_root(self, api):
        response = await api.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    async def test_health(self, api):
        body = (await api.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["llm_configured"] is True
        assert body["storage_configured"] is True

    async def test_ingestion_status_without_scheduler(self, api):
        body = (await api.get("/api/v1/ingestion/status")).json()
        assert body == {"scheduler_running": False, "next_run_at": None, "last_run_summary": None}

    async def test_ingestion_logs_empty(self, api):
        response = await api.get("/api/v1/ingestion/logs")
        assert response.status_code == 200
        assert response.json() == []


# ─── Profiles ─────────────────────────────────────────────────────────────────

class TestProfiles:
    async def test_create_list_delete(self, api):
        created = await api.post("/api/v1/profiles", json={"name": "TI", "keywords": ["notebook"], "states": ["DF"]})
        assert created.status_code == 200
        profile_id = created.json()["id"]
        assert profile_id

        listed = (await api.get("/api/v1/profiles")).json()
        assert [p["id"] for p in listed] == [profile_id]

        assert (await api.delete(f"/api/v1/profiles/{profile_id}")).status_code == 200
        assert (await api.get(f"/api/v1/profiles/{profile_id}")).status_code == 404
        assert (await api.delete(f"/api/v1/profiles/{profile_id}")).status_code == 404

    async def test_deleting_profile_keeps_its_tenders(self, api, make_profile, make_tender):
        profile = await make_profile()
        tender = await make_tender(1, profile_id=profile.id)

        await api.delete(f"/api/v1/profiles/{profile.id}")

        response = await api.get(f"/api/v1/tenders/{tender.id}")
        assert response.status_code == 200
        assert response.json()["search_config_id"] is None


# ─── Tenders ──────────────────────────────────────────────────────────────────

class TestTenders:
    async def test_unknown_tender_is_404(self, api):
        assert (await api.get("/api/v1/tenders/nao-existe")).status_code == 404
        assert (await api.patch("/api/v1/tenders/nao-existe", json={"is_viewed": True})).status_code == 404

    async def test_trash_clears_participation(self, api, make_tender):
        tender = await make_tender(1)
        await api.patch(f"/api/v1/tenders/{tender.id}", json={"vai_participar": True})

        response = await api.patch(f"/api/v1/tenders/{tender.id}", json={"status_interno": "lixeira"})

        assert response.status_code == 200
        assert response.json()["status_interno"] == "lixeira"
        assert response.json()["vai_participar"] is False
        assert (await api.get("/api/v1/tenders")).json() == []
        assert len((await api.get("/api/v1/tenders", params={"include_trash": True})).json()) == 1

    async def test_trash_and_participate_together_is_409(self, api, make_tender):
        tender = await make_tender(1)
        response = await api.patch(
            f"/api/v1/tenders/{tender.id}", json={"status_interno": "lixeira", "vai_participar": True},
        )
        assert response.status_code == 409

    async def test_unknown_status_is_422(self, api, make_tender):
        tender = await make_tender(1)
        response = await api.patch(f"/api/v1/tenders/{tender.id}", json={"status_interno": "aprovada"})
        assert response.status_code == 422


# ─── IA ───────────────────────────────────────────────────────────────────────

class TestIA:
    async def test_classify_without_api_key_is_503(self, api, set_env):
        set_env(OPENROUTER_API_KEY="")
        app.dependency_overrides[get_classifier] = lambda: RelevanceClassifier()
        response = await api.post("/api/v1/ia/classify")
        assert response.status_code == 503

    async def test_classify_nothing_pending(self, api, mock_http, session_factory):
        app.dependency_overrides[get_classifier] = lambda: _NoPendingClassifier(mock_http, session_factory)
        response = await api.post("/api/v1/ia/classify", json={})
        assert response.status_code == 200
        assert response.json()["processed"] == 0

    async def test_analysis_for_unknown_tender_is_404(self, api, mock_http, session_factory):
        app.dependency_overrides[get_edital_analyzer] = lambda: EditalAnalyzer(
            llm=OpenRouterClient(http_client=mock_http(lambda r: httpx.Response(500))),
            fetcher=DocumentFetcher(http_client=mock_http(lambda r: httpx.Response(404))),
            session_factory=session_factory,
        )
        response = await api.post("/api/v1/tenders/nao-existe/edital-analysis")
        assert response.status_code == 404

    async def test_analysis_failure_is_stored_not_raised(self, api, mock_http, session_factory, make_tender):
        tender = await make_tender(1)
        app.dependency_overrides[get_edital_analyzer] = lambda: EditalAnalyzer(
            llm=OpenRouterClient(http_client=mock_http(lambda r: httpx.Response(500))),
            fetcher=DocumentFetcher(http_client=mock_http(lambda r: httpx.Response(404))),
            session_factory=session_factory,
        )

        assert (await api.get(f"/api/v1/tenders/{tender.id}/edital-analysis")).status_code == 404
        response = await api.post(f"/api/v1/tenders/{tender.id}/edital-analysis", json={})

        assert response.status_code == 200
        assert response.json()["ia_status"] == "error"
        stored = await api.get(f"/api/v1/tenders/{tender.id}/edital-analysis")
        assert stored.json()["ia_processing_error"].startswith("Nenhum PDF de edital encontrado")

    async def test_chat_requires_messages(self, api):
        response = await api.post("/api/v1/edital-chat", json={"messages": []})
        assert response.status_code == 422


class _NoPendingClassifier(RelevanceClassifier):
    def __init__(self, mock_http, session_factory):
        super().__init__(llm=OpenRouterClient(http_client=mock_http(lambda r: httpx.Response(500))))
        self._factory = session_factory

    async def classify_pending(self, profile_id=None, session_factory=None):
        return await super().classify_pending(profile_id, session_factory=self._factory)


# ─── Uploads and PNCP documents ───────────────────────────────────────────────

class TestDocuments:
    async def test_upload_returns_url(self, api, mock_http, make_tender):
        tender = await make_tender(1)
        app.dependency_overrides[get_object_storage] = lambda: ObjectStorage(
            http_client=mock_http(lambda r: httpx.Response(200)),
        )
        response = await api.post(
            f"/api/v1/tenders/{tender.id}/edital-upload",
            files={"file": ("edital.pdf", b"%PDF-1.4", "application/pdf")},
        )
        assert response.status_code == 200
        assert "/storage/v1/object/public/edital-uploads/" in response.json()["upload_url"]

    async def test_upload_of_non_pdf_is_422(self, api, mock_http, make_tender):
        tender = await make_tender(1)
        app.dependency_overrides[get_object_storage] = lambda: ObjectStorage(
            http_client=mock_http(lambda r: httpx.Response(200)),
        )
        response = await api.post(
            f"/api/v1/tenders/{tender.id}/edital-upload",
            files={"file": ("planilha.csv", b"a,b", "text/csv")},
        )
        assert response.status_code == 422

    async def test_sync_documents(self, api, mock_http, make_tender):
        tender = await make_tender(1)

        def pncp(request):
            return httpx.Response(200, json=[{
                "tipoDocumentoId": 2,
                "tipoDocumentoNome": "Edital",
                "titulo": "edital.pdf",
                "url": "https://pncp.gov.br/pncp-api/v1/orgaos/x/compras/2025/1/arquivos/1",
            }])

        app.dependency_overrides[get_pncp_client] = lambda: PNCPClient(http_client=mock_http(pncp))

        synced = await api.post(f"/api/v1/tenders/{tender.id}/documents/sync")
        assert synced.status_code == 200
        stored = (await api.get(f"/api/v1/tenders/{tender.id}/documents")).json()
        assert [d["tipo_documento_nome"] for d in stored] == ["Edital"]

    async def test_sync_source_down_is_502(self, api, mock_http, make_tender):
        tender = await make_tender(1)
        app.dependency_overrides[get_pncp_client] = lambda: PNCPClient(
            http_client=mock_http(lambda r: httpx.Response(503)),
        )
        response = await api.post(f"/api/v1/tenders/{tender.id}/documents/sync")
        assert response.status_code == 502
