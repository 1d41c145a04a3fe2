"""Tests for the PNCP search / purchase API client (no network)."""
import httpx
import pytest

from licitaradar.core.errors import SourceUnavailable
from licitaradar.services.pncp_client import PNCPClient


# ─── Search params ────────────────────────────────────────────────────────────

class TestSearchParams:
    def test_fixed_params_and_filters(self):
        params = PNCPClient().build_search_params(" notebook ", ["DF", "GO"], [6, 8], page=2, page_size=50)
        assert params == {
            "q": "notebook",
            "tipos_documento": "edital",
            "ordenacao": "-data",
            "pagina": "2",
            "tam_pagina": "50",
            "status": "recebendo_proposta",
            "ufs": "DF,GO",
            "modalidades": "6,8",
        }

    def test_empty_filters_are_omitted(self):
        params = PNCPClient().build_search_params("", [], [], page=1, page_size=50)
        assert params["q"] == ""
        assert "ufs" not in params
        assert "modalidades" not in params


# ─── Normalization ────────────────────────────────────────────────────────────

class TestCandidateParsing:
    def test_maps_search_fields(self, search_item):
        candidate = PNCPClient()._parse_candidate(search_item(7))
        assert candidate.numero_controle_pncp == "00394460000141-1-000007/2025"
        assert candidate.numero_compra == "7"
        assert candidate.ano_compra == 2025
        assert candidate.objeto_compra.startswith("Aquisição de notebooks")
        assert candidate.orgao_razao_social == "Ministério da Fazenda"
        assert candidate.uf_sigla == "DF"
        assert candidate.raw_data["item_url"] == "/compras/00394460000141/2025/7"

    def test_portal_link_uses_editais_path(self, search_item):
        candidate = PNCPClient()._parse_candidate(search_item(7))
        assert candidate.link_pncp == "https://pncp.gov.br/app/editais/00394460000141/2025/7"

    def test_title_used_when_description_missing(self, search_item):
        candidate = PNCPClient()._parse_candidate(search_item(3, description=None))
        assert candidate.objeto_compra == "Pregão 3/2025"

    def test_item_without_control_number_is_dropped(self, search_item):
        assert PNCPClient()._parse_candidate(search_item(1, numero_controle_pncp=None)) is None


# ─── Pagination ───────────────────────────────────────────────────────────────

class TestIterSearch:
    async def test_73_items_take_two_requests(self, mock_http, search_api):
        handler = search_api(total=73)
        client = PNCPClient(http_client=mock_http(handler))

        pages = [page async for page in client.iter_search("notebook", ["DF"], [])]

        assert len(handler.requests) == 2
        assert [len(p.items) for p in pages] == [50, 23]
        assert [r.url.params["pagina"] for r in handler.requests] == ["1", "2"]
        assert handler.requests[0].url.params["ufs"] == "DF"

    async def test_exact_multiple_stops_at_total(self, mock_http, search_api):
        handler = search_api(total=100)
        client = PNCPClient(http_client=mock_http(handler))

        pages = [page async for page in client.iter_search("notebook")]

        assert len(handler.requests) == 2
        assert sum(len(p.items) for p in pages) == 100

    async def test_empty_result(self, mock_http, search_api):
        handler = search_api(total=0)
        client = PNCPClient(http_client=mock_http(handler))

        pages = [page async for page in client.iter_search("nada")]

        assert pages == []
        assert len(handler.requests) == 1

    async def test_full_pages_forever_hit_the_page_bound(self, mock_http, search_item, set_env):
        set_env(PNCP_MAX_PAGES="3")
        calls = []

        def handler(request):
            calls.append(request)
            # total is missing, so only the page bound can stop the loop
            return httpx.Response(200, json={"items": [search_item(i) for i in range(50)]})

        client = PNCPClient(http_client=mock_http(handler))
        with pytest.raises(SourceUnavailable):
            async for _ in client.iter_search("notebook"):
                pass
        assert len(calls) == 3

    async def test_non_2xx_raises_source_unavailable(self, mock_http, search_api):
        client = PNCPClient(http_client=mock_http(search_api(total=10, status_code=503)))
        with pytest.raises(SourceUnavailable, match="503"):
            await client.search_page("notebook")

    async def test_transport_error_raises_source_unavailable(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = PNCPClient(http_client=mock_http(handler))
        with pytest.raises(SourceUnavailable):
            await client.search_page("notebook")

    async def test_unexpected_body_raises_source_unavailable(self, mock_http):
        client = PNCPClient(http_client=mock_http(lambda r: httpx.Response(200, json=["x"])))
        with pytest.raises(SourceUnavailable):
            await client.search_page("notebook")


# ─── Purchase files ───────────────────────────────────────────────────────────

class TestPurchaseFiles:
    async def test_lists_files(self, mock_http):
        def handler(request):
            assert request.url.path.endswith("/orgaos/00394460000141/compras/2025/7/arquivos")
            return httpx.Response(200, json=[
                {
                    "tipoDocumentoId": 2,
                    "tipoDocumentoNome": "Edital",
                    "titulo": "edital.pdf",
                    "url": "https://pncp.gov.br/pncp-api/v1/orgaos/x/compras/2025/7/arquivos/1",
                    "dataPublicacaoPncp": "2025-03-01",
                },
            ])

        files = await PNCPClient(http_client=mock_http(handler)).list_purchase_files("00394460000141", 2025, "7")
        assert len(files) == 1
        assert files[0].tipo_documento == 2
        assert files[0].tipo_documento_nome == "Edital"
        assert files[0].url_pncp.endswith("/arquivos/1")

    async def test_details_tolerate_missing_parts(self, mock_http):
        def handler(request):
            if request.url.path.endswith("/itens"):
                return httpx.Response(200, json=[{"numeroItem": 1}])
            return httpx.Response(404)

        details = await PNCPClient(http_client=mock_http(handler)).get_purchase_details("00394460000141", 2025, "7")
        assert details["portal"] is None
        assert details["itens"] == [{"numeroItem": 1}]
        assert details["arquivos"] is None
        assert details["historico"] is None
