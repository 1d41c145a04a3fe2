"""Tests for the storage helpers and the deduplication gate (SQLite)."""
from licitaradar.models.schemas import (
    AnalysisStatus, ClassificationResult, EditalAnalysis, PncpCandidate, PncpFile,
    RunLog, RunStatus, TenderStatus, TenderUpdate,
)
from licitaradar.services import db_ops


def _candidate(n: int = 1, **fields) -> PncpCandidate:
    return PncpCandidate(**{"numero_controle_pncp": f"CTRL-{n}", "objeto_compra": "Notebooks", **fields})


# ─── Deduplication gate ───────────────────────────────────────────────────────

class TestInsertIfAbsent:
    async def test_first_insert_creates_tender(self, session, make_profile):
        profile = await make_profile()
        tender = await db_ops.insert_tender_if_absent(session, profile.id, _candidate(1))

        assert tender is not None
        assert tender.search_config_id == profile.id
        assert tender.is_viewed is False
        assert tender.vai_participar is False
        assert tender.status_interno is None
        assert tender.ia_score is None

    async def test_second_insert_is_a_no_op(self, session, make_profile):
        profile = await make_profile()
        first = await db_ops.insert_tender_if_absent(session, profile.id, _candidate(1))
        second = await db_ops.insert_tender_if_absent(session, profile.id, _candidate(1, objeto_compra="x"))

        assert first is not None
        assert second is None
        assert await db_ops.count_tenders(session) == 1

    async def test_duplicate_across_profiles_keeps_first_owner(self, session, make_profile):
        a = await make_profile(id="perfil-a", name="A")
        b = await make_profile(id="perfil-b", name="B")
        await db_ops.insert_tender_if_absent(session, a.id, _candidate(1))
        assert await db_ops.insert_tender_if_absent(session, b.id, _candidate(1)) is None

        tenders = await db_ops.list_tenders(session)
        assert [t.search_config_id for t in tenders] == ["perfil-a"]


# ─── Profiles ─────────────────────────────────────────────────────────────────

class TestProfiles:
    async def test_upsert_updates_in_place(self, session, make_profile):
        await make_profile(keywords=["notebook"])
        updated = await make_profile(keywords=["notebook", "desktop"], states=["sp", " go "])

        assert updated.keywords == ["notebook", "desktop"]
        assert updated.states == ["SP", "GO"]
        assert len(await db_ops.list_profiles(session)) == 1

    async def test_active_only_filter(self, session, make_profile):
        await make_profile(id="on", is_active=True)
        await make_profile(id="off", is_active=False)
        active = await db_ops.list_profiles(session, active_only=True)
        assert [p.id for p in active] == ["on"]

    async def test_delete_detaches_tenders(self, session, make_profile, make_tender):
        profile = await make_profile()
        tender = await make_tender(1, profile_id=profile.id)

        assert await db_ops.delete_profile(session, profile.id) is True
        assert await db_ops.get_profile(session, profile.id) is None
        assert (await db_ops.get_tender(session, tender.id)).search_config_id is None
        assert await db_ops.delete_profile(session, profile.id) is False


# ─── Classification storage ───────────────────────────────────────────────────

class TestClassificationStorage:
    async def test_error_then_success_clears_error(self, session, make_tender):
        tender = await make_tender(1)
        await db_ops.save_classification_error(session, tender.id, "timeout")
        failed = await db_ops.get_tender(session, tender.id)
        assert failed.ia_needs_review is True
        assert failed.ia_processing_error == "timeout"
        assert failed.ia_score is None

        await db_ops.save_classification(session, tender.id, ClassificationResult(
            score=88, justificativa="notebook no objeto", relevante=True, tags=["ti"],
        ))
        done = await db_ops.get_tender(session, tender.id)
        assert done.ia_score == 88
        assert done.ia_filtrada is True
        assert done.ia_tags == ["ti"]
        assert done.ia_needs_review is False
        assert done.ia_processing_error is None
        assert done.ia_reviewed_at is not None

    async def test_pending_excludes_scored_participating_and_trash(self, session, make_profile, make_tender):
        profile = await make_profile()
        pending = await make_tender(1, profile_id=profile.id)
        scored = await make_tender(2, profile_id=profile.id)
        participating = await make_tender(3, profile_id=profile.id)
        trashed = await make_tender(4, profile_id=profile.id)
        orphan = await make_tender(5)

        await db_ops.save_classification(session, scored.id, ClassificationResult(
            score=10, justificativa="x", relevante=False,
        ))
        await db_ops.update_tender(session, participating.id, TenderUpdate(vai_participar=True))
        await db_ops.update_tender(session, trashed.id, TenderUpdate(status_interno=TenderStatus.LIXEIRA))

        rows = await db_ops.list_pending_classification(session, limit=50)
        ids = {t.id for t, _ in rows}
        assert ids == {pending.id, orphan.id}
        owners = {t.id: p for t, p in rows}
        assert owners[pending.id].keywords == ["notebook"]
        assert owners[orphan.id] is None

        scoped = await db_ops.list_pending_classification(session, limit=50, profile_id=profile.id)
        assert [t.id for t, _ in scoped] == [pending.id]

    async def test_pending_respects_limit(self, session, make_tender):
        for n in range(5):
            await make_tender(n)
        assert len(await db_ops.list_pending_classification(session, limit=3)) == 3


# ─── Documents, analyses and run logs ─────────────────────────────────────────

class TestDocumentsAndAnalyses:
    async def test_replace_documents(self, session, make_tender):
        tender = await make_tender(1)
        await db_ops.replace_tender_documents(session, tender.id, [
            PncpFile(tipo_documento_nome="Edital", url_pncp="https://x/1.pdf"),
            PncpFile(tipo_documento_nome="Anexo", url_pncp="https://x/2.pdf"),
        ])
        await db_ops.replace_tender_documents(session, tender.id, [
            PncpFile(tipo_documento_nome="Edital", url_pncp="https://x/3.pdf"),
        ])
        docs = await db_ops.list_tender_documents(session, tender.id)
        assert [d.url_pncp for d in docs] == ["https://x/3.pdf"]

    async def test_analysis_upsert_overwrites(self, session, make_tender):
        tender = await make_tender(1)
        await db_ops.upsert_edital_analysis(session, EditalAnalysis(
            licitacao_encontrada_id=tender.id,
            ia_status=AnalysisStatus.ERROR,
            ia_processing_error="não é PDF",
        ))
        saved = await db_ops.upsert_edital_analysis(session, EditalAnalysis(
            licitacao_encontrada_id=tender.id,
            edital_url="https://x/edital.pdf",
            ia_status=AnalysisStatus.DONE,
            ia_resumo="Resumo",
            ia_riscos=["prazo curto"],
            ia_score_adequacao=70,
        ))
        assert saved.ia_status == AnalysisStatus.DONE
        assert saved.ia_processing_error is None
        assert saved.ia_riscos == ["prazo curto"]
        assert saved.ia_updated_at is not None

    async def test_run_logs_newest_first(self, session, make_profile):
        profile = await make_profile()
        await db_ops.append_run_log(session, RunLog(
            search_configuration_id=profile.id, status=RunStatus.SUCCESS, results_count=3,
        ))
        await db_ops.append_run_log(session, RunLog(
            search_configuration_id=profile.id, status=RunStatus.ERROR, error_message="boom",
        ))
        logs = await db_ops.list_run_logs(session, profile_id=profile.id)
        assert [log.status for log in logs] == [RunStatus.ERROR, RunStatus.SUCCESS]
        assert logs[1].results_count == 3
