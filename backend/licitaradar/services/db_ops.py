"""Database CRUD helpers for LicitaRadar.

Every helper takes an open AsyncSession and commits its own unit of work.
SQLAlchemy failures are logged, rolled back and re-raised as StorageError so
callers can decide whether to skip the record or abort the profile.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from licitaradar.core.errors import StorageError
from licitaradar.models.db_models import (
    EditalAnalysisRow, RunLogRow, SearchProfileRow, TenderDocumentRow, TenderRow,
)
from licitaradar.models.schemas import (
    ClassificationResult, EditalAnalysis, PncpCandidate, PncpFile, RunLog,
    SearchProfile, Tender, TenderStatus, TenderUpdate,
)
from licitaradar.services.tender_workflow import apply_management_update

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dialect_insert(session: AsyncSession):
    """Return the dialect-specific insert() that supports ON CONFLICT."""
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert
    return insert


async def _fail(session: AsyncSession, operation: str, error: Exception) -> StorageError:
    logger.error(f"DB {operation} failed: {error}")
    try:
        await session.rollback()
    except SQLAlchemyError:
        logger.warning(f"DB rollback after {operation} failed")
    return StorageError(f"{operation} failed: {error}")


# ---------------------------------------------------------------------------
# Search profiles
# ---------------------------------------------------------------------------

async def list_profiles(session: AsyncSession, active_only: bool = False) -> list[SearchProfile]:
    try:
        stmt = select(SearchProfileRow).order_by(SearchProfileRow.created_at)
        if active_only:
            stmt = stmt.where(SearchProfileRow.is_active.is_(True))
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return [SearchProfile.model_validate(row) for row in result.scalars().all()]
    except SQLAlchemyError as e:
        raise await _fail(session, "list_profiles", e) from e


async def get_profile(session: AsyncSession, profile_id: str) -> Optional[SearchProfile]:
    try:
        row = await session.get(SearchProfileRow, profile_id, populate_existing=True)
        return SearchProfile.model_validate(row) if row else None
    except SQLAlchemyError as e:
        raise await _fail(session, "get_profile", e) from e


async def upsert_profile(session: AsyncSession, profile: SearchProfile) -> SearchProfile:
    """Insert or update a search profile row. last_search_date is owned by the orchestrator."""
    try:
        insert = _dialect_insert(session)
        now = _now()
        stmt = insert(SearchProfileRow).values(
            id=profile.id,
            user_id=profile.user_id,
            name=profile.name,
            keywords=profile.keywords,
            states=profile.states,
            modalidades=profile.modalidades,
            is_active=profile.is_active,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "user_id": stmt.excluded.user_id,
                "name": stmt.excluded.name,
                "keywords": stmt.excluded.keywords,
                "states": stmt.excluded.states,
                "modalidades": stmt.excluded.modalidades,
                "is_active": stmt.excluded.is_active,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        await session.commit()
        logger.debug(f"DB: upserted profile {profile.id} ({profile.name})")
    except SQLAlchemyError as e:
        raise await _fail(session, "upsert_profile", e) from e
    return await get_profile(session, profile.id)


async def delete_profile(session: AsyncSession, profile_id: str) -> bool:
    """Delete a profile. Its tenders are kept and detached from it. Returns False if missing."""
    try:
        await session.execute(
            update(TenderRow)
            .where(TenderRow.search_config_id == profile_id)
            .values(search_config_id=None)
        )
        result = await session.execute(delete(SearchProfileRow).where(SearchProfileRow.id == profile_id))
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, "delete_profile", e) from e
    return result.rowcount > 0


async def touch_profile_last_run(session: AsyncSession, profile_id: str) -> None:
    try:
        await session.execute(
            update(SearchProfileRow)
            .where(SearchProfileRow.id == profile_id)
            .values(last_search_date=_now())
        )
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, "touch_profile_last_run", e) from e


# ---------------------------------------------------------------------------
# Tenders: deduplication gate
# ---------------------------------------------------------------------------

async def insert_tender_if_absent(
    session: AsyncSession,
    profile_id: Optional[str],
    candidate: PncpCandidate,
) -> Optional[Tender]:
    """
    Insert a candidate unless its numero_controle_pncp is already stored.

    A single INSERT ... ON CONFLICT DO NOTHING RETURNING statement, so two
    overlapping runs cannot both insert the same control number. Returns the
    new Tender, or None when the row already existed.
    """
    try:
        insert = _dialect_insert(session)
        stmt = (
            insert(TenderRow)
            .values(
                search_config_id=profile_id,
                is_viewed=False,
                vai_participar=False,
                created_at=_now(),
                **candidate.model_dump(),
            )
            .on_conflict_do_nothing(index_elements=["numero_controle_pncp"])
            .returning(TenderRow.id)
        )
        result = await session.execute(stmt)
        new_id = result.scalar_one_or_none()
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, f"insert_tender {candidate.numero_controle_pncp}", e) from e

    if new_id is None:
        logger.debug(f"Licitação {candidate.numero_controle_pncp} already exists")
        return None
    return await get_tender(session, new_id)


async def get_tender_row(session: AsyncSession, tender_id: str) -> Optional[TenderRow]:
    try:
        return await session.get(TenderRow, tender_id, populate_existing=True)
    except SQLAlchemyError as e:
        raise await _fail(session, "get_tender", e) from e


async def get_tender(session: AsyncSession, tender_id: str) -> Optional[Tender]:
    row = await get_tender_row(session, tender_id)
    if row is None:
        return None
    return Tender.model_validate(row)


async def count_tenders(session: AsyncSession) -> int:
    try:
        result = await session.execute(select(func.count()).select_from(TenderRow))
        return result.scalar_one()
    except SQLAlchemyError as e:
        raise await _fail(session, "count_tenders", e) from e


async def list_tenders(
    session: AsyncSession,
    profile_id: Optional[str] = None,
    status: Optional[TenderStatus] = None,
    participating: Optional[bool] = None,
    include_trash: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[Tender]:
    """List tenders newest first. Trashed tenders are hidden unless asked for."""
    try:
        stmt = select(TenderRow)
        if profile_id:
            stmt = stmt.where(TenderRow.search_config_id == profile_id)
        if status is not None:
            stmt = stmt.where(TenderRow.status_interno == status.value)
        elif not include_trash:
            stmt = stmt.where(or_(
                TenderRow.status_interno.is_(None),
                TenderRow.status_interno != TenderStatus.LIXEIRA.value,
            ))
        if participating is not None:
            stmt = stmt.where(TenderRow.vai_participar.is_(participating))
        stmt = stmt.order_by(TenderRow.created_at.desc()).limit(limit).offset(offset)
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return [Tender.model_validate(row) for row in result.scalars().all()]
    except SQLAlchemyError as e:
        raise await _fail(session, "list_tenders", e) from e


async def update_tender(session: AsyncSession, tender_id: str, changes: TenderUpdate) -> Optional[Tender]:
    """Apply user triage changes through the workflow rules. Returns None if the tender is missing."""
    row = await get_tender_row(session, tender_id)
    if row is None:
        return None
    apply_management_update(row, changes)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, "update_tender", e) from e
    return await get_tender(session, tender_id)


# ---------------------------------------------------------------------------
# Tenders: classification
# ---------------------------------------------------------------------------

async def list_pending_classification(
    session: AsyncSession,
    limit: int,
    profile_id: Optional[str] = None,
) -> list[tuple[Tender, Optional[SearchProfile]]]:
    """
    Unscored tenders the user has not already acted on.

    Excludes tenders marked as participating and tenders in the trash.
    Returned with their owning profile (keywords/states context).
    """
    try:
        stmt = (
            select(TenderRow, SearchProfileRow)
            .outerjoin(SearchProfileRow, TenderRow.search_config_id == SearchProfileRow.id)
            .where(TenderRow.ia_score.is_(None))
            .where(TenderRow.vai_participar.is_not(True))
            .where(or_(
                TenderRow.status_interno.is_(None),
                TenderRow.status_interno != TenderStatus.LIXEIRA.value,
            ))
        )
        if profile_id:
            stmt = stmt.where(TenderRow.search_config_id == profile_id)
        result = await session.execute(stmt.limit(limit).execution_options(populate_existing=True))
        return [
            (
                Tender.model_validate(tender_row),
                SearchProfile.model_validate(profile_row) if profile_row else None,
            )
            for tender_row, profile_row in result.all()
        ]
    except SQLAlchemyError as e:
        raise await _fail(session, "list_pending_classification", e) from e


async def save_classification(session: AsyncSession, tender_id: str, result: ClassificationResult) -> None:
    try:
        await session.execute(
            update(TenderRow)
            .where(TenderRow.id == tender_id)
            .values(
                ia_score=float(result.score),
                ia_justificativa=result.justificativa,
                ia_filtrada=result.relevante,
                ia_tags=result.tags,
                ia_reviewed_at=_now(),
                ia_needs_review=False,
                ia_processing_error=None,
            )
        )
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, "save_classification", e) from e


async def save_classification_error(session: AsyncSession, tender_id: str, message: str) -> None:
    """Record a failed classification. The score stays unset so the tender is retried."""
    try:
        await session.execute(
            update(TenderRow)
            .where(TenderRow.id == tender_id)
            .values(
                ia_processing_error=message,
                ia_reviewed_at=_now(),
                ia_needs_review=True,
            )
        )
        await session.commit()
    except SQLAlchemyError as e:
        raise await _fail(session, "save_classification_error", e) from e


# ---------------------------------------------------------------------------
# Tender documents
# ---------------------------------------------------------------------------

async def replace_tender_documents(session: AsyncSession, tender_id: str, files: list[PncpFile]) -> None:
    try:
        await session.execute(
            delete(TenderDocumentRow).where(TenderDocumentRow.licitacao_encontrada_id == tender_id)
        )
        for f in files:
            session.add(TenderDocumentRow(licitacao_encontrada_id=tender_id, **f.model_dump()))
        await session.commit()
        logger.debug(f"DB: stored {len(files)} documents for tender {tender_id}")
    except SQLAlchemyError as e:
        raise await _fail(session, "replace_tender_documents", e) from e


async def list_tender_documents(session: AsyncSession, tender_id: str) -> list[PncpFile]:
    try:
        result = await session.execute(
            select(TenderDocumentRow)
            .where(TenderDocumentRow.licitacao_encontrada_id == tender_id)
            .order_by(TenderDocumentRow.created_at)
        )
        return [
            PncpFile(
                tipo_documento=row.tipo_documento,
                tipo_documento_nome=row.tipo_documento_nome,
                nome_arquivo_pncp=row.nome_arquivo_pncp,
                url_pncp=row.url_pncp,
                data_inclusao_pncp=row.data_inclusao_pncp,
            )
            for row in result.scalars().all()
        ]
    except SQLAlchemyError as e:
        raise await _fail(session, "list_tender_documents", e) from e


# ---------------------------------------------------------------------------
# Edital analyses
# ---------------------------------------------------------------------------

async def upsert_edital_analysis(session: AsyncSession, analysis: EditalAnalysis) -> EditalAnalysis:
    """Write the full analysis row keyed by tender id, overwriting any previous attempt."""
    try:
        insert = _dialect_insert(session)
        values = analysis.model_dump(mode="json", exclude={"ia_updated_at"})
        values["ia_updated_at"] = _now()
        stmt = insert(EditalAnalysisRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["licitacao_encontrada_id"],
            set_={k: getattr(stmt.excluded, k) for k in values if k != "licitacao_encontrada_id"},
        )
        await session.execute(stmt)
        await session.commit()
        logger.debug(
            f"DB: edital analysis {analysis.licitacao_encontrada_id} → {analysis.ia_status.value}"
        )
    except SQLAlchemyError as e:
        raise await _fail(session, "upsert_edital_analysis", e) from e
    return await get_edital_analysis(session, analysis.licitacao_encontrada_id)


async def get_edital_analysis(session: AsyncSession, tender_id: str) -> Optional[EditalAnalysis]:
    try:
        result = await session.execute(
            select(EditalAnalysisRow).where(EditalAnalysisRow.licitacao_encontrada_id == tender_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise await _fail(session, "get_edital_analysis", e) from e
    if row is None:
        return None
    return EditalAnalysis(
        licitacao_encontrada_id=row.licitacao_encontrada_id,
        edital_url=row.edital_url,
        ia_status=row.ia_status,
        ia_resumo=row.ia_resumo,
        ia_requisitos_obrigatorios=row.ia_requisitos_obrigatorios or [],
        ia_documentos_exigidos=row.ia_documentos_exigidos or [],
        ia_riscos=row.ia_riscos or [],
        ia_perguntas_para_cliente=row.ia_perguntas_para_cliente or [],
        ia_recomendacao_participar=row.ia_recomendacao_participar,
        ia_justificativa=row.ia_justificativa,
        ia_score_adequacao=row.ia_score_adequacao,
        ia_raw_json=row.ia_raw_json,
        ia_model=row.ia_model,
        ia_processing_error=row.ia_processing_error,
        ia_updated_at=row.ia_updated_at,
    )


# ---------------------------------------------------------------------------
# Run logs
# ---------------------------------------------------------------------------

async def append_run_log(session: AsyncSession, log: RunLog) -> None:
    """Insert a row into search_logs. Logs are never updated."""
    try:
        session.add(RunLogRow(
            search_configuration_id=log.search_configuration_id,
            user_id=log.user_id,
            params=log.params,
            status=log.status.value,
            results_count=log.results_count,
            error_message=log.error_message,
            created_at=_now(),
        ))
        await session.commit()
        logger.debug(f"DB: logged {log.status.value} run for profile {log.search_configuration_id}")
    except SQLAlchemyError as e:
        raise await _fail(session, "append_run_log", e) from e


async def list_run_logs(
    session: AsyncSession,
    profile_id: Optional[str] = None,
    limit: int = 50,
) -> list[RunLog]:
    try:
        stmt = select(RunLogRow).order_by(RunLogRow.id.desc()).limit(limit)
        if profile_id:
            stmt = stmt.where(RunLogRow.search_configuration_id == profile_id)
        result = await session.execute(stmt)
        return [RunLog.model_validate(row) for row in result.scalars().all()]
    except SQLAlchemyError as e:
        raise await _fail(session, "list_run_logs", e) from e
