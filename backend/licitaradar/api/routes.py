"""API routes for LicitaRadar."""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from licitaradar.core.database import get_session
from licitaradar.core.errors import (
    DocumentNotFound, InvalidModelOutput, InvalidStatusTransition, LicitaRadarError,
    LLMNotConfigured, ModelProviderError, NotAPdf, ProfileNotFound, SourceUnavailable,
    StorageError, TenderNotFound,
)
from licitaradar.models.schemas import (
    ChatMessage, ClassifyPendingResult, EditalAnalysis, IngestionSummary, PncpFile,
    RunLog, SearchProfile, Tender, TenderStatus, TenderUpdate,
)
from licitaradar.services import db_ops
from licitaradar.services.classifier import RelevanceClassifier
from licitaradar.services.edital_analyzer import EditalAnalyzer
from licitaradar.services.object_storage import ObjectStorage
from licitaradar.services.pncp_client import PNCPClient

logger = logging.getLogger(__name__)
router = APIRouter()


# --- Service providers (overridden in tests) ---

def get_pncp_client() -> PNCPClient:
    return PNCPClient()


def get_classifier() -> RelevanceClassifier:
    return RelevanceClassifier()


def get_edital_analyzer() -> EditalAnalyzer:
    return EditalAnalyzer()


def get_object_storage() -> ObjectStorage:
    return ObjectStorage()


def _http_error(e: LicitaRadarError) -> HTTPException:
    """Translate a domain error into the HTTP status the frontend expects."""
    if isinstance(e, (TenderNotFound, ProfileNotFound, DocumentNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStatusTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, NotAPdf):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, LLMNotConfigured):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, (SourceUnavailable, ModelProviderError, InvalidModelOutput)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


async def _require_tender(session: AsyncSession, tender_id: str) -> Tender:
    tender = await db_ops.get_tender(session, tender_id)
    if tender is None:
        raise HTTPException(status_code=404, detail=f"Licitação {tender_id} não encontrada")
    return tender


# --- Search profiles ---

@router.post("/profiles", tags=["Profiles"], response_model=SearchProfile)
async def save_profile(profile: SearchProfile, session: AsyncSession = Depends(get_session)):
    """Create or update a search configuration. A missing id creates a new one."""
    if not profile.id:
        profile.id = str(uuid.uuid4())
    try:
        saved = await db_ops.upsert_profile(session, profile)
    except StorageError as e:
        raise _http_error(e)
    logger.info(f"Profile saved: {saved.name} ({saved.id})")
    return saved


@router.get("/profiles", tags=["Profiles"], response_model=list[SearchProfile])
async def list_profiles(
    active_only: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await db_ops.list_profiles(session, active_only=active_only)
    except StorageError as e:
        raise _http_error(e)


@router.get("/profiles/{profile_id}", tags=["Profiles"], response_model=SearchProfile)
async def get_profile(profile_id: str, session: AsyncSession = Depends(get_session)):
    profile = await db_ops.get_profile(session, profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile {profile_id} not found")
    return profile


@router.delete("/profiles/{profile_id}", tags=["Profiles"])
async def delete_profile(profile_id: str, session: AsyncSession = Depends(get_session)):
    """Delete a search configuration. Licitações found by it are kept."""
    if not await db_ops.delete_profile(session, profile_id):
        raise HTTPException(status_code=404, detail=f"Profile {profile_id} not found")
    return {"deleted": profile_id}


# --- Ingestion ---

@router.post("/ingestion/run", tags=["Ingestion"], response_model=IngestionSummary)
async def run_ingestion(pncp: PNCPClient = Depends(get_pncp_client)):
    """
    Manually trigger an ingestion run over all active search configurations.

    Each configuration's outcome is written to search_logs; a failing
    configuration does not stop the others.
    """
    from licitaradar.agents.ingestion import IngestionAgent

    try:
        return await IngestionAgent(pncp_client=pncp).run()
    except LicitaRadarError as e:
        raise _http_error(e)


@router.get("/ingestion/logs", tags=["Ingestion"], response_model=list[RunLog])
async def list_ingestion_logs(
    profile_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    """Most recent run logs first."""
    try:
        return await db_ops.list_run_logs(session, profile_id=profile_id, limit=limit)
    except StorageError as e:
        raise _http_error(e)


@router.get("/ingestion/status", tags=["Ingestion"])
async def ingestion_status():
    """Scheduler state and the summary of the last scheduled run."""
    from licitaradar.agents.scheduler import JOB_ID, get_last_result, get_scheduler

    scheduler = get_scheduler()
    next_run = None
    if scheduler and scheduler.running:
        job = scheduler.get_job(JOB_ID)
        if job and job.next_run_time:
            next_run = job.next_run_time.isoformat()
    last_result = get_last_result()
    return {
        "scheduler_running": scheduler.running if scheduler else False,
        "next_run_at": next_run,
        "last_run_summary": last_result.model_dump() if last_result else None,
    }


# --- Relevance classification ---

class ClassifyRequest(BaseModel):
    search_config_id: Optional[str] = None


@router.post("/ia/classify", tags=["IA"], response_model=ClassifyPendingResult)
async def classify_pending(
    body: Optional[ClassifyRequest] = None,
    classifier: RelevanceClassifier = Depends(get_classifier),
):
    """Classify a batch of licitações that have no IA score yet."""
    profile_id = body.search_config_id if body else None
    try:
        return await classifier.classify_pending(profile_id)
    except LicitaRadarError as e:
        raise _http_error(e)


# --- Edital analysis ---

class EditalAnalysisRequest(BaseModel):
    upload_url: Optional[str] = None


@router.post("/tenders/{tender_id}/edital-analysis", tags=["IA"], response_model=EditalAnalysis)
async def analyze_edital(
    tender_id: str,
    body: Optional[EditalAnalysisRequest] = None,
    analyzer: EditalAnalyzer = Depends(get_edital_analyzer),
):
    """
    Run the structured edital analysis for one licitação.

    Analysis failures are stored and returned with ia_status="error"; check
    ia_processing_error and retry, optionally with an uploaded PDF URL.
    """
    try:
        return await analyzer.analyze(tender_id, upload_url=body.upload_url if body else None)
    except LicitaRadarError as e:
        raise _http_error(e)


@router.get("/tenders/{tender_id}/edital-analysis", tags=["IA"], response_model=EditalAnalysis)
async def get_edital_analysis(tender_id: str, session: AsyncSession = Depends(get_session)):
    analysis = await db_ops.get_edital_analysis(session, tender_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Nenhuma análise de edital para {tender_id}")
    return analysis


class EditalChatRequest(BaseModel):
    pdf_url: Optional[str] = None
    messages: list[ChatMessage] = Field(min_length=1)


@router.post("/edital-chat", tags=["IA"])
async def edital_chat(body: EditalChatRequest, analyzer: EditalAnalyzer = Depends(get_edital_analyzer)):
    """Stateless chat turn, optionally grounded in one edital PDF."""
    try:
        return await analyzer.chat(body.messages, pdf_url=body.pdf_url)
    except LicitaRadarError as e:
        raise _http_error(e)


@router.post("/tenders/{tender_id}/edital-upload", tags=["IA"])
async def upload_edital(
    tender_id: str,
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Upload an edital PDF manually. Pass the returned URL as upload_url to the analysis."""
    await _require_tender(session, tender_id)
    content = await file.read()
    try:
        url = await storage.upload_pdf(tender_id, file.filename or "edital.pdf", content, file.content_type)
    except LicitaRadarError as e:
        raise _http_error(e)
    return {"upload_url": url}


# --- PNCP details and documents ---

@router.get("/pncp/details", tags=["PNCP"])
async def pncp_details(
    cnpj: str = Query(..., description="CNPJ do órgão"),
    ano: int = Query(..., description="Ano da compra"),
    numero: str = Query(..., description="Número sequencial da compra"),
    pncp: PNCPClient = Depends(get_pncp_client),
):
    """Portal record, items, files and history of one purchase, fetched live from PNCP."""
    return await pncp.get_purchase_details(cnpj, ano, numero)


@router.post("/tenders/{tender_id}/documents/sync", tags=["PNCP"], response_model=list[PncpFile])
async def sync_tender_documents(
    tender_id: str,
    session: AsyncSession = Depends(get_session),
    pncp: PNCPClient = Depends(get_pncp_client),
):
    """Refresh the stored PNCP documents of a licitação from the purchase files endpoint."""
    tender = await _require_tender(session, tender_id)
    if not (tender.orgao_cnpj and tender.ano_compra and tender.numero_compra):
        raise HTTPException(
            status_code=422,
            detail="Licitação sem CNPJ do órgão, ano ou número da compra",
        )
    try:
        files = await pncp.list_purchase_files(tender.orgao_cnpj, tender.ano_compra, tender.numero_compra)
        await db_ops.replace_tender_documents(session, tender_id, files)
    except LicitaRadarError as e:
        raise _http_error(e)
    return files


@router.get("/tenders/{tender_id}/documents", tags=["PNCP"], response_model=list[PncpFile])
async def list_tender_documents(tender_id: str, session: AsyncSession = Depends(get_session)):
    await _require_tender(session, tender_id)
    return await db_ops.list_tender_documents(session, tender_id)


# --- Tenders ---

@router.get("/tenders", tags=["Tenders"], response_model=list[Tender])
async def list_tenders(
    profile_id: Optional[str] = Query(default=None),
    status: Optional[TenderStatus] = Query(default=None),
    participating: Optional[bool] = Query(default=None),
    include_trash: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """List licitações, newest first. Trashed ones are hidden unless requested."""
    try:
        return await db_ops.list_tenders(
            session,
            profile_id=profile_id,
            status=status,
            participating=participating,
            include_trash=include_trash,
            limit=limit,
            offset=offset,
        )
    except StorageError as e:
        raise _http_error(e)


@router.get("/tenders/{tender_id}", tags=["Tenders"], response_model=Tender)
async def get_tender(tender_id: str, session: AsyncSession = Depends(get_session)):
    return await _require_tender(session, tender_id)


@router.patch("/tenders/{tender_id}", tags=["Tenders"], response_model=Tender)
async def update_tender(tender_id: str, body: TenderUpdate, session: AsyncSession = Depends(get_session)):
    """
    Apply triage changes (viewed, participation, status, deadline, checklist, notes).

    Only provided fields are updated (PATCH semantics). Sending a licitação
    to the trash clears its participation flag.
    """
    try:
        updated = await db_ops.update_tender(session, tender_id, body)
    except LicitaRadarError as e:
        raise _http_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Licitação {tender_id} não encontrada")
    return updated
