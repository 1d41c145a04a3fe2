"""Data models for LicitaRadar.

Runtime models for profiles, tenders and analyses, plus the typed shapes of
the external APIs (PNCP search, OpenRouter chat completions) validated at the
boundary.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr,
    field_validator,
)


class TenderStatus(str, Enum):
    """Internal workflow status of a tender. NULL in storage means 'new'."""
    EM_ANALISE = "em_analise"
    PREPARANDO_PROPOSTA = "preparando_proposta"
    ENVIADA = "enviada"
    RESULTADO = "resultado"
    ARQUIVADA = "arquivada"
    LIXEIRA = "lixeira"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class RunStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Search profiles
# ---------------------------------------------------------------------------

class SearchProfile(BaseModel):
    """A user's standing PNCP search configuration."""
    model_config = ConfigDict(from_attributes=True)

    id: str = ""
    user_id: Optional[str] = None
    name: str = ""
    keywords: list[str] = Field(default_factory=list, description="Empty = no keyword filter")
    states: list[str] = Field(default_factory=list, description="UF abbreviations. Empty = all states")
    modalidades: list[int] = Field(default_factory=list, description="PNCP modality codes. Empty = all")
    is_active: bool = True
    last_search_date: Optional[datetime] = None

    @field_validator("keywords", "states", "modalidades", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or []

    @field_validator("states")
    @classmethod
    def _upper_states(cls, v: list[str]) -> list[str]:
        return [s.strip().upper() for s in v if s and s.strip()]


# ---------------------------------------------------------------------------
# PNCP boundary types
# ---------------------------------------------------------------------------

class PncpCandidate(BaseModel):
    """A normalized search result, ready to be inserted as a Tender."""
    numero_controle_pncp: str
    numero_compra: Optional[str] = None
    ano_compra: Optional[int] = None
    objeto_compra: str = ""
    modalidade_nome: Optional[str] = None
    situacao: Optional[str] = None
    valor_total_estimado: Optional[float] = None
    data_publicacao_pncp: Optional[str] = None
    data_abertura_proposta: Optional[str] = None
    data_encerramento_proposta: Optional[str] = None
    orgao_cnpj: Optional[str] = None
    orgao_razao_social: Optional[str] = None
    unidade_nome: Optional[str] = None
    municipio_nome: Optional[str] = None
    uf_sigla: Optional[str] = None
    link_pncp: Optional[str] = None
    raw_data: dict = Field(default_factory=dict)


class SearchPage(BaseModel):
    """One page of the PNCP search API."""
    page: int
    items: list[PncpCandidate] = Field(default_factory=list)
    total: int = 0
    raw_count: int = Field(0, description="Items returned by the API, before dropping invalid ones")


class PncpFile(BaseModel):
    """A document attached to a purchase on PNCP."""
    tipo_documento: Optional[int] = None
    tipo_documento_nome: Optional[str] = None
    nome_arquivo_pncp: Optional[str] = None
    url_pncp: Optional[str] = None
    data_inclusao_pncp: Optional[str] = None


# ---------------------------------------------------------------------------
# Tenders
# ---------------------------------------------------------------------------

class ChecklistItem(BaseModel):
    id: str
    label: str
    done: bool = False


class Tender(BaseModel):
    """A procurement opportunity (licitação) stored for a search profile."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    search_config_id: Optional[str] = None
    numero_controle_pncp: str
    numero_compra: Optional[str] = None
    ano_compra: Optional[int] = None
    objeto_compra: Optional[str] = ""
    modalidade_nome: Optional[str] = None
    situacao: Optional[str] = None
    valor_total_estimado: Optional[float] = None
    data_publicacao_pncp: Optional[str] = None
    data_abertura_proposta: Optional[str] = None
    data_encerramento_proposta: Optional[str] = None
    orgao_cnpj: Optional[str] = None
    orgao_razao_social: Optional[str] = None
    unidade_nome: Optional[str] = None
    municipio_nome: Optional[str] = None
    uf_sigla: Optional[str] = None
    link_pncp: Optional[str] = None

    is_viewed: bool = False
    vai_participar: bool = False
    status_interno: Optional[TenderStatus] = None
    data_limite_interna: Optional[str] = None
    gestao_checklist: Optional[list[ChecklistItem]] = None
    notas: Optional[str] = None

    ia_score: Optional[float] = None
    ia_justificativa: Optional[str] = None
    ia_filtrada: Optional[bool] = None
    ia_tags: Optional[list[str]] = None
    ia_reviewed_at: Optional[datetime] = None
    ia_needs_review: Optional[bool] = None
    ia_processing_error: Optional[str] = None
    created_at: Optional[datetime] = None


class TenderUpdate(BaseModel):
    """User triage changes. Only provided fields are applied (PATCH semantics)."""
    is_viewed: Optional[bool] = None
    vai_participar: Optional[bool] = None
    status_interno: Optional[TenderStatus] = None
    clear_status: bool = Field(False, description="Reset status_interno to 'new'")
    data_limite_interna: Optional[str] = None
    gestao_checklist: Optional[list[ChecklistItem]] = None
    notas: Optional[str] = None


# ---------------------------------------------------------------------------
# LLM contracts
# ---------------------------------------------------------------------------

class ClassificationResult(BaseModel):
    """Relevance verdict returned by the classifier model."""
    score: Union[StrictInt, StrictFloat]
    justificativa: StrictStr
    relevante: StrictBool
    tags: Optional[list[str]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _ignore_malformed_tags(cls, v):
        if not isinstance(v, list):
            return None
        return [str(t) for t in v if t is not None]


class EditalAnalysisResult(BaseModel):
    """Structured diagnosis of an edital PDF returned by the analysis model."""
    resumo_geral: str
    requisitos_obrigatorios: list[str] = Field(default_factory=list)
    documentos_exigidos: list[str] = Field(default_factory=list)
    riscos: list[str] = Field(default_factory=list)
    recomendacao_participar: bool
    justificativa_recomendacao: str
    score_adequacao: float
    perguntas_para_cliente: list[str] = Field(default_factory=list)

    @field_validator(
        "requisitos_obrigatorios", "documentos_exigidos", "riscos", "perguntas_para_cliente",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v):
        return v or []

    @field_validator("score_adequacao")
    @classmethod
    def _clamp_score(cls, v: float) -> float:
        return min(max(v, 0.0), 100.0)


class EditalAnalysis(BaseModel):
    """Persisted state of a tender's edital analysis."""
    licitacao_encontrada_id: str
    edital_url: Optional[str] = None
    ia_status: AnalysisStatus = AnalysisStatus.PENDING
    ia_resumo: Optional[str] = None
    ia_requisitos_obrigatorios: list[str] = Field(default_factory=list)
    ia_documentos_exigidos: list[str] = Field(default_factory=list)
    ia_riscos: list[str] = Field(default_factory=list)
    ia_perguntas_para_cliente: list[str] = Field(default_factory=list)
    ia_recomendacao_participar: Optional[bool] = None
    ia_justificativa: Optional[str] = None
    ia_score_adequacao: Optional[float] = None
    ia_raw_json: Optional[dict] = None
    ia_model: Optional[str] = None
    ia_processing_error: Optional[str] = None
    ia_updated_at: Optional[datetime] = None


class ChatMessage(BaseModel):
    role: str = Field(pattern="^(user|assistant|system)$")
    content: str


class CompletionMessage(BaseModel):
    role: Optional[str] = None
    # string, list of content chunks, a single chunk object, or null
    content: Union[str, list[Any], dict, None] = None


class CompletionChoice(BaseModel):
    message: Optional[CompletionMessage] = None
    finish_reason: Optional[str] = None


class ChatCompletion(BaseModel):
    """OpenRouter / OpenAI-compatible chat completion response."""
    id: Optional[str] = None
    model: Optional[str] = None
    choices: list[CompletionChoice] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Assistant text of the first choice, or '' when there is none."""
        if not self.choices or self.choices[0].message is None:
            return ""
        content = self.choices[0].message.content
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = []
            for chunk in content:
                if not chunk:
                    continue
                if isinstance(chunk, str):
                    parts.append(chunk)
                elif isinstance(chunk, dict):
                    parts.append(chunk.get("text") or chunk.get("content") or "")
            return "\n".join(p for p in parts if p)
        if isinstance(content, dict):
            return content.get("text") or content.get("content") or ""
        return ""


# ---------------------------------------------------------------------------
# Run logs and operation results
# ---------------------------------------------------------------------------

class RunLog(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    search_configuration_id: Optional[str] = None
    user_id: Optional[str] = None
    params: dict = Field(default_factory=dict)
    status: RunStatus
    results_count: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class IngestionSummary(BaseModel):
    success: bool = True
    totalConfigs: int = 0
    totalLicitacoesFound: int = 0


class ClassificationOutcome(BaseModel):
    id: str
    status: str  # "ok" | "error"
    error: Optional[str] = None


class ClassifyPendingResult(BaseModel):
    processed: int = 0
    results: list[ClassificationOutcome] = Field(default_factory=list)
    message: Optional[str] = None
