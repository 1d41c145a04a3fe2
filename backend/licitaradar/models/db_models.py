"""SQLAlchemy ORM table definitions for LicitaRadar.

These are the persistent representations. The Pydantic models in schemas.py
remain the canonical runtime models; these classes are for DB I/O only.
Table names match the Supabase schema the frontend reads.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text,
)

from licitaradar.core.database import Base, JSONType


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SearchProfileRow(Base):
    __tablename__ = "search_configurations"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String)
    name = Column(String, nullable=False, default="")
    keywords = Column(JSONType, default=list)
    states = Column(JSONType, default=list)
    modalidades = Column(JSONType, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    last_search_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class TenderRow(Base):
    __tablename__ = "licitacoes_encontradas"

    id = Column(String, primary_key=True, default=_uuid)
    search_config_id = Column(String, ForeignKey("search_configurations.id"))
    numero_controle_pncp = Column(String, nullable=False, unique=True)
    numero_compra = Column(String)
    ano_compra = Column(Integer)
    objeto_compra = Column(Text, default="")
    modalidade_nome = Column(String)
    situacao = Column(String)
    valor_total_estimado = Column(Float)
    data_publicacao_pncp = Column(String)
    data_abertura_proposta = Column(String)
    data_encerramento_proposta = Column(String)
    orgao_cnpj = Column(String)
    orgao_razao_social = Column(String)
    unidade_nome = Column(String)
    municipio_nome = Column(String)
    uf_sigla = Column(String)
    link_pncp = Column(String)
    raw_data = Column(JSONType)

    # User triage
    is_viewed = Column(Boolean, nullable=False, default=False)
    vai_participar = Column(Boolean, nullable=False, default=False)
    # NULL → new; otherwise a TenderStatus value
    status_interno = Column(String)
    data_limite_interna = Column(String)
    gestao_checklist = Column(JSONType)
    notas = Column(Text)

    # Relevance classifier
    ia_score = Column(Float)
    ia_justificativa = Column(Text)
    ia_filtrada = Column(Boolean)
    ia_tags = Column(JSONType)
    ia_reviewed_at = Column(DateTime(timezone=True))
    ia_needs_review = Column(Boolean)
    ia_processing_error = Column(Text)

    created_at = Column(DateTime(timezone=True), default=_now)


class TenderDocumentRow(Base):
    __tablename__ = "licitacao_documentos_pncp"

    id = Column(String, primary_key=True, default=_uuid)
    licitacao_encontrada_id = Column(String, ForeignKey("licitacoes_encontradas.id"), index=True)
    tipo_documento = Column(Integer)
    tipo_documento_nome = Column(String)
    nome_arquivo_pncp = Column(String)
    url_pncp = Column(String)
    data_inclusao_pncp = Column(String)
    created_at = Column(DateTime(timezone=True), default=_now)


class EditalAnalysisRow(Base):
    __tablename__ = "licitacao_edital_ia"

    # One analysis per tender; a retry overwrites the row
    licitacao_encontrada_id = Column(String, ForeignKey("licitacoes_encontradas.id"), primary_key=True)
    edital_url = Column(String)
    # pending → processing → done | error
    ia_status = Column(String, nullable=False, default="pending")
    ia_resumo = Column(Text)
    ia_requisitos_obrigatorios = Column(JSONType)
    ia_documentos_exigidos = Column(JSONType)
    ia_riscos = Column(JSONType)
    ia_perguntas_para_cliente = Column(JSONType)
    ia_recomendacao_participar = Column(Boolean)
    ia_justificativa = Column(Text)
    ia_score_adequacao = Column(Float)
    ia_raw_json = Column(JSONType)
    ia_model = Column(String)
    ia_processing_error = Column(Text)
    ia_updated_at = Column(DateTime(timezone=True), default=_now)


class RunLogRow(Base):
    __tablename__ = "search_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    search_configuration_id = Column(String, ForeignKey("search_configurations.id"), index=True)
    user_id = Column(String)
    params = Column(JSONType)
    status = Column(String, nullable=False)  # success | error
    results_count = Column(Integer, default=0)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_now)
