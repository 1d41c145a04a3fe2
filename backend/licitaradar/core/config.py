"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    app_name: str = "LicitaRadar"
    debug: bool = False

    # Async SQLAlchemy URL. postgres:// URLs are rewritten to postgresql+asyncpg://
    # Supabase: postgresql+asyncpg://postgres.{ref}:{pw}@{region}.pooler.supabase.com:5432/postgres
    database_url: str = "sqlite+aiosqlite:///./licitaradar.db"

    # PNCP (Portal Nacional de Contratações Públicas)
    pncp_search_url: str = "https://pncp.gov.br/api/search/"
    pncp_api_url: str = "https://pncp.gov.br/api/pncp/v1"
    pncp_consulta_url: str = "https://pncp.gov.br/api/consulta/v1"
    pncp_portal_url: str = "https://pncp.gov.br/app"
    pncp_page_size: int = 50
    pncp_max_pages: int = 200
    pncp_timeout_seconds: float = 30.0

    # OpenRouter (OpenAI-compatible chat completions)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "x-ai/grok-4.1-fast:free"
    openrouter_analysis_model: str = "meta-llama/llama-3.1-8b-instruct"
    openrouter_chat_model: str = ""  # empty → analysis model
    openrouter_fallback_model: str = ""  # empty → no fallback
    openrouter_pdf_engine: str = "pdf-text"
    openrouter_referer: str = "https://localhost"
    llm_timeout_seconds: float = 120.0

    # Relevance classifier
    ia_batch_size: int = 50
    ia_temperature: float = 0.2
    ia_max_tokens: int = 512

    # Edital deep analysis / chat
    analysis_temperature: float = 0.1
    analysis_max_tokens: int = 1800
    chat_temperature: float = 0.2
    chat_max_tokens: int = 1500

    # Supabase Storage for manually uploaded editais
    supabase_url: str = ""
    supabase_service_key: str = ""
    edital_upload_bucket: str = "edital-uploads"

    # Ingestion scheduler
    scheduler_enabled: bool = True
    ingestion_interval_hours: int = 6

    class Config:
        env_file = ".env"

    @property
    def chat_model(self) -> str:
        return self.openrouter_chat_model or self.openrouter_analysis_model


@lru_cache
def get_settings() -> Settings:
    return Settings()
