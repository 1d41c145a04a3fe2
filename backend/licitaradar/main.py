"""LicitaRadar - FastAPI Application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from licitaradar.agents.scheduler import start_scheduler, stop_scheduler
from licitaradar.api.routes import router
from licitaradar.core.config import get_settings
from licitaradar.core.database import close_db, db_ready, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: a DB failure stops the app here
    await init_db()
    if settings.scheduler_enabled:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
    yield
    # Shutdown
    stop_scheduler()
    await close_db()


app = FastAPI(
    title="LicitaRadar API",
    description=(
        "Monitoring of Brazilian public procurement (PNCP) with LLM triage.\n\n"
        "**Ingestion**: active search configurations are run against the PNCP search API; "
        "new licitações are deduplicated by numero_controle_pncp and classified on arrival.\n\n"
        "**Endpoints**:\n"
        "- `/api/v1/profiles` — Search configuration CRUD\n"
        "- `/api/v1/ingestion` — Manual runs, run logs and scheduler status\n"
        "- `/api/v1/ia` — Batch relevance classification\n"
        "- `/api/v1/tenders` — Licitações, triage updates, documents and edital analysis\n"
        "- `/api/v1/edital-chat` — Chat grounded in an edital PDF\n"
        "- `/api/v1/pncp` — Live purchase details from PNCP\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Profiles", "description": "Search configurations (keywords, states, modalidades)"},
        {"name": "Ingestion", "description": "PNCP ingestion runs and their logs"},
        {"name": "IA", "description": "Relevance classification, edital analysis and chat"},
        {"name": "Tenders", "description": "Licitações and their internal workflow"},
        {"name": "PNCP", "description": "Purchase details and documents from PNCP"},
    ],
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "llm_configured": bool(settings.openrouter_api_key),
        "storage_configured": bool(settings.supabase_url and settings.supabase_service_key),
        "db_connected": db_ready(),
    }
