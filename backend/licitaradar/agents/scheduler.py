"""
APScheduler-based job scheduler for the ingestion agent.

The ingestion job runs every INGESTION_INTERVAL_HOURS hours (default: 6).
The scheduler is started inside the FastAPI lifespan context manager.
"""
import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from licitaradar.core.config import get_settings
from licitaradar.core.database import make_engine
from licitaradar.models.schemas import IngestionSummary

logger = logging.getLogger(__name__)

JOB_ID = "ingestion"

# Module-level scheduler instance, read by the status endpoint
_scheduler: Optional[BackgroundScheduler] = None
_last_result: Optional[IngestionSummary] = None


def get_scheduler() -> Optional[BackgroundScheduler]:
    return _scheduler


def get_last_result() -> Optional[IngestionSummary]:
    return _last_result


async def _async_run() -> IngestionSummary:
    from licitaradar.agents.ingestion import IngestionAgent

    # The job runs on its own event loop, so it cannot share the app's pooled connections
    engine = make_engine()
    try:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        return await IngestionAgent(session_factory=factory).run()
    finally:
        await engine.dispose()


def _run_ingestion_job() -> None:
    """Entry point for the scheduler thread: one full ingestion run on a private event loop."""
    global _last_result
    try:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            _last_result = loop.run_until_complete(_async_run())
        finally:
            loop.close()
        logger.info(
            f"Ingestion job complete: {_last_result.totalLicitacoesFound} new licitações "
            f"from {_last_result.totalConfigs} configs"
        )
    except Exception as e:
        logger.error(f"Ingestion job failed: {e}", exc_info=True)


def start_scheduler() -> BackgroundScheduler:
    """Register the periodic ingestion job and start the background scheduler."""
    global _scheduler
    settings = get_settings()
    interval_hours = settings.ingestion_interval_hours

    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(
        func=_run_ingestion_job,
        trigger=IntervalTrigger(hours=interval_hours),
        id=JOB_ID,
        name="PNCP Ingestion",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=300,  # 5-minute grace window
    )
    _scheduler.start()
    logger.info(
        f"Scheduler started: ingestion will run every {interval_hours}h "
        f"(next: {_scheduler.get_job(JOB_ID).next_run_time})"
    )
    return _scheduler


def stop_scheduler() -> None:
    """Stop the background thread without waiting for a running job."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
