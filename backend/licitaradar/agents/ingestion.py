"""
Ingestion Agent: the PNCP run orchestrator.

For every active search profile, pages through the PNCP search API once per
keyword (or once with an empty query when the profile has none), stores each
new licitação through the deduplication gate and classifies it right away
when an LLM is configured. Each profile pass ends with one search_logs row
and a last_search_date update.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from licitaradar.core.database import get_session_factory
from licitaradar.core.errors import LicitaRadarError, SourceUnavailable, StorageError
from licitaradar.models.schemas import (
    IngestionSummary, PncpCandidate, RunLog, RunStatus, SearchProfile,
)
from licitaradar.services import db_ops
from licitaradar.services.classifier import RelevanceClassifier
from licitaradar.services.pncp_client import PNCPClient

logger = logging.getLogger(__name__)


class IngestionAgent:
    """
    Runs one ingestion pass over all active profiles.

    Profiles are processed sequentially and isolated from each other: an
    adapter or storage failure ends only the current profile's pass and is
    recorded in its run log.
    """

    def __init__(
        self,
        pncp_client: Optional[PNCPClient] = None,
        classifier: Optional[RelevanceClassifier] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.pncp = pncp_client or PNCPClient()
        self.classifier = classifier or RelevanceClassifier()
        self._session_factory = session_factory

    async def run(self) -> IngestionSummary:
        """Execute one run. Returns {success, totalConfigs, totalLicitacoesFound}."""
        factory = self._session_factory or get_session_factory()
        async with factory() as session:
            profiles = await db_ops.list_profiles(session, active_only=True)
            logger.info(f"Ingestion: {len(profiles)} active search configurations")
            if not self.classifier.configured:
                logger.warning("Ingestion: OPENROUTER_API_KEY not set, new licitações stay unclassified")

            total_inserted = 0
            for profile in profiles:
                total_inserted += await self._run_profile(session, profile)

        logger.info(f"Ingestion complete: {total_inserted} new licitações across {len(profiles)} configs")
        return IngestionSummary(
            success=True,
            totalConfigs=len(profiles),
            totalLicitacoesFound=total_inserted,
        )

    async def _run_profile(self, session: AsyncSession, profile: SearchProfile) -> int:
        """Process one profile. Never raises for source or storage failures."""
        params = {
            "states": profile.states,
            "keywords": profile.keywords,
            "modalidades": profile.modalidades,
        }
        logger.info(f"Ingestion: processing config {profile.name} ({profile.id}) filters={params}")

        inserted = 0
        error_message: Optional[str] = None
        try:
            for keyword in profile.keywords or [""]:
                keyword = (keyword or "").strip()
                logger.info(f"Starting PNCP search for keyword {keyword or '(vazio)'!r}")
                async for page in self.pncp.iter_search(keyword, profile.states, profile.modalidades):
                    for candidate in page.items:
                        if await self._ingest_candidate(session, profile, candidate):
                            inserted += 1
        except (SourceUnavailable, StorageError) as e:
            error_message = str(e)
            logger.error(f"Ingestion: config {profile.id} aborted after {inserted} inserts: {e}")
        finally:
            await self._finish_profile(session, profile, params, inserted, error_message)
        return inserted

    async def _ingest_candidate(
        self,
        session: AsyncSession,
        profile: SearchProfile,
        candidate: PncpCandidate,
    ) -> bool:
        """Insert one candidate and classify it if new. Returns True when a row was inserted."""
        try:
            tender = await db_ops.insert_tender_if_absent(session, profile.id, candidate)
        except StorageError as e:
            logger.error(f"Skipping licitação {candidate.numero_controle_pncp}: {e}")
            return False
        if tender is None:
            return False

        logger.info(f"Saved licitação {candidate.numero_controle_pncp}")
        if self.classifier.configured:
            try:
                await self.classifier.classify_and_store(session, tender, profile.keywords, profile.states)
            except LicitaRadarError as e:
                # The tender stays unscored and is picked up by the next classify_pending
                logger.error(f"Classification of new licitação {tender.id} not stored: {e}")
        return True

    async def _finish_profile(
        self,
        session: AsyncSession,
        profile: SearchProfile,
        params: dict,
        inserted: int,
        error_message: Optional[str],
    ) -> None:
        log = RunLog(
            search_configuration_id=profile.id,
            user_id=profile.user_id,
            params=params,
            status=RunStatus.ERROR if error_message else RunStatus.SUCCESS,
            results_count=inserted,
            error_message=error_message,
        )
        try:
            await db_ops.append_run_log(session, log)
        except StorageError as e:
            logger.error(f"Could not write run log for config {profile.id}: {e}")
        try:
            await db_ops.touch_profile_last_run(session, profile.id)
        except StorageError as e:
            logger.error(f"Could not update last_search_date for config {profile.id}: {e}")
