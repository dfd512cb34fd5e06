"""
Analysis driver: executes the onboarding pipeline for one session.

Runs the four stages in order against external collaborators:
1. Domain validation - is the site reachable?
2. Content crawling - fetch same-site pages
3. AI processing - summarize pages into support topics
4. Integration setup - hand results to downstream integrations

Every stage transition is written through the ProgressStore as soon as it
happens so pollers see it immediately. A failing collaborator fails its stage
and ends the run (fail-fast); collaborator errors are turned into record
state and never raised to the caller.
"""

import asyncio
import logging
from typing import Any, cast

from helpshelf.config import settings
from helpshelf.schemas.onboarding_progress import (
    STAGE_ORDER,
    ProgressRecord,
    StageName,
    StageStatus,
)
from helpshelf.services.collaborators.types import AnalysisCollaborators, CollaboratorError
from helpshelf.services.progress import state_machine
from helpshelf.services.progress.exceptions import AlreadyRunning, SupersededRun
from helpshelf.services.progress.store import ProgressStore

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    StageName.DOMAIN_VALIDATION: "Domain validation",
    StageName.CONTENT_CRAWLING: "Content crawling",
    StageName.AI_PROCESSING: "AI processing",
    StageName.INTEGRATION_SETUP: "Integration setup",
}


class AnalysisDriver:
    """
    Background executor for analysis runs.

    Each run is driven at most once: a second `run` call for a run id that
    is already executing returns without side effects. A cancelled run that
    is still unwinding does not block the next run of the same session.
    """

    def __init__(self, store: ProgressStore, stage_timeout_seconds: float | None = None) -> None:
        self.store = store
        self.stage_timeout_seconds = (
            settings.stage_timeout_seconds if stage_timeout_seconds is None else stage_timeout_seconds
        )
        # run_id → session_id of runs currently executing
        self._active: dict[str, str] = {}

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active.values()

    async def run(
        self,
        record: ProgressRecord,
        collaborators: AnalysisCollaborators,
    ) -> ProgressRecord:
        """
        Execute all stages for the record's session.

        Args:
            record: Record to drive; begun here if still not_started
            collaborators: External services for each stage

        Returns:
            The latest record after the run ends (complete, failed, or
            unchanged when the call was a no-op)
        """
        session_id = record.session_id
        if record.run_id is not None and record.run_id in self._active:
            logger.debug(f"Run {record.run_id} already active for session {session_id}, ignoring run()")
            return record
        if record.is_terminal:
            return record

        if not record.is_analyzing:
            try:
                record = await self.store.update(session_id, state_machine.begin_run)
            except AlreadyRunning:
                # Lost the begin race to another caller, which drives the run
                return await self.store.load(session_id) or record
        elif any(stage.status != StageStatus.PENDING for stage in record.stages):
            # Orphaned from an earlier driver; left for the stall sweep
            logger.warning(f"Session {session_id} already has stage progress, not re-driving")
            return record

        run_id = cast(str, record.run_id)
        self._active[run_id] = session_id
        try:
            return await self._execute(record, collaborators)
        finally:
            self._active.pop(run_id, None)

    async def _execute(
        self,
        record: ProgressRecord,
        collaborators: AnalysisCollaborators,
    ) -> ProgressRecord:
        session_id = record.session_id
        run_id = record.run_id
        domain = record.domain
        outputs: dict[StageName, Any] = {}

        logger.info(f"Starting analysis for session {session_id} (domain={domain})")

        try:
            for index, stage_name in enumerate(STAGE_ORDER):
                label = STAGE_LABELS[stage_name]
                record = await self._transition(
                    session_id, run_id, index, StageStatus.IN_PROGRESS, 0
                )

                error = await self._run_stage(stage_name, domain, collaborators, outputs)
                if error is not None:
                    logger.warning(f"{label} failed for session {session_id}: {error}")
                    return await self._transition(
                        session_id, run_id, index, StageStatus.FAILED, 0, error=error
                    )

                record = await self._transition(
                    session_id, run_id, index, StageStatus.COMPLETED, 100
                )

        except SupersededRun:
            logger.warning(
                f"Run {run_id} for session {session_id} was superseded, stopping without further writes"
            )
            return await self.store.load(session_id) or record

        logger.info(f"Analysis completed for session {session_id}")
        return record

    async def _run_stage(
        self,
        stage_name: StageName,
        domain: str | None,
        collaborators: AnalysisCollaborators,
        outputs: dict[StageName, Any],
    ) -> str | None:
        """Invoke the stage's collaborator. Returns an error message on failure."""
        label = STAGE_LABELS[stage_name]
        if not domain:
            return "No domain was provided for analysis"

        try:
            outputs[stage_name] = await asyncio.wait_for(
                self._invoke(stage_name, domain, collaborators, outputs),
                timeout=self.stage_timeout_seconds,
            )
        except TimeoutError:
            return f"{label} timed out after {self.stage_timeout_seconds}s"
        except CollaboratorError as e:
            return e.message
        except Exception as e:
            logger.exception(f"{label} raised unexpectedly: {e}")
            return str(e) or f"{label} failed ({type(e).__name__})"
        return None

    async def _invoke(
        self,
        stage_name: StageName,
        domain: str,
        collaborators: AnalysisCollaborators,
        outputs: dict[StageName, Any],
    ) -> Any:
        if stage_name == StageName.DOMAIN_VALIDATION:
            return await collaborators.domain_validator.validate(domain)
        if stage_name == StageName.CONTENT_CRAWLING:
            return await collaborators.crawler.crawl(domain)
        if stage_name == StageName.AI_PROCESSING:
            return await collaborators.processor.process(
                domain, outputs[StageName.CONTENT_CRAWLING]
            )
        return await collaborators.integrations.configure(
            domain, outputs[StageName.AI_PROCESSING]
        )

    async def _transition(
        self,
        session_id: str,
        run_id: str | None,
        index: int,
        status: StageStatus,
        sub_progress: int,
        error: str | None = None,
    ) -> ProgressRecord:
        return await self.store.update(
            session_id,
            lambda current: state_machine.record_stage_transition(
                current, index, status, sub_progress, error=error
            ),
            run_id=run_id,
        )
