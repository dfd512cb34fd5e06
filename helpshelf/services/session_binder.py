"""
Session binder: maps anonymous session ids to progress records.

Reads (`get`, `get_or_create`) never start work. Runs are started only by
`start_if_idle` or `restart`, each of which hands the record to the analysis
driver as a background asyncio task. The begin-run check and write happen
under the session's store lock, so concurrent start requests for one session
produce exactly one run.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from helpshelf.config import settings
from helpshelf.schemas.onboarding_progress import ProgressRecord, RunState
from helpshelf.services.analysis_driver import AnalysisDriver
from helpshelf.services.collaborators.types import AnalysisCollaborators
from helpshelf.services.progress import state_machine
from helpshelf.services.progress.exceptions import (
    MissingDomain,
    NotTerminal,
    RestartLimitExceeded,
    SessionNotFound,
    SupersededRun,
)
from helpshelf.services.progress.store import ProgressStore

logger = logging.getLogger(__name__)


class SessionBinder:
    """Create-or-attach access to onboarding progress, plus supervisory sweeps."""

    def __init__(
        self,
        store: ProgressStore,
        driver: AnalysisDriver | None = None,
        max_restarts: int | None = None,
        max_concurrent_analyses: int | None = None,
    ) -> None:
        self.store = store
        self.driver = driver or AnalysisDriver(store)
        self.max_restarts = settings.max_restarts if max_restarts is None else max_restarts
        # Bounded worker pool shared by all sessions
        self._pool = asyncio.Semaphore(max_concurrent_analyses or settings.max_concurrent_analyses)
        self._tasks: dict[str, asyncio.Task] = {}
        # Cancelled tasks still unwinding after their session moved on
        self._draining: set[asyncio.Task] = set()

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    async def get(self, session_id: str) -> ProgressRecord | None:
        """Current snapshot for the session, or None."""
        return await self.store.load(session_id)

    async def get_or_create(self, session_id: str) -> ProgressRecord:
        """Return the session's record, creating a not-started one if needed."""
        record, created = await self.store.create_if_absent(
            session_id, lambda: state_machine.new_record(session_id)
        )
        if created:
            logger.info(f"Created onboarding progress for session {session_id}")
        return record

    # ─────────────────────────────────────────────────────────────────────
    # Starting runs
    # ─────────────────────────────────────────────────────────────────────

    async def start_if_idle(
        self,
        session_id: str,
        collaborators: AnalysisCollaborators,
        domain: str | None = None,
    ) -> ProgressRecord:
        """
        Start an analysis run unless one is running or already finished.

        Args:
            session_id: Anonymous session id
            collaborators: External services for the run
            domain: Site to analyse; required unless the session already has one

        Returns:
            The record, analyzing if this call started the run, otherwise
            unchanged

        Raises:
            MissingDomain: If the run would start with no domain.
        """
        record, _ = await self.start_or_attach(session_id, collaborators, domain)
        return record

    async def start_or_attach(
        self,
        session_id: str,
        collaborators: AnalysisCollaborators,
        domain: str | None = None,
    ) -> tuple[ProgressRecord, bool]:
        """Like start_if_idle, also reporting whether this call began the run."""
        await self.get_or_create(session_id)
        began = False

        def begin(current: ProgressRecord) -> ProgressRecord:
            nonlocal began
            if current.run_state != RunState.NOT_STARTED:
                return current
            target = (domain or "").strip() or current.domain
            if not target:
                raise MissingDomain(session_id)
            began = True
            return state_machine.begin_run(current.model_copy(update={"domain": target}))

        record = await self.store.update(session_id, begin)
        if not began:
            logger.debug(
                f"Session {session_id} is {record.run_state.value}, attaching to existing record"
            )
            return record, False

        self._spawn(record, collaborators)
        logger.info(f"Analysis started for session {session_id} (domain={record.domain})")
        return record, True

    async def restart(
        self,
        session_id: str,
        collaborators: AnalysisCollaborators,
        domain: str | None = None,
    ) -> ProgressRecord:
        """
        Reset a finished run and start it again.

        StallTimeout failures count against the restart limit like any other
        failure. Once the limit is reached, a failed record's error message is
        replaced with the limit message so pollers see it.

        Raises:
            SessionNotFound: If the session has no record.
            NotTerminal: If the run is still not started or analyzing.
            RestartLimitExceeded: If the session has used all its restarts.
        """
        limit_hit = False

        def reset(current: ProgressRecord) -> ProgressRecord:
            nonlocal limit_hit
            if not current.is_terminal:
                raise NotTerminal(session_id)
            if current.restart_count >= self.max_restarts:
                limit_hit = True
                return state_machine.mark_restart_limit(current, self.max_restarts)
            return state_machine.reset_for_restart(current)

        record = await self.store.update(session_id, reset)
        if limit_hit:
            logger.warning(f"Restart limit ({self.max_restarts}) reached for session {session_id}")
            raise RestartLimitExceeded(session_id, self.max_restarts)

        logger.info(f"Restarting analysis for session {session_id} (restart #{record.restart_count})")
        return await self.start_if_idle(session_id, collaborators, domain)

    def _spawn(self, record: ProgressRecord, collaborators: AnalysisCollaborators) -> None:
        session_id = record.session_id
        previous = self._tasks.get(session_id)
        if previous is not None and not previous.done():
            self._draining.add(previous)
            previous.add_done_callback(self._draining.discard)

        task = asyncio.create_task(
            self._drive(record, collaborators),
            name=f"onboarding-analysis-{session_id}",
        )
        self._tasks[session_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(session_id) is done:
                del self._tasks[session_id]

        task.add_done_callback(_forget)

    async def _drive(self, record: ProgressRecord, collaborators: AnalysisCollaborators) -> None:
        session_id = record.session_id
        async with self._pool:
            try:
                await self.driver.run(record, collaborators)
            except Exception as e:
                logger.exception(f"Analysis driver crashed for session {session_id}: {e}")
                await self._mark_crashed(record, str(e) or type(e).__name__)

    async def _mark_crashed(self, record: ProgressRecord, error_message: str) -> None:
        """Record a driver crash so the session does not stay analyzing."""
        try:
            await self.store.update(
                record.session_id,
                lambda current: state_machine.fail_run(
                    current, f"Analysis failed unexpectedly: {error_message}"
                ),
                run_id=record.run_id,
            )
        except (SupersededRun, SessionNotFound):
            # Run already ended, was restarted, or was discarded
            return
        except Exception as db_error:
            # Even error handling failed - the stall sweep will pick it up
            logger.critical(
                f"CRITICAL: Failed to mark analysis as failed. "
                f"Session {record.session_id} may be stuck in 'analyzing' state. "
                f"Store error: {db_error}. Original error: {error_message}"
            )

    # ─────────────────────────────────────────────────────────────────────
    # Expiry and supervision
    # ─────────────────────────────────────────────────────────────────────

    async def discard(self, session_id: str) -> bool:
        """
        Remove a session's record (hook for the external expiry policy).

        Raises:
            NotTerminal: If the session is analyzing.
        """

        def guard(current: ProgressRecord) -> ProgressRecord:
            if current.is_analyzing:
                raise NotTerminal(session_id, action="discard")
            return current

        deleted = await self.store.delete(session_id, guard)
        if deleted:
            logger.info(f"Discarded onboarding progress for session {session_id}")
        return deleted

    async def sweep_stalled(
        self,
        threshold: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """
        Fail every analyzing run with no stage transition within `threshold`.

        Returns:
            Session ids that were marked failed
        """
        if threshold is None:
            threshold = timedelta(minutes=settings.stall_timeout_minutes)
        stalled: list[str] = []

        for candidate in await self.store.list_analyzing():
            if not state_machine.is_stalled(candidate, threshold, now):
                continue

            session_id = candidate.session_id
            marked = False

            def stall(current: ProgressRecord) -> ProgressRecord:
                nonlocal marked
                if not state_machine.is_stalled(current, threshold, now):
                    return current
                marked = True
                return state_machine.mark_stalled(current, now)

            try:
                record = await self.store.update(session_id, stall)
            except SessionNotFound:
                continue
            if not marked:
                continue

            stalled.append(session_id)
            logger.warning(f"Auto-marked stalled analysis as failed for session {session_id}: {record.error_message}")

            task = self._tasks.get(session_id)
            if task is not None and not task.done():
                task.cancel()

        return stalled

    async def purge_expired(self, ttl: timedelta, now: datetime | None = None) -> int:
        """Delete records that are not analyzing and were last updated before now - ttl."""
        cutoff = (now or datetime.now(UTC)) - ttl
        purged = 0

        for candidate in await self.store.list_updated_before(cutoff):
            if candidate.is_analyzing:
                continue
            try:
                if await self.discard(candidate.session_id):
                    purged += 1
            except NotTerminal:
                continue

        if purged:
            logger.info(f"Purged {purged} expired onboarding sessions")
        return purged

    async def wait_idle(self) -> None:
        """Wait for every in-flight analysis task, including cancelled ones still unwinding."""
        while self._tasks or self._draining:
            pending = [*self._tasks.values(), *self._draining]
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight analysis tasks."""
        tasks = [*self._tasks.values(), *self._draining]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
