"""Internal task scheduler using APScheduler.

Runs the supervisory jobs for onboarding progress within the FastAPI process:
- stall sweep: fails runs that stopped reporting stage transitions
- session purge: removes finished sessions past their TTL (when enabled)
"""

import logging
from datetime import timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from helpshelf.config import settings
from helpshelf.services.session_binder import SessionBinder

logger = logging.getLogger(__name__)


async def run_stall_sweep(binder: SessionBinder) -> dict[str, Any] | None:
    """Execute the stall sweep. Returns a small report, None on error."""
    try:
        stalled = await binder.sweep_stalled(timedelta(minutes=settings.stall_timeout_minutes))
    except Exception as e:
        logger.exception(f"[scheduler] Stall-sweep: failed with error: {e}")
        return None

    if stalled:
        logger.info(f"[scheduler] Stall-sweep: marked {len(stalled)} stalled runs as failed")
    return {"stalled_sessions": stalled}


async def run_session_purge(binder: SessionBinder) -> dict[str, Any] | None:
    """Execute the expired-session purge. Returns a small report, None on error."""
    try:
        purged = await binder.purge_expired(timedelta(hours=settings.session_ttl_hours))
    except Exception as e:
        logger.exception(f"[scheduler] Session-purge: failed with error: {e}")
        return None

    logger.info(f"[scheduler] Session-purge: completed ({purged} sessions removed)")
    return {"purged_sessions": purged}


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._binder: SessionBinder | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self, binder: SessionBinder) -> None:
        """Start the scheduler and register jobs."""
        self._binder = binder
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_stall_sweep,
            trigger=IntervalTrigger(seconds=settings.stall_sweep_interval_seconds),
            args=[binder],
            id="stall_sweep",
            name="Onboarding Stall Sweep",
            replace_existing=True,
        )

        if settings.session_ttl_hours > 0:
            self._scheduler.add_job(
                run_session_purge,
                trigger=IntervalTrigger(hours=1),
                args=[binder],
                id="session_purge",
                name="Expired Onboarding Session Purge",
                replace_existing=True,
            )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with stall-sweep every "
            f"{settings.stall_sweep_interval_seconds}s "
            f"(threshold {settings.stall_timeout_minutes} min), "
            f"session-purge "
            + (f"hourly (TTL {settings.session_ttl_hours}h)" if settings.session_ttl_hours > 0 else "disabled")
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """
        Manually trigger a job immediately (for testing/debugging).

        Returns the job result or None if job not found.
        """
        if self._binder is None:
            return None
        if job_id == "stall_sweep":
            return await run_stall_sweep(self._binder)
        if job_id == "session_purge":
            return await run_session_purge(self._binder)
        return None


scheduler = Scheduler()
