"""Manual supervision of persisted onboarding sessions.

Run when the API's scheduler is disabled, or to clean up after an outage
left runs stuck in 'analyzing'. Only meaningful with PERSISTENCE_BACKEND=sql.

Usage:
    python -m scripts.sweep_onboarding_sessions [--purge-hours N] [--yes]

This script:
1. Lists analyzing sessions with no stage transition within the stall threshold
2. Marks them failed (they can be restarted by the user)
3. With --purge-hours, deletes finished or idle sessions older than N hours
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import UTC, datetime, timedelta

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


def _purge_hours() -> int | None:
    if "--purge-hours" not in sys.argv:
        return None
    index = sys.argv.index("--purge-hours")
    try:
        return int(sys.argv[index + 1])
    except (IndexError, ValueError):
        logger.error("--purge-hours needs an integer number of hours")
        sys.exit(2)


async def sweep_sessions() -> None:
    """Fail stalled runs and optionally purge expired sessions."""
    from helpshelf.config.settings import settings
    from helpshelf.core.database import build_engine, build_session_maker
    from helpshelf.domain.progress_repository import SqlProgressRepository
    from helpshelf.services.progress import ProgressStore, state_machine
    from helpshelf.services.session_binder import SessionBinder

    purge_hours = _purge_hours()
    threshold = timedelta(minutes=settings.stall_timeout_minutes)

    engine = build_engine(settings.database_url)
    binder = SessionBinder(ProgressStore(SqlProgressRepository(build_session_maker(engine))))

    try:
        now = datetime.now(UTC)
        analyzing = await binder.store.list_analyzing()
        stalled = [r for r in analyzing if state_machine.is_stalled(r, threshold, now)]

        logger.info(
            f"Found {len(analyzing)} analyzing sessions, {len(stalled)} stalled "
            f"(threshold {settings.stall_timeout_minutes} min)"
        )
        for record in stalled:
            logger.info(f"  - {record.session_id} ({record.domain}, last update {record.updated_at})")

        if stalled or purge_hours is not None:
            # Confirm
            if "--yes" not in sys.argv:
                confirm = input("\nProceed? [y/N] ")
                if confirm.lower() != "y":
                    logger.info("Aborted.")
                    return

        if stalled:
            marked = await binder.sweep_stalled(threshold, now=now)
            logger.info(f"Marked {len(marked)} stalled sessions as failed")

        if purge_hours is not None:
            purged = await binder.purge_expired(timedelta(hours=purge_hours), now=now)
            logger.info(f"Purged {purged} sessions older than {purge_hours}h")
    finally:
        await engine.dispose()

    logger.info("Sweep complete.")


if __name__ == "__main__":
    asyncio.run(sweep_sessions())
