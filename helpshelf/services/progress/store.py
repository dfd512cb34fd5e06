"""
Progress store: the single write path for progress records.

Wraps a ProgressRepository with one asyncio.Lock per session so that each
read-modify-write is applied as one unit. Readers go straight to the
repository and never wait on a writer.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime

from helpshelf.domain.progress_repository import ProgressRepository
from helpshelf.schemas.onboarding_progress import ProgressRecord
from helpshelf.services.progress.exceptions import SessionNotFound, SupersededRun

logger = logging.getLogger(__name__)

Mutation = Callable[[ProgressRecord], ProgressRecord]


class ProgressStore:
    """Explicit store object handed to the binder, driver and sweeps."""

    def __init__(self, repository: ProgressRepository) -> None:
        self.repository = repository
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def load(self, session_id: str) -> ProgressRecord | None:
        """Read the latest snapshot. Never blocks on writers."""
        return await self.repository.load(session_id)

    async def create_if_absent(
        self,
        session_id: str,
        factory: Callable[[], ProgressRecord],
    ) -> tuple[ProgressRecord, bool]:
        """Return (record, created). Creates from `factory` only if missing."""
        async with self.lock_for(session_id):
            existing = await self.repository.load(session_id)
            if existing is not None:
                return existing, False
            record = factory()
            await self.repository.save(record)
            logger.debug(f"Created progress record for session {session_id}")
            return record, True

    async def update(
        self,
        session_id: str,
        mutate: Mutation,
        run_id: str | None = None,
    ) -> ProgressRecord:
        """
        Apply `mutate` to the current record and persist the result.

        Args:
            session_id: Session whose record to update
            mutate: Pure function from the current record to the new one;
                returning the same object skips the write
            run_id: When given, the write is rejected unless the stored record
                still belongs to this run

        Raises:
            SessionNotFound: If there is no record for the session.
            SupersededRun: If `run_id` no longer owns the record.
        """
        async with self.lock_for(session_id):
            record = await self.repository.load(session_id)
            if record is None:
                raise SessionNotFound(session_id)
            if run_id is not None and (record.run_id != run_id or not record.is_analyzing):
                raise SupersededRun(
                    f"Run {run_id} no longer owns session {session_id}", session_id
                )
            updated = mutate(record)
            if updated is not record:
                await self.repository.save(updated)
            return updated

    async def delete(self, session_id: str, guard: Mutation | None = None) -> bool:
        """Delete a record; `guard` may raise to veto the deletion."""
        async with self.lock_for(session_id):
            record = await self.repository.load(session_id)
            if record is None:
                return False
            if guard is not None:
                guard(record)
            return await self.repository.delete(session_id)

    async def list_analyzing(self) -> list[ProgressRecord]:
        return await self.repository.list_analyzing()

    async def list_updated_before(self, cutoff: datetime) -> list[ProgressRecord]:
        return await self.repository.list_updated_before(cutoff)
