"""Persistence for onboarding progress records.

The progress service only needs read-your-writes consistency for a single
session. Two backends are provided:
- InMemoryProgressRepository: process-local dict (default, single instance)
- SqlProgressRepository: `onboarding_progress` table via an async session maker
"""

import logging
from datetime import datetime
from typing import Protocol, cast

from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.orm import sessionmaker

from helpshelf.models.onboarding_progress import OnboardingProgress
from helpshelf.schemas.onboarding_progress import ProgressRecord

logger = logging.getLogger(__name__)


class ProgressRepository(Protocol):
    """Storage contract for progress records."""

    async def save(self, record: ProgressRecord) -> None: ...

    async def load(self, session_id: str) -> ProgressRecord | None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def list_analyzing(self) -> list[ProgressRecord]: ...

    async def list_updated_before(self, cutoff: datetime) -> list[ProgressRecord]: ...


class InMemoryProgressRepository:
    """In-memory repository.

    Records are immutable, so storing and returning the same object is safe
    for concurrent readers.

    Note: suitable for single-instance deployments only.
    """

    def __init__(self) -> None:
        self._records: dict[str, ProgressRecord] = {}

    async def save(self, record: ProgressRecord) -> None:
        self._records[record.session_id] = record

    async def load(self, session_id: str) -> ProgressRecord | None:
        return self._records.get(session_id)

    async def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    async def list_analyzing(self) -> list[ProgressRecord]:
        return [record for record in self._records.values() if record.is_analyzing]

    async def list_updated_before(self, cutoff: datetime) -> list[ProgressRecord]:
        return [record for record in self._records.values() if record.updated_at < cutoff]

    def __len__(self) -> int:
        return len(self._records)


class SqlProgressRepository:
    """Database-backed repository for multi-worker deployments."""

    def __init__(self, session_maker: sessionmaker) -> None:
        self._session_maker = session_maker

    async def save(self, record: ProgressRecord) -> None:
        row = OnboardingProgress(
            session_id=record.session_id,
            is_analyzing=record.is_analyzing,
            updated_at=record.updated_at,
            payload=record.model_dump(mode="json"),
        )
        async with self._session_maker() as db:
            await db.merge(row)
            await db.commit()

    async def load(self, session_id: str) -> ProgressRecord | None:
        async with self._session_maker() as db:
            row = await db.get(OnboardingProgress, session_id)
        if row is None:
            return None
        return _to_record(row)

    async def delete(self, session_id: str) -> bool:
        async with self._session_maker() as db:
            result = await db.execute(
                delete(OnboardingProgress).where(
                    OnboardingProgress.session_id == session_id  # type: ignore[arg-type]
                )
            )
            await db.commit()

        cursor_result = cast(CursorResult[tuple[()]], result)
        return cursor_result.rowcount > 0

    async def list_analyzing(self) -> list[ProgressRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(OnboardingProgress).where(
                    OnboardingProgress.is_analyzing == True  # type: ignore[arg-type]  # noqa: E712
                )
            )
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]

    async def list_updated_before(self, cutoff: datetime) -> list[ProgressRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(OnboardingProgress).where(
                    OnboardingProgress.updated_at < cutoff  # type: ignore[arg-type]
                )
            )
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]


def _to_record(row: OnboardingProgress) -> ProgressRecord:
    return ProgressRecord.model_validate(row.payload)
