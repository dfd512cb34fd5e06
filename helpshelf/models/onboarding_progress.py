"""OnboardingProgress model for persistent progress storage.

Stores each session's ProgressRecord as a JSON payload. The indexed columns
mirror payload fields that the stall sweep and session purge filter on.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


class OnboardingProgress(SQLModel, table=True):
    """Persistent storage for onboarding progress records."""

    __tablename__ = "onboarding_progress"

    session_id: str = Field(primary_key=True, max_length=128)

    # Query columns (denormalized from payload)
    is_analyzing: bool = Field(default=False, index=True)
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
        sa_type=DateTime(timezone=True),
    )

    # Full ProgressRecord, serialized with model_dump(mode="json")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False),
    )
