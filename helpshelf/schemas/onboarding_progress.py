"""Pydantic schemas for onboarding analysis progress.

A ProgressRecord is the aggregate state of one analysis run for one anonymous
session. Records are immutable: every mutation produces a new record which
replaces the stored one in a single write, so a poller always observes a
complete snapshot.

The onboarding frontend polls GET /onboarding/{session_id}/progress and reads
ProgressResponse to render the stage checklist and progress bar.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class StageName(str, Enum):
    """Analysis pipeline stages, in execution order."""

    DOMAIN_VALIDATION = "domain_validation"
    CONTENT_CRAWLING = "content_crawling"
    AI_PROCESSING = "ai_processing"
    INTEGRATION_SETUP = "integration_setup"


STAGE_ORDER: tuple[StageName, ...] = (
    StageName.DOMAIN_VALIDATION,
    StageName.CONTENT_CRAWLING,
    StageName.AI_PROCESSING,
    StageName.INTEGRATION_SETUP,
)


class StageStatus(str, Enum):
    """Status of a single stage."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    """Lifecycle state of a progress record."""

    NOT_STARTED = "not_started"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"


class Stage(BaseModel):
    """One unit of work in the analysis pipeline."""

    model_config = ConfigDict(frozen=True)

    name: StageName
    status: StageStatus = StageStatus.PENDING
    sub_progress: int = Field(default=0, description="Local completion of this stage (0-100)")


class ProgressRecord(BaseModel):
    """Aggregate state for one analysis run.

    `overall_percent` and `run_state` are derived from the other fields on
    every access and are never stored on their own.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    stages: tuple[Stage, ...]
    domain: str | None = Field(
        default=None,
        description="Customer site being analysed, e.g. 'support.example.com'",
    )

    is_analyzing: bool = False
    is_complete: bool = False
    error_message: str | None = None

    # Identifies the single driver allowed to write to this record
    run_id: str | None = None
    restart_count: int = 0

    created_at: datetime
    started_at: datetime | None = None
    updated_at: datetime
    completed_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_percent(self) -> float:
        """Mean of the stage sub-progress values."""
        if not self.stages:
            return 0.0
        return sum(stage.sub_progress for stage in self.stages) / len(self.stages)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def run_state(self) -> RunState:
        if self.is_analyzing:
            return RunState.ANALYZING
        if self.is_complete:
            return RunState.COMPLETE
        if self.error_message is not None:
            return RunState.FAILED
        return RunState.NOT_STARTED

    @property
    def is_terminal(self) -> bool:
        return self.run_state in (RunState.COMPLETE, RunState.FAILED)


# ─────────────────────────────────────────────────────────────────────────────
# API schemas
# ─────────────────────────────────────────────────────────────────────────────


class StageResponse(BaseModel):
    """Stage as exposed to the polling frontend."""

    name: StageName
    status: StageStatus
    sub_progress: int


class ProgressResponse(BaseModel):
    """Poll response for a single onboarding session."""

    session_id: str
    domain: str | None = None
    stages: list[StageResponse]
    overall_percent: float = Field(ge=0, le=100)
    run_state: RunState
    is_analyzing: bool
    is_complete: bool
    error_message: str | None = None
    estimated_remaining_seconds: float | None = Field(
        default=None,
        description="Informational estimate of time left; 0 once the run is terminal",
    )
    restart_count: int = 0
    poll_interval_seconds: int = Field(
        default=2,
        description="Interval the client should wait between polls",
    )
    started_at: datetime | None = None
    updated_at: datetime
    completed_at: datetime | None = None


class AnalyzeRequest(BaseModel):
    """Body for starting an analysis run."""

    domain: str | None = Field(
        default=None,
        min_length=1,
        max_length=253,
        description="Site to analyse; optional when the session already has one",
    )


class AnalyzeResponse(BaseModel):
    """Response after requesting an analysis run."""

    status: Literal["analyzing", "already_analyzing", "completed", "failed"]
    message: str
    progress: ProgressResponse
