"""Pydantic schemas for API request/response validation."""

from helpshelf.schemas.onboarding_progress import (
    STAGE_ORDER,
    AnalyzeRequest,
    AnalyzeResponse,
    ProgressRecord,
    ProgressResponse,
    RunState,
    Stage,
    StageName,
    StageResponse,
    StageStatus,
)

__all__ = [
    "AnalyzeRequest",
    "AnalyzeResponse",
    "ProgressRecord",
    "ProgressResponse",
    "RunState",
    "STAGE_ORDER",
    "Stage",
    "StageName",
    "StageResponse",
    "StageStatus",
]
