"""Onboarding analysis: start, poll, restart and discard per guest session."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from helpshelf.api.deps import get_collaborators, get_session_binder
from helpshelf.config import settings
from helpshelf.core.exceptions import (
    ConflictError,
    NotFoundError,
    TooManyRequestsError,
    ValidationError,
)
from helpshelf.schemas.onboarding_progress import (
    AnalyzeRequest,
    AnalyzeResponse,
    ProgressRecord,
    ProgressResponse,
    RunState,
    StageResponse,
)
from helpshelf.services.collaborators import AnalysisCollaborators
from helpshelf.services.progress import state_machine
from helpshelf.services.progress.exceptions import (
    MissingDomain,
    NotTerminal,
    RestartLimitExceeded,
    SessionNotFound,
)
from helpshelf.services.session_binder import SessionBinder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])

SessionId = Annotated[
    str,
    Path(
        min_length=1,
        max_length=128,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Anonymous guest session id",
    ),
]


def to_progress_response(record: ProgressRecord) -> ProgressResponse:
    """Build the poll payload from a record snapshot."""
    return ProgressResponse(
        session_id=record.session_id,
        domain=record.domain,
        stages=[
            StageResponse(name=stage.name, status=stage.status, sub_progress=stage.sub_progress)
            for stage in record.stages
        ],
        overall_percent=record.overall_percent,
        run_state=record.run_state,
        is_analyzing=record.is_analyzing,
        is_complete=record.is_complete,
        error_message=record.error_message,
        estimated_remaining_seconds=state_machine.estimate_remaining(
            record, default_seconds=settings.default_eta_seconds
        ),
        restart_count=record.restart_count,
        poll_interval_seconds=settings.poll_interval_seconds,
        started_at=record.started_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
    )


@router.get("/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(
    session_id: SessionId,
    binder: SessionBinder = Depends(get_session_binder),
) -> ProgressResponse:
    """
    Poll onboarding progress for a session.

    Creates a not-started record on first poll. Never starts an analysis.
    """
    record = await binder.get_or_create(session_id)
    return to_progress_response(record)


@router.post("/{session_id}/analyze", response_model=AnalyzeResponse)
async def analyze(
    session_id: SessionId,
    payload: AnalyzeRequest | None = None,
    binder: SessionBinder = Depends(get_session_binder),
    collaborators: AnalysisCollaborators = Depends(get_collaborators),
) -> AnalyzeResponse:
    """
    Start the onboarding analysis for a session, or attach to the current one.

    Analysis runs in the background. Poll GET /onboarding/{session_id}/progress.
    The `status` field will be:
    - "analyzing" when this request started the run
    - "already_analyzing" when a run was already in progress
    - "completed" / "failed" when the session already finished (use /restart)
    """
    domain = payload.domain if payload else None
    try:
        record, started = await binder.start_or_attach(session_id, collaborators, domain=domain)
    except MissingDomain as e:
        raise ValidationError(e.message) from e

    if not started and record.is_analyzing:
        return AnalyzeResponse(
            status="already_analyzing",
            message="Analysis already in progress. Poll for status.",
            progress=to_progress_response(record),
        )
    if record.run_state == RunState.COMPLETE:
        return AnalyzeResponse(
            status="completed",
            message="Analysis already completed.",
            progress=to_progress_response(record),
        )
    if record.run_state == RunState.FAILED:
        return AnalyzeResponse(
            status="failed",
            message="Analysis failed. Restart it to try again.",
            progress=to_progress_response(record),
        )
    return AnalyzeResponse(
        status="analyzing",
        message="Analysis started. Poll for status updates.",
        progress=to_progress_response(record),
    )


@router.post("/{session_id}/restart", response_model=AnalyzeResponse)
async def restart(
    session_id: SessionId,
    payload: AnalyzeRequest | None = None,
    binder: SessionBinder = Depends(get_session_binder),
    collaborators: AnalysisCollaborators = Depends(get_collaborators),
) -> AnalyzeResponse:
    """Restart a completed or failed analysis from the first stage."""
    domain = payload.domain if payload else None
    try:
        record = await binder.restart(session_id, collaborators, domain=domain)
    except SessionNotFound as e:
        raise NotFoundError("Onboarding session") from e
    except NotTerminal as e:
        raise ConflictError(e.message) from e
    except RestartLimitExceeded as e:
        raise TooManyRequestsError(e.message) from e

    return AnalyzeResponse(
        status="analyzing",
        message=f"Analysis restarted (attempt {record.restart_count + 1}). Poll for status updates.",
        progress=to_progress_response(record),
    )


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard(
    session_id: SessionId,
    binder: SessionBinder = Depends(get_session_binder),
) -> None:
    """Remove a session's progress. Not allowed while analysis is running."""
    try:
        deleted = await binder.discard(session_id)
    except NotTerminal as e:
        raise ConflictError(e.message) from e

    if not deleted:
        raise NotFoundError("Onboarding session")
