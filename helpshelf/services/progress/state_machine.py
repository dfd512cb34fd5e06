"""
Progress state machine for onboarding analysis runs.

Owns every ProgressRecord mutation. Each function takes a record and returns a
new one; callers persist the result as a single write so derived fields and
flags always change together.

    not_started → analyzing → {complete, failed}
                      ↑                    │
                      └──── restart ───────┘
"""

import uuid
from datetime import UTC, datetime, timedelta

from helpshelf.schemas.onboarding_progress import (
    ProgressRecord,
    RunState,
    StageStatus,
)
from helpshelf.services.progress import step_ledger
from helpshelf.services.progress.exceptions import (
    AlreadyRunning,
    InvalidTransition,
    NotTerminal,
    RestartLimitExceeded,
    StallTimeout,
)

# Fallback ETA when no stage has reported progress yet
DEFAULT_ETA_SECONDS = 120

# Stored error messages are truncated to this length
MAX_ERROR_LENGTH = 500


def _now() -> datetime:
    return datetime.now(UTC)


def new_record(session_id: str, domain: str | None = None, now: datetime | None = None) -> ProgressRecord:
    """Create a not-started record with every stage pending."""
    timestamp = now or _now()
    return ProgressRecord(
        session_id=session_id,
        stages=step_ledger.initialize(),
        domain=domain,
        created_at=timestamp,
        updated_at=timestamp,
    )


def begin_run(record: ProgressRecord, now: datetime | None = None) -> ProgressRecord:
    """
    Move a record into the analyzing state.

    Stages stay pending until the driver reports the first transition.

    Raises:
        AlreadyRunning: If the record is already analyzing.
        InvalidTransition: If the record is terminal (restart it instead).
    """
    if record.is_analyzing:
        raise AlreadyRunning(record.session_id)
    if record.is_terminal:
        raise InvalidTransition(
            f"Session {record.session_id} already finished; restart it to run again",
            record.session_id,
        )

    timestamp = now or _now()
    return record.model_copy(
        update={
            "is_analyzing": True,
            "run_id": uuid.uuid4().hex,
            "started_at": timestamp,
            "updated_at": timestamp,
        }
    )


def record_stage_transition(
    record: ProgressRecord,
    stage_index: int,
    status: StageStatus,
    sub_progress: int,
    error: str | None = None,
    now: datetime | None = None,
) -> ProgressRecord:
    """
    Apply one stage transition and recompute the record's terminal flags.

    A failed stage ends the run with `error` as the error message. Completing
    the last stage ends the run successfully.

    Raises:
        InvalidTransition: If the record is not analyzing or the step ledger
            rejects the transition.
    """
    if not record.is_analyzing:
        raise InvalidTransition(
            f"Session {record.session_id} is not analyzing "
            f"(state: {record.run_state.value})",
            record.session_id,
        )

    stages = step_ledger.set_stage_status(record.stages, stage_index, status, sub_progress)
    timestamp = now or _now()
    update: dict = {"stages": stages, "updated_at": timestamp}

    if status == StageStatus.FAILED:
        stage_name = stages[stage_index].name.value
        message = (error or f"Stage '{stage_name}' failed")[:MAX_ERROR_LENGTH]
        update.update(
            error_message=message,
            is_analyzing=False,
            completed_at=record.completed_at or timestamp,
        )
    elif all(stage.status == StageStatus.COMPLETED for stage in stages):
        update.update(
            is_complete=True,
            is_analyzing=False,
            completed_at=record.completed_at or timestamp,
        )

    return record.model_copy(update=update)


def estimate_remaining(
    record: ProgressRecord,
    now: datetime | None = None,
    default_seconds: float = DEFAULT_ETA_SECONDS,
) -> float:
    """
    Estimate seconds left in the run.

    Linear extrapolation from elapsed time and overall percent. This is a
    heuristic for the progress UI only.
    """
    if record.is_terminal:
        return 0.0

    percent = record.overall_percent
    if percent <= 0 or record.started_at is None:
        return float(default_seconds)

    elapsed = ((now or _now()) - record.started_at).total_seconds()
    return max(0.0, elapsed * (100 / percent - 1))


def reset_for_restart(record: ProgressRecord, now: datetime | None = None) -> ProgressRecord:
    """
    Return the record re-initialized to not_started for an explicit restart.

    The domain is kept and the restart counter is incremented.

    Raises:
        NotTerminal: If the record has not reached complete or failed.
    """
    if not record.is_terminal:
        raise NotTerminal(record.session_id)

    timestamp = now or _now()
    return record.model_copy(
        update={
            "stages": step_ledger.initialize(),
            "is_analyzing": False,
            "is_complete": False,
            "error_message": None,
            "run_id": None,
            "restart_count": record.restart_count + 1,
            "started_at": None,
            "completed_at": None,
            "updated_at": timestamp,
        }
    )


def mark_restart_limit(
    record: ProgressRecord, max_restarts: int, now: datetime | None = None
) -> ProgressRecord:
    """
    Record on a failed run that it may not be restarted again.

    Completed records, and failed records already carrying the message, are
    returned unchanged.
    """
    message = RestartLimitExceeded(record.session_id, max_restarts).message
    if record.run_state != RunState.FAILED or record.error_message == message:
        return record
    return record.model_copy(
        update={"error_message": message[:MAX_ERROR_LENGTH], "updated_at": now or _now()}
    )


def is_stalled(record: ProgressRecord, threshold: timedelta, now: datetime | None = None) -> bool:
    """True when an analyzing record has had no transition for longer than threshold."""
    if record.run_state != RunState.ANALYZING:
        return False
    return (now or _now()) - record.updated_at > threshold


def _in_progress_index(record: ProgressRecord) -> int | None:
    return next(
        (i for i, stage in enumerate(record.stages) if stage.status == StageStatus.IN_PROGRESS),
        None,
    )


def fail_run(record: ProgressRecord, message: str, now: datetime | None = None) -> ProgressRecord:
    """
    Force an analyzing record to failed from outside the stage flow.

    The in-progress stage, if any, is marked failed; stages that never started
    stay pending.

    Raises:
        InvalidTransition: If the record is not analyzing.
    """
    if not record.is_analyzing:
        raise InvalidTransition(
            f"Session {record.session_id} is not analyzing", record.session_id
        )

    timestamp = now or _now()
    stages = record.stages
    stuck_index = _in_progress_index(record)
    if stuck_index is not None:
        stages = step_ledger.set_stage_status(
            stages, stuck_index, StageStatus.FAILED, stages[stuck_index].sub_progress
        )

    return record.model_copy(
        update={
            "stages": stages,
            "error_message": message[:MAX_ERROR_LENGTH],
            "is_analyzing": False,
            "completed_at": record.completed_at or timestamp,
            "updated_at": timestamp,
        }
    )


def mark_stalled(record: ProgressRecord, now: datetime | None = None) -> ProgressRecord:
    """Fail an analyzing record with a stall-timeout message naming the stuck stage."""
    timestamp = now or _now()
    elapsed_minutes = int((timestamp - record.updated_at).total_seconds() / 60)

    stuck_index = _in_progress_index(record)
    stuck_name = "queued" if stuck_index is None else record.stages[stuck_index].name.value

    return fail_run(record, StallTimeout(stuck_name, elapsed_minutes).message, now=timestamp)
