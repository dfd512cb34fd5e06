"""
Step ledger: the fixed, ordered list of analysis stages.

Pure functions over tuples of immutable Stage objects. The ledger enforces:
- stages run strictly in declared order
- at most one stage is in progress at a time
- stages never move backward (pending → in_progress → completed/failed)
- a completed stage has sub_progress of exactly 100
"""

from collections.abc import Sequence

from helpshelf.schemas.onboarding_progress import STAGE_ORDER, Stage, StageStatus
from helpshelf.services.progress.exceptions import InvalidTransition

# Rank used to reject backward moves; completed and failed are both final
_STATUS_RANK = {
    StageStatus.PENDING: 0,
    StageStatus.IN_PROGRESS: 1,
    StageStatus.COMPLETED: 2,
    StageStatus.FAILED: 2,
}

_FINAL_STATUSES = frozenset({StageStatus.COMPLETED, StageStatus.FAILED})


def initialize() -> tuple[Stage, ...]:
    """Return the four pipeline stages, all pending with no progress."""
    return tuple(Stage(name=name) for name in STAGE_ORDER)


def set_stage_status(
    stages: Sequence[Stage],
    index: int,
    status: StageStatus,
    sub_progress: int,
) -> tuple[Stage, ...]:
    """
    Return a new stage sequence with `index` set to the given status.

    Raises:
        InvalidTransition: If the update breaks ordering, moves a stage
            backward, or carries an out-of-range sub_progress.
    """
    if not 0 <= index < len(stages):
        raise InvalidTransition(f"Stage index {index} out of range (0-{len(stages) - 1})")

    if not 0 <= sub_progress <= 100:
        raise InvalidTransition(f"sub_progress must be within 0-100, got {sub_progress}")

    current = stages[index]
    name = current.name.value

    if current.status in _FINAL_STATUSES and status != current.status:
        raise InvalidTransition(
            f"Stage '{name}' is already {current.status.value} and cannot move to {status.value}"
        )
    if _STATUS_RANK[status] < _STATUS_RANK[current.status]:
        raise InvalidTransition(
            f"Stage '{name}' cannot move backward from {current.status.value} to {status.value}"
        )

    if status == StageStatus.PENDING and sub_progress != 0:
        raise InvalidTransition(f"Pending stage '{name}' cannot report progress")
    if status == StageStatus.COMPLETED and sub_progress != 100:
        raise InvalidTransition(
            f"Stage '{name}' must reach 100 when completed, got {sub_progress}"
        )
    if status == StageStatus.COMPLETED and current.status == StageStatus.COMPLETED:
        return tuple(stages)
    if (
        status == StageStatus.IN_PROGRESS
        and current.status == StageStatus.IN_PROGRESS
        and sub_progress < current.sub_progress
    ):
        raise InvalidTransition(
            f"Stage '{name}' progress cannot decrease ({current.sub_progress} → {sub_progress})"
        )

    if status != StageStatus.PENDING:
        for earlier in stages[:index]:
            if earlier.status != StageStatus.COMPLETED:
                raise InvalidTransition(
                    f"Stage '{name}' cannot be {status.value} while "
                    f"'{earlier.name.value}' is {earlier.status.value}"
                )

    if status == StageStatus.IN_PROGRESS:
        for position, other in enumerate(stages):
            if position != index and other.status == StageStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Stage '{other.name.value}' is already in progress"
                )

    updated = list(stages)
    updated[index] = Stage(name=current.name, status=status, sub_progress=sub_progress)
    return tuple(updated)
