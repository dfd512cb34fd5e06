"""Onboarding progress tracking: step ledger, state machine and store."""

from helpshelf.services.progress import state_machine, step_ledger
from helpshelf.services.progress.exceptions import (
    AlreadyRunning,
    InvalidTransition,
    MissingDomain,
    NotTerminal,
    OnboardingError,
    RestartLimitExceeded,
    SessionNotFound,
    StageFailure,
    StallTimeout,
    SupersededRun,
)
from helpshelf.services.progress.store import ProgressStore

__all__ = [
    "AlreadyRunning",
    "InvalidTransition",
    "MissingDomain",
    "NotTerminal",
    "OnboardingError",
    "ProgressStore",
    "RestartLimitExceeded",
    "SessionNotFound",
    "StageFailure",
    "StallTimeout",
    "SupersededRun",
    "state_machine",
    "step_ledger",
]
