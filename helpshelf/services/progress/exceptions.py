"""Exceptions for onboarding progress tracking."""


class OnboardingError(Exception):
    """Base class for progress-tracking errors."""

    def __init__(self, message: str, session_id: str | None = None):
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class InvalidTransition(OnboardingError):
    """A stage transition would break the ledger ordering rules.

    Always a caller error; never corrected silently.
    """


class AlreadyRunning(OnboardingError):
    """begin_run was called on a record that is already analyzing."""

    def __init__(self, session_id: str):
        super().__init__(f"Analysis already running for session {session_id}", session_id)


class NotTerminal(OnboardingError):
    """Restart or discard attempted on a run that has not finished."""

    def __init__(self, session_id: str, action: str = "restart"):
        self.action = action
        super().__init__(
            f"Cannot {action} session {session_id}: analysis has not finished",
            session_id,
        )


class RestartLimitExceeded(OnboardingError):
    """The session has used up its explicit restarts."""

    def __init__(self, session_id: str, max_restarts: int):
        self.max_restarts = max_restarts
        super().__init__(
            f"Analysis for session {session_id} was restarted {max_restarts} times "
            "without success. Please contact support.",
            session_id,
        )


class MissingDomain(OnboardingError):
    """A run cannot start because no domain was supplied for the session."""

    def __init__(self, session_id: str):
        super().__init__(f"A domain is required to analyse session {session_id}", session_id)


class SessionNotFound(OnboardingError):
    """No progress record exists for the session."""

    def __init__(self, session_id: str):
        super().__init__(f"Onboarding session {session_id} not found", session_id)


class StageFailure(OnboardingError):
    """A collaborator failed while a stage was running.

    Recorded into the record's error_message by the driver; never raised past it.
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


class StallTimeout(StageFailure):
    """A run made no progress within the stall threshold."""

    def __init__(self, stage: str, elapsed_minutes: int):
        self.elapsed_minutes = elapsed_minutes
        super().__init__(
            stage,
            f"Analysis timed out after {elapsed_minutes} minutes without progress "
            f"(stuck on '{stage}' stage). Please try again.",
        )


class SupersededRun(OnboardingError):
    """A write was tagged with a run id that no longer owns the record."""
