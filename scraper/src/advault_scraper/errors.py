"""Exception hierarchy for the ad collection pipeline."""

from __future__ import annotations


class AdvaultError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AdvaultError):
    """Missing or invalid settings; fatal before any work starts."""


class NetworkError(AdvaultError):
    """Transport-level failure talking to a remote service."""


class SubmissionError(NetworkError):
    """The provider rejected a job submission or an authenticated call."""


class ProviderResponseError(NetworkError):
    """The provider answered, but the payload was not what was expected."""


class AttemptTimeoutError(NetworkError):
    """A single polled or retried attempt ran past its per-attempt timeout."""

    def __init__(self, label: str, timeout: float) -> None:
        self.label = label
        self.timeout = timeout
        super().__init__(f"{label}: attempt exceeded {timeout}s")


class JobFailedError(AdvaultError):
    """The provider reported a terminal failure for a job."""

    def __init__(self, job_id: str, status: str, message: str | None = None) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(message or f"job {job_id} finished with status {status!r}")


class PollTimeoutError(AdvaultError, TimeoutError):
    """A polling loop exhausted its attempt budget."""

    def __init__(self, label: str, attempts: int) -> None:
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label}: not ready after {attempts} attempts")


class PollCancelledError(AdvaultError):
    """A polling loop observed its cancellation signal."""


class ValidationError(AdvaultError):
    """An input (usually a landing-page URL) is unusable."""


class PersistenceError(AdvaultError):
    """A backing-store read or write failed."""


class DuplicateRowError(PersistenceError):
    """An insert collided with a unique constraint."""


class DuplicateJobError(AdvaultError):
    """A staging record already exists for the job id."""

    def __init__(self, job_id: str, staging_id: str | None = None) -> None:
        self.job_id = job_id
        self.staging_id = staging_id
        super().__init__(f"job {job_id} is already staged")


class ProcessingError(AdvaultError):
    """Store-side extraction reported an error for a staged result."""

    def __init__(self, message: str, *, staging_id: str | None = None, reprocess_requested: bool = False) -> None:
        self.staging_id = staging_id
        self.reprocess_requested = reprocess_requested
        super().__init__(message)


class StateTransitionError(AdvaultError):
    """A tracker step was asked to move backwards or out of a terminal state."""


class RecordNotFoundError(AdvaultError):
    """A record addressed by id does not exist."""


def error_kind(exc: BaseException) -> str:
    """Return a short, stable label for an exception, used in batch reports."""

    for cls, kind in _KINDS:
        if isinstance(exc, cls):
            return kind
    return "unexpected"


_KINDS: tuple[tuple[type[BaseException], str], ...] = (
    (ConfigurationError, "configuration"),
    (JobFailedError, "job_failed"),
    (PollTimeoutError, "timeout"),
    (PollCancelledError, "cancelled"),
    (AttemptTimeoutError, "timeout"),
    (SubmissionError, "submission"),
    (ProviderResponseError, "provider_response"),
    (NetworkError, "network"),
    (ValidationError, "validation"),
    (DuplicateJobError, "duplicate_job"),
    (ProcessingError, "processing"),
    (StateTransitionError, "state_transition"),
    (RecordNotFoundError, "not_found"),
    (PersistenceError, "persistence"),
)


__all__ = [
    "AdvaultError",
    "AttemptTimeoutError",
    "ConfigurationError",
    "DuplicateJobError",
    "DuplicateRowError",
    "JobFailedError",
    "NetworkError",
    "PersistenceError",
    "PollCancelledError",
    "PollTimeoutError",
    "ProcessingError",
    "ProviderResponseError",
    "RecordNotFoundError",
    "StateTransitionError",
    "SubmissionError",
    "ValidationError",
    "error_kind",
]
