"""Error taxonomy shared by clients, stores, and services.

Upstream errors (transient or not-found) are converted into backfill
attempt bookkeeping at task boundaries. Persistence conflicts are absorbed
by the stores. Exhausted retries are terminal for a backfill task.
"""


class SentinelError(Exception):
    """Base class for all application errors."""


class UpstreamError(SentinelError):
    """An upstream provider call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Rate-limited or ambiguous upstream response; worth retrying later."""


class NotFoundError(UpstreamError):
    """The pool or its data is not available (yet)."""


class PersistenceConflict(SentinelError):
    """A write collided with an existing natural key.

    Stores treat this as success; it never reaches service code.
    """


class ExhaustedRetries(SentinelError):
    """A backfill task used up its attempts and will not be retried."""

    def __init__(self, instrument_id: str, attempts: int, last_error: str | None = None):
        message = f"Exhausted {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.instrument_id = instrument_id
        self.attempts = attempts
        self.last_error = last_error
