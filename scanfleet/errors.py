"""Exception hierarchy for scanfleet.

Every error raised by the orchestration core derives from
:class:`ScanFleetError` so callers (the API layer in particular) can map
domain failures to responses in one place.
"""

from __future__ import annotations


class ScanFleetError(Exception):
    """Base class for all scanfleet errors."""


class ValidationError(ScanFleetError):
    """Raised when caller input is rejected (e.g. an empty item list)."""


class NotFoundError(ScanFleetError):
    """Raised when a job ID is not known to the status store."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Scan '{job_id}' not found")


class ProviderError(ScanFleetError):
    """Raised by a fleet provider when a create/poll/delete call fails.

    ``transient`` errors (rate limiting, 5xx, connection failures) are
    retried by the poll loop; permanent ones are not.
    """

    def __init__(self, message: str, *, transient: bool = False,
                 status_code: int | None = None) -> None:
        self.transient = transient
        self.status_code = status_code
        super().__init__(message)
