"""
Exception hierarchy for the reconstruction engine.

Transient index errors are retried by discovery; everything else either
triggers a documented fallback or is surfaced to the caller.
"""

from typing import Optional


class DebtTrackerError(Exception):
    """Base class for failures surfaced to the caller."""


class IndexApiError(DebtTrackerError):
    """The transaction index API returned something other than data."""

    retryable = False

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(IndexApiError):
    """Index API asked us to slow down."""

    retryable = True


class TransientIndexError(IndexApiError):
    """Network failure or server-side error talking to the index API."""

    retryable = True


class MalformedPayloadError(IndexApiError):
    """Index API answered with an unexpected shape (e.g. non-list result)."""


class IndexUnavailableError(DebtTrackerError):
    """Primary discovery gave up; the windowed node scan should take over."""


class DiscoveryError(DebtTrackerError):
    """No discovery strategy could produce a candidate list."""


class ReconstructionTimeout(DebtTrackerError):
    """The caller-supplied deadline expired before the run finished."""
