"""
Exception hierarchy for the sync pipeline.

Per-record errors (MappingError, WriteFailed, ClassificationError) are caught
at record granularity. FetchFailed and anything not listed here abort the run.
"""

from typing import Optional


class BdnsSyncError(Exception):
    """Base class for all pipeline errors."""


class FetchFailed(BdnsSyncError):
    """
    A page could not be fetched from the BDNS API.

    Raised on timeouts, connection errors, non-2xx responses and
    unparseable bodies. Retryable across runs, never retried inline.
    """

    def __init__(self, page: int, reason: str, status_code: Optional[int] = None):
        self.page = page
        self.reason = reason
        self.status_code = status_code
        self.retryable = True
        super().__init__(f"Failed to fetch page {page}: {reason}")

    @property
    def public_message(self) -> str:
        """Message safe to store on the run; the raw reason stays in the logs."""
        message = f"Failed to fetch page {self.page}"
        if self.status_code is not None:
            message += f" (HTTP {self.status_code})"
        return message


class ConflictError(BdnsSyncError):
    """Another sync run is already active."""

    def __init__(self, active_run_id: Optional[int] = None):
        self.active_run_id = active_run_id
        message = "A sync run is already in progress"
        if active_run_id is not None:
            message += f" (run {active_run_id})"
        super().__init__(message)


class MappingError(BdnsSyncError):
    """An API item cannot be mapped at all (no BDNS code)."""


class ClassificationError(BdnsSyncError):
    """A legacy classification payload has an unsupported shape."""


class WriteFailed(BdnsSyncError):
    """A single record could not be written."""

    def __init__(self, bdns_code: str, reason: str):
        self.bdns_code = bdns_code
        self.reason = reason
        super().__init__(f"Failed to write grant {bdns_code}: {reason}")
