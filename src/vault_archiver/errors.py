"""Error vocabulary shared by the archive pipeline and its stores."""

from __future__ import annotations


class ArchiverError(Exception):
    """Base class for failures that are reported to the caller."""

    code = "archiver_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ArchiverError):
    code = "validation"


class PolicyDenied(ArchiverError):
    code = "policy_denied"


class RateLimited(ArchiverError):
    code = "rate_limited"

    def __init__(self, message: str, *, reset_at: float) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class Blocked(ArchiverError):
    code = "blocked"


class FetchFailure(ArchiverError):
    """A single page could not be fetched. Absorbed by the crawler."""

    code = "fetch_failure"

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(message)
        self.url = url


class EmptyResult(ArchiverError):
    code = "empty_result"


class StorageUnavailable(ArchiverError):
    code = "storage_unavailable"


class ArchiveError(ArchiverError):
    code = "archive_error"


class NotFound(ArchiverError):
    code = "not_found"


class Cancelled(ArchiverError):
    code = "cancelled"
