"""Error taxonomy for the reconciliation core.

Per-record errors (``MappingError``, ``UpsertError``, ``FileDownloadError``) are
recoverable: the orchestrators count and report them and move on. A
``RemoteFetchError`` means the remote source itself is unavailable and ends the run.
"""

from __future__ import annotations


class MappingError(ValueError):
    """Raised when a remote record cannot be mapped at all (e.g. it has no identifier)."""


class RecordConflictError(RuntimeError):
    """Raised by repositories when a write violates a storage constraint."""

    def __init__(self, message: str, *, external_id: str) -> None:
        super().__init__(message)
        self.external_id = external_id


class UpsertError(RuntimeError):
    """Raised when a record could not be written and has to be skipped."""

    def __init__(self, message: str, *, external_id: str) -> None:
        super().__init__(message)
        self.external_id = external_id


class RemoteFetchError(RuntimeError):
    """Raised when the remote record source cannot be reached or refuses the request."""


class RemoteUnauthorizedError(RemoteFetchError):
    """Raised when the remote record source rejects our credentials."""


class FileDownloadError(RuntimeError):
    """Raised when an attachment could not be downloaded or stored."""


class RecordNotFoundError(LookupError):
    """Raised when a local record requested by id does not exist."""
