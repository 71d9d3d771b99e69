"""Exception hierarchy for rsync_watch."""

from __future__ import annotations

from typing import Any, Optional


class RsyncWatchError(Exception):
    """
    Base exception for rsync_watch.

    Attributes:
        details: Optional structured information (exit status, path, line).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class UsageError(RsyncWatchError):
    """Raised for invalid arguments or an unusable source directory."""


class InitialSyncError(RsyncWatchError):
    """Raised when the initial full mirror (or the delete step) fails."""


class TransferError(RsyncWatchError):
    """Raised when rsync cannot be started or exits with a failure status."""


class MalformedEventError(RsyncWatchError):
    """Raised for a change notification that cannot be parsed."""


class UnrepresentablePathError(RsyncWatchError):
    """Raised for a path that cannot be written to a line-oriented file list."""


class ProducerTerminatedError(RsyncWatchError):
    """Raised when the change-notification source stops producing events."""


class UserQuit(RsyncWatchError):
    """Raised when the user answers quit at an interactive prompt."""
