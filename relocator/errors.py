"""Exception taxonomy for relocator."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .models import ValidationReport


class RelocatorError(Exception):
    """Base class for every error raised by the engine."""


class InvalidPathError(RelocatorError, ValueError):
    """Raised when a path string cannot be resolved to an absolute path."""


class UnauthorizedAccessError(RelocatorError, PermissionError):
    """Raised when the process lacks the privileges an operation needs."""


class ValidationFailedError(RelocatorError):
    """Aggregate failure raised when a validation report contains issues."""

    def __init__(self, report: "ValidationReport") -> None:
        self.report = report
        super().__init__("\n".join(issue.message for issue in report.issues))


class TransferError(RelocatorError):
    """Base class for failures that abort a running transfer."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def details(self) -> str:
        return str(self.cause) if self.cause is not None else ""


class CopyFailedError(TransferError):
    """Reading or writing failed; a partial destination may exist."""


class DeleteFailedError(TransferError):
    """The copy is complete but the source could not be removed."""


class MoveFailedError(TransferError):
    """The transfer failed before anything was duplicated."""


class MoveCancelledError(RelocatorError):
    """The transfer stopped because cancellation was requested."""


class LinkCreationFailedError(RelocatorError):
    """The link at the original location could not be created."""


class RollbackFailedError(RelocatorError):
    """An undo step failed; the filesystem needs manual cleanup."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


@dataclass(eq=False)
class SettingsError(RelocatorError):
    """Raised when a settings file does not hold valid values."""

    message: str
    key: str | None = None

    def __str__(self) -> str:
        if self.key:
            return f"{self.message} (setting {self.key!r})"
        return self.message


__all__ = [
    "CopyFailedError",
    "DeleteFailedError",
    "InvalidPathError",
    "LinkCreationFailedError",
    "MoveCancelledError",
    "MoveFailedError",
    "RelocatorError",
    "RollbackFailedError",
    "SettingsError",
    "TransferError",
    "UnauthorizedAccessError",
    "ValidationFailedError",
]
