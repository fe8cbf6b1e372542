"""Core dataclasses shared across relocator modules."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path


class PermissionCheckLevel(str, Enum):
    """How thoroughly pre-flight validation probes file openability."""

    NONE = "none"
    FAST = "fast"
    FULL = "full"


class TransferState(str, Enum):
    """Lifecycle of a :class:`~relocator.transfer.TransferOperation`."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RollbackAction(str, Enum):
    """Undo step appropriate for the stage at which a move stopped."""

    NONE = "none"
    DELETE_DESTINATION = "delete_destination"
    RESTORE_SOURCE = "restore_source"
    DISCARD_DESTINATION = "discard_destination"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    LINK_FAILED = "link_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class MovePlan:
    """A validated move request. Immutable once validation succeeds."""

    source_path: Path
    destination_path: Path
    is_file: bool
    same_volume: bool
    hide_original_after: bool = False
    create_destination_dirs: bool = False

    def reversed(self) -> "MovePlan":
        """Return the plan that moves the destination back to the source."""

        return replace(
            self,
            source_path=self.destination_path,
            destination_path=self.source_path,
            hide_original_after=False,
            create_destination_dirs=False,
        )


@dataclass(slots=True)
class ValidationIssue:
    """One problem found during validation, worded for an end user."""

    message: str
    cause: BaseException | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ValidationReport:
    """Ordered validation issues plus what validation learned about the move."""

    issues: list[ValidationIssue] = field(default_factory=list)
    stage: int = 0
    is_file: bool | None = None
    total_bytes: int | None = None
    plan: MovePlan | None = None

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def messages(self) -> list[str]:
        return [issue.message for issue in self.issues]

    def raise_for_issues(self) -> MovePlan:
        """Return the plan, or raise one aggregate error listing every issue."""

        from .errors import ValidationFailedError

        if self.issues or self.plan is None:
            raise ValidationFailedError(self)
        return self.plan


@dataclass(slots=True, frozen=True)
class ProgressSample:
    """Cumulative progress of a running transfer."""

    bytes_transferred_total: int
    bytes_total: int
    current_item_name: str = ""

    @property
    def fraction(self) -> float:
        if self.bytes_total <= 0:
            return 1.0
        return min(1.0, self.bytes_transferred_total / self.bytes_total)


@dataclass(slots=True)
class RollbackOffer:
    """Handed to the caller so it can accept or decline an undo step."""

    plan: MovePlan
    error: BaseException
    action: RollbackAction


@dataclass(slots=True)
class MoveOutcome:
    """Summary of one move request once every step has finished."""

    plan: MovePlan
    status: OutcomeStatus
    error: BaseException | None = None
    rollback: RollbackAction = RollbackAction.NONE
    rolled_back: bool = False
    rollback_error: BaseException | None = None
    hidden: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status in {OutcomeStatus.COMPLETED, OutcomeStatus.LINK_FAILED}


__all__ = [
    "MoveOutcome",
    "MovePlan",
    "OutcomeStatus",
    "PermissionCheckLevel",
    "ProgressSample",
    "RollbackAction",
    "RollbackOffer",
    "TransferState",
    "ValidationIssue",
    "ValidationReport",
]
