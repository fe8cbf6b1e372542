"""Undo steps offered when a move stops part way."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from .config import DEFAULT_BUFFER_SIZE
from .errors import CopyFailedError, DeleteFailedError, MoveCancelledError, RelocatorError, RollbackFailedError
from .logger import log_event
from .models import MovePlan, RollbackAction
from .transfer import DirectoryTransfer, FileTransfer
from .utils.fs import scan_tree

LOGGER_NAME = "relocator.rollback"


def rollback_action_for(error: BaseException) -> RollbackAction:
    """Map the error that stopped a transfer to the undo step that fits it."""

    if isinstance(error, CopyFailedError):
        return RollbackAction.DELETE_DESTINATION
    if isinstance(error, DeleteFailedError):
        return RollbackAction.RESTORE_SOURCE
    if isinstance(error, MoveCancelledError):
        return RollbackAction.DISCARD_DESTINATION
    return RollbackAction.NONE


class RollbackManager:
    """Perform a single level of undo. A failing undo is reported, never retried."""

    def __init__(self, logger: logging.Logger | None = None, *, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.buffer_size = buffer_size

    def apply(self, plan: MovePlan, action: RollbackAction, *, destination_created: bool = True) -> None:
        if action is RollbackAction.DELETE_DESTINATION:
            self.undo_copy(plan, destination_created=destination_created)
        elif action is RollbackAction.RESTORE_SOURCE:
            self.restore_source(plan)
        elif action is RollbackAction.DISCARD_DESTINATION:
            self.discard_destination(plan, destination_created=destination_created)

    def undo_copy(self, plan: MovePlan, *, destination_created: bool = True) -> None:
        """Delete the partial destination, returning to the pre-move state.

        A destination the transfer did not create is never touched.
        """

        if not destination_created or not os.path.lexists(plan.destination_path):
            return
        try:
            self._remove(plan.destination_path, plan.is_file)
        except OSError as exc:
            self._fail("rollback.undo_copy", "Could not remove copied contents. Try removing manually", exc)
        log_event(
            self.logger,
            level=logging.INFO,
            action="rollback.undo_copy",
            message=f"Removed partial copy {plan.destination_path}",
        )

    def discard_destination(self, plan: MovePlan, *, destination_created: bool = True) -> None:
        """Cleanup after a cancellation: drop whatever reached the destination."""

        if not destination_created or not os.path.lexists(plan.destination_path):
            return
        try:
            self._remove(plan.destination_path, plan.is_file)
        except OSError as exc:
            self._fail("rollback.discard", "Could not remove copied contents. Try removing manually", exc)
        log_event(
            self.logger,
            level=logging.INFO,
            action="rollback.discard",
            message=f"Discarded {plan.destination_path} after cancellation",
        )

    def restore_source(self, plan: MovePlan) -> None:
        """Move the complete destination back after the source delete failed.

        Whatever still exists at the source is an intact original, so the
        matching destination copy is dropped; everything else is moved back.
        """

        try:
            if plan.is_file:
                self._restore_file(plan)
            elif not os.path.lexists(plan.source_path):
                DirectoryTransfer(plan.reversed(), buffer_size=self.buffer_size, logger=self.logger).run()
            else:
                self._merge_back(plan)
        except (OSError, RelocatorError) as exc:
            self._fail("rollback.restore", "Could not move back contents. Try moving manually", exc)
        log_event(
            self.logger,
            level=logging.INFO,
            action="rollback.restore",
            message=f"Restored {plan.source_path} from {plan.destination_path}",
        )

    def _restore_file(self, plan: MovePlan) -> None:
        if os.path.lexists(plan.source_path):
            os.unlink(plan.destination_path)
            return
        FileTransfer(plan.reversed(), buffer_size=self.buffer_size, logger=self.logger).run()

    def _merge_back(self, plan: MovePlan) -> None:
        source, destination = plan.source_path, plan.destination_path
        layout = scan_tree(destination)
        for relative in layout.directories:
            (source / relative).mkdir(exist_ok=True)
        for entry in layout.files:
            original = source / entry.relative
            copy = destination / entry.relative
            if os.path.lexists(original):
                continue
            FileTransfer(
                MovePlan(source_path=copy, destination_path=original, is_file=True, same_volume=plan.same_volume),
                buffer_size=self.buffer_size,
                logger=self.logger,
            ).run()
        for relative in layout.links:
            original = source / relative
            if not os.path.lexists(original):
                copy = destination / relative
                os.symlink(os.readlink(copy), original, target_is_directory=copy.is_dir())
        shutil.rmtree(destination)

    @staticmethod
    def _remove(path: Path, is_file: bool) -> None:
        if is_file or path.is_symlink():
            os.unlink(path)
        else:
            shutil.rmtree(path)

    def _fail(self, action: str, message: str, exc: BaseException) -> None:
        log_event(
            self.logger,
            level=logging.ERROR,
            action=f"{action}_failed",
            message=message,
            extra={"error": repr(exc)},
        )
        raise RollbackFailedError(message, exc) from exc


__all__ = ["RollbackManager", "rollback_action_for"]
