"""Sequencing policy: validate, transfer, link back, or offer the right undo."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import ExitStack
from queue import Queue
from typing import Callable, Iterator

from .config import MoveSettings
from .errors import (
    CopyFailedError,
    DeleteFailedError,
    LinkCreationFailedError,
    MoveCancelledError,
    MoveFailedError,
    RollbackFailedError,
    UnauthorizedAccessError,
)
from .linkback import LinkBack
from .logger import configure_logging, log_event
from .models import (
    MoveOutcome,
    MovePlan,
    OutcomeStatus,
    ProgressSample,
    RollbackAction,
    RollbackOffer,
    TransferState,
    ValidationReport,
)
from .paths import preserve_working_directory
from .preflight import PreflightValidator
from .rollback import RollbackManager, rollback_action_for
from .transfer import TransferOperation, create_transfer

LOGGER_NAME = "relocator.orchestrator"

Confirm = Callable[[RollbackOffer], bool]


def decline_rollback(offer: RollbackOffer) -> bool:
    """Default policy: report the failure and leave both locations untouched."""

    return False


class MoveHandle:
    """A move running in the background.

    ``progress()`` is a lazy, finite stream of :class:`ProgressSample` that can
    be consumed once; ``future`` carries the terminal result; ``cancel()``
    requests cooperative cancellation.
    """

    def __init__(self, plan: MovePlan, operation: TransferOperation, cwd_scope: ExitStack) -> None:
        self.plan = plan
        self.operation = operation
        self._cwd_scope = cwd_scope
        self._samples: Queue[ProgressSample | object] = Queue()
        self._consumed = False

        operation.subscribe("progress", self._samples.put)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="relocator-move")
        self.future: Future[TransferState] = executor.submit(operation.run)
        self.future.add_done_callback(lambda _future: self._samples.put(_Sentinel))
        executor.shutdown(wait=False)

    def progress(self) -> Iterator[ProgressSample]:
        if self._consumed:
            raise RuntimeError("The progress stream of a move can only be consumed once")
        self._consumed = True
        return self._drain()

    def _drain(self) -> Iterator[ProgressSample]:
        while True:
            item = self._samples.get()
            if item is _Sentinel:
                return
            yield item  # type: ignore[misc]

    def cancel(self) -> None:
        self.operation.cancel()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None) -> TransferState:
        return self.future.result(timeout)

    def restore_working_directory(self) -> None:
        self._cwd_scope.close()


class MoveOrchestrator:
    """Drive one move request from raw paths to a :class:`MoveOutcome`.

    Rollback decisions are delegated to ``confirm``, which receives a
    :class:`RollbackOffer` and returns whether to perform it.
    """

    def __init__(
        self,
        settings: MoveSettings | None = None,
        *,
        confirm: Confirm = decline_rollback,
        linker: LinkBack | None = None,
        rollback: RollbackManager | None = None,
        validator: PreflightValidator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings or MoveSettings()
        self.confirm = confirm
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        if not self.logger.handlers:
            configure_logging()
        self.linker = linker or LinkBack()
        self.rollback = rollback or RollbackManager(buffer_size=self.settings.buffer_size)
        self.validator = validator or PreflightValidator(
            safe_mode=self.settings.safe_mode,
            permission_check_level=self.settings.permission_check_level,
            create_destination_dirs=self.settings.create_destination_directories,
            hide_original=self.settings.hide_original,
            max_workers=self.settings.max_workers,
        )

    # ------------------------------------------------------------------
    # Public API
    def validate(self, source: str, destination: str) -> ValidationReport:
        return self.validator.validate(source, destination)

    def begin_move(self, plan: MovePlan) -> MoveHandle:
        """Start the transfer for *plan* on a background thread."""

        cwd_scope = ExitStack()
        cwd_scope.enter_context(preserve_working_directory(plan.source_path))
        try:
            operation = create_transfer(
                plan,
                buffer_size=self.settings.buffer_size,
                max_workers=self.settings.max_workers,
            )
            handle = MoveHandle(plan, operation, cwd_scope)
        except BaseException:
            cwd_scope.close()
            raise
        log_event(
            self.logger,
            level=logging.INFO,
            action="move.begin",
            message=f"Moving {plan.source_path} -> {plan.destination_path}",
            extra={"same_volume": plan.same_volume, "is_file": plan.is_file},
        )
        return handle

    def finish(self, handle: MoveHandle) -> MoveOutcome:
        """Wait for *handle*, then link back or offer the stage-appropriate undo."""

        plan = handle.plan
        try:
            handle.result()
        except MoveCancelledError as exc:
            outcome = self._offer_rollback(handle, exc, OutcomeStatus.CANCELLED)
        except (CopyFailedError, DeleteFailedError) as exc:
            outcome = self._offer_rollback(handle, exc, OutcomeStatus.FAILED)
        except (MoveFailedError, UnauthorizedAccessError) as exc:
            # nothing was duplicated, so there is nothing to undo
            outcome = MoveOutcome(plan, OutcomeStatus.FAILED, error=exc)
        else:
            outcome = self._link_back(plan)
        finally:
            handle.restore_working_directory()

        log_event(
            self.logger,
            level=logging.INFO if outcome.succeeded else logging.WARNING,
            action="move.finish",
            message=f"Move of {plan.source_path} finished: {outcome.status.value}",
            extra={
                "rollback": outcome.rollback.value,
                "rolled_back": outcome.rolled_back,
                "error": repr(outcome.error) if outcome.error else None,
            },
        )
        return outcome

    def relocate(
        self,
        source: str,
        destination: str,
        *,
        on_progress: Callable[[ProgressSample], None] | None = None,
    ) -> MoveOutcome:
        """Validate, move and link back in one call.

        Raises :class:`~relocator.errors.ValidationFailedError` listing every
        issue when validation does not pass.
        """

        plan = self.validate(source, destination).raise_for_issues()
        handle = self.begin_move(plan)
        try:
            for sample in handle.progress():
                if on_progress is not None:
                    on_progress(sample)
        except BaseException:
            handle.cancel()
            self.finish(handle)
            raise
        return self.finish(handle)

    # ------------------------------------------------------------------
    # Helpers
    def _link_back(self, plan: MovePlan) -> MoveOutcome:
        if plan.is_file:
            linked = self.linker.create_file_location_link(plan.destination_path, plan.source_path)
        else:
            linked = self.linker.create_directory_link(plan.destination_path, plan.source_path)

        if not linked:
            error = LinkCreationFailedError(
                f"The move succeeded but no link could be created at {plan.source_path} "
                f"pointing to {plan.destination_path}"
            )
            return MoveOutcome(plan, OutcomeStatus.LINK_FAILED, error=error)

        hidden = plan.hide_original_after and self.linker.hide(plan.source_path)
        return MoveOutcome(plan, OutcomeStatus.COMPLETED, hidden=hidden)

    def _offer_rollback(self, handle: MoveHandle, error: BaseException, status: OutcomeStatus) -> MoveOutcome:
        plan = handle.plan
        created = handle.operation.destination_created
        action = rollback_action_for(error)
        if action in _DESTINATION_CLEANUP and not created:
            # whatever is at the destination predates this move
            action = RollbackAction.NONE
        outcome = MoveOutcome(plan, status, error=error, rollback=action)
        if action is RollbackAction.NONE:
            return outcome

        if not self.confirm(RollbackOffer(plan=plan, error=error, action=action)):
            log_event(
                self.logger,
                level=logging.WARNING,
                action="move.rollback_declined",
                message=f"Rollback declined; {plan.source_path} and {plan.destination_path} left as they are",
                extra={"rollback": action.value},
            )
            return outcome

        try:
            self.rollback.apply(plan, action, destination_created=created)
        except RollbackFailedError as exc:
            outcome.rollback_error = exc
        else:
            outcome.rolled_back = True
        return outcome


_DESTINATION_CLEANUP = frozenset({RollbackAction.DELETE_DESTINATION, RollbackAction.DISCARD_DESTINATION})
_Sentinel = object()


__all__ = ["MoveHandle", "MoveOrchestrator", "decline_rollback"]
