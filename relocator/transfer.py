"""Transfer operations: same-volume rename or cross-volume copy then delete."""
from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import BinaryIO, Callable

from .config import DEFAULT_BUFFER_SIZE
from .errors import (
    CopyFailedError,
    DeleteFailedError,
    MoveCancelledError,
    MoveFailedError,
    UnauthorizedAccessError,
)
from .logger import log_event
from .models import MovePlan, ProgressSample, TransferState
from .utils.fs import TreeLayout, ensure_directory, scan_tree

LOGGER_NAME = "relocator.transfer"
EVENTS = ("started", "progress", "ended")

Listener = Callable[..., None]


def _write_chunk(writer: BinaryIO, buffer: bytearray, count: int) -> None:
    writer.write(memoryview(buffer)[:count])


class TransferOperation:
    """A single-use, cancellable unit of work over one :class:`MovePlan`.

    ``run`` moves the state from ``idle`` to ``running`` and finally to
    ``completed``, ``cancelled`` or ``failed``. The ``ended`` event fires on
    every exit path so observers can always detach.
    """

    def __init__(
        self,
        plan: MovePlan,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        cancel_event: threading.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.plan = plan
        self.buffer_size = max(1, buffer_size)
        self.state = TransferState.IDLE
        self.error: BaseException | None = None
        self.destination_created = False
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self._cancel_event = cancel_event or threading.Event()
        self._listeners: dict[str, list[Listener]] = {name: [] for name in EVENTS}
        self._bytes_total = 0
        self._bytes_done = 0

    # ------------------------------------------------------------------
    # Public API
    def subscribe(self, event: str, callback: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown transfer event: {event!r}")
        self._listeners[event].append(callback)

    def cancel(self) -> None:
        """Ask the transfer to stop at its next read, write or file boundary."""

        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def run(self) -> TransferState:
        if self.state is not TransferState.IDLE:
            raise RuntimeError("A transfer operation can only be run once")

        self.state = TransferState.RUNNING
        started = time.monotonic()
        self._emit("started", self)
        try:
            self._prepare_destination()
            self._execute()
        except MoveCancelledError as exc:
            self.state = TransferState.CANCELLED
            self.error = exc
            raise
        except BaseException as exc:
            self.state = TransferState.FAILED
            self.error = exc
            log_event(
                self.logger,
                level=logging.ERROR,
                action="transfer.failed",
                message=f"Transfer {self.plan.source_path} -> {self.plan.destination_path} failed: {exc}",
                extra={"error": type(exc).__name__},
            )
            raise
        else:
            self.state = TransferState.COMPLETED
            log_event(
                self.logger,
                level=logging.INFO,
                action="transfer.completed",
                message=f"Moved {self.plan.source_path} -> {self.plan.destination_path}",
                bytes_processed=self._bytes_done,
                duration_ms=(time.monotonic() - started) * 1000.0,
                extra={"same_volume": self.plan.same_volume},
            )
        finally:
            self._emit("ended", self)
        return self.state

    # ------------------------------------------------------------------
    # Hooks for subclasses
    def _execute(self) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers
    def _emit(self, event: str, *args: object) -> None:
        for callback in list(self._listeners[event]):
            callback(*args)

    def _report(self, item_name: str) -> None:
        self._emit("progress", ProgressSample(self._bytes_done, self._bytes_total, item_name))

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise MoveCancelledError(f"Moving {self.plan.source_path} was cancelled")

    def _prepare_destination(self) -> None:
        parent = self.plan.destination_path.parent
        if not self.plan.create_destination_dirs or parent.is_dir():
            return
        try:
            ensure_directory(parent)
        except PermissionError as exc:
            raise UnauthorizedAccessError(
                "Lacking required permissions to create the destination directory. Try running as administrator."
            ) from exc
        except OSError as exc:
            raise MoveFailedError("Unable to create the destination directory.", exc) from exc

    def _rename(self) -> None:
        """Same-volume move: one atomic rename, nothing to duplicate or undo."""

        source, destination = self.plan.source_path, self.plan.destination_path
        self._raise_if_cancelled()
        if os.path.lexists(destination):
            raise MoveFailedError(
                "Exception encountered while moving on the same drive",
                FileExistsError(f"{destination} already exists"),
            )
        try:
            os.rename(source, destination)
        except OSError as exc:
            raise MoveFailedError("Exception encountered while moving on the same drive", exc) from exc
        self.destination_created = True
        self._bytes_done = self._bytes_total
        self._report(source.name)


class FileTransfer(TransferOperation):
    """Move one file, streaming it across volumes when a rename is impossible."""

    def __init__(self, plan: MovePlan, *, remove_source: bool = True, **kwargs) -> None:
        super().__init__(plan, **kwargs)
        self.remove_source = remove_source

    def _execute(self) -> None:
        source = self.plan.source_path
        try:
            self._bytes_total = os.stat(source).st_size
        except OSError as exc:
            raise MoveFailedError(f"Unable to read {source}", exc) from exc

        if self.plan.same_volume:
            self._rename()
            return

        self._copy_contents()
        if self.remove_source:
            # the copy is complete but the source still holds everything
            self._raise_if_cancelled()
            self._delete_source()

    def _copy_contents(self) -> None:
        source, destination = self.plan.source_path, self.plan.destination_path
        try:
            reader = open(source, "rb")
        except OSError as exc:
            raise MoveFailedError(f"Unable to open {source} for reading", exc) from exc

        with reader:
            try:
                writer = open(destination, "xb")
            except OSError as exc:
                raise MoveFailedError(f"Unable to create {destination}", exc) from exc
            self.destination_created = True
            try:
                with writer:
                    self._pump(reader, writer)
            except MoveCancelledError:
                raise
            except OSError as exc:
                raise CopyFailedError("Exception encountered while copying the file", exc) from exc

        try:
            shutil.copystat(source, destination)
        except OSError as exc:
            log_event(
                self.logger,
                level=logging.WARNING,
                action="transfer.copystat",
                message=f"Could not copy timestamps and permissions to {destination}",
                extra={"error": repr(exc)},
            )

    def _pump(self, reader: BinaryIO, writer: BinaryIO) -> None:
        """Double-buffered copy: read chunk n+1 while chunk n is written."""

        front = bytearray(self.buffer_size)
        back = bytearray(self.buffer_size)
        name = self.plan.source_path.name

        self._raise_if_cancelled()
        count = reader.readinto(front)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="relocator-io") as io_pool:
            while count:
                self._raise_if_cancelled()
                pending_read = io_pool.submit(reader.readinto, back)
                pending_write = io_pool.submit(_write_chunk, writer, front, count)
                pending_write.result()
                next_count = pending_read.result()

                self._bytes_done += count
                self._report(name)
                front, back = back, front
                count = next_count

        if self._bytes_done == 0:
            self._report(name)

    def _delete_source(self) -> None:
        source = self.plan.source_path
        try:
            os.unlink(source)
        except OSError as exc:
            raise DeleteFailedError(
                "Exception encountered while removing duplicate file in the old location", exc
            ) from exc


class DirectoryTransfer(TransferOperation):
    """Move a directory tree.

    Across volumes every file is copied by its own :class:`FileTransfer` on a
    bounded pool, and the source tree is deleted only once the whole copy has
    finished. A cancelled or failed copy therefore leaves the source complete.
    """

    def __init__(self, plan: MovePlan, *, max_workers: int | None = None, **kwargs) -> None:
        super().__init__(plan, **kwargs)
        self.max_workers = max_workers or min(4, os.cpu_count() or 1)
        self._halt = threading.Event()
        self._lock = threading.Lock()
        self._file_progress: dict[Path, int] = {}

    def cancel(self) -> None:
        super().cancel()
        self._halt.set()

    def _execute(self) -> None:
        source = self.plan.source_path
        try:
            layout = scan_tree(source)
        except OSError as exc:
            raise MoveFailedError(f"Unable to read the contents of {source}", exc) from exc
        self._bytes_total = layout.total_bytes

        if self.plan.same_volume:
            self._rename()
            return

        self._raise_if_cancelled()
        self._create_skeleton(layout)
        self._copy_files(layout)
        self._copy_links(layout)
        self._report("")

        # past this point the destination is a complete copy
        self._raise_if_cancelled()
        try:
            shutil.rmtree(source)
        except OSError as exc:
            raise DeleteFailedError(
                "Exception encountered while removing the old directory", exc
            ) from exc

    def _create_skeleton(self, layout: TreeLayout) -> None:
        destination = self.plan.destination_path
        try:
            destination.mkdir()
        except OSError as exc:
            raise MoveFailedError(f"Unable to create {destination}", exc) from exc
        self.destination_created = True
        try:
            for relative in layout.directories:
                (destination / relative).mkdir(exist_ok=True)
        except OSError as exc:
            raise CopyFailedError("Exception encountered while creating the directory structure", exc) from exc

    def _copy_files(self, layout: TreeLayout) -> None:
        if not layout.files:
            return
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="relocator-copy") as pool:
            futures = [pool.submit(self._copy_one, entry.relative) for entry in layout.files]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            failed = next((future for future in futures if future in done and future.exception()), None)
            if failed is None:
                return
            # stop the files still in flight and skip the ones not started yet
            self._halt.set()
            for future in futures:
                future.cancel()
        raise failed.exception()  # type: ignore[misc]

    def _copy_one(self, relative: Path) -> None:
        plan = MovePlan(
            source_path=self.plan.source_path / relative,
            destination_path=self.plan.destination_path / relative,
            is_file=True,
            same_volume=False,
        )
        sub_transfer = FileTransfer(
            plan,
            remove_source=False,
            buffer_size=self.buffer_size,
            cancel_event=self._halt,
            logger=self.logger,
        )
        sub_transfer.subscribe("progress", lambda sample: self._on_file_progress(relative, sample))
        try:
            sub_transfer.run()
        except MoveCancelledError:
            if self.cancel_requested:
                raise
            raise CopyFailedError("Copy stopped after another file failed") from None
        except MoveFailedError as exc:
            # inside a tree the destination already holds earlier files
            raise CopyFailedError(exc.message, exc.cause) from exc

    def _on_file_progress(self, relative: Path, sample: ProgressSample) -> None:
        with self._lock:
            previous = self._file_progress.get(relative, 0)
            self._file_progress[relative] = sample.bytes_transferred_total
            self._bytes_done += sample.bytes_transferred_total - previous
            self._report(str(relative))

    def _copy_links(self, layout: TreeLayout) -> None:
        source, destination = self.plan.source_path, self.plan.destination_path
        for relative in layout.links:
            self._raise_if_cancelled()
            link = source / relative
            try:
                target = os.readlink(link)
                os.symlink(target, destination / relative, target_is_directory=link.is_dir())
            except OSError as exc:
                raise CopyFailedError(f"Exception encountered while recreating the link {relative}", exc) from exc


def begin_file_move(plan: MovePlan, **kwargs) -> FileTransfer:
    """Create (but do not start) the transfer for a file plan."""

    return FileTransfer(plan, **kwargs)


def begin_directory_move(plan: MovePlan, **kwargs) -> DirectoryTransfer:
    """Create (but do not start) the transfer for a directory plan."""

    return DirectoryTransfer(plan, **kwargs)


def create_transfer(plan: MovePlan, *, buffer_size: int = DEFAULT_BUFFER_SIZE, max_workers: int | None = None,
                    logger: logging.Logger | None = None) -> TransferOperation:
    if plan.is_file:
        return begin_file_move(plan, buffer_size=buffer_size, logger=logger)
    return begin_directory_move(plan, buffer_size=buffer_size, max_workers=max_workers, logger=logger)


__all__ = [
    "DirectoryTransfer",
    "FileTransfer",
    "TransferOperation",
    "begin_directory_move",
    "begin_file_move",
    "create_transfer",
]
