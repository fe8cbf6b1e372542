"""Links that keep the old location working after a move."""
from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Callable, Sequence

from .logger import log_event

LOGGER_NAME = "relocator.linkback"
_CREATE_NO_WINDOW = 0x08000000

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class LinkBack:
    """Create the link at the original path and optionally hide it.

    Every operation reports success as a boolean; a failure here never undoes
    the move that already completed.
    """

    def __init__(
        self,
        *,
        platform: str | None = None,
        runner: Runner = subprocess.run,
        logger: logging.Logger | None = None,
    ) -> None:
        self.platform = platform or sys.platform
        self.runner = runner
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    @property
    def is_windows(self) -> bool:
        return self.platform.startswith("win")

    def create_directory_link(self, new_dir_path: str | Path, old_dir_path: str | Path) -> bool:
        """Create a directory symbolic link at *old_dir_path* pointing to *new_dir_path*."""

        try:
            os.symlink(new_dir_path, old_dir_path, target_is_directory=True)
        except (OSError, NotImplementedError) as exc:
            self._log_failure("link.directory", old_dir_path, new_dir_path, exc)
            return False
        self._log_success("link.directory", old_dir_path, new_dir_path)
        return True

    def create_file_location_link(self, new_path: str | Path, old_file_path: str | Path) -> bool:
        """Make the file's old location resolve to its new one.

        Windows gets a junction from ``mklink /J`` and success is taken from
        the command's exit status; elsewhere a symbolic link is created.
        """

        if not self.is_windows:
            try:
                os.symlink(new_path, old_file_path)
            except OSError as exc:
                self._log_failure("link.file", old_file_path, new_path, exc)
                return False
            self._log_success("link.file", old_file_path, new_path)
            return True

        completed = self._run(["cmd", "/c", "mklink", "/J", str(old_file_path), str(new_path)])
        if completed is None or completed.returncode != 0:
            detail = completed.stderr.strip() if completed is not None and completed.stderr else "mklink failed"
            self._log_failure("link.file", old_file_path, new_path, detail)
            return False
        self._log_success("link.file", old_file_path, new_path)
        return True

    def hide(self, path: str | Path) -> bool:
        """Mark *path* (the link itself, not its target) as hidden."""

        if self.is_windows:
            command = ["attrib", "+H", "/L", str(path)]
        elif self.platform == "darwin":
            command = ["chflags", "-h", "hidden", str(path)]
        else:
            log_event(
                self.logger,
                level=logging.INFO,
                action="link.hide_unsupported",
                message=f"Hiding files is not supported on {self.platform}",
                extra={"path": str(path)},
            )
            return False

        completed = self._run(command)
        hidden = completed is not None and completed.returncode == 0
        log_event(
            self.logger,
            level=logging.INFO if hidden else logging.WARNING,
            action="link.hide",
            message=f"{'Hid' if hidden else 'Could not hide'} {path}",
        )
        return hidden

    def _run(self, command: Sequence[str]) -> "subprocess.CompletedProcess[str] | None":
        kwargs: dict[str, object] = {"capture_output": True, "text": True, "check": False}
        if self.is_windows and sys.platform.startswith("win"):
            kwargs["creationflags"] = _CREATE_NO_WINDOW
        try:
            return self.runner(list(command), **kwargs)
        except OSError as exc:
            log_event(
                self.logger,
                level=logging.WARNING,
                action="link.command_error",
                message=f"Could not run {command[0]}",
                extra={"error": repr(exc)},
            )
            return None

    def _log_success(self, action: str, link: str | Path, target: str | Path) -> None:
        log_event(
            self.logger,
            level=logging.INFO,
            action=action,
            message=f"Linked {link} -> {target}",
        )

    def _log_failure(self, action: str, link: str | Path, target: str | Path, error: object) -> None:
        log_event(
            self.logger,
            level=logging.ERROR,
            action=f"{action}_failed",
            message=f"Could not link {link} -> {target}",
            extra={"error": error if isinstance(error, str) else repr(error)},
        )


__all__ = ["LinkBack"]
