"""Path canonicalisation and volume helpers."""
from __future__ import annotations

import logging
import ntpath
import os
import re
from contextlib import contextmanager
from pathlib import Path
from types import ModuleType
from typing import Iterator
from urllib.parse import unquote, urlparse

from .errors import InvalidPathError
from .logger import log_event

LOGGER_NAME = "relocator.paths"

_DRIVE_ROOTED = re.compile(r"^[A-Za-z]:\\{1,2}")
_POSIX_ROOTED = re.compile(r"^/")
_URI_DRIVE = re.compile(r"^/[A-Za-z]:")


def clean_input(raw: str) -> str:
    """Drop surrounding whitespace and the double quotes shells add when pasting."""

    return raw.strip().replace('"', "")


def _separators(pathmod: ModuleType) -> tuple[str, ...]:
    return tuple(sep for sep in (pathmod.sep, pathmod.altsep) if sep)


def _strip_trailing(path: str, pathmod: ModuleType) -> str:
    drive, rest = pathmod.splitdrive(path)
    stripped = rest.rstrip("".join(_separators(pathmod)))
    if not stripped:
        # bare root such as "C:\" or "/"
        return drive + rest[:1]
    return drive + stripped


def _uri_to_path(uri: str, pathmod: ModuleType) -> str:
    parsed = urlparse(uri)
    if parsed.scheme.lower() != "file":
        raise InvalidPathError(f"Unsupported URI scheme in {uri!r}")
    local = unquote(parsed.path)
    host = parsed.netloc if parsed.netloc.lower() not in ("", "localhost") else ""
    if pathmod is ntpath:
        if _URI_DRIVE.match(local):
            local = local[1:]
        local = local.replace("/", "\\")
        if host:
            local = "\\\\" + host + local
    elif host:
        raise InvalidPathError(f"Remote file URIs are not supported: {uri!r}")
    return local


def normalize_path(raw: str, *, pathmod: ModuleType = os.path) -> str:
    """Return the canonical absolute form of *raw*.

    Accepts plain paths and ``file:`` URIs. Redundant separators and ``.``
    segments are collapsed and trailing separators are removed (a bare root is
    kept as is). Raises :class:`InvalidPathError` when the string is empty,
    relative, contains NUL, or still climbs above its root after normalising.
    """

    text = clean_input(raw)
    if not text:
        raise InvalidPathError("Path is empty")
    if "\x00" in text:
        raise InvalidPathError(f"Path contains a NUL character: {raw!r}")
    if text.lower().startswith("file:"):
        text = _uri_to_path(text, pathmod)
    if not pathmod.isabs(text):
        raise InvalidPathError(f"{text!r} is not an absolute path")

    normalized = pathmod.normpath(text)
    parts = normalized.replace(pathmod.altsep or pathmod.sep, pathmod.sep).split(pathmod.sep)
    if ".." in parts:
        raise InvalidPathError(f"{text!r} cannot be resolved")
    return _strip_trailing(normalized, pathmod)


def resolve_destination(source: str, destination: str, *, pathmod: ModuleType = os.path) -> tuple[str, bool]:
    """Apply the destination shorthands and report whether "move into" was used.

    A destination ending with a separator names the folder to move *into*, so
    the source's base name is appended. Otherwise a source extension is forced
    onto the destination, which lets a file be renamed while it is moved.
    """

    source = clean_input(source)
    destination = clean_input(destination)
    seps = _separators(pathmod)
    trimmed_source = source.rstrip("".join(seps)) or source

    if destination.endswith(seps):
        base = _strip_trailing(destination, pathmod)
        return pathmod.join(base, pathmod.basename(trimmed_source)), True

    _, extension = pathmod.splitext(trimmed_source)
    if extension:
        stem, _ = pathmod.splitext(destination)
        destination = stem + extension
    return destination, False


def has_rooted_form(raw: str, *, pathmod: ModuleType = os.path) -> bool:
    """Check that *raw* starts with a drive letter (Windows) or ``/`` (POSIX)."""

    pattern = _DRIVE_ROOTED if pathmod is ntpath else _POSIX_ROOTED
    return bool(pattern.match(clean_input(raw)))


def deepest_existing_directory(path: str | Path) -> Path | None:
    """Walk up from *path* and return the first directory that exists."""

    current = Path(path)
    while True:
        if current.is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def same_volume(source: str | Path, destination: str | Path) -> bool:
    """Whether *destination* would land on the device that holds *source*."""

    try:
        src_dev = os.lstat(source).st_dev
    except OSError:
        return False

    target_parent = deepest_existing_directory(Path(destination).parent)
    if target_parent is None:
        return False
    try:
        dest_dev = target_parent.stat().st_dev
    except OSError:
        return False
    return src_dev == dest_dev


def is_within(path: str | Path, root: str | Path) -> bool:
    """Whether *path* is *root* or lies underneath it, after resolving links."""

    real_path = os.path.normcase(os.path.realpath(path))
    real_root = os.path.normcase(os.path.realpath(root))
    try:
        return os.path.commonpath([real_path, real_root]) == real_root
    except ValueError:
        # different drives
        return False


class WorkingDirectoryGuard:
    """Keep the process working directory out of a tree that is being moved.

    The working directory is process-wide state and the operating system may
    refuse to move a directory that is in use as one. :meth:`enter` moves it to
    the source's parent when needed and :meth:`restore` returns to the deepest
    ancestor of the original directory that still exists.
    """

    def __init__(self, source: str | Path, logger: logging.Logger | None = None) -> None:
        self.source = Path(source)
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.original: Path | None = None
        self.moved = False

    def enter(self) -> bool:
        try:
            self.original = Path(os.getcwd())
        except FileNotFoundError:
            return False
        if not is_within(self.original, self.source):
            return False
        os.chdir(self.source.parent)
        self.moved = True
        log_event(
            self.logger,
            level=logging.INFO,
            action="cwd.relocate",
            message=f"Working directory moved out of {self.source}",
            extra={"from": str(self.original), "to": str(self.source.parent)},
        )
        return True

    def restore(self) -> Path | None:
        if not self.moved or self.original is None:
            return None
        self.moved = False
        target = deepest_existing_directory(self.original)
        if target is None:
            return None
        os.chdir(target)
        log_event(
            self.logger,
            level=logging.INFO,
            action="cwd.restore",
            message=f"Working directory restored to {target}",
        )
        return target

    def __enter__(self) -> "WorkingDirectoryGuard":
        self.enter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.restore()


@contextmanager
def preserve_working_directory(source: str | Path, logger: logging.Logger | None = None) -> Iterator[WorkingDirectoryGuard]:
    """Keep the working directory outside *source* for the duration of the block."""

    guard = WorkingDirectoryGuard(source, logger)
    guard.enter()
    try:
        yield guard
    finally:
        guard.restore()


__all__ = [
    "WorkingDirectoryGuard",
    "clean_input",
    "deepest_existing_directory",
    "has_rooted_form",
    "is_within",
    "normalize_path",
    "preserve_working_directory",
    "resolve_destination",
    "same_volume",
]
