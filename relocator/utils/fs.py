"""Filesystem helpers used by relocator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

if os.name == "nt":  # pragma: no cover - exercised on Windows only
    import ctypes
    from ctypes import wintypes

    _GENERIC_READ = 0x80000000
    _GENERIC_WRITE = 0x40000000
    _OPEN_EXISTING = 3
    _FILE_ATTRIBUTE_NORMAL = 0x80
    _INVALID_HANDLE_VALUE = wintypes.HANDLE(-1).value
else:
    import fcntl


@dataclass(slots=True)
class TreeEntry:
    relative: Path
    size: int


@dataclass(slots=True)
class TreeLayout:
    """Contents of a directory tree, with every path relative to ``root``."""

    root: Path
    directories: list[Path] = field(default_factory=list)
    files: list[TreeEntry] = field(default_factory=list)
    links: list[Path] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.files)


def ensure_directory(path: Path) -> Path:
    """Ensure that *path* exists as a directory and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def unique_path(base: Path, *, reserved: set[Path] | None = None) -> Path:
    """Return a path derived from *base* that does not exist yet.

    Collisions are resolved by appending ``_1``, ``_2`` ... to the stem. The
    optional ``reserved`` set is consulted and updated as well.
    """

    reserved_paths: set[Path] = reserved if reserved is not None else set()
    candidate = base
    counter = 1
    while candidate in reserved_paths or os.path.lexists(candidate):
        candidate = candidate.with_name(f"{base.stem}_{counter}{base.suffix}")
        counter += 1
    reserved_paths.add(candidate)
    return candidate


def scan_tree(root: Path) -> TreeLayout:
    """Walk *root* without following symbolic links.

    Links found inside the tree are reported in ``links`` and are neither
    descended into nor counted towards ``total_bytes``. ``OSError`` propagates.
    """

    layout = TreeLayout(root=root)
    _scan_into(layout, root)
    return layout


def _scan_into(layout: TreeLayout, directory: Path) -> None:
    with os.scandir(directory) as entries:
        for entry in entries:
            entry_path = Path(entry.path)
            relative = entry_path.relative_to(layout.root)
            if entry.is_symlink():
                layout.links.append(relative)
            elif entry.is_dir(follow_symlinks=False):
                layout.directories.append(relative)
                _scan_into(layout, entry_path)
            else:
                layout.files.append(TreeEntry(relative, entry.stat(follow_symlinks=False).st_size))


def create_probe_file(path: Path) -> None:
    """Create an empty file at *path*, failing if anything already exists there."""

    with open(path, "xb"):
        pass


def remove_link(path: Path) -> None:
    """Remove a symbolic link or junction without touching what it points to."""

    try:
        os.unlink(path)
    except (IsADirectoryError, PermissionError):
        # directory links on Windows are removed like directories
        os.rmdir(path)


def probe_exclusive_access(path: Path) -> None:
    """Open *path* for read-write without sharing it, then close it again.

    Raises ``OSError`` when another process holds the file or access is denied.
    """

    if os.name == "nt":  # pragma: no cover - exercised on Windows only
        _probe_exclusive_windows(path)
        return

    descriptor = os.open(path, os.O_RDWR)
    try:
        fcntl.flock(descriptor, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(descriptor, fcntl.LOCK_UN)
    finally:
        os.close(descriptor)


def _probe_exclusive_windows(path: Path) -> None:  # pragma: no cover - Windows only
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    kernel32.CreateFileW.restype = wintypes.HANDLE
    kernel32.CreateFileW.argtypes = (
        wintypes.LPCWSTR,
        wintypes.DWORD,
        wintypes.DWORD,
        wintypes.LPVOID,
        wintypes.DWORD,
        wintypes.DWORD,
        wintypes.HANDLE,
    )
    handle = kernel32.CreateFileW(
        str(path),
        _GENERIC_READ | _GENERIC_WRITE,
        0,
        None,
        _OPEN_EXISTING,
        _FILE_ATTRIBUTE_NORMAL,
        None,
    )
    if handle == _INVALID_HANDLE_VALUE:
        raise ctypes.WinError(ctypes.get_last_error())
    kernel32.CloseHandle(handle)


__all__ = [
    "TreeEntry",
    "TreeLayout",
    "create_probe_file",
    "ensure_directory",
    "probe_exclusive_access",
    "remove_link",
    "scan_tree",
    "unique_path",
]
