"""Directories that must never be moved, and those only moved outside safe mode."""
from __future__ import annotations

import os
from typing import Iterable, Mapping

_WINDOWS_DENYLIST = (
    r"C:\Windows",
    r"C:\Windows\System32",
    r"C:\Windows\Config",
    r"C:\ProgramData",
)

_POSIX_DENYLIST = (
    "/",
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib64",
    "/proc",
    "/sbin",
    "/sys",
    "/usr",
    "/usr/bin",
    "/usr/lib",
    "/var",
    "/System",
    "/Library",
)

_WINDOWS_PROGRAM_ROOTS = {
    "ProgramFiles": r"C:\Program Files",
    "ProgramFiles(x86)": r"C:\Program Files (x86)",
}

_POSIX_PROGRAM_ROOTS = ("/opt", "/usr/local", "/Applications")


def _default_protected_roots(environ: Mapping[str, str]) -> tuple[str, ...]:
    if os.name != "nt":
        return _POSIX_PROGRAM_ROOTS
    return tuple(environ.get(name, fallback) for name, fallback in _WINDOWS_PROGRAM_ROOTS.items())


class ProtectedPaths:
    """Match sources against the operating-system denylist and safe-mode roots.

    Both checks are exact matches on the normalised path: moving a folder
    *inside* ``Program Files`` is allowed, moving ``Program Files`` itself is not.
    """

    def __init__(
        self,
        *,
        denylist: Iterable[str] | None = None,
        protected_roots: Iterable[str] | None = None,
        case_insensitive: bool | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if case_insensitive is None:
            case_insensitive = os.name == "nt"
        self.case_insensitive = case_insensitive
        default_denylist = _WINDOWS_DENYLIST if os.name == "nt" else _POSIX_DENYLIST
        self.denylist = {self._key(item) for item in (denylist if denylist is not None else default_denylist)}
        roots = protected_roots if protected_roots is not None else _default_protected_roots(environ or os.environ)
        self.protected_roots = {self._key(item) for item in roots}

    def is_denied(self, path: str) -> bool:
        return self._key(path) in self.denylist

    def is_protected(self, path: str) -> bool:
        return self._key(path) in self.protected_roots

    def _key(self, path: str) -> str:
        trimmed = str(path).rstrip("\\/") or str(path)[:1]
        return trimmed.lower() if self.case_insensitive else trimmed


__all__ = ["ProtectedPaths"]
