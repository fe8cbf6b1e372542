"""Staged feasibility checks run before any data moves."""
from __future__ import annotations

import logging
import os
import shutil
import stat
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from .errors import InvalidPathError, UnauthorizedAccessError
from .logger import log_event
from .models import MovePlan, PermissionCheckLevel, ValidationIssue, ValidationReport
from .paths import (
    deepest_existing_directory,
    has_rooted_form,
    normalize_path,
    resolve_destination,
    same_volume,
)
from .protected_paths import ProtectedPaths
from .utils.fs import create_probe_file, probe_exclusive_access, remove_link, scan_tree, unique_path

LOGGER_NAME = "relocator.preflight"
PROBE_NAME = "relocator-probe.tmp"
FAST_CHECK_SUFFIXES = frozenset({".exe", ".dll", ".sys", ".so", ".dylib"})
_MB = 1_000_000

ELEVATE_HINT = "Try running as administrator"


@dataclass(slots=True)
class _Request:
    raw_source: str
    raw_destination: str
    source: str = ""
    destination: str = ""
    into_directory: bool = False
    is_file: bool | None = None
    total_bytes: int | None = None


class PreflightValidator:
    """Run every pre-flight check and collect the problems found.

    Checks are grouped in stages. A stage that reports anything stops the
    run, since later stages assume earlier ones held; inside a stage every
    check runs so the user sees all problems at once.
    """

    def __init__(
        self,
        *,
        safe_mode: bool = True,
        permission_check_level: PermissionCheckLevel = PermissionCheckLevel.FAST,
        create_destination_dirs: bool = False,
        hide_original: bool = False,
        protected: ProtectedPaths | None = None,
        max_workers: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.safe_mode = safe_mode
        self.permission_check_level = PermissionCheckLevel(permission_check_level)
        self.create_destination_dirs = create_destination_dirs
        self.hide_original = hide_original
        self.protected = protected or ProtectedPaths()
        self.max_workers = max_workers or min(32, (os.cpu_count() or 1) + 4)
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    # ------------------------------------------------------------------
    # Public API
    def validate(self, source: str, destination: str) -> ValidationReport:
        """Validate moving *source* to *destination* and return the report."""

        request = _Request(raw_source=str(source), raw_destination=str(destination))
        stages: Sequence[Callable[[_Request], list[ValidationIssue]]] = (
            self._check_paths,
            self._probe_permissions,
            self._check_capacity,
            self._check_file_access,
        )

        report = ValidationReport()
        for number, stage in enumerate(stages, start=1):
            report.stage = number
            issues = stage(request)
            if issues:
                report.issues.extend(issues)
                log_event(
                    self.logger,
                    level=logging.WARNING,
                    action="preflight.failed",
                    message=f"Validation stage {number} reported {len(issues)} issue(s)",
                    extra={"stage": number, "issues": [issue.message for issue in issues]},
                )
                break

        report.is_file = request.is_file
        report.total_bytes = request.total_bytes
        if report.ok:
            report.plan = MovePlan(
                source_path=Path(request.source),
                destination_path=Path(request.destination),
                is_file=bool(request.is_file),
                same_volume=same_volume(request.source, request.destination),
                hide_original_after=self.hide_original,
                create_destination_dirs=self.create_destination_dirs,
            )
            log_event(
                self.logger,
                level=logging.INFO,
                action="preflight.passed",
                message=f"Validated {request.source} -> {request.destination}",
                bytes_processed=request.total_bytes,
                extra={"same_volume": report.plan.same_volume, "is_file": report.plan.is_file},
            )
        return report

    # ------------------------------------------------------------------
    # Stage 1: path sanity
    def _check_paths(self, request: _Request) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        destination, request.into_directory = resolve_destination(request.raw_source, request.raw_destination)
        try:
            request.source = normalize_path(request.raw_source)
            request.destination = normalize_path(destination)
        except InvalidPathError as exc:
            issues.append(ValidationIssue("Invalid path", exc))

        rooted = (
            has_rooted_form(request.source or request.raw_source),
            has_rooted_form(request.destination or request.raw_destination),
        )
        if not all(rooted):
            issues.append(ValidationIssue("Invalid path format"))

        if not request.source or not request.destination:
            return issues
        source = request.source
        destination = request.destination

        if self.protected.is_denied(source):
            issues.append(ValidationIssue(f'The "{source}" directory cannot be moved.'))

        if self.safe_mode and self.protected.is_protected(source):
            issues.append(
                ValidationIssue(
                    f"It's recommended not to move the {source} directory, "
                    "you can disable safe mode in the settings to override this check"
                )
            )

        try:
            request.is_file = not stat.S_ISDIR(os.stat(source).st_mode)
        except FileNotFoundError as exc:
            issues.append(ValidationIssue("Source does not exist", exc))
        except OSError as exc:
            issues.append(ValidationIssue(f"Cannot access the source: {exc.strerror or exc}", exc))

        if os.path.isdir(destination):
            issues.append(
                ValidationIssue(
                    "Destination already contains a folder with the same name"
                    if request.into_directory
                    else "A folder with the same name as the destination already exists"
                )
            )
        elif os.path.lexists(destination):
            issues.append(
                ValidationIssue(
                    "Destination already contains a file with the same name"
                    if request.into_directory
                    else "A file with the same name as the destination already exists"
                )
            )

        if not self.create_destination_dirs and not os.path.isdir(os.path.dirname(destination)):
            issues.append(ValidationIssue("Destination folder does not exist"))

        return issues

    # ------------------------------------------------------------------
    # Stage 2: permission probes
    def _probe_permissions(self, request: _Request) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        write_issue = self._probe_write_access(Path(request.source).parent)
        if write_issue:
            issues.append(write_issue)

        link_parent = deepest_existing_directory(Path(request.destination).parent)
        if link_parent is None:
            issues.append(ValidationIssue("Destination folder does not exist"))
        else:
            link_issue = self._probe_link_creation(link_parent)
            if link_issue:
                issues.append(link_issue)
        return issues

    def _probe_write_access(self, directory: Path) -> ValidationIssue | None:
        probe = unique_path(directory / PROBE_NAME)
        try:
            create_probe_file(probe)
        except PermissionError as exc:
            error = UnauthorizedAccessError(
                f"You do not have the required privileges to move the directory.\n{ELEVATE_HINT}"
            )
            error.__cause__ = exc
            return ValidationIssue(str(error), error)
        except OSError as exc:
            return ValidationIssue(f"Could not write to {directory}: {exc.strerror or exc}", exc)
        self._discard_probe(probe, os.unlink)
        return None

    def _probe_link_creation(self, directory: Path) -> ValidationIssue | None:
        probe = unique_path(directory / PROBE_NAME)
        try:
            os.symlink(directory, probe, target_is_directory=True)
        except (OSError, NotImplementedError) as exc:
            return ValidationIssue(f"Could not create a symbolic link.\n{ELEVATE_HINT}", exc)
        self._discard_probe(probe, remove_link)
        return None

    def _discard_probe(self, probe: Path, remove: Callable[[Path], None]) -> None:
        try:
            remove(probe)
        except OSError as exc:
            log_event(
                self.logger,
                level=logging.WARNING,
                action="preflight.probe_cleanup",
                message=f"Could not remove probe {probe}",
                extra={"error": repr(exc)},
            )

    # ------------------------------------------------------------------
    # Stage 3: capacity
    def _check_capacity(self, request: _Request) -> list[ValidationIssue]:
        try:
            if request.is_file:
                size = os.stat(request.source).st_size
            else:
                size = scan_tree(Path(request.source)).total_bytes
        except OSError as exc:
            return [ValidationIssue(f"Could not measure {request.source}: {exc.strerror or exc}", exc)]
        request.total_bytes = size

        volume = deepest_existing_directory(Path(request.destination).parent)
        if volume is None:
            return [ValidationIssue("Destination folder does not exist")]
        try:
            available = shutil.disk_usage(volume).free
        except OSError as exc:
            return [ValidationIssue(f"Could not read free space for {volume}: {exc.strerror or exc}", exc)]

        if available < size:
            drive = Path(request.destination).anchor or str(volume)
            return [
                ValidationIssue(
                    f"There is not enough free space on the {drive} disk. "
                    f"{size // _MB}MB required, {available // _MB}MB available."
                )
            ]
        return []

    # ------------------------------------------------------------------
    # Stage 4: exclusive access to files
    def _check_file_access(self, request: _Request) -> list[ValidationIssue]:
        if self.permission_check_level is PermissionCheckLevel.NONE:
            return []
        try:
            targets = self._files_to_probe(Path(request.source), bool(request.is_file))
        except OSError as exc:
            return [ValidationIssue(f"Could not list {request.source}: {exc.strerror or exc}", exc)]

        log_event(
            self.logger,
            level=logging.DEBUG,
            action="preflight.access_probe",
            message=f"Probing {len(targets)} file(s) for exclusive access",
            extra={"level": self.permission_check_level.value},
        )
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="relocator-probe") as pool:
            results = list(pool.map(_probe_one, targets))
        return [issue for issue in results if issue is not None]

    def _files_to_probe(self, source: Path, is_file: bool) -> list[Path]:
        if is_file:
            return [source]
        layout = scan_tree(source)
        files = [source / entry.relative for entry in layout.files]
        if self.permission_check_level is PermissionCheckLevel.FAST:
            files = [path for path in files if path.suffix.lower() in FAST_CHECK_SUFFIXES]
        return files


def _probe_one(path: Path) -> ValidationIssue | None:
    try:
        probe_exclusive_access(path)
    except OSError as exc:
        return ValidationIssue(f"{path} cannot be opened exclusively: {exc.strerror or exc}", exc)
    return None


def validate(
    source: str,
    destination: str,
    *,
    safe_mode: bool = True,
    permission_check_level: PermissionCheckLevel = PermissionCheckLevel.FAST,
    create_destination_dirs: bool = False,
    hide_original: bool = False,
    logger: logging.Logger | None = None,
) -> ValidationReport:
    """Convenience wrapper around :class:`PreflightValidator`."""

    validator = PreflightValidator(
        safe_mode=safe_mode,
        permission_check_level=permission_check_level,
        create_destination_dirs=create_destination_dirs,
        hide_original=hide_original,
        logger=logger,
    )
    return validator.validate(source, destination)


__all__ = ["FAST_CHECK_SUFFIXES", "PreflightValidator", "validate"]
