"""Settings consumed by the move engine."""
from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import SettingsError
from .models import PermissionCheckLevel

DEFAULT_BUFFER_SIZE = 81920


@dataclass(slots=True)
class MoveSettings:
    """Options that control how a move is validated and performed."""

    safe_mode: bool = True
    permission_check_level: PermissionCheckLevel = PermissionCheckLevel.FAST
    create_destination_directories: bool = False
    hide_original: bool = False
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_workers: int | None = None


_BOOL_KEYS = ("safe_mode", "create_destination_directories", "hide_original")


def default_settings_path() -> Path:
    return Path.home() / ".relocator" / "settings.json"


def load_settings(path: str | Path | None = None) -> MoveSettings:
    """Read settings from *path*, falling back to defaults when it is absent."""

    settings_path = Path(path) if path else default_settings_path()
    if not settings_path.exists():
        return MoveSettings()

    try:
        raw = json.loads(settings_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsError(f"Invalid settings JSON in {settings_path}: {exc.msg} (line {exc.lineno})") from exc

    if not isinstance(raw, dict):
        raise SettingsError(f"Settings file {settings_path} must contain a JSON object")
    return merge_overrides(MoveSettings(), raw)


def merge_overrides(settings: MoveSettings, overrides: Mapping[str, Any]) -> MoveSettings:
    """Return a copy of *settings* with validated *overrides* applied.

    ``None`` values are ignored so that unset command line flags do not clobber
    values that came from the settings file.
    """

    known = {item.name for item in fields(MoveSettings)}
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            raise SettingsError("Unknown setting", key=key)
        if value is None:
            continue
        changes[key] = _coerce(key, value)
    return replace(settings, **changes)


def _coerce(key: str, value: Any) -> Any:
    if key in _BOOL_KEYS:
        if not isinstance(value, bool):
            raise SettingsError("Expected true or false", key=key)
        return value
    if key == "permission_check_level":
        try:
            return PermissionCheckLevel(str(value).lower())
        except ValueError as exc:
            choices = ", ".join(level.value for level in PermissionCheckLevel)
            raise SettingsError(f"Expected one of: {choices}", key=key) from exc
    if key in ("buffer_size", "max_workers"):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise SettingsError("Expected a positive integer", key=key)
        return value
    return value


__all__ = ["DEFAULT_BUFFER_SIZE", "MoveSettings", "default_settings_path", "load_settings", "merge_overrides"]
