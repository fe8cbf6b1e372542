"""Structured JSON logging for relocator."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOGGER_NAME = "relocator"
ROTATE_AT_BYTES = 10 * 1024 * 1024
ROTATED_FILES_KEPT = 5


def _sanitize(value: str) -> str:
    """Show paths below the home directory as ``~/...`` so logs stay shareable."""

    home = str(Path.home())
    if value == home:
        return "~"
    for separator in ("/", "\\"):
        value = value.replace(home + separator, "~/")
    return value


def _scrub(value: Any) -> Any:
    if isinstance(value, (str, Path)):
        return _sanitize(str(value))
    if isinstance(value, dict):
        return {key: _scrub(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_scrub(item) for item in value]
    return value


def log_directory() -> Path:
    return Path.home() / ".relocator" / "logs"


def next_log_path(prefix: str) -> Path:
    """Return a fresh timestamped log file path for a run named *prefix*."""

    stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    return log_directory() / f"{prefix}-{stamp}.log"


def _build_handler(log_path: Path | None, rotate_at: int, keep: int) -> logging.Handler:
    if log_path is None:
        return logging.StreamHandler()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(log_path, maxBytes=rotate_at, backupCount=keep, encoding="utf-8")


def configure_logging(
    log_path: Path | None = None,
    *,
    level: int = logging.INFO,
    max_bytes: int = ROTATE_AT_BYTES,
    backup_count: int = ROTATED_FILES_KEPT,
) -> logging.Logger:
    """Configure and return the ``relocator`` logger.

    Calling it again without *log_path* only adjusts the level; passing a path
    swaps the existing handler for a rotating file handler on that path.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    existing = list(logger.handlers)
    if existing and log_path is None:
        for handler in existing:
            handler.setLevel(level)
        return logger
    for handler in existing:
        logger.removeHandler(handler)
        handler.close()

    handler = _build_handler(log_path, max_bytes, backup_count)
    handler.setLevel(level)
    # records are already serialised JSON
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def log_event(
    logger: logging.Logger,
    *,
    level: int,
    action: str,
    message: str,
    bytes_processed: int | None = None,
    duration_ms: float | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """Emit one JSON line describing *action* (``"transfer.completed"`` ...)."""

    if not logger.isEnabledFor(level):
        return

    record: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "level": logging.getLevelName(level),
        "action": action,
        "message": _sanitize(message),
    }
    optional = {"bytes": bytes_processed, "ms": None if duration_ms is None else round(duration_ms, 3)}
    record.update({key: value for key, value in optional.items() if value is not None})
    if extra:
        record.update(_scrub(extra))

    logger.log(level, json.dumps(record, ensure_ascii=False, default=str))


__all__ = ["LOGGER_NAME", "configure_logging", "log_directory", "log_event", "next_log_path"]
