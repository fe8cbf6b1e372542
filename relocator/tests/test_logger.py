from __future__ import annotations

import json
import logging
from pathlib import Path

from relocator.logger import configure_logging, log_event, next_log_path


def _lines(logger: logging.Logger, log_file: Path) -> list[dict]:
    for handler in logger.handlers:
        handler.flush()
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines() if line]


def test_log_event_sanitizes_home_directory(tmp_path: Path) -> None:
    log_file = tmp_path / "relocator.log"
    logger = configure_logging(log_file, level=logging.INFO)
    sensitive_path = Path.home() / "Documents" / "photos"
    log_event(
        logger,
        level=logging.INFO,
        action="transfer.completed",
        message=f"Moved {sensitive_path}",
        bytes_processed=2048,
        duration_ms=12.34567,
        extra={"path": sensitive_path, "paths": [str(sensitive_path)]},
    )

    payload = _lines(logger, log_file)[-1]
    assert payload["action"] == "transfer.completed"
    assert payload["message"] == "Moved ~/Documents/photos"
    assert payload["path"] == "~/Documents/photos"
    assert payload["paths"] == ["~/Documents/photos"]
    assert payload["bytes"] == 2048
    assert payload["ms"] == 12.346
    assert payload["ts"].endswith("Z")


def test_disabled_levels_write_nothing(tmp_path: Path) -> None:
    log_file = tmp_path / "quiet.log"
    logger = configure_logging(log_file, level=logging.WARNING)
    log_event(logger, level=logging.INFO, action="preflight.passed", message="ignored")
    log_event(logger, level=logging.ERROR, action="transfer.failed", message="kept")

    assert [entry["action"] for entry in _lines(logger, log_file)] == ["transfer.failed"]


def test_child_loggers_share_the_handler(tmp_path: Path) -> None:
    log_file = tmp_path / "child.log"
    logger = configure_logging(log_file)
    log_event(logging.getLogger("relocator.preflight"), level=logging.INFO, action="x.y", message="child")

    assert _lines(logger, log_file)[-1]["message"] == "child"


def test_next_log_path_lives_under_home(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    path = next_log_path("move")
    assert path.parent == tmp_path / ".relocator" / "logs"
    assert path.name.startswith("move-")
    assert path.suffix == ".log"
