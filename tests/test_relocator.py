from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace

import pytest

from relocator import MoveOrchestrator, OutcomeStatus, validate
from relocator import preflight
from relocator.config import MoveSettings
from relocator.logger import configure_logging, next_log_path
from relocator.models import MovePlan, PermissionCheckLevel, RollbackAction


def create_file(path: Path, data: bytes = b"content") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def snapshot(root: Path) -> dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture(autouse=True)
def _logging(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    configure_logging(next_log_path("scenario"))


def test_directory_move_into_folder_across_volumes(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(preflight, "same_volume", lambda source, destination: False)
    source = tmp_path / "Games" / "Big"
    create_file(source / "game.exe", b"MZ" + b"\0" * 300)
    create_file(source / "data" / "level1.pak", os.urandom(4096))
    create_file(source / "data" / "level2.pak", os.urandom(2048))
    before = snapshot(source)
    (tmp_path / "Storage").mkdir()
    samples = []

    outcome = MoveOrchestrator().relocate(
        str(source), str(tmp_path / "Storage") + os.sep, on_progress=samples.append
    )

    destination = tmp_path / "Storage" / "Big"
    assert outcome.status is OutcomeStatus.COMPLETED
    assert outcome.plan.destination_path == destination
    assert source.is_symlink()
    assert Path(os.readlink(source)) == destination
    assert snapshot(destination) == before
    assert snapshot(source) == before
    assert samples[-1].bytes_transferred_total == sum(len(data) for data in before.values())


def test_destination_conflict_reports_exactly_one_issue(tmp_path: Path) -> None:
    source = create_file(tmp_path / "src" / "a.txt")
    create_file(tmp_path / "dst" / "a.txt", b"theirs")

    report = validate(str(source), str(tmp_path / "dst" / "a.txt"))

    assert len(report.issues) == 1
    assert "already exists" in report.messages[0]
    assert (tmp_path / "dst" / "a.txt").read_bytes() == b"theirs"


def test_insufficient_space_reports_required_and_available(tmp_path: Path, monkeypatch) -> None:
    source = create_file(tmp_path / "src" / "video.mp4", b"\0" * 5_000_000)
    (tmp_path / "dst").mkdir()
    probed = []
    monkeypatch.setattr(preflight.shutil, "disk_usage", lambda path: SimpleNamespace(free=1_000_000))
    monkeypatch.setattr(preflight, "probe_exclusive_access", probed.append)

    report = validate(
        str(source),
        str(tmp_path / "dst" / "video.mp4"),
        permission_check_level=PermissionCheckLevel.FULL,
    )

    assert report.messages == [
        f"There is not enough free space on the {os.sep} disk. 5MB required, 1MB available."
    ]
    assert probed == []


@pytest.mark.parametrize("cross_volume", [False, True])
def test_round_trip_restores_original_contents(tmp_path: Path, monkeypatch, cross_volume: bool) -> None:
    if cross_volume:
        monkeypatch.setattr(preflight, "same_volume", lambda source, destination: False)
    first = tmp_path / "first" / "docs"
    create_file(first / "a.txt", b"alpha")
    create_file(first / "deep" / "b.txt", b"beta")
    before = snapshot(first)
    (tmp_path / "second").mkdir()
    second = tmp_path / "second" / "docs"
    engine = MoveOrchestrator(MoveSettings(permission_check_level=PermissionCheckLevel.NONE))

    assert engine.relocate(str(first), str(second)).status is OutcomeStatus.COMPLETED
    os.unlink(first)
    assert engine.relocate(str(second), str(first)).status is OutcomeStatus.COMPLETED
    os.unlink(second)

    assert first.is_dir() and not first.is_symlink()
    assert snapshot(first) == before


def test_cancel_then_rollback_restores_pre_move_state(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "src" / "photos"
    for index in range(8):
        create_file(source / f"img{index}.raw", os.urandom(8192))
    before = snapshot(source)
    (tmp_path / "dst").mkdir()
    destination = tmp_path / "dst" / "photos"

    engine = MoveOrchestrator(MoveSettings(buffer_size=1024, max_workers=1), confirm=lambda offer: True)
    handle = engine.begin_move(MovePlan(source, destination, is_file=False, same_volume=False))
    for _sample in handle.progress():
        handle.cancel()
        handle.cancel()
    outcome = engine.finish(handle)

    if outcome.status is OutcomeStatus.CANCELLED:
        assert outcome.rollback is RollbackAction.DISCARD_DESTINATION
        assert outcome.rolled_back is True
        assert not destination.exists()
        assert snapshot(source) == before
    else:
        # the copy finished before the request was seen
        assert outcome.status is OutcomeStatus.COMPLETED
        assert snapshot(destination) == before
