from __future__ import annotations

from pathlib import Path

import pytest

from relocator import rollback
from relocator.errors import (
    CopyFailedError,
    DeleteFailedError,
    LinkCreationFailedError,
    MoveCancelledError,
    MoveFailedError,
    RollbackFailedError,
)
from relocator.logger import configure_logging, next_log_path
from relocator.models import MovePlan, RollbackAction
from relocator.rollback import RollbackManager, rollback_action_for


def create_file(path: Path, data: bytes = b"content") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


@pytest.fixture()
def manager(tmp_path, monkeypatch) -> RollbackManager:
    monkeypatch.setenv("HOME", str(tmp_path))
    configure_logging(next_log_path("rollback-test"))
    return RollbackManager(buffer_size=64)


def test_actions_follow_the_failed_stage() -> None:
    assert rollback_action_for(CopyFailedError("copy")) is RollbackAction.DELETE_DESTINATION
    assert rollback_action_for(DeleteFailedError("delete")) is RollbackAction.RESTORE_SOURCE
    assert rollback_action_for(MoveCancelledError("stop")) is RollbackAction.DISCARD_DESTINATION
    assert rollback_action_for(MoveFailedError("move")) is RollbackAction.NONE
    assert rollback_action_for(PermissionError("denied")) is RollbackAction.NONE
    assert rollback_action_for(LinkCreationFailedError("link")) is RollbackAction.NONE


def test_undo_copy_removes_partial_directory(tmp_path: Path, manager: RollbackManager) -> None:
    source = create_file(tmp_path / "src" / "tree" / "a.txt").parent
    destination = tmp_path / "dst" / "tree"
    create_file(destination / "a.txt", b"cont")
    plan = MovePlan(source, destination, is_file=False, same_volume=False)

    manager.apply(plan, RollbackAction.DELETE_DESTINATION)

    assert not destination.exists()
    assert (source / "a.txt").read_bytes() == b"content"
    # running it again finds nothing to do
    manager.undo_copy(plan)


@pytest.mark.parametrize("action", [RollbackAction.DELETE_DESTINATION, RollbackAction.DISCARD_DESTINATION])
def test_cleanup_skips_destination_the_move_did_not_create(
    tmp_path: Path, manager: RollbackManager, action: RollbackAction
) -> None:
    source = create_file(tmp_path / "src" / "tree" / "a.txt").parent
    destination = tmp_path / "dst" / "tree"
    create_file(destination / "precious.txt", b"theirs")
    plan = MovePlan(source, destination, is_file=False, same_volume=False)

    manager.apply(plan, action, destination_created=False)

    assert (destination / "precious.txt").read_bytes() == b"theirs"


def test_undo_copy_failure_needs_manual_cleanup(tmp_path: Path, manager: RollbackManager, monkeypatch) -> None:
    destination = create_file(tmp_path / "dst" / "tree" / "a.txt").parent

    def refuse(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(rollback.shutil, "rmtree", refuse)
    plan = MovePlan(tmp_path / "src" / "tree", destination, is_file=False, same_volume=False)

    with pytest.raises(RollbackFailedError) as excinfo:
        manager.undo_copy(plan)
    assert str(excinfo.value) == "Could not remove copied contents. Try removing manually"
    assert isinstance(excinfo.value.cause, PermissionError)


def test_discard_destination_after_cancel(tmp_path: Path, manager: RollbackManager) -> None:
    source = create_file(tmp_path / "src" / "a.txt")
    destination = create_file(tmp_path / "dst" / "a.txt", b"cont")
    plan = MovePlan(source, destination, is_file=True, same_volume=False)

    manager.apply(plan, RollbackAction.DISCARD_DESTINATION)

    assert not destination.exists()
    assert source.exists()


def test_restore_file_when_source_survived(tmp_path: Path, manager: RollbackManager) -> None:
    source = create_file(tmp_path / "src" / "a.txt")
    destination = create_file(tmp_path / "dst" / "a.txt")
    plan = MovePlan(source, destination, is_file=True, same_volume=False)

    manager.restore_source(plan)

    assert source.read_bytes() == b"content"
    assert not destination.exists()


def test_restore_file_moves_it_back(tmp_path: Path, manager: RollbackManager) -> None:
    (tmp_path / "src").mkdir()
    source = tmp_path / "src" / "a.txt"
    destination = create_file(tmp_path / "dst" / "a.txt", b"moved data")
    plan = MovePlan(source, destination, is_file=True, same_volume=False)

    manager.restore_source(plan)

    assert source.read_bytes() == b"moved data"
    assert not destination.exists()


def test_restore_directory_merges_partially_deleted_source(tmp_path: Path, manager: RollbackManager) -> None:
    source = tmp_path / "src" / "tree"
    destination = tmp_path / "dst" / "tree"
    for relative in ("a.txt", "sub/b.txt", "sub/c.txt"):
        create_file(destination / relative, relative.encode())
    # the failed delete already removed b.txt and c.txt from the source
    create_file(source / "a.txt", b"a.txt")
    plan = MovePlan(source, destination, is_file=False, same_volume=False)

    manager.apply(plan, RollbackAction.RESTORE_SOURCE)

    assert (source / "a.txt").read_bytes() == b"a.txt"
    assert (source / "sub" / "b.txt").read_bytes() == b"sub/b.txt"
    assert (source / "sub" / "c.txt").read_bytes() == b"sub/c.txt"
    assert not destination.exists()


def test_restore_directory_when_source_is_gone(tmp_path: Path, manager: RollbackManager) -> None:
    (tmp_path / "src").mkdir()
    source = tmp_path / "src" / "tree"
    destination = tmp_path / "dst" / "tree"
    create_file(destination / "x" / "y.txt", b"y")
    plan = MovePlan(source, destination, is_file=False, same_volume=False)

    manager.restore_source(plan)

    assert (source / "x" / "y.txt").read_bytes() == b"y"
    assert not destination.exists()


def test_restore_failure_needs_manual_move(tmp_path: Path, manager: RollbackManager) -> None:
    source = tmp_path / "missing-parent" / "a.txt"
    destination = create_file(tmp_path / "dst" / "a.txt")
    plan = MovePlan(source, destination, is_file=True, same_volume=False)

    with pytest.raises(RollbackFailedError) as excinfo:
        manager.restore_source(plan)
    assert str(excinfo.value) == "Could not move back contents. Try moving manually"
    assert destination.exists()
