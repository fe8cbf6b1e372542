from __future__ import annotations

import json
from pathlib import Path

from relocator import cli, transfer
from relocator.linkback import LinkBack
from relocator.models import MovePlan, RollbackAction, RollbackOffer
from relocator.orchestrator import decline_rollback


def create_file(path: Path, data: bytes = b"content") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def test_cli_check_reports_plan_and_issues(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    source = create_file(tmp_path / "src" / "a.txt")
    (tmp_path / "dst").mkdir()

    exit_code = cli.main(["check", str(source), str(tmp_path / "dst") + "/"])
    assert exit_code == 0
    assert "OK: file" in capsys.readouterr().out

    create_file(tmp_path / "dst" / "a.txt")
    exit_code = cli.main(["check", str(source), str(tmp_path / "dst") + "/"])
    assert exit_code == 1
    assert "Destination already contains a file with the same name" in capsys.readouterr().err


def test_cli_move_links_back(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    source = tmp_path / "src" / "games"
    create_file(source / "save.dat", b"level 9")
    (tmp_path / "dst").mkdir()
    log_file = tmp_path / "move.log"

    exit_code = cli.main(["move", str(source), str(tmp_path / "dst" / "games"), "--log", str(log_file)])

    assert exit_code == 0
    assert source.is_symlink()
    assert (source / "save.dat").read_bytes() == b"level 9"
    assert "Moved" in capsys.readouterr().out
    actions = [json.loads(line)["action"] for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert "preflight.passed" in actions
    assert "link.directory" in actions


def test_cli_link_failure_exit_code(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(LinkBack, "create_file_location_link", lambda self, new, old: False)
    source = create_file(tmp_path / "src" / "a.txt")
    (tmp_path / "dst").mkdir()

    exit_code = cli.main(["move", str(source), str(tmp_path / "dst" / "a.txt")])

    assert exit_code == 2
    assert "Link creation failed" in capsys.readouterr().err
    assert (tmp_path / "dst" / "a.txt").exists()


def test_cli_rollback_always_undoes_failed_copy(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr("relocator.preflight.same_volume", lambda source, destination: False)

    def broken_write(writer, buffer, count):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(transfer, "_write_chunk", broken_write)
    source = create_file(tmp_path / "src" / "a.txt")
    (tmp_path / "dst").mkdir()

    exit_code = cli.main(["move", str(source), str(tmp_path / "dst" / "a.txt"), "--rollback", "always"])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "Move failed" in err
    assert "Rollback completed." in err
    assert not (tmp_path / "dst" / "a.txt").exists()
    assert source.read_bytes() == b"content"


def test_cli_settings_errors_and_overrides(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"permission_check_level": "sometimes"}), encoding="utf-8")
    source = create_file(tmp_path / "src" / "a.txt")

    exit_code = cli.main(["check", str(source), str(tmp_path / "a2.txt"), "--settings", str(settings)])
    assert exit_code == 1
    assert "permission_check_level" in capsys.readouterr().err

    exit_code = cli.main(
        ["check", str(source), str(tmp_path / "new" / "a.txt"), "--permission-check", "none", "--create-destination"]
    )
    assert exit_code == 0


def test_rollback_prompt_policies(monkeypatch) -> None:
    plan = MovePlan(Path("/old/a"), Path("/new/a"), is_file=False, same_volume=False)
    offer = RollbackOffer(plan=plan, error=RuntimeError("boom"), action=RollbackAction.DISCARD_DESTINATION)

    assert cli._confirm_policy("never") is decline_rollback
    assert cli._confirm_policy("always")(offer) is True

    answers = iter(["y"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    assert cli._confirm_policy("ask")(offer) is True

    def closed_stdin(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", closed_stdin)
    assert cli._confirm_policy("ask")(offer) is False


def test_cli_without_command_prints_help(capsys) -> None:
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out
