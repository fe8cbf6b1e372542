"""Command line interface for relocator."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import MoveSettings, load_settings, merge_overrides
from .errors import SettingsError
from .logger import configure_logging, next_log_path
from .models import (
    MoveOutcome,
    OutcomeStatus,
    PermissionCheckLevel,
    ProgressSample,
    RollbackAction,
    RollbackOffer,
    ValidationReport,
)
from .orchestrator import Confirm, MoveOrchestrator, decline_rollback

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LINK_FAILED = 2


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "handler"):
        parser.print_help()
        return EXIT_FAILED
    return args.handler(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relocator",
        description="Move a file or folder and leave a link at the old location",
    )
    subparsers = parser.add_subparsers(dest="command")

    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument("source", help="File or folder to move")
    shared.add_argument("destination", help="New path; end it with a separator to move into that folder")
    shared.add_argument("--settings", type=Path, help="Path to settings JSON (default ~/.relocator/settings.json)")
    shared.add_argument("--unsafe", action="store_true", help="Disable safe mode checks")
    shared.add_argument(
        "--permission-check",
        choices=[level.value for level in PermissionCheckLevel],
        help="How thoroughly files are probed for exclusive access",
    )
    shared.add_argument("--create-destination", action="store_true", default=None,
                        help="Create missing destination folders")
    shared.add_argument("--hide-original", action="store_true", default=None,
                        help="Hide the link left at the old location")
    shared.add_argument("--log", type=Path, help="Write the JSON log to this file")

    check = subparsers.add_parser("check", parents=[shared], help="Only validate a move")
    check.set_defaults(handler=_handle_check)

    move = subparsers.add_parser("move", parents=[shared], help="Move and link back")
    move.add_argument(
        "--rollback",
        choices=["ask", "always", "never"],
        default="ask",
        help="What to do when a move stops part way",
    )
    move.set_defaults(handler=_handle_move)

    return parser


def _handle_check(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    if settings is None:
        return EXIT_FAILED
    configure_logging(_log_path(args))

    report = MoveOrchestrator(settings).validate(args.source, args.destination)
    plan = report.plan
    if plan is None:
        _print_issues(report)
        return EXIT_FAILED

    kind = "file" if plan.is_file else "folder"
    how = "rename on the same volume" if plan.same_volume else "copy across volumes"
    print(f"OK: {kind} {plan.source_path} -> {plan.destination_path} ({how})")
    return EXIT_OK


def _handle_move(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    if settings is None:
        return EXIT_FAILED
    log_path = _log_path(args)
    configure_logging(log_path)

    orchestrator = MoveOrchestrator(settings, confirm=_confirm_policy(args.rollback))
    report = orchestrator.validate(args.source, args.destination)
    plan = report.plan
    if plan is None:
        _print_issues(report)
        return EXIT_FAILED

    handle = orchestrator.begin_move(plan)
    try:
        for sample in handle.progress():
            _print_progress(sample)
    except KeyboardInterrupt:
        handle.cancel()
        print("\nCancelling...", file=sys.stderr)
    else:
        print(file=sys.stderr)

    outcome = orchestrator.finish(handle)
    code = _report_outcome(outcome)
    print(f"Log: {log_path}")
    return code


# ---------------------------------------------------------------------------
# Helpers


def _load_settings(args: argparse.Namespace) -> MoveSettings | None:
    overrides = {
        "safe_mode": False if args.unsafe else None,
        "permission_check_level": args.permission_check,
        "create_destination_directories": args.create_destination,
        "hide_original": args.hide_original,
    }
    try:
        return merge_overrides(load_settings(args.settings), overrides)
    except SettingsError as exc:
        print(f"Settings error: {exc}", file=sys.stderr)
        return None


def _log_path(args: argparse.Namespace) -> Path:
    return args.log if args.log else next_log_path(args.command)


def _print_issues(report: ValidationReport) -> None:
    print("The move cannot be performed:", file=sys.stderr)
    for message in report.messages:
        print(f"  - {message}", file=sys.stderr)


def _print_progress(sample: ProgressSample) -> None:
    name = sample.current_item_name[-40:]
    print(f"\r{sample.fraction * 100:5.1f}%  {name:<40}", end="", file=sys.stderr, flush=True)


_PROMPTS = {
    RollbackAction.DELETE_DESTINATION: "Copying failed. Remove the partially copied contents at {destination}?",
    RollbackAction.RESTORE_SOURCE: "The old files could not be removed. Move the contents back to {source}?",
    RollbackAction.DISCARD_DESTINATION: "The move was cancelled. Remove what was already copied to {destination}?",
}


def _ask_rollback(offer: RollbackOffer) -> bool:
    prompt = _PROMPTS[offer.action].format(
        source=offer.plan.source_path,
        destination=offer.plan.destination_path,
    )
    print(f"{offer.error}", file=sys.stderr)
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _confirm_policy(choice: str) -> Confirm:
    if choice == "always":
        return lambda offer: True
    if choice == "never":
        return decline_rollback
    return _ask_rollback


def _report_outcome(outcome: MoveOutcome) -> int:
    plan = outcome.plan
    if outcome.status is OutcomeStatus.COMPLETED:
        print(f"Moved {plan.source_path} -> {plan.destination_path}")
        if plan.hide_original_after and not outcome.hidden:
            print(f"Could not hide {plan.source_path}", file=sys.stderr)
        return EXIT_OK

    if outcome.status is OutcomeStatus.LINK_FAILED:
        print(f"Moved {plan.source_path} -> {plan.destination_path}", file=sys.stderr)
        print(f"Link creation failed: {outcome.error}", file=sys.stderr)
        return EXIT_LINK_FAILED

    if outcome.status is OutcomeStatus.CANCELLED:
        print("Move cancelled.", file=sys.stderr)
    else:
        print(f"Move failed: {outcome.error}", file=sys.stderr)

    if outcome.rollback_error is not None:
        print(f"Rollback failed: {outcome.rollback_error}", file=sys.stderr)
    elif outcome.rolled_back:
        print("Rollback completed.", file=sys.stderr)
    elif outcome.rollback is not RollbackAction.NONE:
        print(
            f"Nothing was undone; check {plan.source_path} and {plan.destination_path}",
            file=sys.stderr,
        )
    return EXIT_FAILED


__all__ = ["main"]
