"""relocator package exports."""

from .cli import main as cli_main
from .config import MoveSettings, load_settings
from .errors import RelocatorError, ValidationFailedError
from .models import MoveOutcome, MovePlan, OutcomeStatus, PermissionCheckLevel, ProgressSample
from .orchestrator import MoveHandle, MoveOrchestrator
from .preflight import validate
from .transfer import begin_directory_move, begin_file_move

__all__ = [
    "cli_main",
    "MoveHandle",
    "MoveOrchestrator",
    "MoveOutcome",
    "MovePlan",
    "MoveSettings",
    "OutcomeStatus",
    "PermissionCheckLevel",
    "ProgressSample",
    "RelocatorError",
    "ValidationFailedError",
    "begin_directory_move",
    "begin_file_move",
    "load_settings",
    "validate",
]
