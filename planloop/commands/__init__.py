"""
planloop commands - one module per CLI operation.

Each command function returns a result dict:
    {"command": ..., "project": ..., "message": ...}
with an "error" key on failure (and "next" when another command must run
first). The click CLI renders these; --json prints them as-is.

Commands are organized by category:
- Project: init_project, progress
- Phase Management: add_phase, insert_phase, remove_phase
- Planning: plan_phase, verify_phase
- Execution: execute
"""

import json
from pathlib import Path
from typing import Optional, Tuple

from planloop.backends.base import BackendError
from planloop.config import ConfigError
from planloop.prompts import PromptNotFoundError
from planloop.state import MissingPrerequisiteError, StateError
from planloop.workspace import NoWorkspaceError, find_workspace, planning_path

# Errors a command reports in its result instead of raising
COMMAND_ERRORS = (
    StateError,
    NoWorkspaceError,
    ConfigError,
    BackendError,
    PromptNotFoundError,
    ValueError,
    OSError,
)


def resolve_project(project_path: Optional[Path] = None) -> Tuple[Path, Path]:
    """Find the workspace root and planning directory.

    Raises:
        NoWorkspaceError: if no workspace contains project_path (default cwd)
    """
    root = find_workspace(project_path)
    return root, planning_path(root)


def record_error(result: dict, error: Exception) -> dict:
    """Store an error (and the command to run next, if any) in a result."""
    result["error"] = str(error)
    if isinstance(error, MissingPrerequisiteError):
        result["next"] = error.next_command
    elif isinstance(error, NoWorkspaceError):
        result["next"] = "planloop init"
    return result


def emit_json(result: dict) -> None:
    print(json.dumps(result, indent=2, default=str))


__all__ = [
    "COMMAND_ERRORS",
    "resolve_project",
    "record_error",
    "emit_json",
]
