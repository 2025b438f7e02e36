"""
Workspace location and layout.

A workspace is any directory containing a .planloop/ marker directory.
Commands run from anywhere inside it; the root is found by walking upward.
"""

from pathlib import Path
from typing import Optional, Union

WORKSPACE_DIR = ".planloop"
PLANNING_DIR = ".planning"


class NoWorkspaceError(Exception):
    """Raised when no workspace marker is found above the start directory."""

    def __init__(self, start: Union[str, Path]):
        super().__init__(f"No planloop workspace found from {start} (run 'planloop init' first)")
        self.start = start


class WorkspaceExistsError(Exception):
    """Raised when initializing over an existing workspace without force."""


def find_workspace(start: Optional[Union[str, Path]] = None) -> Path:
    """Walk up from start (default: cwd) looking for the .planloop/ directory.

    Returns:
        The workspace root directory

    Raises:
        NoWorkspaceError: if the filesystem root is reached without a match
    """
    origin = Path(start or Path.cwd()).resolve()
    current = origin
    while True:
        if (current / WORKSPACE_DIR).is_dir():
            return current
        if current.parent == current:
            raise NoWorkspaceError(origin)
        current = current.parent


def workspace_path(root: Union[str, Path]) -> Path:
    return Path(root) / WORKSPACE_DIR


def config_path(root: Union[str, Path]) -> Path:
    return workspace_path(root) / "config.yaml"


def prompts_path(root: Union[str, Path]) -> Path:
    return workspace_path(root) / "prompts"


def backlog_path(root: Union[str, Path]) -> Path:
    return workspace_path(root) / "backlog.json"


def planning_path(root: Union[str, Path]) -> Path:
    return Path(root) / PLANNING_DIR


def init_workspace(root: Union[str, Path], force: bool = False) -> Path:
    """Create the workspace marker, default config and planning directories.

    Args:
        root: Directory to turn into a workspace
        force: Overwrite the config of an existing workspace

    Returns:
        The workspace root
    """
    from planloop.config import WorkspaceConfig, save_config

    root = Path(root).resolve()
    marker = workspace_path(root)
    if marker.is_dir() and not force:
        raise WorkspaceExistsError(
            f"planloop workspace already exists at {root} (use --force to overwrite)"
        )

    marker.mkdir(parents=True, exist_ok=True)
    (planning_path(root) / "phases").mkdir(parents=True, exist_ok=True)
    save_config(root, WorkspaceConfig())
    return root
