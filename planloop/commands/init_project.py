"""
planloop init - Create a workspace and an empty roadmap.
"""

from pathlib import Path
from typing import Optional

from planloop.commands import COMMAND_ERRORS, emit_json, record_error
from planloop.state import init_project as init_project_records
from planloop.workspace import WorkspaceExistsError, init_workspace, planning_path


def init_project(
    name: Optional[str] = None,
    description: str = "",
    force: bool = False,
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Initialize a planloop workspace in project_path (default cwd)."""
    if project_path is None:
        project_path = Path.cwd()
    project_path = Path(project_path).resolve()
    name = name or project_path.name

    result = {
        "command": "init",
        "project": str(project_path),
        "name": name,
    }

    try:
        root = init_workspace(project_path, force=force)
        roadmap = init_project_records(planning_path(root), name, description)
        result["phases"] = len(roadmap.phases)
        result["message"] = f"Initialized planloop workspace for {name}"
    except WorkspaceExistsError as e:
        result["error"] = str(e)
    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
