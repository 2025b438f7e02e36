"""
planloop add-phase - Append a new phase to the roadmap.
"""

from pathlib import Path
from typing import Optional

from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.state import add_phase as add_roadmap_phase


def add_phase(
    name: str,
    goal: str = "",
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Add a phase to the end of the roadmap."""
    result = {
        "command": "add-phase",
        "name": name,
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)

        phase = add_roadmap_phase(planning_dir, name, goal)
        result["phase"] = phase.to_dict()
        result["phase_number"] = phase.number
        result["message"] = f"Phase {phase.number}: {name} added to roadmap"
    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
