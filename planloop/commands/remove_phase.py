"""
planloop remove-phase - Remove a phase and its plans.

Later integer phases shift down by one. Confirmation is the CLI's job;
this command removes unconditionally.
"""

from pathlib import Path
from typing import Optional

from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.models.roadmap import PhaseNumber
from planloop.state import remove_phase as remove_roadmap_phase


def remove_phase(
    phase_number: PhaseNumber,
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Remove a phase from the roadmap and delete its directory."""
    result = {
        "command": "remove-phase",
        "phase": phase_number,
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)

        removed = remove_roadmap_phase(planning_dir, phase_number)
        result["removed"] = removed.to_dict()
        result["message"] = f"Phase {phase_number}: {removed.name} removed from roadmap"
    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
