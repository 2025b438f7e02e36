"""
planloop insert-phase - Insert a phase after an existing one.

Later integer phases shift up by one and their directories are renamed.
Decimal sub-phases (5.1) keep their numbers.
"""

from pathlib import Path
from typing import Optional

from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.state import insert_phase as insert_roadmap_phase


def insert_phase(
    after: int,
    name: str,
    goal: str = "",
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Insert a phase immediately after phase `after`."""
    result = {
        "command": "insert-phase",
        "after": after,
        "name": name,
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)

        phase = insert_roadmap_phase(planning_dir, after, name, goal)
        result["phase"] = phase.to_dict()
        result["phase_number"] = phase.number
        result["message"] = f"Phase {phase.number}: {name} inserted after phase {after}"
    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
