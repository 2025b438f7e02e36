"""
planloop status - Show roadmap progress and what runs next.

Displays:
- Each phase with its plan completion counts
- Overall completion
- The next plan the loop would execute
- Last recorded activity
"""

from pathlib import Path
from typing import Optional

from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.state import (
    count_plans,
    find_next_plan,
    load_phases,
    load_project,
    load_state,
)


def progress(
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Get current progress for the workspace."""
    result = {
        "command": "status",
        "phases": [],
        "next_plan": None,
        "next_steps": [],
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)
        result["name"] = load_project(planning_dir).get("name", root.name)

        phases = load_phases(planning_dir)
        for loaded in phases:
            done = sum(1 for p in loaded.plans if p.completed)
            result["phases"].append({
                "number": loaded.number,
                "name": loaded.name,
                "status": loaded.phase.status,
                "plans_total": len(loaded.plans),
                "plans_complete": done,
                "discovery_level": loaded.phase.discovery_level,
            })

        total, completed = count_plans(phases)
        result["plans_total"] = total
        result["plans_complete"] = completed
        result["percent"] = round(100 * completed / total) if total else 0

        loaded, plan = find_next_plan(phases)
        if plan is not None:
            result["next_plan"] = {
                "phase": loaded.number,
                "plan": plan.plan_id,
                "name": plan.name,
                "path": plan.path,
                "manual": plan.is_manual(),
            }

        result["state"] = load_state(planning_dir)

        # Next steps
        if not phases:
            result["next_steps"].append("planloop add-phase NAME")
        elif plan is not None:
            if plan.is_manual():
                result["next_steps"].append(f"Complete manual plan {plan.plan_id}, then planloop run")
            else:
                result["next_steps"].append("planloop run")
        else:
            unplanned = [p for p in phases if not p.plans]
            if unplanned:
                result["next_steps"].append(f"planloop plan {unplanned[0].number}")
            else:
                result["next_steps"].append("All plans complete; add phases with planloop add-phase")

    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result


def format_progress(result: dict) -> str:
    """Render a progress result for the terminal."""
    lines = [
        f"Project: {result.get('name', '')}",
        f"Progress: {result.get('plans_complete', 0)}/{result.get('plans_total', 0)} plans "
        f"({result.get('percent', 0)}%)",
        "",
    ]

    markers = {"complete": "✓", "in_progress": "▶", "pending": "○"}
    for phase in result["phases"]:
        marker = markers.get(phase["status"], "○")
        lines.append(
            f"  {marker} Phase {phase['number']}: {phase['name']} "
            f"[{phase['plans_complete']}/{phase['plans_total']}]"
        )

    if not result["phases"]:
        lines.append("  (no phases)")

    next_plan = result.get("next_plan")
    if next_plan:
        lines.append("")
        lines.append(f"Next plan: {next_plan['plan']} - {next_plan['name']}")

    state = result.get("state") or {}
    if state.get("last_activity"):
        lines.append(f"Last activity: {state['last_activity']}")

    return "\n".join(lines)
