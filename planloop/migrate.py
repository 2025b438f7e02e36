"""
Migration from the legacy flat backlog.

Older workspaces tracked work in .planloop/backlog.json as a flat list of
items that either pass or not. This imports that list into the roadmap
hierarchy as a single "imported-backlog" phase with one plan per item.
Items that already pass are written as complete plans with a summary.

The import runs once: if the target phase already exists, nothing is done.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Tuple, Union

from planloop.models.backlog import BacklogItem
from planloop.models.roadmap import Phase
from planloop.models.task import Task, TaskType
from planloop.models.plan import Plan
from planloop.state import (
    atomic_write_json,
    load_roadmap,
    phases_dir,
    plan_file,
    save_plan,
    save_roadmap,
    summary_file,
)
from planloop.workspace import backlog_path, planning_path

IMPORTED_PHASE_NAME = "imported-backlog"


def read_backlog(path: Union[str, Path]) -> List[BacklogItem]:
    """Read backlog items from a list or an {"items": [...]} document."""
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("items") or data.get("features") or []
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of backlog items")

    items = []
    for i, entry in enumerate(data, 1):
        if not isinstance(entry, dict):
            continue
        item = BacklogItem.from_dict(entry)
        if not item.id:
            item.id = str(i)
        items.append(item)
    return items


def check_migration_needed(root: Union[str, Path]) -> Tuple[bool, str]:
    """Check whether a workspace has a backlog that has not been imported.

    Returns:
        Tuple of (needs_migration, reason)
    """
    source = backlog_path(root)
    if not source.exists():
        return False, f"No backlog found at {source}"

    roadmap = load_roadmap(planning_path(root))
    if any(p.name == IMPORTED_PHASE_NAME for p in roadmap.phases):
        return False, "Already migrated (imported-backlog phase exists)"

    return True, "Backlog found, ready to migrate"


def item_to_plan(item: BacklogItem, phase_dir_name: str, plan_number: str) -> Plan:
    """Build a one-task plan from a backlog item."""
    action = item.description or item.title
    if item.steps:
        action += "\n\nSteps:\n" + "\n".join(f"- {s}" for s in item.steps)

    task = Task(
        name=item.title,
        id="1",
        task_type=TaskType.AUTO,
        action=action,
        verify="\n".join(item.acceptance_criteria),
        done="; ".join(item.acceptance_criteria),
    )
    return Plan(
        phase=phase_dir_name,
        plan_number=plan_number,
        objective=f"{item.title}\n\n{item.description}".strip(),
        tasks=[task],
        verification=list(item.acceptance_criteria),
    )


def migrate_backlog(root: Union[str, Path]) -> dict:
    """Import the flat backlog as a new phase at the end of the roadmap.

    Args:
        root: Workspace root

    Returns:
        Result dict with migrated, phase, plans_created, plans_complete
        and message keys
    """
    root = Path(root)
    planning_dir = planning_path(root)
    result = {
        "migrated": False,
        "phase": None,
        "plans_created": 0,
        "plans_complete": 0,
    }

    needed, reason = check_migration_needed(root)
    if not needed:
        result["message"] = reason
        return result

    items = read_backlog(backlog_path(root))
    if not items:
        result["message"] = "Backlog is empty, nothing to migrate"
        return result

    roadmap = load_roadmap(planning_dir)
    phase = roadmap.add_phase(Phase(
        number=0,
        name=IMPORTED_PHASE_NAME,
        goal="Work items imported from the legacy backlog",
    ))
    phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
    phase_dir.mkdir(parents=True, exist_ok=True)

    for i, item in enumerate(items, 1):
        plan_number = f"{i:02d}"
        plan = item_to_plan(item, phase_dir.name, plan_number)
        path = plan_file(phase_dir, phase.number, plan_number)
        if item.passes:
            plan.mark_complete()
            atomic_write_json(summary_file(path), {
                "plan": plan.plan_id,
                "summary": f"Imported as passing from backlog item {item.id}",
                "completed_at": datetime.now().isoformat(),
            })
            result["plans_complete"] += 1
        save_plan(path, plan)
        phase.plans.append(plan_number)
        result["plans_created"] += 1

    if phase.plans and result["plans_complete"] == len(phase.plans):
        phase.mark_complete()
    elif result["plans_complete"]:
        phase.mark_started()

    save_roadmap(planning_dir, roadmap)

    result["migrated"] = True
    result["phase"] = phase.number
    result["message"] = (
        f"Imported {result['plans_created']} backlog items into phase {phase.number} "
        f"({result['plans_complete']} already complete)"
    )
    return result
