"""
State store for the roadmap -> phase -> plan hierarchy.

Owns everything under .planning/:
- project.json: project record
- roadmap.json: ordered phases (source of truth for which phases exist)
- state.json: current position and last activity
- phases/<NN-slug>/<NN>-<plan>.json: plan records (source of truth for which
  plans exist in a phase)
- phases/<NN-slug>/<NN>-<plan>-summary.json: completion artifact

Every command re-reads from disk; nothing is cached between invocations.
All writes go to a temp file first and are renamed into place.
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from planloop.models.plan import Plan, plan_sort_key
from planloop.models.roadmap import (
    Phase,
    PhaseNumber,
    Roadmap,
    format_phase_number,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SUMMARY_SUFFIX = "-summary.json"


# ============================================================================
# Errors
# ============================================================================

class StateError(Exception):
    """Base error for state store operations."""


class MissingPrerequisiteError(StateError):
    """A required record (project, roadmap) does not exist yet."""

    def __init__(self, message: str, next_command: str):
        super().__init__(message)
        self.next_command = next_command


class MalformedRecordError(StateError):
    """A record exists but cannot be parsed."""

    def __init__(self, path: PathLike, reason: str):
        super().__init__(f"Cannot parse {path}: {reason}")
        self.path = str(path)
        self.reason = reason


# ============================================================================
# Low-level IO
# ============================================================================

def atomic_write_json(path: PathLike, data: Any) -> None:
    """Write JSON (indent 2) via write-to-temp-then-rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def read_json(path: PathLike) -> Dict[str, Any]:
    """Read a JSON object from disk.

    Raises:
        FileNotFoundError: if the file does not exist
        MalformedRecordError: if the content is not a JSON object
    """
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedRecordError(path, str(e)) from e
    if not isinstance(data, dict):
        raise MalformedRecordError(path, "expected a JSON object")
    return data


# ============================================================================
# Project
# ============================================================================

def project_file(planning_dir: PathLike) -> Path:
    return Path(planning_dir) / "project.json"


def roadmap_file(planning_dir: PathLike) -> Path:
    return Path(planning_dir) / "roadmap.json"


def state_file(planning_dir: PathLike) -> Path:
    return Path(planning_dir) / "state.json"


def phases_dir(planning_dir: PathLike) -> Path:
    return Path(planning_dir) / "phases"


def load_project(planning_dir: PathLike) -> Dict[str, Any]:
    """Load project.json.

    Raises:
        MissingPrerequisiteError: if no project has been initialized
    """
    path = project_file(planning_dir)
    if not path.exists():
        raise MissingPrerequisiteError("No project found", next_command="planloop init")
    return read_json(path)


def init_project(planning_dir: PathLike, name: str, description: str = "") -> Roadmap:
    """Create project.json, an empty roadmap and state.json.

    An existing roadmap is kept so re-initializing never loses phases.
    """
    planning_dir = Path(planning_dir)
    now = datetime.now().isoformat()
    atomic_write_json(project_file(planning_dir), {
        "name": name,
        "description": description,
        "created_at": now,
    })
    phases_dir(planning_dir).mkdir(parents=True, exist_ok=True)

    if roadmap_file(planning_dir).exists():
        roadmap = load_roadmap(planning_dir)
    else:
        roadmap = Roadmap(project_name=name)
        save_roadmap(planning_dir, roadmap)

    if not state_file(planning_dir).exists():
        update_state(planning_dir, activity="Project initialized")
    return roadmap


# ============================================================================
# Roadmap
# ============================================================================

def load_roadmap(planning_dir: PathLike) -> Roadmap:
    """Load roadmap.json.

    Raises:
        MissingPrerequisiteError: if the roadmap does not exist
        MalformedRecordError: if it cannot be parsed
    """
    path = roadmap_file(planning_dir)
    if not path.exists():
        raise MissingPrerequisiteError("No roadmap found", next_command="planloop init")
    return Roadmap.from_dict(read_json(path))


def save_roadmap(planning_dir: PathLike, roadmap: Roadmap) -> Path:
    """Write roadmap.json atomically, preserving phase order as given."""
    path = roadmap_file(planning_dir)
    atomic_write_json(path, roadmap.to_dict())
    return path


# ============================================================================
# Phase directories and plan files
# ============================================================================

def _dir_number(name: str) -> Optional[float]:
    prefix = name.split("-", 1)[0]
    try:
        return float(prefix)
    except ValueError:
        return None


def find_phase_dir(planning_dir: PathLike, phase: Phase) -> Optional[Path]:
    """Resolve a phase's directory by numeric prefix match.

    Prefers the canonical '<NN>-<slug>' name when several directories share
    the prefix.
    """
    root = phases_dir(planning_dir)
    if not root.is_dir():
        return None

    canonical = root / phase.get_phase_dir_name()
    if canonical.is_dir():
        return canonical

    for entry in sorted(root.iterdir()):
        if entry.is_dir() and _dir_number(entry.name) == float(phase.number):
            return entry
    return None


def plan_file(phase_dir: PathLike, phase_number: PhaseNumber, plan_number: str) -> Path:
    return Path(phase_dir) / f"{format_phase_number(phase_number)}-{plan_number}.json"


def summary_file(plan_path: PathLike) -> Path:
    """Completion artifact path for a plan record."""
    plan_path = Path(plan_path)
    return plan_path.with_name(plan_path.stem + SUMMARY_SUFFIX)


def is_plan_file(path: Path) -> bool:
    return (
        path.is_file()
        and path.suffix == ".json"
        and not path.name.endswith(SUMMARY_SUFFIX)
    )


def load_plan(path: PathLike) -> Plan:
    """Load one plan record. Fatal if it cannot be parsed."""
    path = Path(path)
    plan = Plan.from_dict(read_json(path))
    plan.path = str(path)
    if not plan.plan_number:
        plan.plan_number = path.stem.split("-", 1)[-1]
    plan.completed = plan.status == "complete" or summary_file(path).exists()
    return plan


def save_plan(path: PathLike, plan: Plan) -> Path:
    """Write a plan record atomically."""
    path = Path(path)
    atomic_write_json(path, plan.to_dict())
    plan.path = str(path)
    return path


def load_phase_plans(phase_dir: PathLike) -> List[Plan]:
    """Load every plan record in a phase directory, sorted by plan number.

    Malformed records are skipped with a warning.
    """
    phase_dir = Path(phase_dir)
    if not phase_dir.is_dir():
        return []

    plans = []
    for path in sorted(phase_dir.iterdir()):
        if not is_plan_file(path):
            continue
        try:
            plans.append(load_plan(path))
        except MalformedRecordError as e:
            logger.warning(f"Skipping plan: {e}")
    plans.sort(key=lambda p: plan_sort_key(p.plan_number))
    return plans


@dataclass
class LoadedPhase:
    """A roadmap phase together with its on-disk directory and plans."""
    phase: Phase
    path: Optional[Path] = None
    plans: List[Plan] = field(default_factory=list)

    @property
    def number(self) -> PhaseNumber:
        return self.phase.number

    @property
    def name(self) -> str:
        return self.phase.name

    @property
    def is_complete(self) -> bool:
        return bool(self.plans) and all(p.completed for p in self.plans)


def load_phases(planning_dir: PathLike) -> List[LoadedPhase]:
    """Load every roadmap phase with its plans, in roadmap order."""
    roadmap = load_roadmap(planning_dir)
    loaded = []
    for phase in roadmap.phases:
        path = find_phase_dir(planning_dir, phase)
        plans = load_phase_plans(path) if path else []
        loaded.append(LoadedPhase(phase=phase, path=path, plans=plans))
    return loaded


def find_next_plan(phases: List[LoadedPhase]) -> Tuple[Optional[LoadedPhase], Optional[Plan]]:
    """First plan whose completion flag is false, in phase then plan order."""
    for loaded in phases:
        for plan in loaded.plans:
            if not plan.completed:
                return loaded, plan
    return None, None


def count_plans(phases: List[LoadedPhase]) -> Tuple[int, int]:
    """Return (total, completed) plan counts."""
    total = sum(len(p.plans) for p in phases)
    completed = sum(1 for p in phases for plan in p.plans if plan.completed)
    return total, completed


# ============================================================================
# Roadmap mutations
# ============================================================================

def _snapshot_dirs(planning_dir: PathLike, roadmap: Roadmap) -> Dict[int, Tuple[Phase, Optional[Path], PhaseNumber]]:
    return {
        id(phase): (phase, find_phase_dir(planning_dir, phase), phase.number)
        for phase in roadmap.phases
    }


def _rename_phase_files(phase_dir: Path, old_number: PhaseNumber, new_number: PhaseNumber) -> None:
    old_prefix = f"{format_phase_number(old_number)}-"
    new_prefix = f"{format_phase_number(new_number)}-"
    for path in sorted(phase_dir.iterdir()):
        if not path.name.startswith(old_prefix):
            continue
        target = phase_dir / (new_prefix + path.name[len(old_prefix):])
        os.replace(path, target)
        if is_plan_file(target):
            try:
                data = read_json(target)
            except MalformedRecordError:
                continue
            data["phase"] = phase_dir.name
            atomic_write_json(target, data)


def _apply_renumbering(planning_dir: PathLike, snapshot: Dict[int, Tuple[Phase, Optional[Path], PhaseNumber]]) -> None:
    """Move phase directories whose number changed to their new names.

    Two passes through temporary names so shifted directories never collide.
    """
    moves = []
    for phase, old_dir, old_number in snapshot.values():
        if old_dir is None or float(old_number) == float(phase.number):
            continue
        tmp_dir = old_dir.with_name(old_dir.name + ".renumber")
        os.replace(old_dir, tmp_dir)
        moves.append((phase, tmp_dir, old_number))

    for phase, tmp_dir, old_number in moves:
        new_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        os.replace(tmp_dir, new_dir)
        _rename_phase_files(new_dir, old_number, phase.number)
        logger.debug(f"Renumbered phase {old_number} -> {phase.number}")


def add_phase(planning_dir: PathLike, name: str, goal: str = "") -> Phase:
    """Append a phase at the end of the roadmap and create its directory."""
    roadmap = load_roadmap(planning_dir)
    phase = roadmap.add_phase(Phase(number=0, name=name, goal=goal))
    (phases_dir(planning_dir) / phase.get_phase_dir_name()).mkdir(parents=True, exist_ok=True)
    save_roadmap(planning_dir, roadmap)
    return phase


def insert_phase(planning_dir: PathLike, after: int, name: str, goal: str = "") -> Phase:
    """Insert a phase immediately after phase `after`, shifting later phases up."""
    roadmap = load_roadmap(planning_dir)
    snapshot = _snapshot_dirs(planning_dir, roadmap)
    phase = Phase(number=0, name=name, goal=goal)
    roadmap.insert_phase(after, phase)
    _apply_renumbering(planning_dir, snapshot)
    (phases_dir(planning_dir) / phase.get_phase_dir_name()).mkdir(parents=True, exist_ok=True)
    save_roadmap(planning_dir, roadmap)
    return phase


def remove_phase(planning_dir: PathLike, number: PhaseNumber) -> Phase:
    """Remove a phase and its directory, shifting later integer phases down."""
    roadmap = load_roadmap(planning_dir)
    target = roadmap.get_phase(number)
    if target is None:
        raise ValueError(f"Phase {number} not found")

    target_dir = find_phase_dir(planning_dir, target)
    snapshot = _snapshot_dirs(planning_dir, roadmap)
    del snapshot[id(target)]

    roadmap.remove_phase(number)
    if target_dir is not None:
        shutil.rmtree(target_dir)
    _apply_renumbering(planning_dir, snapshot)
    save_roadmap(planning_dir, roadmap)
    return target


def sync_roadmap_with_disk(planning_dir: PathLike, number: PhaseNumber) -> Phase:
    """Reconcile a phase's plan list with the plan files in its directory.

    The directory listing decides which plans exist; the roadmap keeps its
    phase order.
    """
    roadmap = load_roadmap(planning_dir)
    phase = roadmap.get_phase(number)
    if phase is None:
        raise ValueError(f"Phase {number} not found")

    phase_dir = find_phase_dir(planning_dir, phase)
    plans = load_phase_plans(phase_dir) if phase_dir else []
    phase.plans = [p.plan_number for p in plans]

    if plans and all(p.completed for p in plans):
        if phase.status != "complete":
            phase.mark_complete()
    elif any(p.completed or p.status == "in_progress" for p in plans):
        phase.status = "in_progress"
        phase.completed_at = None
    elif phase.status == "complete":
        phase.status = "pending"
        phase.completed_at = None

    roadmap.touch()
    save_roadmap(planning_dir, roadmap)
    return phase


def ensure_phase_dir(planning_dir: PathLike, phase: Phase) -> Path:
    """Existing directory for a phase, or a newly created canonical one."""
    path = find_phase_dir(planning_dir, phase)
    if path is None:
        path = phases_dir(planning_dir) / phase.get_phase_dir_name()
        path.mkdir(parents=True, exist_ok=True)
    return path


def set_discovery_level(planning_dir: PathLike, number: PhaseNumber, level: int) -> Phase:
    """Record the research depth assigned to a phase."""
    roadmap = load_roadmap(planning_dir)
    phase = roadmap.get_phase(number)
    if phase is None:
        raise ValueError(f"Phase {number} not found")
    phase.discovery_level = int(level)
    roadmap.touch()
    save_roadmap(planning_dir, roadmap)
    return phase


def mark_phase_started(planning_dir: PathLike, number: PhaseNumber) -> Phase:
    """Move a pending phase to in_progress."""
    roadmap = load_roadmap(planning_dir)
    phase = roadmap.get_phase(number)
    if phase is None:
        raise ValueError(f"Phase {number} not found")
    if phase.status == "pending":
        phase.mark_started()
        roadmap.touch()
        save_roadmap(planning_dir, roadmap)
    return phase


def mark_plan_complete(planning_dir: PathLike, loaded: LoadedPhase, plan: Plan) -> bool:
    """Mark a plan complete, and its phase when every plan is done.

    Returns:
        True if the phase became complete
    """
    plan.mark_complete()
    save_plan(plan.path, plan)

    for other in loaded.plans:
        if other.path == plan.path:
            other.completed = True

    phase = sync_roadmap_with_disk(planning_dir, loaded.number)
    loaded.phase = phase
    return phase.status == "complete"


def update_state(
    planning_dir: PathLike,
    phase: Optional[PhaseNumber] = None,
    plan: Optional[str] = None,
    activity: str = "",
    status: str = "idle",
) -> Dict[str, Any]:
    """Record the current position in state.json."""
    data = {
        "current_phase": phase,
        "current_plan": plan,
        "status": status,
        "last_activity": activity,
        "updated_at": datetime.now().isoformat(),
    }
    atomic_write_json(state_file(planning_dir), data)
    return data


def load_state(planning_dir: PathLike) -> Dict[str, Any]:
    """Load state.json, or an idle position if it does not exist."""
    path = state_file(planning_dir)
    if not path.exists():
        return {"current_phase": None, "current_plan": None, "status": "idle", "last_activity": ""}
    return read_json(path)
