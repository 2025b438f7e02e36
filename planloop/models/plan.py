"""
Plan model: an atomic execution unit sized for one agent context window.

A Plan defines:
- Objective (what the plan accomplishes)
- Tasks to execute
- Verification commands
- Observations the agent recorded while executing it

Plan records live at .planning/phases/<phase-dir>/<phase>-<plan>.json.
Completion is signalled by a sibling <phase>-<plan>-summary.json artifact.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from planloop.models.task import Task, TaskStatus, as_text

PLAN_STATUSES = ("pending", "in_progress", "complete", "failed")


class PlanType(Enum):
    """Type of plan execution."""
    EXECUTE = "execute"      # Run by the agent
    MANUAL = "manual"        # Requires a human
    DECISIONS = "decisions"  # Captures decisions before execution


def plan_sort_key(plan_number: str) -> float:
    """Numeric sort key for plan numbers like '01' or '02.1'."""
    try:
        return float(plan_number)
    except (TypeError, ValueError):
        return float("inf")


@dataclass
class Plan:
    """A plan within a phase."""
    phase: str  # Phase directory id, e.g. "01-foundation"
    plan_number: str  # "01", "02.1"
    objective: str = ""
    plan_type: PlanType = PlanType.EXECUTE

    tasks: List[Task] = field(default_factory=list)
    verification: List[str] = field(default_factory=list)

    # Free text the agent appends while executing (observations, progress)
    observations: str = ""

    status: str = "pending"
    created_at: Optional[str] = None
    completed_at: Optional[str] = None

    # Runtime only, never serialized
    path: str = ""
    completed: bool = False

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now().isoformat()
        self.plan_number = str(self.plan_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "plan_number": self.plan_number,
            "objective": self.objective,
            "type": self.plan_type.value,
            "tasks": [t.to_dict() for t in self.tasks],
            "verification": self.verification,
            "observations": self.observations,
            "status": self.status,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        plan_type_str = data.get("type", data.get("plan_type", "execute"))
        try:
            plan_type = PlanType(plan_type_str)
        except ValueError:
            plan_type = PlanType.EXECUTE

        status = data.get("status", "pending")
        if status not in PLAN_STATUSES:
            status = "pending"

        verification = data.get("verification") or []
        if not isinstance(verification, list):
            verification = [verification]

        tasks = data.get("tasks") or []
        if not isinstance(tasks, list):
            tasks = []

        return cls(
            phase=as_text(data.get("phase")),
            plan_number=as_text(data.get("plan_number")),
            objective=as_text(data.get("objective") or data.get("name")),
            plan_type=plan_type,
            tasks=[Task.from_dict(t) for t in tasks if isinstance(t, dict)],
            verification=[as_text(v) for v in verification],
            observations=as_text(data.get("observations")),
            status=status,
            created_at=data.get("created_at"),
            completed_at=data.get("completed_at"),
        )

    @property
    def name(self) -> str:
        """Short display name taken from the first line of the objective."""
        first = self.objective.strip().splitlines()[0] if self.objective.strip() else ""
        return first[:80] or f"Plan {self.plan_number}"

    @property
    def plan_id(self) -> str:
        """Identifier such as '01-02' (phase prefix + plan number)."""
        prefix = self.phase.split("-", 1)[0] if self.phase else ""
        return f"{prefix}-{self.plan_number}" if prefix else self.plan_number

    def is_manual(self) -> bool:
        """Check if the plan needs a human to execute it."""
        return self.plan_type == PlanType.MANUAL

    def total_files(self) -> int:
        """Count of file references across all tasks."""
        return sum(len(t.files) for t in self.tasks)

    def mark_started(self) -> None:
        """Mark plan as in progress."""
        if self.status == "pending":
            self.status = "in_progress"

    def mark_complete(self) -> None:
        """Mark plan and its tasks as complete."""
        self.status = "complete"
        self.completed = True
        self.completed_at = datetime.now().isoformat()
        for task in self.tasks:
            if task.status != TaskStatus.COMPLETE:
                task.mark_complete()

    def mark_failed(self) -> None:
        """Mark plan as failed."""
        self.status = "failed"
