"""
Task model for plan execution.

Tasks are the atomic units of work within a plan.

Task types:
- auto: Executed fully autonomously by the agent
- manual: Requires human interaction

Every task record is loadable, even an incomplete one. Missing fields are
reported by the verifier, not rejected here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


def as_text(value: Any) -> str:
    """Coerce an agent-written field to text. Lists become one item per line."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "\n".join(as_text(v) for v in value)
    return value if isinstance(value, str) else str(value)


class TaskType(Enum):
    """Type of task execution."""
    AUTO = "auto"
    MANUAL = "manual"


class TaskStatus(Enum):
    """Status of task execution."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class Task:
    """A task within a plan.

    Standard task structure:
    - name: Task name
    - files: Files to be modified
    - action: What to do
    - verify: How to verify success
    - done: Criteria for completion
    """
    name: str
    id: str = ""
    task_type: TaskType = TaskType.AUTO

    files: List[str] = field(default_factory=list)
    action: str = ""
    verify: str = ""
    done: str = ""

    status: TaskStatus = TaskStatus.PENDING
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.task_type.value,
            "files": self.files,
            "action": self.action,
            "verify": self.verify,
            "done": self.done,
            "status": self.status.value,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        # Checkpoint-style or unknown types need a human, so treat as manual
        task_type_str = data.get("type", "auto")
        try:
            task_type = TaskType(task_type_str)
        except ValueError:
            task_type = TaskType.MANUAL

        status_str = data.get("status", "pending")
        try:
            status = TaskStatus(status_str)
        except ValueError:
            status = TaskStatus.PENDING

        files = data.get("files") or []
        if isinstance(files, str):
            files = [f.strip() for f in files.split(",") if f.strip()]
        elif not isinstance(files, list):
            files = [files]

        return cls(
            id=as_text(data.get("id")),
            name=as_text(data.get("name")),
            task_type=task_type,
            files=[as_text(f) for f in files],
            action=as_text(data.get("action")),
            verify=as_text(data.get("verify")),
            done=as_text(data.get("done")),
            status=status,
            completed_at=data.get("completed_at"),
        )

    @property
    def label(self) -> str:
        """Name used when reporting on this task."""
        return self.name or self.id or "unnamed task"

    def is_auto(self) -> bool:
        """Check if this task is fully automated."""
        return self.task_type == TaskType.AUTO

    def mark_complete(self) -> None:
        """Mark task as complete."""
        self.status = TaskStatus.COMPLETE
        self.completed_at = datetime.now().isoformat()
