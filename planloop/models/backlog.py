"""
Legacy flat backlog model (schema v0).

Before the roadmap/phase/plan hierarchy, work was tracked as a flat list of
items, each either passing or not. Only the migration importer reads this
format; nothing writes it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class BacklogItem:
    """One item of the flat backlog."""
    id: str
    title: str
    description: str = ""
    passes: bool = False
    steps: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacklogItem":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or data.get("description") or "",
            description=data.get("description", ""),
            passes=bool(data.get("passes", data.get("status") == "complete")),
            steps=list(data.get("steps") or []),
            acceptance_criteria=list(data.get("acceptance_criteria") or []),
        )
