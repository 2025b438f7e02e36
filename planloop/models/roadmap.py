"""
Roadmap model for phase planning and tracking.

roadmap.json is the source of truth for which phases exist and in what order.
The phase directories under .planning/phases/ are the source of truth for
which plans exist inside a phase.

Phase numbers are dense integers. Urgent work inserted between two phases
may use a decimal sub-phase number (e.g. 5.1); sub-phases are never
renumbered by insert/remove of integer phases.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

ROADMAP_VERSION = "1.0"

PhaseNumber = Union[int, float]

PHASE_STATUSES = ("pending", "in_progress", "complete")


def slugify(text: str) -> str:
    """Convert a phase name into a directory-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "phase"


def is_decimal_phase(number: PhaseNumber) -> bool:
    """Check if a phase number carries a decimal suffix (e.g. 5.1)."""
    return not float(number).is_integer()


def normalize_phase_number(number: PhaseNumber) -> PhaseNumber:
    """Return an int for whole numbers so 3.0 is stored as 3."""
    if float(number).is_integer():
        return int(number)
    return float(number)


def format_phase_number(number: PhaseNumber) -> str:
    """Format a phase number for file names ('03', '05.1')."""
    number = normalize_phase_number(number)
    if isinstance(number, int):
        return f"{number:02d}"
    whole, frac = str(number).split(".", 1)
    return f"{int(whole):02d}.{frac}"


@dataclass
class Phase:
    """A phase in the roadmap."""
    number: PhaseNumber
    name: str
    goal: str = ""

    # Status
    status: str = "pending"  # pending, in_progress, complete
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    # Ordered plan identifiers ("01", "02", "02.1")
    plans: List[str] = field(default_factory=list)

    # Research depth assigned before planning (0-3)
    discovery_level: Optional[int] = None

    def __post_init__(self):
        self.number = normalize_phase_number(self.number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "goal": self.goal,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "plans": self.plans,
            "discovery_level": self.discovery_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Phase":
        status = data.get("status", "pending")
        if status not in PHASE_STATUSES:
            status = "pending"
        return cls(
            number=data.get("number", 0),
            name=data.get("name", ""),
            goal=data.get("goal", data.get("description", "")),
            status=status,
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            plans=list(data.get("plans", [])),
            discovery_level=data.get("discovery_level"),
        )

    @property
    def is_decimal(self) -> bool:
        return is_decimal_phase(self.number)

    def get_phase_dir_name(self) -> str:
        """Get directory name for this phase (e.g., '02-authentication')."""
        return f"{format_phase_number(self.number)}-{slugify(self.name)}"

    def mark_started(self) -> None:
        """Mark phase as started."""
        if self.status == "pending":
            self.status = "in_progress"
            self.started_at = datetime.now().isoformat()

    def mark_complete(self) -> None:
        """Mark phase as complete."""
        self.status = "complete"
        self.completed_at = datetime.now().isoformat()


@dataclass
class Roadmap:
    """Complete project roadmap: an ordered list of phases."""
    project_name: str
    phases: List[Phase] = field(default_factory=list)
    version: str = ROADMAP_VERSION

    # Metadata
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now().isoformat()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "project_name": self.project_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "phases": [p.to_dict() for p in self.phases],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Roadmap":
        return cls(
            project_name=data.get("project_name", ""),
            phases=[Phase.from_dict(p) for p in data.get("phases", [])],
            version=data.get("version", ROADMAP_VERSION),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = datetime.now().isoformat()

    def get_phase(self, number: PhaseNumber) -> Optional[Phase]:
        """Get a phase by number."""
        for phase in self.phases:
            if float(phase.number) == float(number):
                return phase
        return None

    def next_number(self) -> int:
        """Number for a phase appended at the end."""
        whole = [int(p.number) for p in self.phases]
        return max(whole) + 1 if whole else 1

    def add_phase(self, phase: Phase) -> Phase:
        """Append a phase with the next free integer number."""
        phase.number = self.next_number()
        self.phases.append(phase)
        self.touch()
        return phase

    def insert_phase(self, after_number: int, phase: Phase) -> Dict[PhaseNumber, PhaseNumber]:
        """Insert a phase immediately after an integer anchor phase.

        Every integer phase numbered above the anchor moves up by one.
        Decimal sub-phases keep their numbers.

        Returns:
            Mapping of old number -> new number for renumbered phases
        """
        if self.get_phase(after_number) is None and after_number != 0:
            raise ValueError(f"Phase {after_number} not found")

        renumbered: Dict[PhaseNumber, PhaseNumber] = {}
        for p in self.phases:
            if not p.is_decimal and p.number > after_number:
                renumbered[p.number] = p.number + 1
                p.number += 1

        phase.number = after_number + 1
        self.phases.append(phase)
        self.phases.sort(key=lambda p: float(p.number))
        self.touch()
        return renumbered

    def remove_phase(self, number: PhaseNumber) -> Dict[PhaseNumber, PhaseNumber]:
        """Remove a phase by number.

        Every integer phase numbered above the removed one moves down by one.
        Decimal sub-phases keep their numbers.

        Returns:
            Mapping of old number -> new number for renumbered phases
        """
        phase = self.get_phase(number)
        if phase is None:
            raise ValueError(f"Phase {number} not found")

        self.phases.remove(phase)

        renumbered: Dict[PhaseNumber, PhaseNumber] = {}
        if not phase.is_decimal:
            for p in self.phases:
                if not p.is_decimal and p.number > number:
                    renumbered[p.number] = p.number - 1
                    p.number -= 1

        self.touch()
        return renumbered

    def get_pending_phases(self) -> List[Phase]:
        """Get all phases that are not complete."""
        return [p for p in self.phases if p.status != "complete"]
