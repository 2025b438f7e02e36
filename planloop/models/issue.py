"""
Issue model for plan verification findings.

Issues are problems found while checking a plan before it is executed:
- Task completeness problems
- Scope violations
- Missing verification commands
- (agent-delegated checks) coverage, dependencies, key links

Issues are a report, not state. They are produced fresh on every
verification run and never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class IssueSeverity(Enum):
    """Severity of a plan issue."""
    BLOCKER = "blocker"  # Plan must not be executed until fixed
    WARNING = "warning"  # Should be fixed, but can proceed
    INFO = "info"        # Informational, optional fix


class IssueDimension(Enum):
    """Dimension of plan checking where issue was found."""
    TASK_COMPLETENESS = "task_completeness"
    SCOPE_SANITY = "scope_sanity"
    VERIFICATION_PRESENCE = "verification_presence"
    REQUIREMENT_COVERAGE = "requirement_coverage"
    DEPENDENCY_CORRECTNESS = "dependency_correctness"
    KEY_LINKS_PLANNED = "key_links_planned"
    VERIFICATION_DERIVATION = "verification_derivation"


@dataclass
class VerificationIssue:
    """An issue found during plan verification."""
    dimension: IssueDimension
    severity: IssueSeverity
    description: str
    plan: str = ""  # Plan id, e.g. "01-02"
    task: str = ""  # Task name when the issue is task-specific
    fix_hint: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension.value,
            "severity": self.severity.value,
            "plan": self.plan,
            "task": self.task,
            "description": self.description,
            "fix_hint": self.fix_hint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationIssue":
        try:
            dimension = IssueDimension(data.get("dimension", "task_completeness"))
        except ValueError:
            dimension = IssueDimension.TASK_COMPLETENESS

        try:
            severity = IssueSeverity(data.get("severity", "warning"))
        except ValueError:
            severity = IssueSeverity.WARNING

        return cls(
            dimension=dimension,
            severity=severity,
            description=data.get("description", ""),
            plan=str(data.get("plan", "")),
            task=data.get("task", ""),
            fix_hint=data.get("fix_hint", ""),
        )

    def is_blocker(self) -> bool:
        """Check if this issue blocks execution."""
        return self.severity == IssueSeverity.BLOCKER

    def format_display(self) -> str:
        """Format issue for display."""
        label = f"[{self.severity.value.upper()}]"
        where = self.plan
        if self.task:
            where = f"{where} / {self.task}" if where else self.task

        lines = [f"{label} {where}: {self.description}" if where else f"{label} {self.description}",
                 f"   Dimension: {self.dimension.value}"]
        if self.fix_hint:
            lines.append(f"   Fix: {self.fix_hint}")
        return "\n".join(lines)


@dataclass
class VerificationResult:
    """Result of verifying one or more plans."""
    checked: int = 0
    issues: List[VerificationIssue] = field(default_factory=list)

    @property
    def blockers(self) -> int:
        return sum(1 for i in self.issues if i.severity == IssueSeverity.BLOCKER)

    @property
    def warnings(self) -> int:
        return sum(1 for i in self.issues if i.severity == IssueSeverity.WARNING)

    @property
    def status(self) -> str:
        """'issues_found' when any blocker exists, otherwise 'passed'."""
        return "issues_found" if self.blockers > 0 else "passed"

    def issues_for_plan(self, plan_id: str) -> List[VerificationIssue]:
        """Issues that reference a given plan."""
        return [i for i in self.issues if i.plan == plan_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "checked": self.checked,
            "blockers": self.blockers,
            "warnings": self.warnings,
            "issues": [i.to_dict() for i in self.issues],
        }
