"""
Observation model: a discovery the agent reports while executing a plan.

Observations are recorded in a plan's record (or its summary artifact) as
XML-ish blocks:

    <observation type="bug" severity="high">
      <title>Login endpoint returns 500</title>
      <detail>Session store is not configured in test env</detail>
      <file>app/auth.py</file>
      <action>needs-fix</action>
    </observation>

They are never persisted as their own entity; re-parsing the record always
yields the same list.
"""

from dataclasses import dataclass
from typing import Any, Dict

OBSERVATION_TYPES = (
    "bug",
    "stub",
    "api-issue",
    "insight",
    "blocker",
    "technical-debt",
    "assumption",
    "scope-creep",
    "dependency",
    "questionable",
    "already-complete",
    "checkpoint-automated",
    "tooling-friction",
    "test-failed",
    "test-infrastructure",
    "manual-checkpoint-deferred",
)

SEVERITIES = ("critical", "high", "medium", "low", "info")

ACTIONS = (
    "needs-fix",
    "needs-implementation",
    "needs-plan",
    "needs-investigation",
    "needs-documentation",
    "needs-human-verify",
    "none",
)

# Types that describe something already handled; they never trigger edits
INFORMATIONAL_TYPES = frozenset({"insight", "already-complete", "checkpoint-automated"})

# Types that imply work even when the agent left out <action>
IMPLICITLY_ACTIONABLE_TYPES = frozenset({"bug", "blocker", "test-failed", "stub"})


@dataclass
class Observation:
    """A single structured observation."""
    type: str
    title: str
    detail: str = ""
    severity: str = ""
    file: str = ""
    action: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "detail": self.detail,
            "file": self.file,
            "action": self.action,
        }

    def is_actionable(self) -> bool:
        """Check if this observation should trigger downstream plan edits."""
        if self.type in INFORMATIONAL_TYPES:
            return False
        if self.severity == "info":
            return False
        if self.action:
            return self.action != "none"
        return self.type in IMPLICITLY_ACTIONABLE_TYPES
