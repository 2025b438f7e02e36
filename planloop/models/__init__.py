"""
planloop models - Data structures for the roadmap workflow.

This module provides dataclasses and enums for:
- Roadmap and phases
- Plans and tasks
- Verification issues and results
- Observations recorded during execution
- The legacy flat backlog
"""

from planloop.models.roadmap import (
    Roadmap,
    Phase,
    slugify,
    format_phase_number,
    is_decimal_phase,
)
from planloop.models.plan import Plan, PlanType, plan_sort_key
from planloop.models.task import Task, TaskType, TaskStatus
from planloop.models.issue import (
    VerificationIssue,
    VerificationResult,
    IssueSeverity,
    IssueDimension,
)
from planloop.models.observation import Observation
from planloop.models.backlog import BacklogItem

__all__ = [
    # Roadmap
    "Roadmap", "Phase", "slugify", "format_phase_number", "is_decimal_phase",
    # Plan
    "Plan", "PlanType", "plan_sort_key",
    # Task
    "Task", "TaskType", "TaskStatus",
    # Issue
    "VerificationIssue", "VerificationResult", "IssueSeverity", "IssueDimension",
    # Observation
    "Observation",
    # Backlog
    "BacklogItem",
]
