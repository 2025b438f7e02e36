"""
Plan verification before execution.

Static checks run on every plan along three dimensions:
1. Task Completeness - auto tasks have files, action, verify, done
2. Scope Sanity - task and file counts fit one agent context
3. Verification Presence - the plan lists at least one verification command

A blocker on any plan means the plan must not be scheduled. Warnings never
block.

An agent-delegated path checks six dimensions by asking the agent for a
JSON verdict. If the agent fails or its answer cannot be parsed, the static
result is returned instead, so verification always produces an answer.
"""

import json
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional

from planloop.backends.base import Backend, BackendError, ExecuteOptions
from planloop.models.issue import (
    IssueDimension,
    IssueSeverity,
    VerificationIssue,
    VerificationResult,
)
from planloop.models.plan import Plan, plan_sort_key
from planloop.state import (
    LoadedPhase,
    MalformedRecordError,
    is_plan_file,
    load_plan,
)
from planloop.stream import ConsoleHandler, StreamError, parse_stream

logger = logging.getLogger(__name__)

# Scope thresholds keep a plan within roughly half of an agent's context
MAX_TASKS = 5
WARN_TASKS = 3
MAX_FILES = 15
WARN_FILES = 10
MIN_ACTION_LENGTH = 20

# Read-only tools for the verification agent
VERIFY_ALLOWED_TOOLS = ["Read", "Glob", "Grep"]

JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


# ============================================================================
# Static checks
# ============================================================================

def check_task_completeness(plan: Plan) -> List[VerificationIssue]:
    """Auto tasks need action and verify (blockers), files and done (warnings)."""
    issues = []
    for task in plan.tasks:
        if not task.is_auto():
            continue

        def issue(severity: IssueSeverity, description: str, fix_hint: str) -> None:
            issues.append(VerificationIssue(
                dimension=IssueDimension.TASK_COMPLETENESS,
                severity=severity,
                description=description,
                plan=plan.plan_id,
                task=task.label,
                fix_hint=fix_hint,
            ))

        action = task.action.strip()
        if not action:
            issue(IssueSeverity.BLOCKER, "Task has no action",
                  "Describe what to implement in 'action'")
        elif len(action) < MIN_ACTION_LENGTH:
            issue(IssueSeverity.WARNING, f"Task action is very short ({len(action)} chars)",
                  "Give the agent concrete implementation instructions")

        if not task.verify.strip():
            issue(IssueSeverity.BLOCKER, "Task has no verify step",
                  "Add a command or check to 'verify'")

        if not task.files:
            issue(IssueSeverity.WARNING, "Task lists no files",
                  "List the files the task creates or modifies")

        if not task.done.strip():
            issue(IssueSeverity.WARNING, "Task has no done criteria",
                  "State the acceptance criterion in 'done'")
    return issues


def check_scope_sanity(plan: Plan) -> List[VerificationIssue]:
    """Too many tasks or files for one agent context."""
    issues = []
    task_count = len(plan.tasks)
    file_count = plan.total_files()

    if task_count > MAX_TASKS:
        issues.append(VerificationIssue(
            dimension=IssueDimension.SCOPE_SANITY,
            severity=IssueSeverity.BLOCKER,
            description=f"Plan has {task_count} tasks (max {MAX_TASKS})",
            plan=plan.plan_id,
            fix_hint="Split this plan into smaller plans",
        ))
    elif task_count > WARN_TASKS:
        issues.append(VerificationIssue(
            dimension=IssueDimension.SCOPE_SANITY,
            severity=IssueSeverity.WARNING,
            description=f"Plan has {task_count} tasks (recommended {WARN_TASKS} or fewer)",
            plan=plan.plan_id,
            fix_hint="Consider splitting this plan",
        ))

    if file_count > MAX_FILES:
        issues.append(VerificationIssue(
            dimension=IssueDimension.SCOPE_SANITY,
            severity=IssueSeverity.BLOCKER,
            description=f"Plan touches {file_count} files (max {MAX_FILES})",
            plan=plan.plan_id,
            fix_hint="Split this plan into smaller plans",
        ))
    elif file_count > WARN_FILES:
        issues.append(VerificationIssue(
            dimension=IssueDimension.SCOPE_SANITY,
            severity=IssueSeverity.WARNING,
            description=f"Plan touches {file_count} files (recommended {WARN_FILES} or fewer)",
            plan=plan.plan_id,
            fix_hint="Consider splitting this plan",
        ))
    return issues


def check_verification_presence(plan: Plan) -> List[VerificationIssue]:
    """No verification commands is a warning; docs-only plans may have none."""
    if any(cmd.strip() for cmd in plan.verification):
        return []
    return [VerificationIssue(
        dimension=IssueDimension.VERIFICATION_PRESENCE,
        severity=IssueSeverity.WARNING,
        description="Plan has no verification commands",
        plan=plan.plan_id,
        fix_hint="Add commands to 'verification' that prove the objective",
    )]


CHECKERS: List[Callable[[Plan], List[VerificationIssue]]] = [
    check_task_completeness,
    check_scope_sanity,
    check_verification_presence,
]


def verify_plans(plans: List[Plan]) -> VerificationResult:
    """Run every static checker on every plan."""
    result = VerificationResult(checked=len(plans))
    for plan in plans:
        for checker in CHECKERS:
            result.issues.extend(checker(plan))
    return result


def load_plans_for_verification(phase_dir: Optional[Path]) -> List[Plan]:
    """Load a phase's plans, silently skipping records that cannot be parsed."""
    if phase_dir is None or not phase_dir.is_dir():
        return []
    plans = []
    for path in sorted(phase_dir.iterdir()):
        if not is_plan_file(path):
            continue
        try:
            plans.append(load_plan(path))
        except MalformedRecordError as e:
            logger.debug(f"Verification skipping {path.name}: {e.reason}")
    plans.sort(key=lambda p: plan_sort_key(p.plan_number))
    return plans


def verify_phase(loaded: LoadedPhase) -> VerificationResult:
    """Statically verify every plan in a phase directory."""
    return verify_plans(load_plans_for_verification(loaded.path))


def blocking_issues(result: VerificationResult, plan: Plan) -> List[VerificationIssue]:
    """Blocker issues that prevent a plan from being scheduled."""
    return [i for i in result.issues_for_plan(plan.plan_id) if i.is_blocker()]


# ============================================================================
# Agent-delegated verification
# ============================================================================

def _candidate_objects(text: str):
    for match in JSON_FENCE_PATTERN.finditer(text):
        yield match.group(1)

    decoder = json.JSONDecoder()
    for start in (m.start() for m in re.finditer(r"\{", text)):
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        yield obj


def parse_agent_verdict(text: str, checked: int = 0) -> Optional[VerificationResult]:
    """Extract a verdict {"status", "issues": [...]} from agent output.

    Returns None when no object of the expected shape is present.
    """
    for candidate in _candidate_objects(text):
        if isinstance(candidate, str):
            try:
                candidate = json.loads(candidate)
            except json.JSONDecodeError:
                continue
        if not isinstance(candidate, dict):
            continue
        issues = candidate.get("issues")
        if not isinstance(issues, list) or not all(isinstance(i, dict) for i in issues):
            continue
        return VerificationResult(
            checked=checked,
            issues=[VerificationIssue.from_dict(i) for i in issues],
        )
    return None


def verify_with_agent(
    backend: Backend,
    config,
    prompts,
    loaded: LoadedPhase,
) -> VerificationResult:
    """Six-dimension verification by the agent, falling back to static checks.

    Args:
        backend: Agent backend to run
        config: ExecutorConfig for model, work dir and signals
        prompts: PromptProvider for the verify template
        loaded: Phase to verify

    Returns:
        The agent's verdict, or the static result if it cannot be obtained
    """
    plans = load_plans_for_verification(loaded.path)
    static = verify_plans(plans)
    if not plans:
        return static

    prompt = prompts.render(
        "verify",
        phase_number=loaded.number,
        phase_name=loaded.name,
        phase_goal=loaded.phase.goal,
        plan_paths="\n".join(p.path for p in plans),
    )
    options = ExecuteOptions(
        prompt=prompt,
        context_files=[p.path for p in plans],
        model=config.model,
        allowed_tools=VERIFY_ALLOWED_TOOLS,
        work_dir=config.work_dir,
    )

    handler = ConsoleHandler(token_threshold=config.token_threshold, echo=False)
    try:
        with backend.execute(options) as process:
            parse_stream(process, handler, config.signals)
    except (BackendError, StreamError) as e:
        logger.warning(f"Agent verification failed, using static checks: {e}")
        return static

    verdict = parse_agent_verdict(
        handler.assistant_text + "\n" + handler.result_text,
        checked=len(plans),
    )
    if verdict is None:
        logger.warning("Agent verification returned no parsable verdict, using static checks")
        return static
    return verdict


# ============================================================================
# Display
# ============================================================================

def format_verification_result(result: VerificationResult) -> str:
    """Format a verification result for the terminal."""
    status = "PASSED" if result.status == "passed" else "ISSUES FOUND"
    lines = [
        "=" * 50,
        f"Verification: {status}",
        f"Plans checked: {result.checked}",
        f"Issues: {result.blockers} blockers, {result.warnings} warnings",
        "=" * 50,
    ]

    blockers = [i for i in result.issues if i.severity == IssueSeverity.BLOCKER]
    warnings = [i for i in result.issues if i.severity == IssueSeverity.WARNING]
    infos = [i for i in result.issues if i.severity == IssueSeverity.INFO]

    if blockers:
        lines.append("\nBlockers (must fix):")
        lines.extend(i.format_display() for i in blockers)
    if warnings:
        lines.append("\nWarnings (should fix):")
        lines.extend(i.format_display() for i in warnings)
    if infos:
        lines.append("\nInfo:")
        lines.extend(i.format_display() for i in infos)

    return "\n".join(lines)
