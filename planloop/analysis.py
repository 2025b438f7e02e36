"""
Post-execution analysis of agent observations.

After a plan runs, its record (and summary artifact, if written) is re-read
and <observation> blocks are extracted. Actionable observations are handed
to the agent together with the list of plans that have not run yet, so it
can patch those plans: add notes, reorder dependencies, create new plans.

Observations are recomputed from the records every time; nothing here is
persisted except what the analysis agent itself edits.

Blocker claims (###BLOCKED:...###) get a separate check: an agent with search tools
looks for a workaround and answers with a BLOCKER_VALID or BLOCKER_INVALID
marker.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from planloop.backends.base import BackendError, ExecuteOptions
from planloop.config import ANALYSIS_ALLOWED_TOOLS, BLOCKER_ALLOWED_TOOLS
from planloop.models.observation import Observation
from planloop.models.plan import Plan
from planloop.state import (
    LoadedPhase,
    is_plan_file,
    load_phases,
    summary_file,
    sync_roadmap_with_disk,
)
from planloop.stream import ConsoleHandler, StreamError, parse_stream

logger = logging.getLogger(__name__)

OBSERVATION_PATTERN = re.compile(
    r"<observation\b([^>]*)>(.*?)</observation>",
    re.DOTALL | re.IGNORECASE,
)
ATTRIBUTE_PATTERN = re.compile(r'(\w+)\s*=\s*"([^"]*)"')
PROSE_PATTERN = re.compile(
    r"(##\s*Discovery:|##\s*Observation:|\*\*Discovery\*\*:|\*\*Finding\*\*:|\[Discovery)",
    re.IGNORECASE,
)
BLOCKER_VALID_PATTERN = re.compile(r"###BLOCKER_VALID:([^#]+)###")
BLOCKER_INVALID_PATTERN = re.compile(r"###BLOCKER_INVALID:([^#]+)###")


def _tag(body: str, name: str) -> str:
    match = re.search(rf"<{name}>(.*?)</{name}>", body, re.DOTALL | re.IGNORECASE)
    return match.group(1).strip() if match else ""


def parse_observations(content: str) -> List[Observation]:
    """Extract <observation> blocks from a plan record or summary.

    Blocks without a type or title are ignored. <description> is accepted in
    place of <detail>.
    """
    if not content:
        return []

    if PROSE_PATTERN.search(content):
        logger.warning("Found prose observations that cannot be parsed; use the XML format")

    observations = []
    for match in OBSERVATION_PATTERN.finditer(content):
        attrs = dict(ATTRIBUTE_PATTERN.findall(match.group(1)))
        body = match.group(2)
        obs_type = attrs.get("type", "").strip().lower()
        title = _tag(body, "title")
        if not obs_type or not title:
            continue
        observations.append(Observation(
            type=obs_type,
            title=title,
            detail=_tag(body, "detail") or _tag(body, "description"),
            severity=attrs.get("severity", "").strip().lower(),
            file=_tag(body, "file"),
            action=_tag(body, "action").lower(),
        ))
    return observations


def has_actionable_observations(observations: List[Observation]) -> bool:
    return any(o.is_actionable() for o in observations)


def filter_by_type(observations: List[Observation], obs_type: str) -> List[Observation]:
    return [o for o in observations if o.type == obs_type]


def filter_by_severity(observations: List[Observation], severity: str) -> List[Observation]:
    return [o for o in observations if o.severity == severity]


def read_execution_record(plan_path: str) -> str:
    """Plan record text plus its summary artifact text, if present."""
    parts = []
    for path in (Path(plan_path), summary_file(plan_path)):
        if not path.exists():
            continue
        text = path.read_text()
        # Observations live inside JSON string fields; decode so tags and
        # newlines are literal
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            parts.append(text)
            continue
        parts.append(_flatten_strings(data))
    return "\n".join(parts)


def _flatten_strings(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return "\n".join(_flatten_strings(v) for v in value.values())
    if isinstance(value, list):
        return "\n".join(_flatten_strings(v) for v in value)
    return ""


def find_subsequent_plans(planning_dir: Path, loaded: LoadedPhase, plan: Plan,
                          phases: Optional[List[LoadedPhase]] = None) -> List[str]:
    """Paths of incomplete plans after the given one, in execution order.

    Covers the rest of the plan's own phase, then every later phase.
    """
    if phases is None:
        phases = load_phases(planning_dir)
    subsequent = []
    found = False
    for candidate_phase in phases:
        if not found and candidate_phase.number != loaded.number:
            continue
        for candidate in candidate_phase.plans:
            if candidate.path == plan.path:
                found = True
                continue
            if found and not candidate.completed:
                subsequent.append(candidate.path)
    return subsequent


def build_analysis_prompt(prompts, plan: Plan, observations: List[Observation],
                          subsequent: List[str], run_result=None) -> str:
    """Prompt for the analysis agent."""
    lines = []
    for i, o in enumerate(observations, 1):
        header = f"{i}. [{o.type}"
        if o.severity:
            header += f"/{o.severity}"
        lines.append(f"{header}] {o.title}")
        if o.detail:
            lines.append(f"   Detail: {o.detail}")
        if o.file:
            lines.append(f"   File: {o.file}")
        if o.action:
            lines.append(f"   Action: {o.action}")
        lines.append("")

    execution_error = ""
    if run_result is not None and run_result.error:
        captured = "\n".join(run_result.captured_logs) or "(none)"
        execution_error = (
            "\n## Execution Error\n\n"
            f"Error: {run_result.error}\n"
            f"Failure type: {run_result.failure_type}\n"
            f"Last tool call: {run_result.last_tool or '(none)'}\n\n"
            f"Last output before the failure:\n{captured}\n\n"
            "Consider whether later plans will hit the same problem.\n"
        )

    return prompts.render(
        "analysis",
        execution_error=execution_error,
        plan_path=plan.path,
        observations="\n".join(lines).rstrip() or "(none)",
        subsequent_plans="\n".join(subsequent) or "(none)",
    )


@dataclass
class AnalysisResult:
    """Outcome of post-execution analysis."""
    observations_found: int = 0
    actionable: int = 0
    plans_modified: int = 0
    new_plans_created: int = 0
    error: Optional[str] = None
    skipped: bool = False


def _fingerprint(path: Path) -> Tuple[float, str]:
    data = path.read_bytes()
    return path.stat().st_mtime, hashlib.sha1(data).hexdigest()


def _snapshot(phases: List[LoadedPhase]) -> Dict[str, Tuple[float, str]]:
    snapshot = {}
    for loaded in phases:
        if loaded.path is None or not loaded.path.is_dir():
            continue
        for path in loaded.path.iterdir():
            if is_plan_file(path):
                snapshot[str(path)] = _fingerprint(path)
    return snapshot


def run_post_analysis(executor, loaded: LoadedPhase, plan: Plan,
                      skip: bool = False, run_result=None) -> AnalysisResult:
    """Analyze a finished plan's observations and patch downstream plans.

    Args:
        executor: Executor providing config, backend and prompts
        loaded: Phase the plan belongs to
        plan: The plan that just ran
        skip: Parse and count observations but never invoke the agent
        run_result: RunResult of the execution, for error context

    Returns:
        AnalysisResult; failures are reported in `error`, never raised
    """
    result = AnalysisResult()
    config = executor.config

    observations = parse_observations(read_execution_record(plan.path))
    actionable = [o for o in observations if o.is_actionable()]
    result.observations_found = len(observations)
    result.actionable = len(actionable)

    if skip or not actionable:
        result.skipped = True
        return result

    phases = load_phases(config.planning_dir)
    subsequent = find_subsequent_plans(config.planning_dir, loaded, plan, phases)
    before = _snapshot(phases)
    subsequent_before = {p: before[p] for p in subsequent if p in before}

    executor.say(f"\nAnalyzing {len(actionable)} actionable observation(s) from plan {plan.plan_id}...",
                 fg="cyan")
    options = ExecuteOptions(
        prompt=build_analysis_prompt(executor.prompts, plan, observations, subsequent, run_result),
        context_files=[plan.path] + subsequent,
        model=config.model,
        allowed_tools=list(ANALYSIS_ALLOWED_TOOLS),
        work_dir=config.work_dir,
        inactivity_timeout_mins=config.inactivity_timeout_mins,
    )
    handler = ConsoleHandler(token_threshold=config.token_threshold, echo=executor.echo)
    try:
        with executor.backend.execute(options) as process:
            parse_stream(process, handler, config.signals)
    except BackendError as e:
        result.error = f"analysis agent failed to start: {e}"
        return result
    except StreamError as e:
        result.error = f"analysis stream parsing failed: {e}"
        return result

    after_phases = load_phases(config.planning_dir)
    after = _snapshot(after_phases)

    result.plans_modified = sum(
        1 for path, fingerprint in subsequent_before.items()
        if path in after and after[path][1] != fingerprint[1]
    )
    result.new_plans_created = sum(1 for path in after if path not in before)

    touched = {Path(p).parent for p in after if p not in before or before[p][1] != after[p][1]}
    for changed in after_phases:
        if changed.path in touched:
            sync_roadmap_with_disk(config.planning_dir, changed.number)

    executor.say(
        f"Analysis complete: {result.plans_modified} plan(s) modified, "
        f"{result.new_plans_created} created",
        fg="cyan",
    )
    return result


# ============================================================================
# Blocker claims
# ============================================================================

@dataclass
class BlockerVerdict:
    """Whether a ###BLOCKED### claim holds up. Claims stand unless refuted."""
    valid: bool = True
    guidance: str = ""
    error: Optional[str] = None


def parse_blocker_verdict(text: str) -> BlockerVerdict:
    """Read the BLOCKER_VALID / BLOCKER_INVALID marker from agent output."""
    match = BLOCKER_VALID_PATTERN.search(text or "")
    if match:
        return BlockerVerdict(valid=True, guidance=match.group(1).strip())
    match = BLOCKER_INVALID_PATTERN.search(text or "")
    if match:
        return BlockerVerdict(valid=False, guidance=match.group(1).strip())
    return BlockerVerdict(valid=True, guidance="No clear determination from analysis")


def run_blocker_analysis(executor, plan: Plan, claim: str) -> BlockerVerdict:
    """Ask the agent whether a blocker claim is real or can be worked around.

    The claim is treated as valid when the agent cannot be run or gives no
    verdict.
    """
    config = executor.config
    executor.say(f"\nVerifying blocker claim for plan {plan.plan_id}: {claim}", fg="cyan")

    context_files = [plan.path]
    project = config.planning_dir / "project.json"
    if project.exists():
        context_files.append(str(project))

    options = ExecuteOptions(
        prompt=executor.prompts.render("blocker", claim=claim, plan_path=plan.path),
        context_files=context_files,
        model=config.model,
        allowed_tools=list(BLOCKER_ALLOWED_TOOLS),
        work_dir=config.work_dir,
        inactivity_timeout_mins=config.inactivity_timeout_mins,
    )
    handler = ConsoleHandler(token_threshold=config.token_threshold, echo=executor.echo)
    try:
        with executor.backend.execute(options) as process:
            parse_stream(process, handler, config.signals)
    except BackendError as e:
        return BlockerVerdict(error=f"blocker analysis failed to start: {e}")
    except StreamError as e:
        return BlockerVerdict(error=f"blocker analysis stream parsing failed: {e}")

    verdict = parse_blocker_verdict(handler.assistant_text + "\n" + handler.result_text)
    if verdict.valid:
        executor.say(f"Blocker confirmed: {verdict.guidance}", fg="yellow")
    else:
        executor.say(f"Blocker can be worked around: {verdict.guidance}", fg="cyan")
    return verdict
