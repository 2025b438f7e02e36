"""
Execution controller.

Runs plans one at a time through the agent backend:

    next incomplete plan -> static verification -> execute -> post-analysis

Loop policy:
- An iteration error (agent failed, stream broke, plan signalled failure) is
  reported and the loop moves on to the next iteration.
- A plan with blocker-severity verification issues is never executed; the
  loop stops so the plan can be fixed.
- A run that ends without completing its plan gets a soft-failure decision:
  mark it complete (summary already written), retry with guidance, or
  escalate to a human (confirmed blocker).
- Each plan gets max_retries attempts. Past that budget a plan only runs
  again while its recorded progress keeps changing.
- Manual plans run as an interactive session with the operator. The first
  time the loop reaches a phase, manual tasks from its plans are bundled
  into a phase-end manual plan (NN-99).
- Cancellation is checked only at the top of an iteration, so an in-flight
  agent run always finishes and is recorded first.

Usage:
    executor = Executor(config, backend)
    result = run_with_cancellation(executor, max_iterations=10)
"""

import logging
import re
import signal
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import click

from planloop.analysis import AnalysisResult, run_blocker_analysis, run_post_analysis
from planloop.backends.base import Backend, BackendError, ExecuteOptions
from planloop.config import ExecutorConfig
from planloop.models.plan import Plan, PlanType
from planloop.models.task import Task, TaskType
from planloop.prompts import PromptProvider
from planloop.state import (
    LoadedPhase,
    MalformedRecordError,
    PathLike,
    find_next_plan,
    load_phases,
    load_plan,
    mark_phase_started,
    mark_plan_complete,
    plan_file,
    save_plan,
    summary_file,
    sync_roadmap_with_disk,
    update_state,
)
from planloop.stream import ConsoleHandler, FailureSignal, StreamError, parse_stream
from planloop.verifier import blocking_issues, verify_plans

logger = logging.getLogger(__name__)

PROGRESS_PATTERN = re.compile(r"^##\s+Progress\s*$(.*?)(?=^##\s|\Z)", re.MULTILINE | re.DOTALL)

FAILURE_NONE = "none"
FAILURE_HARD = "hard"  # agent could not run or its stream broke
FAILURE_SOFT = "soft"  # agent ran but reported failure or bailed out

DECISION_RETRY = "retry"
DECISION_MARK_COMPLETE = "mark_complete"
DECISION_ESCALATE = "escalate"

MANUAL_PLAN_NUMBER = "99"
MANUAL_CHECKPOINT_MARKERS = ("MANUAL CHECKPOINT", "MANUAL TASK", '"type": "manual"', 'type="manual"')


def extract_progress_section(text: str) -> str:
    """Return the body of the '## Progress' section, or '' if absent."""
    match = PROGRESS_PATTERN.search(text or "")
    return match.group(1).strip() if match else ""


def read_progress(plan_path: PathLike) -> str:
    """Progress section of a plan record on disk, or '' if unreadable."""
    try:
        return extract_progress_section(load_plan(plan_path).observations)
    except (MalformedRecordError, FileNotFoundError):
        return ""


@dataclass
class RunResult:
    """Outcome of executing one plan."""
    success: bool
    error: Optional[str] = None
    failure_type: str = FAILURE_NONE
    failure_signal: Optional[FailureSignal] = None
    duration: float = 0.0
    last_output: str = ""
    last_tool: str = ""
    captured_logs: List[str] = field(default_factory=list)
    complete_signalled: bool = False
    plan_completed: bool = False
    phase_completed: bool = False


@dataclass
class LoopResult:
    """Outcome of a loop run."""
    iterations: int = 0
    plans_executed: List[str] = field(default_factory=list)
    completed: bool = False
    stopped_reason: str = ""
    errors: List[str] = field(default_factory=list)
    analyses: List[AnalysisResult] = field(default_factory=list)


@dataclass
class RetryState:
    """Attempt bookkeeping for one plan across loop iterations."""
    attempts: int = 0
    progress_before: str = ""  # progress when the latest attempt started
    last_progress: str = ""
    last_output: str = ""
    guidance: str = ""


@dataclass
class SoftFailureDecision:
    """What to do with a plan whose run ended without completing it."""
    decision: str
    reason: str
    guidance: str = ""


def build_retry_guidance(state: RetryState) -> str:
    """Prompt section for a repeated attempt. Empty on the first attempt."""
    if state.attempts == 0:
        return ""

    lines = [
        "",
        f"### RETRY ATTEMPT {state.attempts + 1}",
        "",
        f"This plan has been attempted {state.attempts} time(s) previously.",
        "",
    ]
    if state.guidance:
        lines += [f"**Guidance:** {state.guidance}", ""]
    lines += [
        "**Log progress before each action.**",
        "Before starting a task, update the ## Progress section with",
        '"Task N: [STARTING] about to <what you are doing>", then execute it and',
        "update the entry to [COMPLETE] or [FAILED]. This records state even if",
        "execution is interrupted.",
        "",
        "Last progress state:",
        state.last_progress or "(none recorded)",
        "",
        "Last output before exit:",
        state.last_output or "(none)",
        "",
        "Analyze what went wrong and proceed carefully.",
        "",
    ]
    return "\n".join(lines)


def mentions_manual_checkpoint(output: str) -> bool:
    return any(marker in (output or "") for marker in MANUAL_CHECKPOINT_MARKERS)


def bundle_manual_tasks(planning_dir: PathLike, loaded: LoadedPhase) -> Optional[Plan]:
    """Collect the phase's manual tasks into a phase-end manual plan.

    The bundle is written once as NN-99; an existing record is left alone.
    Returns the created plan, or None when there was nothing to bundle.
    """
    if loaded.path is None:
        return None
    path = plan_file(loaded.path, loaded.number, MANUAL_PLAN_NUMBER)
    if path.exists():
        return None

    tasks = []
    for plan in loaded.plans:
        if plan.is_manual():
            continue
        for task in plan.tasks:
            if task.is_auto():
                continue
            tasks.append(Task(
                name=f"{task.label} (from Plan {plan.plan_id})",
                id=f"manual-{len(tasks) + 1}",
                task_type=TaskType.MANUAL,
                files=[plan.path],
                action=task.action or task.label,
                verify=task.verify,
                done="Manual task completed and verified",
            ))

    if not tasks:
        return None

    bundle = Plan(
        phase=loaded.path.name,
        plan_number=MANUAL_PLAN_NUMBER,
        objective=f"Complete the manual tasks of phase {loaded.number} that could not be automated",
        plan_type=PlanType.MANUAL,
        tasks=tasks,
        verification=["All manual tasks completed", "Verified each task's done criteria"],
    )
    save_plan(path, bundle)
    sync_roadmap_with_disk(planning_dir, loaded.number)
    logger.info(f"Bundled {len(tasks)} manual task(s) into {path.name}")
    return bundle


class Executor:
    """Executes plans through an agent backend."""

    def __init__(
        self,
        config: ExecutorConfig,
        backend: Backend,
        prompts: Optional[PromptProvider] = None,
        cancel_event: Optional[threading.Event] = None,
        echo: bool = True,
    ):
        self.config = config
        self.backend = backend
        self.prompts = prompts or PromptProvider(config.work_dir)
        self.cancel_event = cancel_event or threading.Event()
        self.echo = echo

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def say(self, message: str, **style) -> None:
        if self.echo:
            click.echo(click.style(message, **style) if style else message)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # ------------------------------------------------------------------
    # Single plan
    # ------------------------------------------------------------------

    def build_prompt(self, loaded: LoadedPhase, plan: Plan, retry_guidance: str = "",
                     template: str = "execute") -> str:
        """Execution prompt referencing the plan record."""
        return self.prompts.render(
            template,
            plan_path=plan.path,
            summary_path=summary_file(plan.path),
            phase_number=loaded.number,
            phase_name=loaded.name,
            plan_number=plan.plan_number,
            plan_complete_signal=self.config.signals.plan_complete,
            complete_signal=self.config.signals.complete,
            retry_guidance=retry_guidance,
        )

    def context_files(self, plan: Plan) -> List[str]:
        """Plan record plus project context files that exist."""
        files = [plan.path]
        for name in ("project.json", "state.json"):
            path = self.config.planning_dir / name
            if path.exists():
                files.append(str(path))
        return files

    def _start(self, loaded: LoadedPhase, plan: Plan) -> None:
        mark_phase_started(self.config.planning_dir, loaded.number)
        plan.mark_started()
        save_plan(plan.path, plan)
        update_state(self.config.planning_dir, loaded.number, plan.plan_id,
                     f"Executing plan {plan.plan_id}", status="executing")

    def complete_plan(self, loaded: LoadedPhase, plan: Plan, result: RunResult) -> None:
        """Record a plan whose summary exists as complete."""
        try:
            fresh = load_plan(plan.path)
        except MalformedRecordError as e:
            logger.warning(f"Plan record unreadable after execution: {e}")
            fresh = plan
        result.plan_completed = True
        result.phase_completed = mark_plan_complete(self.config.planning_dir, loaded, fresh)
        self.say(f"✓ Plan {plan.plan_id} complete ({result.duration:.0f}s)", fg="green")
        if result.phase_completed:
            self.say(f"✓ Phase {loaded.number} complete", fg="green", bold=True)

    def execute_plan(self, loaded: LoadedPhase, plan: Plan, retry_guidance: str = "") -> RunResult:
        """Run one plan through the agent and interpret its stream.

        Success means the agent ran and reported no failure. It does not mean
        the plan is complete; completion requires the plan-complete signal and
        the summary artifact on disk.
        """
        start = time.monotonic()
        planning_dir = self.config.planning_dir

        self.say(f"\n━━━ Phase {loaded.number} / Plan {plan.plan_id}: {plan.name} ━━━", fg="cyan", bold=True)
        self._start(loaded, plan)

        options = ExecuteOptions(
            prompt=self.build_prompt(loaded, plan, retry_guidance),
            context_files=self.context_files(plan),
            model=self.config.model,
            allowed_tools=list(self.config.allowed_tools),
            work_dir=self.config.work_dir,
            inactivity_timeout_mins=self.config.inactivity_timeout_mins,
        )
        handler = ConsoleHandler(token_threshold=self.config.token_threshold, echo=self.echo)

        def finish(success: bool, error: Optional[str] = None, failure_type: str = FAILURE_NONE) -> RunResult:
            result = RunResult(
                success=success,
                error=error,
                failure_type=failure_type,
                failure_signal=handler.failure,
                duration=time.monotonic() - start,
                last_output=handler.result_text or (handler.text_parts[-1] if handler.text_parts else ""),
                last_tool=handler.last_tool,
                captured_logs=list(handler.captured_logs),
                complete_signalled=handler.is_complete(),
            )
            activity = f"Plan {plan.plan_id} " + ("finished" if success else f"failed: {error}")
            update_state(planning_dir, loaded.number, plan.plan_id, activity,
                         status="idle" if success else "failed")
            return result

        try:
            process = self.backend.execute(options)
        except BackendError as e:
            logger.error(f"Could not start agent for plan {plan.plan_id}: {e}")
            return finish(False, str(e), FAILURE_HARD)

        stream_error = None
        try:
            parse_stream(process, handler, self.config.signals)
        except StreamError as e:
            stream_error = e
            process.kill()
        finally:
            exit_code = process.close()

        if stream_error is not None:
            return finish(False, f"stream parsing failed: {stream_error}", FAILURE_HARD)
        if getattr(process, "timed_out", False):
            return finish(False, f"no agent output for {self.config.inactivity_timeout_mins} minutes",
                          FAILURE_HARD)
        if exit_code != 0:
            return finish(False, f"agent exited with status {exit_code}", FAILURE_HARD)
        if handler.failure is not None:
            return finish(False, f"{handler.failure.type}: {handler.failure.detail}", FAILURE_SOFT)
        if handler.should_bail_out():
            return finish(False, f"token threshold reached ({handler.token_stats.total_tokens} tokens)",
                          FAILURE_SOFT)

        result = finish(True)
        if handler.is_plan_complete():
            if summary_file(plan.path).exists():
                self.complete_plan(loaded, plan, result)
            else:
                logger.warning(f"Plan {plan.plan_id} signalled completion but wrote no summary")
        return result

    def execute_manual_plan(self, loaded: LoadedPhase, plan: Plan) -> RunResult:
        """Walk the operator through a manual plan in an interactive session.

        The session counts as complete only if it left the summary artifact.
        """
        start = time.monotonic()
        self.say(f"\n━━━ Manual plan {plan.plan_id}: {plan.name} ━━━", fg="magenta", bold=True)
        self.say("Complete the manual tasks with the agent, then exit the session.")
        self._start(loaded, plan)

        options = ExecuteOptions(
            prompt=self.build_prompt(loaded, plan, template="manual"),
            context_files=self.context_files(plan),
            model=self.config.model,
            allowed_tools=list(self.config.allowed_tools),
            work_dir=self.config.work_dir,
        )
        try:
            exit_code = self.backend.execute_interactive(options)
        except BackendError as e:
            exit_code = None
            error = f"interactive session failed: {e}"
        else:
            error = None

        result = RunResult(success=False, duration=time.monotonic() - start)
        if error is None and summary_file(plan.path).exists():
            result.success = True
            self.complete_plan(loaded, plan, result)
        else:
            if error is None:
                error = f"session ended (status {exit_code}) without a summary"
            result.error = error
            result.failure_type = FAILURE_SOFT

        update_state(self.config.planning_dir, loaded.number, plan.plan_id,
                     f"Manual plan {plan.plan_id} " + ("finished" if result.success else f"failed: {error}"),
                     status="idle" if result.success else "failed")
        return result

    def decide_soft_failure(self, loaded: LoadedPhase, plan: Plan, run: RunResult) -> SoftFailureDecision:
        """Decide how to continue after a run that did not complete its plan."""
        if summary_file(plan.path).exists():
            return SoftFailureDecision(DECISION_MARK_COMPLETE, "summary exists, plan appears complete")

        failure = run.failure_signal
        if failure is not None and failure.type == "blocked":
            verdict = run_blocker_analysis(self, plan, failure.detail)
            if verdict.error:
                logger.warning(verdict.error)
            if verdict.valid:
                return SoftFailureDecision(DECISION_ESCALATE, f"{failure.detail} ({verdict.guidance})")
            return SoftFailureDecision(DECISION_RETRY, "blocker claim rejected", verdict.guidance)

        progress = read_progress(plan.path)
        if "[COMPLETE]" in progress and "[PENDING]" not in progress:
            return SoftFailureDecision(
                DECISION_RETRY,
                "tasks complete but summary missing",
                f"All tasks appear complete. Write {summary_file(plan.path).name} "
                f"and signal {self.config.signals.plan_complete}",
            )

        if mentions_manual_checkpoint(run.last_output):
            return SoftFailureDecision(
                DECISION_RETRY,
                "stopped at a manual task",
                "Skip manual tasks; they are bundled into the phase-end manual plan. "
                "Continue with the automated tasks only.",
            )

        return SoftFailureDecision(DECISION_RETRY, "unexpected exit, retrying with progress logging")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def loop(self, max_iterations: int, skip_analysis: Optional[bool] = None) -> LoopResult:
        """Execute plans until none remain, the budget runs out, or a stop condition hits."""
        skip = self.config.skip_analysis if skip_analysis is None else skip_analysis
        max_retries = self.config.max_retries or max_iterations
        planning_dir = self.config.planning_dir

        result = LoopResult()
        retries: Dict[str, RetryState] = {}
        last_failure: Dict[str, str] = {}
        bundled: Set[str] = set()

        def stop(reason: str, completed: bool = False) -> LoopResult:
            result.stopped_reason = reason
            result.completed = completed
            self.say(f"\n{reason}", fg="green" if completed else "yellow")
            return result

        for iteration in range(1, max_iterations + 1):
            if self.cancelled:
                return stop("cancelled")

            loaded, plan = find_next_plan(load_phases(planning_dir))
            if plan is None:
                return stop("all plans complete", completed=True)

            if str(loaded.number) not in bundled:
                bundled.add(str(loaded.number))
                bundle = bundle_manual_tasks(planning_dir, loaded)
                if bundle is not None:
                    self.say(f"Bundled {len(bundle.tasks)} manual task(s) into plan {bundle.plan_id}",
                             fg="cyan")
                    loaded, plan = find_next_plan(load_phases(planning_dir))

            if plan.is_manual():
                if not self.config.interactive_manual:
                    return stop(f"manual plan {plan.plan_id} requires human action")
            else:
                blockers = blocking_issues(verify_plans([plan]), plan)
                if blockers:
                    for issue in blockers:
                        self.say(issue.format_display(), fg="red")
                    return stop(f"verification failed for plan {plan.plan_id}")

            state = retries.setdefault(plan.path, RetryState())
            progress = read_progress(plan.path)
            if state.attempts >= max_retries:
                if progress == state.progress_before:
                    return stop(f"retry budget exhausted for plan {plan.plan_id} "
                                f"(no progress between attempts)")
                self.say(f"Resuming plan {plan.plan_id}: progress updated, continuing", fg="cyan")
            guidance = build_retry_guidance(state)
            state.progress_before = progress
            state.attempts += 1

            self.say(f"\nIteration {iteration}/{max_iterations}", bold=True)
            if state.attempts > 1:
                self.say(f"Attempt {state.attempts}/{max_retries} for plan {plan.plan_id}")
            result.iterations += 1
            if plan.is_manual():
                run = self.execute_manual_plan(loaded, plan)
            else:
                run = self.execute_plan(loaded, plan, retry_guidance=guidance)
            result.plans_executed.append(plan.plan_id)

            if not run.success:
                result.errors.append(f"{plan.plan_id}: {run.error}")
                self.say(f"✗ Plan {plan.plan_id} failed: {run.error}", fg="red")
            repeated_hard = (run.failure_type == FAILURE_HARD
                             and last_failure.get(plan.path) == FAILURE_HARD)
            last_failure[plan.path] = run.failure_type

            if not skip:
                analysis = run_post_analysis(self, loaded, plan, run_result=run)
                result.analyses.append(analysis)
                if analysis.error:
                    result.errors.append(f"{plan.plan_id} analysis: {analysis.error}")

            if repeated_hard:
                return stop(f"plan {plan.plan_id} failed to run twice in a row")
            if run.complete_signalled:
                return stop("agent signalled completion", completed=True)
            if run.plan_completed:
                continue
            if plan.is_manual():
                return stop(f"manual plan {plan.plan_id} ended without a summary")

            state.last_progress = read_progress(plan.path)
            state.last_output = run.last_output
            state.guidance = ""
            if run.failure_type == FAILURE_HARD:
                continue

            decision = self.decide_soft_failure(loaded, plan, run)
            if decision.decision == DECISION_ESCALATE:
                return stop(f"human intervention required: {decision.reason}")
            if decision.decision == DECISION_MARK_COMPLETE:
                self.say(f"Plan {plan.plan_id} treated as complete: {decision.reason}", fg="green")
                self.complete_plan(loaded, plan, run)
            else:
                state.guidance = decision.guidance
                self.say(f"Will retry plan {plan.plan_id}: {decision.reason}", fg="yellow")

        if self.cancelled:
            return stop("cancelled")
        _, remaining = find_next_plan(load_phases(planning_dir))
        if remaining is None:
            return stop("all plans complete", completed=True)
        return stop("stopped at max iterations")


def run_with_cancellation(
    executor: Executor,
    max_iterations: int,
    skip_analysis: Optional[bool] = None,
) -> LoopResult:
    """Run the loop with SIGINT/SIGTERM converted into a cancel request.

    Handlers are installed once for the duration of the loop and the previous
    handlers restored afterwards. The request takes effect at the next
    iteration boundary.
    """
    def request_cancel(signum, frame):
        if not executor.cancel_event.is_set():
            executor.say("\nCancellation requested, stopping after the current plan...", fg="yellow")
        executor.cancel_event.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, request_cancel)
    try:
        return executor.loop(max_iterations, skip_analysis)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
