"""
Tests for the execution controller: single plan runs and loop policy.
"""

import json
import signal
from pathlib import Path

from planloop.config import ExecutorConfig
from planloop.executor import (
    FAILURE_HARD,
    FAILURE_SOFT,
    Executor,
    RetryState,
    build_retry_guidance,
    bundle_manual_tasks,
    extract_progress_section,
    run_with_cancellation,
)
from planloop.models.plan import Plan, PlanType
from planloop.models.task import Task, TaskType
from planloop.state import (
    add_phase,
    count_plans,
    load_phases,
    load_plan,
    load_roadmap,
    load_state,
    phases_dir,
    plan_file,
    save_plan,
    summary_file,
)
from planloop.stream import MAX_LINE_BYTES

from conftest import FakeBackend, assistant_event, complete_plan_run, good_task


def make_executor(workspace, backend, **overrides):
    config = ExecutorConfig.from_workspace(workspace, **overrides)
    return Executor(config, backend, echo=False)


def first(planning_dir):
    phases = load_phases(planning_dir)
    return phases[0], phases[0].plans[0]


def soft_failure(options):
    return [assistant_event("###TASK_FAILED:tests still red###")], 0


def crash(options):
    return [], 1


def quiet_success(options):
    return [assistant_event("Made some progress")], 0


class TestExtractProgress:
    """Progress section parsing."""

    def test_section_found(self):
        """The body of ## Progress is returned up to the next heading."""
        text = "notes\n## Progress\n- Task 1: [COMPLETE]\n## Other\nx"
        assert extract_progress_section(text) == "- Task 1: [COMPLETE]"

    def test_missing_section(self):
        """No section yields an empty string."""
        assert extract_progress_section("nothing here") == ""
        assert extract_progress_section(None) == ""


class TestExecutePlan:
    """One plan through the agent."""

    def test_completion_requires_signal_and_summary(self, workspace, planning_dir, write_plans):
        """Signal plus summary marks the plan and phase complete."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([complete_plan_run]))
        loaded, plan = first(planning_dir)

        result = executor.execute_plan(loaded, plan)

        assert result.success
        assert result.plan_completed
        assert result.phase_completed
        assert load_plan(plan.path).status == "complete"
        assert load_roadmap(planning_dir).phases[0].status == "complete"

    def test_signal_without_summary_not_complete(self, workspace, planning_dir, write_plans):
        """The agent's claim alone does not complete a plan."""
        write_plans("Core", 1)
        backend = FakeBackend([lambda o: ([assistant_event("###PLAN_COMPLETE###")], 0)])
        executor = make_executor(workspace, backend)
        loaded, plan = first(planning_dir)

        result = executor.execute_plan(loaded, plan)

        assert result.success
        assert not result.plan_completed
        assert load_plan(plan.path).status == "in_progress"

    def test_prompt_and_context(self, workspace, planning_dir, write_plans):
        """The prompt names the plan; context files include project records."""
        write_plans("Core", 1)
        backend = FakeBackend([quiet_success])
        executor = make_executor(workspace, backend)
        loaded, plan = first(planning_dir)

        executor.execute_plan(loaded, plan)

        options = backend.calls[0]
        assert plan.path in options.prompt
        assert options.context_files[0] == plan.path
        assert str(planning_dir / "project.json") in options.context_files
        assert options.work_dir == workspace

    def test_nonzero_exit_is_hard_failure(self, workspace, planning_dir, write_plans):
        """A crashed agent is a hard failure."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([crash]))
        result = executor.execute_plan(*first(planning_dir))
        assert not result.success
        assert result.failure_type == FAILURE_HARD
        assert load_state(planning_dir)["status"] == "failed"

    def test_failure_signal_is_soft(self, workspace, planning_dir, write_plans):
        """A failure sentinel is a soft failure carrying its detail."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([soft_failure]))
        result = executor.execute_plan(*first(planning_dir))
        assert not result.success
        assert result.failure_type == FAILURE_SOFT
        assert "tests still red" in result.error

    def test_token_bailout_is_soft(self, workspace, planning_dir, write_plans):
        """Crossing the token threshold is a soft failure."""
        write_plans("Core", 1)
        usage = {"input_tokens": 200000, "output_tokens": 0}
        backend = FakeBackend([lambda o: ([assistant_event("big", usage=usage)], 0)])
        executor = make_executor(workspace, backend)
        result = executor.execute_plan(*first(planning_dir))
        assert result.failure_type == FAILURE_SOFT
        assert "token threshold" in result.error

    def test_stream_error_is_hard(self, workspace, planning_dir, write_plans):
        """An oversize stream line fails the run."""
        write_plans("Core", 1)
        backend = FakeBackend([lambda o: (["x" * (MAX_LINE_BYTES + 1)], 0)])
        executor = make_executor(workspace, backend)
        result = executor.execute_plan(*first(planning_dir))
        assert result.failure_type == FAILURE_HARD
        assert "stream" in result.error


class TestLoop:
    """Loop stop conditions."""

    def test_stops_at_max_iterations(self, workspace, planning_dir, write_plans):
        """Three iterations over five plans execute exactly three."""
        write_plans("Core", 5)
        backend = FakeBackend([complete_plan_run])
        executor = make_executor(workspace, backend)

        result = executor.loop(3, skip_analysis=True)

        assert result.iterations == 3
        assert len(result.plans_executed) == 3
        assert result.stopped_reason == "stopped at max iterations"
        assert not result.completed
        assert count_plans(load_phases(planning_dir)) == (5, 3)

    def test_all_plans_complete(self, workspace, planning_dir, write_plans):
        """Running out of plans completes the loop."""
        write_plans("Core", 2)
        write_plans("Api", 1)
        executor = make_executor(workspace, FakeBackend([complete_plan_run]))

        result = executor.loop(10, skip_analysis=True)

        assert result.completed
        assert result.stopped_reason == "all plans complete"
        assert result.plans_executed == ["01-01", "01-02", "02-01"]

    def test_completion_on_last_iteration(self, workspace, planning_dir, write_plans):
        """Finishing the last plan on the last iteration still reports completion."""
        write_plans("Core", 2)
        executor = make_executor(workspace, FakeBackend([complete_plan_run]))
        result = executor.loop(2, skip_analysis=True)
        assert result.completed
        assert result.stopped_reason == "all plans complete"

    def test_cancel_before_start(self, workspace, planning_dir, write_plans):
        """A pending cancellation stops before any agent call."""
        write_plans("Core", 2)
        backend = FakeBackend([complete_plan_run])
        executor = make_executor(workspace, backend)
        executor.cancel_event.set()

        result = executor.loop(5, skip_analysis=True)

        assert result.stopped_reason == "cancelled"
        assert backend.calls == []

    def test_cancel_takes_effect_between_iterations(self, workspace, planning_dir, write_plans):
        """Cancelling mid-run lets the current plan finish and be recorded."""
        write_plans("Core", 3)
        holder = {}

        def run_then_cancel(options):
            holder["executor"].cancel_event.set()
            return complete_plan_run(options)

        executor = make_executor(workspace, FakeBackend([run_then_cancel]))
        holder["executor"] = executor

        result = executor.loop(5, skip_analysis=True)

        assert result.iterations == 1
        assert result.stopped_reason == "cancelled"
        assert count_plans(load_phases(planning_dir)) == (3, 1)

    def test_verification_blocker_stops(self, workspace, planning_dir):
        """A plan with a blocker issue is never executed."""
        phase = add_phase(planning_dir, "Core")
        phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        task = good_task()
        task.action = ""
        save_plan(plan_file(phase_dir, 1, "01"), Plan(phase=phase_dir.name, plan_number="01", tasks=[task]))
        backend = FakeBackend([complete_plan_run])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.stopped_reason == "verification failed for plan 01-01"
        assert result.iterations == 0
        assert backend.calls == []

    def test_manual_plan_stops(self, workspace, planning_dir):
        """With interactive sessions disabled, manual plans stop the loop."""
        phase = add_phase(planning_dir, "Core")
        phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        save_plan(plan_file(phase_dir, 1, "01"),
                  Plan(phase=phase_dir.name, plan_number="01", plan_type=PlanType.MANUAL))
        backend = FakeBackend([complete_plan_run])

        result = make_executor(workspace, backend, interactive_manual=False).loop(5, skip_analysis=True)

        assert "manual plan 01-01" in result.stopped_reason
        assert backend.calls == []

    def test_errors_reported_and_loop_continues(self, workspace, planning_dir, write_plans):
        """A failed iteration is recorded and the loop retries."""
        write_plans("Core", 1)
        backend = FakeBackend([soft_failure, complete_plan_run])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert result.iterations == 2
        assert len(result.errors) == 1
        assert "tests still red" in result.errors[0]

    def test_repeated_hard_failure_stops(self, workspace, planning_dir, write_plans):
        """The same plan failing to run twice in a row stops the loop."""
        write_plans("Core", 1)
        backend = FakeBackend([crash])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.iterations == 2
        assert "twice in a row" in result.stopped_reason
        assert len(result.errors) == 2

    def test_no_progress_stops_once_budget_spent(self, workspace, planning_dir, write_plans):
        """Unchanged progress after the last allowed attempt stops the loop."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([quiet_success]), max_retries=2)
        result = executor.loop(5, skip_analysis=True)
        assert result.iterations == 2
        assert result.stopped_reason == "retry budget exhausted for plan 01-01 (no progress between attempts)"

    def test_no_progress_section_retries_within_budget(self, workspace, planning_dir, write_plans):
        """A plan without a Progress section is retried until the budget is spent."""
        write_plans("Core", 1)
        backend = FakeBackend([quiet_success])
        result = make_executor(workspace, backend).loop(3, skip_analysis=True)
        assert result.iterations == 3
        assert len(backend.calls) == 3
        assert result.stopped_reason == "stopped at max iterations"

    def test_progress_allows_retry(self, workspace, planning_dir, write_plans):
        """A plan whose progress changes may run again."""
        write_plans("Core", 1)
        attempts = []

        def record_progress(options):
            attempts.append(1)
            path = Path(options.context_files[0])
            data = json.loads(path.read_text())
            data["observations"] = f"## Progress\n- Task 1: step {len(attempts)}"
            path.write_text(json.dumps(data))
            return [assistant_event("working")], 0

        result = make_executor(workspace, FakeBackend([record_progress])).loop(3, skip_analysis=True)

        assert result.iterations == 3
        assert result.stopped_reason == "stopped at max iterations"

    def test_retry_budget(self, workspace, planning_dir, write_plans):
        """max_retries caps attempts per plan."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([soft_failure]), max_retries=1)
        result = executor.loop(5, skip_analysis=True)
        assert result.iterations == 1
        assert result.stopped_reason.startswith("retry budget exhausted for plan 01-01")

    def test_complete_signal_stops(self, workspace, planning_dir, write_plans):
        """The overall completion sentinel ends the loop."""
        write_plans("Core", 3)
        backend = FakeBackend([lambda o: ([assistant_event("###PLANLOOP_COMPLETE###")], 0)])
        result = make_executor(workspace, backend).loop(5, skip_analysis=True)
        assert result.completed
        assert result.stopped_reason == "agent signalled completion"
        assert result.iterations == 1

    def test_analysis_runs_unless_skipped(self, workspace, planning_dir, write_plans):
        """Post-analysis is invoked after each iteration when enabled."""
        write_plans("Core", 1)
        executor = make_executor(workspace, FakeBackend([complete_plan_run]))
        result = executor.loop(1)
        assert len(result.analyses) == 1
        assert result.analyses[0].skipped


    def test_cancel_during_last_iteration(self, workspace, planning_dir, write_plans):
        """A cancellation seen after the final iteration is reported as such."""
        write_plans("Core", 3)
        holder = {}

        def run_then_cancel(options):
            holder["executor"].cancel_event.set()
            return complete_plan_run(options)

        executor = make_executor(workspace, FakeBackend([run_then_cancel]))
        holder["executor"] = executor

        result = executor.loop(1, skip_analysis=True)

        assert result.iterations == 1
        assert result.stopped_reason == "cancelled"

    def test_malformed_event_does_not_stop_loop(self, workspace, planning_dir, write_plans):
        """Bad field types inside an event are skipped, not raised out of the loop."""
        write_plans("Core", 1)
        bad_usage = json.dumps({"type": "assistant", "message": {"usage": {"input_tokens": "?"}, "content": 5}})

        def run(options):
            lines, code = complete_plan_run(options)
            return [bad_usage] + lines, code

        result = make_executor(workspace, FakeBackend([run])).loop(2, skip_analysis=True)

        assert result.completed
        assert result.errors == []


class TestRetryGuidance:
    """Prompts for repeated attempts."""

    def test_first_attempt_has_none(self):
        """No guidance before the first attempt."""
        assert build_retry_guidance(RetryState()) == ""

    def test_guidance_content(self):
        """Attempt number, guidance, last progress and last output are included."""
        state = RetryState(attempts=2, last_progress="- Task 1: [COMPLETE]",
                           last_output="ran out of time", guidance="Write the summary")
        text = build_retry_guidance(state)
        assert "### RETRY ATTEMPT 3" in text
        assert "attempted 2 time(s)" in text
        assert "**Guidance:** Write the summary" in text
        assert "- Task 1: [COMPLETE]" in text
        assert "ran out of time" in text

    def test_second_prompt_carries_previous_attempt(self, workspace, planning_dir, write_plans):
        """The retry prompt shows what the previous attempt printed last."""
        write_plans("Core", 1)
        backend = FakeBackend([soft_failure, complete_plan_run])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert "RETRY ATTEMPT" not in backend.calls[0].prompt
        assert "### RETRY ATTEMPT 2" in backend.calls[1].prompt
        assert "###TASK_FAILED:tests still red###" in backend.calls[1].prompt


class TestSoftFailureDecision:
    """Runs that end without completing their plan."""

    def test_summary_without_signal_marks_complete(self, workspace, planning_dir, write_plans):
        """A written summary completes the plan even without the signal."""
        write_plans("Core", 1)

        def summary_only(options):
            summary_file(Path(options.context_files[0])).write_text(json.dumps({"summary": "done"}))
            return [assistant_event("Finished the tasks")], 0

        backend = FakeBackend([summary_only])
        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert len(backend.calls) == 1
        assert load_plan(first(planning_dir)[1].path).status == "complete"

    def test_tasks_complete_without_summary(self, workspace, planning_dir, write_plans):
        """All tasks marked complete leads to a retry asking for the summary."""
        write_plans("Core", 1)

        def progress_only(options):
            path = Path(options.context_files[0])
            data = json.loads(path.read_text())
            data["observations"] = "## Progress\n- Task 1: [COMPLETE] built it"
            path.write_text(json.dumps(data))
            return [assistant_event("stopping")], 0

        backend = FakeBackend([progress_only, complete_plan_run])
        make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert "All tasks appear complete" in backend.calls[1].prompt
        assert "01-01-summary.json" in backend.calls[1].prompt

    def test_manual_checkpoint_guidance(self, workspace, planning_dir, write_plans):
        """Stopping at a manual task retries with instructions to skip it."""
        write_plans("Core", 1)
        backend = FakeBackend([lambda o: ([assistant_event("Reached MANUAL TASK: configure DNS")], 0),
                               complete_plan_run])
        make_executor(workspace, backend).loop(5, skip_analysis=True)
        assert "Skip manual tasks" in backend.calls[1].prompt

    def test_confirmed_blocker_escalates(self, workspace, planning_dir, write_plans):
        """A blocker the check agent confirms stops the loop for a human."""
        write_plans("Core", 1)
        backend = FakeBackend([
            lambda o: ([assistant_event("###BLOCKED:need AWS credentials###")], 0),
            lambda o: ([assistant_event("###BLOCKER_VALID:only the account owner has keys###")], 0),
        ])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.iterations == 1
        assert result.stopped_reason.startswith("human intervention required: need AWS credentials")
        assert "need AWS credentials" in backend.calls[1].prompt
        assert backend.calls[1].allowed_tools == ["Read", "Glob", "Grep", "Bash"]

    def test_rejected_blocker_retries_with_guidance(self, workspace, planning_dir, write_plans):
        """A refuted blocker is retried with the workaround in the prompt."""
        write_plans("Core", 1)
        backend = FakeBackend([
            lambda o: ([assistant_event("###BLOCKED:no payment sandbox###")], 0),
            lambda o: ([assistant_event("###BLOCKER_INVALID:use the stub server in tests/stubs###")], 0),
            complete_plan_run,
        ])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert result.iterations == 2
        assert "use the stub server in tests/stubs" in backend.calls[2].prompt


class TestManualPlans:
    """Interactive manual plans and phase-end bundling."""

    def write_manual_plan(self, planning_dir):
        phase = add_phase(planning_dir, "Core")
        phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        save_plan(plan_file(phase_dir, 1, "01"),
                  Plan(phase=phase_dir.name, plan_number="01", plan_type=PlanType.MANUAL,
                       tasks=[Task(name="Rotate keys", task_type=TaskType.MANUAL)]))

    def test_interactive_session_completes(self, workspace, planning_dir):
        """A manual plan runs interactively and completes with its summary."""
        self.write_manual_plan(planning_dir)
        backend = FakeBackend([complete_plan_run])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert result.plans_executed == ["01-01"]
        assert "manual tasks that require human interaction" in backend.calls[0].prompt

    def test_session_without_summary_stops(self, workspace, planning_dir):
        """Leaving the session without a summary stops the loop."""
        self.write_manual_plan(planning_dir)
        backend = FakeBackend([lambda o: ([], 0)])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.stopped_reason == "manual plan 01-01 ended without a summary"
        assert len(result.errors) == 1
        assert len(backend.calls) == 1

    def test_manual_tasks_bundled_at_phase_end(self, workspace, planning_dir):
        """Manual tasks in a plan are collected into NN-99, which runs last."""
        phase = add_phase(planning_dir, "Core")
        phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        manual = Task(name="Configure DNS", task_type=TaskType.MANUAL,
                      action="Point the domain at the load balancer")
        save_plan(plan_file(phase_dir, 1, "01"),
                  Plan(phase=phase_dir.name, plan_number="01", tasks=[good_task(), manual],
                       verification=["pytest"]))
        backend = FakeBackend([complete_plan_run])

        result = make_executor(workspace, backend).loop(5, skip_analysis=True)

        assert result.completed
        assert result.plans_executed == ["01-01", "01-99"]
        bundle = load_plan(plan_file(phase_dir, 1, "99"))
        assert bundle.is_manual()
        (task,) = bundle.tasks
        assert task.name == "Configure DNS (from Plan 01-01)"
        assert task.action == "Point the domain at the load balancer"
        assert load_roadmap(planning_dir).phases[0].plans == ["01", "99"]

    def test_existing_bundle_untouched(self, workspace, planning_dir, write_plans):
        """bundle_manual_tasks never overwrites an existing NN-99 record."""
        write_plans("Core", 1)
        loaded = load_phases(planning_dir)[0]
        loaded.plans[0].tasks.append(Task(name="Sign contract", task_type=TaskType.MANUAL))
        assert bundle_manual_tasks(planning_dir, loaded) is not None
        assert bundle_manual_tasks(planning_dir, loaded) is None


class TestRunWithCancellation:
    """Signal handler installation."""

    def test_handlers_restored(self, workspace, planning_dir, write_plans):
        """Previous SIGINT/SIGTERM handlers are restored after the loop."""
        write_plans("Core", 1)
        before_int = signal.getsignal(signal.SIGINT)
        before_term = signal.getsignal(signal.SIGTERM)
        executor = make_executor(workspace, FakeBackend([complete_plan_run]))

        result = run_with_cancellation(executor, 2, skip_analysis=True)

        assert result.completed
        assert signal.getsignal(signal.SIGINT) is before_int
        assert signal.getsignal(signal.SIGTERM) is before_term
