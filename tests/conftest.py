"""
Shared fixtures: temporary workspaces, plan records and a scripted backend.
"""

import io
import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from planloop.backends.base import Backend, ExecuteOptions
from planloop.models.plan import Plan
from planloop.models.task import Task
from planloop.state import (
    add_phase,
    init_project,
    phases_dir,
    plan_file,
    save_plan,
    summary_file,
)
from planloop.workspace import init_workspace, planning_path


def assistant_event(text: str = "", tools: Optional[List[str]] = None, usage: Optional[dict] = None) -> str:
    content = [{"type": "tool_use", "name": name} for name in tools or []]
    if text:
        content.append({"type": "text", "text": text})
    message = {"content": content}
    if usage is not None:
        message["usage"] = usage
    return json.dumps({"type": "assistant", "message": message})


def result_event(text: str) -> str:
    return json.dumps({"type": "result", "result": text})


class FakeProcess:
    """Stands in for AgentProcess, serving canned stream lines."""

    def __init__(self, lines: List[str], exit_code: int = 0):
        self.stream = io.StringIO("".join(line + "\n" for line in lines))
        self.exit_code = exit_code
        self.timed_out = False
        self.killed = False
        self.closed = False

    def readline(self, limit: int = -1) -> str:
        return self.stream.readline(limit)

    def kill(self) -> None:
        self.killed = True

    def close(self) -> int:
        self.closed = True
        return self.exit_code

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FakeBackend(Backend):
    """Backend that replays scripted runs.

    Each script entry is a callable taking the ExecuteOptions and returning
    (lines, exit_code). The callable may write files to simulate the agent.
    The last entry repeats once the script runs out.
    """

    name = "fake"

    def __init__(self, script: List[Callable[[ExecuteOptions], tuple]]):
        self.script = list(script)
        self.calls: List[ExecuteOptions] = []

    def execute(self, options: ExecuteOptions) -> FakeProcess:
        self.calls.append(options)
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        lines, exit_code = step(options)
        return FakeProcess(lines, exit_code)

    def execute_interactive(self, options: ExecuteOptions) -> int:
        self.calls.append(options)
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        _, exit_code = step(options)
        return exit_code


def complete_plan_run(options: ExecuteOptions):
    """Agent run that writes the summary and signals plan completion."""
    plan_path = Path(options.context_files[0])
    summary_file(plan_path).write_text(json.dumps({"summary": "done"}))
    return [assistant_event("Implemented everything. ###PLAN_COMPLETE###")], 0


def good_task(name: str = "Build feature") -> Task:
    return Task(
        name=name,
        id="1",
        files=["app/feature.py"],
        action="Implement the feature module with its public functions",
        verify="pytest tests/test_feature.py",
        done="Feature tests pass",
    )


@pytest.fixture
def workspace(tmp_path):
    """An initialized workspace with an empty roadmap."""
    root = init_workspace(tmp_path)
    init_project(planning_path(root), "demo", "Demo project")
    return root


@pytest.fixture
def planning_dir(workspace):
    return planning_path(workspace)


@pytest.fixture
def write_plans(planning_dir):
    """Add a phase with n valid plans. Returns the phase."""

    def _write(name: str, count: int, tasks_per_plan: int = 1, goal: str = "") -> object:
        phase = add_phase(planning_dir, name, goal)
        phase_dir = phases_dir(planning_dir) / phase.get_phase_dir_name()
        for i in range(1, count + 1):
            plan_number = f"{i:02d}"
            plan = Plan(
                phase=phase_dir.name,
                plan_number=plan_number,
                objective=f"{name} plan {i}",
                tasks=[good_task(f"Task {t}") for t in range(1, tasks_per_plan + 1)],
                verification=["pytest"],
            )
            save_plan(plan_file(phase_dir, phase.number, plan_number), plan)
        return phase

    return _write
