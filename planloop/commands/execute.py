"""
planloop run - Execute plans in a loop until done or stopped.

Each iteration picks the next incomplete plan, verifies it, runs the agent
on it, and analyzes its observations. Manual plans open an interactive
session unless stop_at_manual is set. SIGINT/SIGTERM stop the loop at the
next iteration boundary.
"""

from dataclasses import asdict
from pathlib import Path
from typing import Optional

from planloop.backends import get_backend
from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.config import ExecutorConfig, load_config
from planloop.executor import Executor, run_with_cancellation
from planloop.prompts import PromptProvider
from planloop.state import count_plans, load_phases


def execute(
    loop: Optional[int] = None,
    skip_analysis: bool = False,
    max_retries: Optional[int] = None,
    model: Optional[str] = None,
    stop_at_manual: bool = False,
    project_path: Optional[Path] = None,
    output_json: bool = False,
    echo: bool = True,
) -> dict:
    """Run the execution loop."""
    result = {
        "command": "run",
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)

        config = load_config(root)
        iterations = loop or config.build.default_loop_iterations
        executor_config = ExecutorConfig.from_workspace(
            root,
            config,
            model=model,
            max_retries=max_retries,
            skip_analysis=skip_analysis,
            interactive_manual=not stop_at_manual,
        )

        phases = load_phases(planning_dir)
        total, _ = count_plans(phases)
        if total == 0:
            result["error"] = "No plans to execute"
            result["next"] = "planloop plan PHASE"
            if output_json:
                emit_json(result)
            return result

        executor = Executor(
            executor_config,
            get_backend(config),
            prompts=PromptProvider(root),
            echo=echo,
        )
        loop_result = run_with_cancellation(executor, iterations, skip_analysis)

        result["iterations"] = loop_result.iterations
        result["plans_executed"] = loop_result.plans_executed
        result["completed"] = loop_result.completed
        result["stopped_reason"] = loop_result.stopped_reason
        result["errors"] = loop_result.errors
        result["analyses"] = [asdict(a) for a in loop_result.analyses]

        _, completed = count_plans(load_phases(planning_dir))
        result["plans_total"] = total
        result["plans_complete"] = completed
        result["message"] = (
            f"{loop_result.stopped_reason} after {loop_result.iterations} iteration(s); "
            f"{completed}/{total} plans complete"
        )

    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
