"""
planloop verify - Check plans before execution.

Verifies one phase, or every phase that has plans when no phase is given.
With --agent the agent performs the six-dimension review; if it cannot
produce a verdict the static checks are used instead.
"""

from pathlib import Path
from typing import Optional

from planloop.backends import get_backend
from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.config import ExecutorConfig, load_config
from planloop.models.issue import VerificationResult
from planloop.models.roadmap import PhaseNumber
from planloop.prompts import PromptProvider
from planloop.state import load_phases
from planloop.verifier import (
    format_verification_result,
    verify_phase as verify_phase_plans,
    verify_with_agent,
)


def verify_phase(
    phase_number: Optional[PhaseNumber] = None,
    use_agent: bool = False,
    project_path: Optional[Path] = None,
    output_json: bool = False,
) -> dict:
    """Verify a phase's plans (all phases when phase_number is None)."""
    result = {
        "command": "verify",
        "phase": phase_number,
        "phases": [],
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)

        phases = load_phases(planning_dir)
        if phase_number is not None:
            phases = [p for p in phases if float(p.number) == float(phase_number)]
            if not phases:
                result["error"] = f"Phase {phase_number} not found in roadmap"
                if output_json:
                    emit_json(result)
                return result
        else:
            phases = [p for p in phases if p.plans]

        backend = prompts = executor_config = None
        if use_agent:
            config = load_config(root)
            backend = get_backend(config)
            prompts = PromptProvider(root)
            executor_config = ExecutorConfig.from_workspace(root, config)

        combined = VerificationResult()
        for loaded in phases:
            if use_agent:
                verdict = verify_with_agent(backend, executor_config, prompts, loaded)
            else:
                verdict = verify_phase_plans(loaded)
            combined.checked += verdict.checked
            combined.issues.extend(verdict.issues)
            result["phases"].append({"number": loaded.number, **verdict.to_dict()})

        result.update(combined.to_dict())
        result["display"] = format_verification_result(combined)
        result["message"] = f"Verification {combined.status}: {combined.checked} plan(s) checked"

    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result
