"""
planloop plan - Have the agent author plan records for a phase.

Orchestrates:
- Discovery level classification from the phase name and goal
- Plan creation by the agent (headless or interactive)
- Roadmap sync from the plan files the agent wrote
- Static verification of the new plans
"""

from pathlib import Path
from typing import Optional

from planloop.backends import ExecuteOptions, get_backend
from planloop.commands import COMMAND_ERRORS, emit_json, record_error, resolve_project
from planloop.config import load_config
from planloop.discovery import detect_discovery_level, get_level_description
from planloop.models.roadmap import PhaseNumber
from planloop.prompts import PromptProvider
from planloop.state import (
    ensure_phase_dir,
    load_phase_plans,
    load_roadmap,
    set_discovery_level,
    sync_roadmap_with_disk,
    update_state,
)
from planloop.stream import ConsoleHandler, StreamError, parse_stream
from planloop.verifier import verify_plans


def plan_phase(
    phase_number: PhaseNumber,
    interactive: bool = False,
    model: Optional[str] = None,
    project_path: Optional[Path] = None,
    output_json: bool = False,
    echo: bool = True,
) -> dict:
    """Plan a phase."""
    result = {
        "command": "plan",
        "phase": phase_number,
    }

    try:
        root, planning_dir = resolve_project(project_path)
        result["project"] = str(root)
        config = load_config(root)

        phase = load_roadmap(planning_dir).get_phase(phase_number)
        if phase is None:
            result["error"] = f"Phase {phase_number} not found in roadmap"
            if output_json:
                emit_json(result)
            return result

        level, reason = detect_discovery_level(f"{phase.name}. {phase.goal}")
        set_discovery_level(planning_dir, phase.number, level)
        result["discovery_level"] = int(level)
        result["discovery_reason"] = reason

        phase_dir = ensure_phase_dir(planning_dir, phase)
        before = {p.path for p in load_phase_plans(phase_dir)}

        prompt = PromptProvider(root).render(
            "plan",
            phase_number=phase.number,
            phase_name=phase.name,
            phase_goal=phase.goal or "(none)",
            discovery_level=f"{level.name} - {get_level_description(level)}",
            phase_dir=phase_dir,
        )
        options = ExecuteOptions(
            prompt=prompt,
            context_files=[str(planning_dir / "project.json"), str(planning_dir / "roadmap.json")],
            model=model or config.model,
            allowed_tools=list(config.claude.allowed_tools),
            work_dir=root,
            inactivity_timeout_mins=config.build.inactivity_timeout_mins,
        )

        update_state(planning_dir, phase.number, None, f"Planning phase {phase.number}", status="planning")
        backend = get_backend(config)
        if interactive:
            exit_code = backend.execute_interactive(options)
        else:
            handler = ConsoleHandler(token_threshold=config.build.token_threshold, echo=echo)
            process = backend.execute(options)
            try:
                parse_stream(process, handler, config.build.signals)
            except StreamError:
                process.kill()
                raise
            finally:
                exit_code = process.close()
        result["exit_code"] = exit_code

        synced = sync_roadmap_with_disk(planning_dir, phase.number)
        plans = load_phase_plans(phase_dir)
        result["plans"] = synced.plans
        result["plans_created"] = sum(1 for p in plans if p.path not in before)

        verification = verify_plans(plans)
        result["verification"] = verification.to_dict()
        update_state(planning_dir, phase.number, None, f"Planned phase {phase.number}")

        if exit_code != 0:
            result["error"] = f"Planning agent exited with status {exit_code}"
        elif not plans:
            result["error"] = f"No plan files were written to {phase_dir}"
        else:
            result["message"] = (
                f"Phase {phase.number}: {len(plans)} plan(s), "
                f"{result['plans_created']} new ({verification.status})"
            )

    except StreamError as e:
        result["error"] = f"Planning stream failed: {e}"
    except COMMAND_ERRORS as e:
        record_error(result, e)

    if output_json:
        emit_json(result)

    return result


def discover(description: str, output_json: bool = False) -> dict:
    """Classify how much research a piece of work needs."""
    level, reason = detect_discovery_level(description)
    result = {
        "command": "discover",
        "description": description,
        "level": int(level),
        "level_name": level.name,
        "reason": reason,
        "message": f"Level {int(level)} ({level.name}): {get_level_description(level)}",
    }

    if output_json:
        emit_json(result)

    return result
