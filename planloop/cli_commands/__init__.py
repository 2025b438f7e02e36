"""
planloop CLI Commands - Modular command structure.

Each submodule registers its commands when imported.

Structure:
    cli_commands/
    ├── __init__.py      # This file - registration and shared output helpers
    ├── project.py       # init, status, migrate
    ├── phases.py        # add-phase, insert-phase, remove-phase
    ├── planning.py      # plan, discover, verify
    └── run.py           # run

Usage:
    from planloop.cli_commands import register_all

    @click.group()
    def cli():
        pass

    register_all(cli)
"""

import sys

import click

from planloop.models.roadmap import PhaseNumber, normalize_phase_number


def phase_number_arg(value: float) -> PhaseNumber:
    """Phase numbers come in as floats; 3.0 becomes 3."""
    return normalize_phase_number(value)


def finish(result: dict, output_json: bool) -> None:
    """Print a command result and exit 1 if it failed.

    JSON output was already printed by the command itself.
    """
    if result.get("error"):
        if not output_json:
            click.echo(f"Error: {result['error']}", err=True)
            if result.get("next"):
                click.echo(f"Next: {result['next']}", err=True)
        sys.exit(1)

    if not output_json and result.get("message"):
        click.echo(result["message"])


def register_all(cli: click.Group) -> None:
    """Register all command modules with the CLI group.

    Each module has a `register(cli)` function that adds its commands
    to the CLI group using Click decorators.

    Args:
        cli: The Click group to register commands with
    """
    from . import project
    from . import phases
    from . import planning
    from . import run

    project.register(cli)
    phases.register(cli)
    planning.register(cli)
    run.register(cli)
