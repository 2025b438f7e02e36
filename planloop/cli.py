"""
planloop CLI - Drive a coding agent through a roadmap of plans.

Commands:
- Project: init, status, migrate
- Phases: add-phase, insert-phase, remove-phase
- Planning: plan, discover, verify
- Execution: run
"""

import logging

import click

from planloop import __version__
from planloop.cli_commands import register_all


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """planloop - Autonomous plan execution for coding agents.

    Break work into phases and plans, then let the agent execute them one at
    a time while planloop tracks progress on disk.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


register_all(cli)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
