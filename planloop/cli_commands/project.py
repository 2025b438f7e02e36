"""
Project Commands - Workspace setup and progress.

Commands:
- init: Create a workspace and empty roadmap
- status: Show roadmap progress and the next plan
- migrate: Import the legacy flat backlog
"""

import sys
import click

from planloop.cli_commands import finish


def register(cli):
    """Register project commands with CLI."""

    @cli.command()
    @click.argument("name", required=False)
    @click.option("--description", "-d", default="", help="Project description")
    @click.option("--force", is_flag=True, help="Overwrite an existing workspace config")
    def init(name: str, description: str, force: bool):
        """Initialize a planloop workspace in the current directory.

        NAME defaults to the directory name.

        \b
        Example:
            planloop init myapp -d "Invoice tracking service"
        """
        from planloop.commands.init_project import init_project

        result = init_project(name=name, description=description, force=force)
        finish(result, output_json=False)
        click.echo("\nNext: planloop add-phase NAME --goal GOAL")

    @cli.command()
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def status(output_json: bool):
        """Show roadmap progress and what runs next."""
        from planloop.commands.progress import format_progress, progress

        result = progress(output_json=output_json)
        if result.get("error"):
            finish(result, output_json)

        if not output_json:
            click.echo(format_progress(result))
            for step in result["next_steps"]:
                click.echo(f"\nNext: {step}")

    @cli.command()
    def migrate():
        """Import .planloop/backlog.json as a roadmap phase.

        Runs once; a second run does nothing.
        """
        from planloop.commands import COMMAND_ERRORS, resolve_project
        from planloop.migrate import migrate_backlog

        try:
            root, _ = resolve_project()
            result = migrate_backlog(root)
        except COMMAND_ERRORS as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(result["message"])
        if result["migrated"]:
            click.echo("\nNext: planloop status")
