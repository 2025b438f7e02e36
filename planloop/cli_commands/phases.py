"""
Phase Commands - Roadmap phase management.

Commands:
- add-phase: Append a phase to the roadmap
- insert-phase: Insert a phase after an existing one (renumbers later phases)
- remove-phase: Remove a phase and its plans (renumbers later phases)
"""

import click

from planloop.cli_commands import finish, phase_number_arg


def register(cli):
    """Register phase commands with CLI."""

    @cli.command("add-phase")
    @click.argument("name")
    @click.option("--goal", "-g", default="", help="What the phase accomplishes")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def add_phase_cmd(name: str, goal: str, output_json: bool):
        """Append a phase to the roadmap.

        \b
        Example:
            planloop add-phase "Authentication" --goal "Users can log in"
        """
        from planloop.commands.add_phase import add_phase

        result = add_phase(name, goal=goal, output_json=output_json)
        finish(result, output_json)
        if not output_json:
            click.echo(f"\nNext: planloop plan {result['phase_number']}")

    @cli.command("insert-phase")
    @click.argument("after", type=int)
    @click.argument("name")
    @click.option("--goal", "-g", default="", help="What the phase accomplishes")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def insert_phase_cmd(after: int, name: str, goal: str, output_json: bool):
        """Insert a phase after phase AFTER.

        Later phases shift up by one; decimal sub-phases keep their numbers.

        \b
        Example:
            planloop insert-phase 2 "Data migration"
        """
        from planloop.commands.insert_phase import insert_phase

        result = insert_phase(after, name, goal=goal, output_json=output_json)
        finish(result, output_json)

    @cli.command("remove-phase")
    @click.argument("number", type=float)
    @click.option("--force", is_flag=True, help="Do not ask for confirmation")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def remove_phase_cmd(number: float, force: bool, output_json: bool):
        """Remove phase NUMBER and delete its plans.

        Later phases shift down by one.
        """
        from planloop.commands.remove_phase import remove_phase

        number = phase_number_arg(number)
        if not force:
            click.confirm(f"Remove phase {number} and all of its plans?", abort=True)

        result = remove_phase(number, output_json=output_json)
        finish(result, output_json)
