"""
Planning Commands - Plan creation and checks.

Commands:
- plan: Have the agent write plan records for a phase
- discover: Classify how much research a description needs
- verify: Check plans for blockers before running them
"""

import sys
import click

from planloop.cli_commands import finish, phase_number_arg


def register(cli):
    """Register planning commands with CLI."""

    @cli.command()
    @click.argument("phase", type=float)
    @click.option("--interactive", "-i", is_flag=True, help="Plan in an interactive agent session")
    @click.option("--model", default=None, help="Model override")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def plan(phase: float, interactive: bool, model: str, output_json: bool):
        """Create plans for PHASE with the agent.

        \b
        Example:
            planloop plan 2
            planloop plan 5.1 --interactive
        """
        from planloop.commands.plan_phase import plan_phase

        result = plan_phase(
            phase_number_arg(phase),
            interactive=interactive,
            model=model,
            output_json=output_json,
            echo=not output_json,
        )
        finish(result, output_json)
        if not output_json:
            verification = result.get("verification") or {}
            if verification.get("status") == "issues_found":
                click.echo(f"\nNext: planloop verify {result['phase']}")
            else:
                click.echo("\nNext: planloop run")

    @cli.command()
    @click.argument("description")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def discover(description: str, output_json: bool):
        """Classify how much research DESCRIPTION needs.

        \b
        Example:
            planloop discover "integrate Stripe billing"
        """
        from planloop.commands.plan_phase import discover as discover_level

        result = discover_level(description, output_json=output_json)
        if not output_json:
            click.echo(result["message"])
            click.echo(f"Reason: {result['reason']}")

    @cli.command()
    @click.argument("phase", type=float, required=False)
    @click.option("--agent", "use_agent", is_flag=True, help="Ask the agent for a full review")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def verify(phase: float, use_agent: bool, output_json: bool):
        """Verify plans in PHASE (all planned phases by default).

        Exits 1 when blocker issues are found.
        """
        from planloop.commands.verify_phase import verify_phase

        number = phase_number_arg(phase) if phase is not None else None
        result = verify_phase(number, use_agent=use_agent, output_json=output_json)
        if result.get("error"):
            finish(result, output_json)

        if not output_json:
            click.echo(result["display"])
        if result["status"] == "issues_found":
            sys.exit(1)
