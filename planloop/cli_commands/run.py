"""
Run Commands - Autonomous plan execution.

Commands:
- run: Execute plans in a loop
"""

import click

from planloop.cli_commands import finish


def register(cli):
    """Register run commands with CLI."""

    @cli.command()
    @click.option("--loop", "-n", "loop", type=int, default=None,
                  help="Maximum iterations (default from config)")
    @click.option("--skip-analysis", is_flag=True, help="Do not run post-execution analysis")
    @click.option("--max-retries", type=int, default=None,
                  help="Attempts per plan before stopping (default: loop size)")
    @click.option("--model", default=None, help="Model override")
    @click.option("--stop-at-manual", is_flag=True,
                  help="Stop at manual plans instead of opening an interactive session")
    @click.option("--json", "output_json", is_flag=True, help="Output as JSON")
    def run(loop: int, skip_analysis: bool, max_retries: int, model: str,
            stop_at_manual: bool, output_json: bool):
        """Execute plans until all are complete or a stop condition hits.

        Ctrl-C stops after the plan currently running.

        \b
        Examples:
            planloop run
            planloop run --loop 3 --skip-analysis
            planloop run --stop-at-manual
        """
        from planloop.commands.execute import execute

        result = execute(
            loop=loop,
            skip_analysis=skip_analysis,
            max_retries=max_retries,
            model=model,
            stop_at_manual=stop_at_manual,
            output_json=output_json,
            echo=not output_json,
        )
        finish(result, output_json)

        if not output_json:
            for error in result["errors"]:
                click.echo(f"  ✗ {error}", err=True)
            if not result["completed"]:
                click.echo("\nNext: planloop status")
