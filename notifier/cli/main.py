"""
Worker CLI entry point.

Main command group for the notification worker CLI.
"""

import click

from notifier.cli import __version__


@click.group()
@click.version_option(version=__version__, prog_name="notifier")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    Reminder notification worker.

    Claims due notification jobs from the shared job table, checks quiet
    hours and calendar availability, and delivers Web Push notifications.

    Use 'notifier COMMAND --help' for more information on a command.
    """
    # Ensure context object exists for subcommands
    ctx.ensure_object(dict)


# Import and register subcommands
from notifier.cli.start import start  # noqa: E402
from notifier.cli.run_once import run_once  # noqa: E402

cli.add_command(start)
cli.add_command(run_once)


if __name__ == "__main__":
    cli()
