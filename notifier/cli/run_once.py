"""
Run-once CLI command.

Runs a single scheduler cycle and prints its counters. Useful for cron
style deployments and for checking a deployment's configuration.
"""

import asyncio

import click

from notifier.src.main import build_scheduler
from notifier.src.scheduler import summarize
from notifier.src.utils.logging_config import init_logging


@click.command("run-once")
@click.pass_context
def run_once(ctx: click.Context) -> None:
    """
    Run one claim-and-deliver cycle, then exit.

    Example:

        notifier run-once
    """
    init_logging()
    scheduler = build_scheduler()
    try:
        stats = asyncio.run(scheduler.run_cycle())
    except Exception as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + f"Cycle failed: {e}")
        ctx.exit(1)
    finally:
        scheduler.close()

    click.echo(click.style("Cycle complete: ", fg="green", bold=True) + summarize(stats))
