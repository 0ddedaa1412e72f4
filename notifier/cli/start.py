"""
Start CLI command.

Starts the health endpoint and the scheduler loop.
"""

import sys

import click

from notifier.src.config.settings import get_settings
from notifier.src.main import run_worker


@click.command()
@click.option(
    "--no-health",
    is_flag=True,
    default=False,
    help="Do not serve the /health endpoint.",
)
@click.pass_context
def start(ctx: click.Context, no_health: bool) -> None:
    """
    Start the notification worker.

    The worker polls the job table every WORKER_POLL_MS milliseconds and
    runs continuously until stopped with Ctrl+C or SIGTERM.

    Example:

        notifier start
    """
    settings = get_settings()

    if not settings.vapid_configured:
        click.echo(
            click.style("Warning: ", fg="yellow", bold=True)
            + "VAPID keys are not configured; push jobs will be skipped."
        )

    click.echo("Starting notification worker...")
    click.echo(f"  Poll interval: {settings.poll_interval_ms}ms")
    click.echo(f"  Claim limit: {settings.claim_limit}")
    click.echo(f"  Max concurrency: {settings.max_concurrency}")
    if not no_health:
        click.echo(f"  Health: http://0.0.0.0:{settings.health_port}/health")
    click.echo()
    click.echo("Press Ctrl+C to stop")
    click.echo()

    exit_code = run_worker(serve_health=not no_health)
    sys.exit(exit_code)
