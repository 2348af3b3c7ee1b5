import asyncio
import logging

import typer

from hopper_cli.utils import console, settings


def run_job(job_id: int = typer.Argument(..., help="Job ID")) -> None:
    """Run one pending job in this process, without waiting for a worker."""
    from hopper_server.errors import HopperError
    from hopper_server.queues.executor import Outcome
    from hopper_server.worker import run_single_job

    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
    try:
        outcome = asyncio.run(run_single_job(settings, job_id))
    except HopperError as e:
        console.print(f"[red]Could not run job {job_id}: {e}[/red]")
        raise typer.Exit(1)

    style = {Outcome.COMPLETED: "green", Outcome.RETRY_SCHEDULED: "yellow"}.get(outcome, "red")
    console.print(f"[{style}]Job {job_id}: {outcome.value}[/{style}]")
    if outcome is not Outcome.COMPLETED:
        raise typer.Exit(1)
