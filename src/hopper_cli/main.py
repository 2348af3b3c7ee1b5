"""Hopper CLI - Main entry point."""

import typer

from hopper_cli import connectors, jobs, triggers

app = typer.Typer(
    help="Hopper - Background job queue",
    no_args_is_help=True,
)

app.add_typer(jobs.app, name="jobs", help="Inspect and manage jobs")
app.add_typer(connectors.app, name="connectors", help="Connector configuration")
app.add_typer(triggers.app, name="cron", help="Fire timer triggers")


@app.command()
def serve() -> None:
    """Run the API server."""
    from hopper_server.main import main as serve_main

    serve_main()


@app.command()
def worker() -> None:
    """Run a worker that claims and executes jobs."""
    from hopper_server.worker import main as worker_main

    worker_main()


@app.command()
def scheduler() -> None:
    """Run the timer triggers in-process instead of an external cron."""
    from hopper_server.triggers.scheduler import main as scheduler_main

    scheduler_main()


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
