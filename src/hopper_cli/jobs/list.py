from typing import Optional

import typer
from rich.table import Table

from hopper_cli.utils import console, get_client, status_style


def list_jobs(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    job_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of jobs to list"),
) -> None:
    """List jobs, newest first."""
    params: dict = {"limit": limit}
    if status:
        params["status"] = status
    if job_type:
        params["type"] = job_type

    try:
        with get_client() as client:
            response = client.get("/jobs", params=params)
            response.raise_for_status()
            data = response.json()
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    metrics = data.get("metrics", {})
    console.print(
        f"[cyan]Queue:[/cyan] {metrics.get('pending', 0)} pending, {metrics.get('processing', 0)} processing, "
        f"{metrics.get('completed', 0)} completed, {metrics.get('failed', 0)} failed"
    )

    jobs = data.get("data", [])
    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Attempts", style="yellow")
    table.add_column("Run after", style="blue")
    table.add_column("Error", style="red")

    for job in jobs:
        style = status_style(job["status"])
        table.add_row(
            str(job["id"]),
            job["type"],
            f"[{style}]{job['status']}[/{style}]",
            f"{job['attempts']}/{job['max_attempts']}",
            str(job["run_after"]),
            (job.get("error") or "-")[:60],
        )

    console.print(table)
