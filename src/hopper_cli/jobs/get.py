import json

import typer

from hopper_cli.utils import console, get_client


def get_job(
    job_id: int = typer.Argument(..., help="Job ID"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only output the job status"),
) -> None:
    """Get a specific job."""
    try:
        with get_client() as client:
            response = client.get(f"/jobs/{job_id}")
            response.raise_for_status()
            job = response.json()
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if quiet:
        print(job["status"])
        return

    console.print(f"[cyan]Job ID:[/cyan] {job['id']}")
    console.print(f"[cyan]Type:[/cyan] {job['type']}")
    console.print(f"[cyan]Status:[/cyan] {job['status']}")
    console.print(f"[cyan]Attempts:[/cyan] {job['attempts']}/{job['max_attempts']}")
    console.print(f"[cyan]Run after:[/cyan] {job['run_after']}")
    if job.get("dedupe_key"):
        console.print(f"[cyan]Dedupe key:[/cyan] {job['dedupe_key']}")
    if job.get("progress_message"):
        console.print(f"[cyan]Progress:[/cyan] {job.get('progress_percent') or 0}% {job['progress_message']}")
    console.print(f"[cyan]Payload:[/cyan] {json.dumps(job['payload'])}")
    if job.get("result") is not None:
        console.print(f"[green]Result:[/green] {json.dumps(job['result'])}")
    if job.get("error"):
        console.print(f"[red]Error:[/red] {job['error']}")
