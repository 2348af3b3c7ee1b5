import typer

from hopper_cli.utils import console, get_client


def retry_job(job_id: int = typer.Argument(..., help="Job ID")) -> None:
    """Send a failed job back to the queue."""
    with get_client() as client:
        response = client.post(f"/jobs/{job_id}/retry")

    if response.status_code != 200:
        detail = response.json().get("detail", response.text)
        console.print(f"[red]Could not retry job {job_id}: {detail}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Job {job_id} queued for retry[/green]")
