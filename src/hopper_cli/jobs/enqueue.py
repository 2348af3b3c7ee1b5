import json
from typing import Optional

import typer

from hopper_cli.utils import console, get_client


def enqueue_job(
    job_type: str = typer.Argument(..., help="Job type, e.g. 'health_check'"),
    payload: str = typer.Option("{}", "--payload", "-p", help="Payload as a JSON object"),
    dedupe_key: Optional[str] = typer.Option(None, "--dedupe-key", "-k", help="Collapse with an active job"),
    delay: int = typer.Option(0, "--delay", "-d", help="Seconds before the job becomes due"),
    on_duplicate: str = typer.Option("ignore", "--on-duplicate", help="ignore, merge or reschedule"),
) -> None:
    """Queue a job."""
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid payload JSON: {e}[/red]")
        raise typer.Exit(1)

    request = {
        "type": job_type,
        "payload": body,
        "dedupe_key": dedupe_key,
        "delay_seconds": delay,
        "on_duplicate": on_duplicate,
    }
    with get_client() as client:
        response = client.post("/jobs", json=request)

    if response.status_code != 200:
        console.print(f"[red]Error: {response.json().get('detail', response.text)}[/red]")
        raise typer.Exit(1)

    result = response.json()
    if result["created"]:
        console.print(f"[green]Queued job {result['id']}[/green]")
    else:
        verb = "updated" if result.get("merged") else "already active as"
        console.print(f"[yellow]Duplicate: {verb} job {result['id']}[/yellow]")
