import typer
from rich.table import Table

from hopper_cli.utils import console, get_client, settings
from hopper_server.triggers.definitions import TRIGGERS


def fire_trigger(name: str = typer.Argument(..., help="Trigger name, e.g. 'health-check'")) -> None:
    """Fire a timer trigger now, as the external cron would."""
    headers = {"x-cron-secret": settings.cron_secret} if settings.cron_secret else {}
    with get_client() as client:
        response = client.post(f"/cron/{name}", headers=headers)

    if response.status_code != 200:
        console.print(f"[red]Error: {response.json().get('detail', response.text)}[/red]")
        raise typer.Exit(1)

    result = response.json()
    if result["created"]:
        console.print(f"[green]Queued {result['job_type']} job {result['job_id']}[/green]")
    else:
        console.print(f"[yellow]{result['job_type']} job {result['job_id']} is still active, nothing queued[/yellow]")


def list_triggers() -> None:
    """Show the known timer triggers and their schedules."""
    table = Table(title="Triggers")
    table.add_column("Name", style="cyan")
    table.add_column("Job type", style="magenta")
    table.add_column("Schedule", style="yellow")

    for trigger in TRIGGERS.values():
        schedule = trigger.crontab or f"every {trigger.interval_seconds}s"
        table.add_row(trigger.name, trigger.job_type.value, schedule)

    console.print(table)
