from typing import Optional

import typer

from hopper_cli.utils import console, get_client


def register_connector(
    connector_id: str = typer.Argument(..., help="Connector ID"),
    connector_type: str = typer.Option(..., "--type", "-t", help="google_drive or zoom"),
    channel_id: Optional[str] = typer.Option(None, "--channel-id", "-c", help="Provider watch channel ID"),
    webhook_secret: Optional[str] = typer.Option(None, "--secret", help="Channel token or signing secret"),
    inactive: bool = typer.Option(False, "--inactive", help="Register without accepting notifications"),
) -> None:
    """Register or update a connector's webhook settings."""
    body = {
        "id": connector_id,
        "connector_type": connector_type,
        "channel_id": channel_id,
        "webhook_secret": webhook_secret,
        "is_active": not inactive,
    }
    with get_client() as client:
        response = client.put(f"/connectors/{connector_id}", json=body)

    if response.status_code != 200:
        console.print(f"[red]Error: {response.json().get('detail', response.text)}[/red]")
        raise typer.Exit(1)

    connector = response.json()
    state = "active" if connector["is_active"] else "inactive"
    console.print(f"[green]Connector {connector['id']} ({connector['connector_type']}) registered, {state}[/green]")
