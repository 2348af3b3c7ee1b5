import typer

from hopper_cli.connectors.register import register_connector

app = typer.Typer()
app.command("register")(register_connector)
