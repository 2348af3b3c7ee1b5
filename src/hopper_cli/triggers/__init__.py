import typer

from hopper_cli.triggers.fire import fire_trigger, list_triggers

app = typer.Typer()
app.command("fire")(fire_trigger)
app.command("list")(list_triggers)
