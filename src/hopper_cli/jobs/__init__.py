import typer

from hopper_cli.jobs.enqueue import enqueue_job
from hopper_cli.jobs.get import get_job
from hopper_cli.jobs.list import list_jobs
from hopper_cli.jobs.retry import retry_job
from hopper_cli.jobs.run import run_job

app = typer.Typer()
app.command("list")(list_jobs)
app.command("get")(get_job)
app.command("retry")(retry_job)
app.command("enqueue")(enqueue_job)
app.command("run")(run_job)
