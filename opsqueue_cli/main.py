"""OpsQueue CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database

from .commands import jobs, runs, worker
from .utils.formatting import print_success
from .utils.runtime import load_settings, run_command

console = Console()

# Create main Typer app
app = typer.Typer(
    name="opsqueue",
    help="📬 OpsQueue - persisted job queue and dispatch CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(worker.app, name="worker")
app.add_typer(runs.app, name="runs")


@app.command("init-db")
def init_db():
    """🗄 Create tables directly from the models (local SQLite, tests)"""

    async def action(settings: Settings, database: Database):
        await database.create_all()
        return settings.database_url

    url = run_command("init-db", action)
    print_success(f"Tables ready at {url}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    📬 OpsQueue CLI

    Scheduler entrypoint for the job queue: enqueue batches, run bounded
    dispatch passes, and inspect queue state.
    """
    if version:
        settings = load_settings()
        console.print(
            Panel(
                f"📬 [bold cyan]{settings.app_name}[/bold cyan] v[green]{settings.version}[/green]",
                border_style="cyan",
            )
        )
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
