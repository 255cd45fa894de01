"""Runs Commands - Orchestration run history"""

import typer
from rich.console import Console

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.infra.runs.models import RunStatus
from opsqueue.v1.infra.runs.schemas import RunListFilters, RunResponse
from opsqueue.v1.infra.runs.tracker import RunTracker

from ..utils.formatting import create_runs_table, print_info
from ..utils.runtime import run_command

console = Console()
app = typer.Typer(name="runs", help="Run history commands")


@app.command("list")
def list_runs(
    kind: str | None = typer.Option(None, "--kind", "-k", help="Filter by run kind"),
    status: RunStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of runs to show"),
):
    """📋 List runs, newest first"""
    filters = RunListFilters(kind=kind, status=status, limit=limit)

    async def action(settings: Settings, database: Database):
        tracker = RunTracker(database, settings)
        async with database.session() as session:
            runs, total = await tracker.list_runs(session, filters)
            return [
                RunResponse.model_validate(run).model_dump(mode="json") for run in runs
            ], total

    runs, total = run_command("runs", action)
    if not runs:
        print_info("No runs recorded")
        return

    console.print(create_runs_table(runs))
    console.print(f"\n📊 Showing [cyan]{len(runs)}[/cyan] of [yellow]{total}[/yellow] runs")
