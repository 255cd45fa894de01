"""Worker Commands - Trigger-driven dispatch and stale claim recovery"""

import typer
from rich.console import Console

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.infra.jobs.reaper import StaleJobReaper
from opsqueue.v1.infra.jobs.registry_init import load_job_registry
from opsqueue.v1.infra.jobs.worker import JobWorker

from ..utils.formatting import (
    create_dispatch_summary,
    create_dispatch_table,
    print_info,
    print_success,
    print_warning,
)
from ..utils.runtime import run_command

console = Console()
app = typer.Typer(name="worker", help="Dispatch loop commands for schedulers")


@app.command("run-once")
def run_once(
    batch_size: int | None = typer.Option(
        None, "--batch-size", "-b", help="Maximum jobs to claim (default JOB_BATCH_SIZE)"
    ),
    time_budget: float | None = typer.Option(
        None, "--time-budget", "-t", help="Seconds before claiming stops"
    ),
):
    """▶ Run one bounded dispatch pass and exit"""

    async def action(settings: Settings, database: Database):
        registry = load_job_registry(settings, database)
        worker = JobWorker(database, registry, settings)
        report = await worker.run_once(batch_size=batch_size, time_budget_s=time_budget)
        return report.model_dump(mode="json")

    report = run_command("run-once", action)

    if report["claimed"] == 0:
        print_info("No eligible jobs")
    else:
        console.print(create_dispatch_table(report))
    console.print(create_dispatch_summary(report))

    if report["dead"]:
        print_warning(f"{report['dead']} job(s) moved to dead")


@app.command("reap")
def reap(
    stale_after: float | None = typer.Option(
        None, "--stale-after", help="Seconds a claim may run (default JOB_STALE_AFTER_S)"
    ),
):
    """🧹 Recover jobs stuck in running"""

    async def action(settings: Settings, database: Database):
        reaper = StaleJobReaper(database, settings)
        return await reaper.reap(stale_after_s=stale_after, actor="cli")

    report = run_command("reap", action)
    if report.total == 0:
        print_info("No stale jobs")
        return
    print_success(f"Reaped {report.total} job(s): {report.requeued} requeued, {report.dead} dead")
