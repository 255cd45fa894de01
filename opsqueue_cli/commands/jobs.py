"""Jobs Commands - Enqueue, browse and administer queued jobs"""

import json
from pathlib import Path
from typing import Any
from uuid import UUID

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.panel import Panel

from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.core.exceptions import NotFoundError
from opsqueue.v1.infra.jobs.models import JobStatus
from opsqueue.v1.infra.jobs.schemas import JobListFilters, JobResponse, JobSpec
from opsqueue.v1.infra.jobs.service import PRESETS, JobService

from ..utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    display_job,
    print_error,
    print_info,
    print_success,
)
from ..utils.runtime import run_command

console = Console()
app = typer.Typer(name="jobs", help="Job enqueueing and inspection commands")


def _parse_uuid(value: str, name: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise typer.BadParameter(f"{name} must be a UUID") from None


def _load_specs(
    job_type: str | None,
    payload: str | None,
    priority: int | None,
    max_attempts: int | None,
    delay: float | None,
    file: Path | None,
) -> list[JobSpec]:
    if file is not None:
        try:
            raw = json.loads(file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise typer.BadParameter(f"Cannot read batch file: {e}") from None
        entries: list[dict[str, Any]] = raw.get("jobs", []) if isinstance(raw, dict) else raw
    elif job_type:
        try:
            parsed_payload = json.loads(payload) if payload else {}
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"--payload is not valid JSON: {e}") from None
        entries = [
            {
                "job_type": job_type,
                "payload": parsed_payload,
                "priority": priority,
                "max_attempts": max_attempts,
                "delay_seconds": delay,
            }
        ]
    else:
        raise typer.BadParameter("Give a JOB_TYPE or --file")

    try:
        return [JobSpec.model_validate(entry) for entry in entries]
    except PydanticValidationError as e:
        print_error(f"Invalid job spec: {e}")
        raise typer.Exit(2) from None


@app.command("enqueue")
def enqueue(
    job_type: str | None = typer.Argument(None, help="Job type to enqueue"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON payload"),
    priority: int | None = typer.Option(None, "--priority", help="Higher runs first"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", help="Attempt ceiling"),
    delay: float | None = typer.Option(None, "--delay", help="Seconds before eligible"),
    file: Path | None = typer.Option(
        None, "--file", "-f", help="JSON file with a list of job specs"
    ),
):
    """➕ Enqueue one job, or a batch from a JSON file"""
    specs = _load_specs(job_type, payload, priority, max_attempts, delay, file)

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            return await JobService(settings).enqueue_batch(
                session, specs, actor="cli"
            )

    result = run_command("enqueue", action)
    print_success(f"Enqueued {result.count} job(s) in batch {result.correlation_id}")
    for job_id in result.job_ids:
        console.print(f"  • [cyan]{job_id}[/cyan]")


@app.command("preset")
def preset(
    name: str = typer.Argument(..., help=f"Preset name ({', '.join(sorted(PRESETS))})"),
):
    """🗓 Enqueue a named scheduled batch"""

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            return await JobService(settings).enqueue_preset(
                session, name, actor="cli"
            )

    result = run_command("preset", action)
    print_success(
        f"Enqueued preset '{name}': {result.count} job(s) in batch {result.correlation_id}"
    )


@app.command("list")
def list_jobs(
    status: list[JobStatus] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    correlation_id: str | None = typer.Option(
        None, "--correlation", "-c", help="Filter by batch correlation id"
    ),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    filters = JobListFilters(
        status=status or None,
        job_type=job_type,
        correlation_id=_parse_uuid(correlation_id, "--correlation")
        if correlation_id
        else None,
        limit=limit,
        offset=offset,
    )

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            jobs, total = await JobService(settings).list_jobs(session, filters)
            return [
                JobResponse.model_validate(job).model_dump(mode="json") for job in jobs
            ], total

    jobs, total = run_command("list", action)

    if not jobs:
        console.print(
            Panel(
                "📭 [yellow]No jobs found![/yellow]",
                title="Empty Results",
                border_style="yellow",
            )
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")
    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("show")
def show(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show one job in detail"""
    parsed = _parse_uuid(job_id, "JOB_ID")

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            job = await JobService(settings).get_job(session, parsed)
            if job is None:
                raise NotFoundError("Job not found", details={"job_id": job_id})
            return JobResponse.model_validate(job).model_dump(mode="json")

    display_job(run_command("show", action))


@app.command("stats")
def stats(
    window: int = typer.Option(24, "--window", "-w", help="Window in hours"),
):
    """📊 Show queue statistics"""

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            result = await JobService(settings).get_job_stats(session, window)
            return result.model_dump(mode="json")

    console.print(create_stats_panel(run_command("stats", action)))


@app.command("requeue")
def requeue(job_id: str = typer.Argument(..., help="Dead job to requeue")):
    """♻ Reset a dead job to pending"""
    parsed = _parse_uuid(job_id, "JOB_ID")

    async def action(settings: Settings, database: Database):
        async with database.session() as session:
            return await JobService(settings).requeue_dead_job(
                session, parsed, actor="cli"
            )

    job = run_command("requeue", action)
    print_success(f"Job {job.id} requeued ({job.status})")
    print_info("It will run on the next dispatch pass")
