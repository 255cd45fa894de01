"""Rich Formatting Utilities for Queue CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "blue",
    "succeeded": "green",
    "failed": "red",
    "dead": "bold red",
    "success": "green",
    "partial": "yellow",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _short(value: str | None) -> str:
    return value[:8] if value else "—"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Priority", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Next Run", justify="left")
    table.add_column("Batch", justify="left", style="dim", no_wrap=True)
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        error = job.get("error") or ""
        table.add_row(
            _short(job.get("id")),
            job.get("job_type", ""),
            str(job.get("priority", 0)),
            _status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("next_run_at", "")[:19],
            _short(job.get("correlation_id")),
            error[:40] + "..." if len(error) > 40 else error or "—",
        )

    return table


def display_job(job: dict[str, Any]):
    """Display every field of one job"""
    lines = [
        f"• Type: [magenta]{job['job_type']}[/magenta]",
        f"• Status: {_status(job['status'])}",
        f"• Priority: {job['priority']}",
        f"• Attempts: [yellow]{job['attempts']}/{job['max_attempts']}[/yellow]",
        f"• Next run: {job['next_run_at']}",
        f"• Correlation: [dim]{job['correlation_id']}[/dim]",
    ]
    if job.get("parent_run_id"):
        lines.append(f"• Run: [dim]{job['parent_run_id']}[/dim]")
    if job.get("claimed_by"):
        lines.append(f"• Claimed by: {job['claimed_by']}")
    if job.get("started_at"):
        lines.append(f"• Started: {job['started_at']}")
    if job.get("ended_at"):
        lines.append(f"• Ended: {job['ended_at']}")
    if job.get("error"):
        lines.append(f"• Error ({job.get('error_kind') or 'unknown'}): [red]{job['error']}[/red]")

    console.print(Panel("\n".join(lines), title=f"Job {job['id']}", border_style="cyan"))
    console.print(Panel(str(job.get("payload", {})), title="Payload", border_style="blue"))
    if job.get("result"):
        console.print(Panel(str(job["result"]), title="Result", border_style="green"))


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_status = ", ".join(f"{k}: {v}" for k, v in sorted(stats["by_status"].items())) or "—"
    by_type = ", ".join(f"{k}: {v}" for k, v in sorted(stats["by_type"].items())) or "—"
    avg_runtime = stats.get("avg_runtime_seconds")

    content = f"""
📊 [bold blue]Last {stats['window_hours']}h[/bold blue]

• Jobs created: [blue]{stats['total_jobs']}[/blue]
• By status: {by_status}
• By type: {by_type}
• Queue depth: [yellow]{stats['queue_depth']}[/yellow]
• Dead in window: [red]{stats['dead_in_window']}[/red]
• Avg runtime: [green]{f"{avg_runtime:.2f}s" if avg_runtime is not None else "—"}[/green]
"""

    return Panel(content, title="Queue Statistics", border_style="green")


def create_dispatch_table(report: dict[str, Any]) -> Table:
    """Create formatted table for the per-job outcomes of a dispatch pass"""
    table = Table(title=f"Dispatch {report['worker_id']}", box=box.ROUNDED)

    table.add_column("Job", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Outcome", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Duration", justify="right")
    table.add_column("Error", justify="left", style="red")

    outcome_styles = {
        "succeeded": "green",
        "retried": "yellow",
        "dead": "bold red",
        "released": "blue",
    }
    for outcome in report.get("outcomes", []):
        style = outcome_styles.get(outcome["outcome"], "white")
        table.add_row(
            _short(outcome["job_id"]),
            outcome["job_type"],
            f"[{style}]{outcome['outcome']}[/{style}]",
            str(outcome["attempts"]),
            f"{outcome['duration_ms']}ms",
            outcome.get("error") or "—",
        )

    return table


def create_dispatch_summary(report: dict[str, Any]) -> Panel:
    reaped = report.get("reaped", {})
    content = (
        f"• Claimed: [cyan]{report['claimed']}[/cyan]\n"
        f"• Succeeded: [green]{report['succeeded']}[/green]\n"
        f"• Retried: [yellow]{report['retried']}[/yellow]\n"
        f"• Dead: [red]{report['dead']}[/red]\n"
        f"• Released: [blue]{report.get('released', 0)}[/blue]\n"
        f"• Reaped: {reaped.get('requeued', 0)} requeued, {reaped.get('dead', 0)} dead\n"
        f"• Budget exhausted: {'yes' if report['skipped_budget'] else 'no'}\n"
        f"• Duration: {report['duration_ms']}ms"
    )
    return Panel(content, title="Dispatch Summary", border_style="cyan")


def create_runs_table(runs: list[dict[str, Any]]) -> Table:
    """Create formatted table for runs"""
    table = Table(title="Runs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Kind", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Started", justify="left")
    table.add_column("Ended", justify="left")
    table.add_column("Steps", justify="left")
    table.add_column("Error", justify="left", style="red")

    for run in runs:
        steps = run.get("stats", {}).get("steps", {})
        steps_str = ", ".join(
            f"{name} {c.get('succeeded', 0)}/{c.get('attempted', 0)}"
            for name, c in steps.items()
        )
        table.add_row(
            _short(run.get("id")),
            run.get("kind", ""),
            _status(run.get("status", "")),
            (run.get("started_at") or "—")[:19],
            (run.get("ended_at") or "—")[:19],
            steps_str or "—",
            run.get("error_message") or "—",
        )

    return table
