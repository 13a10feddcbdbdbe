"""
Command Line Interface for the plan-graph engine.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..controller import create_controller
from ..errors import EngineError
from ..log_config import configure_logging
from ..models import ProgressEvent, RunRequest, RunSummary
from ..workspace import create_workspace_store

app = typer.Typer(help="Plan-graph engine - plan, execute and inspect artifact runs")
console = Console()

STATUS_STYLES = {
    "completed": "green",
    "awaiting-input": "yellow",
    "failed": "red",
    "running": "cyan",
}


RUN_STATE_DB = "run_state.db"


def _setup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


def _controller():
    """Controller whose run table outlives this process.

    Each command runs in its own process, so the in-memory table is swapped
    for a SQLite file under the workspace root.
    """
    settings = get_settings()
    if settings.run_state_url.startswith("memory://"):
        parsed = urlparse(settings.workspace_root)
        root = Path(parsed.path if parsed.scheme == "file" else settings.workspace_root)
        root.mkdir(parents=True, exist_ok=True)
        settings = settings.model_copy(
            update={"run_state_url": f"sqlite:///{root / RUN_STATE_DB}"}
        )
    return create_controller(settings)


def _print_progress(event: ProgressEvent) -> None:
    detail = event.message or ""
    if event.step_id:
        detail = f"{event.step_id} {detail}".strip()
    console.print(f"[dim]{event.type.value}[/dim] {detail}")


def _print_summary(summary: RunSummary) -> None:
    style = STATUS_STYLES.get(summary.status.value, "white")
    table = Table(title=f"Run {summary.run_id}", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Status", f"[{style}]{summary.status.value}[/{style}]")
    if summary.artifact is not None:
        table.add_row("Artifact", f"{summary.artifact.kind} ({summary.artifact.id})")
    if summary.verification is not None:
        table.add_row(
            "Verification",
            f"{summary.verification.status.value}, {len(summary.verification.issues)} issue(s)",
        )
    for record in summary.subagents:
        table.add_row(f"Subagent: {record.subagent_id}", record.artifact.kind)
    for failure in summary.state.subagent_failures.values():
        table.add_row(
            f"Subagent: {failure.subagent_id}",
            f"[red]failed at {failure.stage.value}[/red]: {failure.error}",
        )
    if summary.state.blocked_subagent is not None:
        blocked = summary.state.blocked_subagent
        table.add_row("Blocked on", f"{blocked.step_id} ({blocked.status})")
    if summary.error:
        table.add_row("Error", f"[red]{summary.error}[/red]")

    console.print(table)


@app.command()
def run(
    message: str = typer.Argument(..., help="What to produce"),
    artifact_kind: str = typer.Option("prd", help="Requested artifact kind"),
    run_id: Optional[str] = typer.Option(None, help="Run id; generated when omitted"),
    quiet: bool = typer.Option(False, help="Do not stream progress events"),
):
    """Plan and execute a run."""
    _setup()
    rprint(Panel.fit(f"Starting run for {artifact_kind}", style="bold blue"))

    controller = _controller()
    request = RunRequest(artifact_kind=artifact_kind, input={"message": message})
    try:
        summary = asyncio.run(
            controller.start(
                request,
                run_id=run_id,
                progress=None if quiet else _print_progress,
            )
        )
    except EngineError as e:
        console.print(f"[red]{e.code}[/red]: {e.message}")
        raise typer.Exit(code=1)

    _print_summary(summary)
    if summary.status.value == "failed":
        raise typer.Exit(code=1)


@app.command()
def approve(
    run_id: str = typer.Argument(..., help="Run waiting on a subagent approval"),
    step_id: str = typer.Argument(..., help="Blocked step id"),
    plan_file: Optional[Path] = typer.Option(
        None, help="JSON file with the approved plan; the proposed plan is used when omitted"
    ),
):
    """Approve a paused subagent step and continue the run."""
    _setup()
    controller = _controller()

    approved_plan = None
    if plan_file is not None:
        try:
            approved_plan = json.loads(plan_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read approved plan[/red]: {e}")
            raise typer.Exit(code=1)
    else:
        snapshot = controller.run_store.load_snapshot(run_id)
        if snapshot is not None and snapshot.state.blocked_subagent is not None:
            approved_plan = snapshot.state.blocked_subagent.plan

    try:
        summary = asyncio.run(
            controller.resume_subagent(run_id, step_id, approved_plan, progress=_print_progress)
        )
    except EngineError as e:
        console.print(f"[red]{e.code}[/red]: {e.message}")
        raise typer.Exit(code=1)

    _print_summary(summary)


@app.command()
def status():
    """Show active runs and runs awaiting input."""
    _setup()
    controller = _controller()
    status_data = controller.get_status()

    table = Table(title="Plan-graph runs", show_header=True, header_style="bold magenta")
    table.add_column("Run", style="cyan")
    table.add_column("Status")

    for run_id in status_data["active_runs"]:
        table.add_row(run_id, "[cyan]running[/cyan]")
    for run_id in status_data["awaiting_runs"]:
        table.add_row(run_id, "[yellow]awaiting-input[/yellow]")

    console.print(table)


@app.command()
def artifacts(run_id: str = typer.Argument(..., help="Run id")):
    """List the artifacts written by a run."""
    _setup()
    store = create_workspace_store(get_settings().workspace_root)
    summaries = store.list_summaries(run_id)
    if not summaries:
        console.print(f"No artifacts recorded for run {run_id}")
        return

    table = Table(title=f"Artifacts for {run_id}", show_header=True, header_style="bold magenta")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Version")
    table.add_column("Label")
    table.add_column("Written")
    for summary in summaries:
        table.add_row(
            summary.id,
            summary.kind,
            summary.version,
            summary.label or "",
            summary.created_at.isoformat(),
        )
    console.print(table)


@app.command()
def events(
    run_id: str = typer.Argument(..., help="Run id"),
    full: bool = typer.Option(False, help="Print full payloads"),
):
    """Show the event log of a run."""
    _setup()
    store = create_workspace_store(get_settings().workspace_root)
    log = store.get_events(run_id)
    if not log:
        console.print(f"No events recorded for run {run_id}")
        return

    table = Table(title=f"Events for {run_id}", show_header=True, header_style="bold magenta")
    table.add_column("Time", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Payload")
    for event in log:
        payload = event.payload
        if full:
            detail = json.dumps(payload, default=str)
        else:
            detail = str(payload.get("message") or payload.get("action") or "")
            if payload.get("step_id"):
                detail = f"{detail} {payload['step_id']}"
        table.add_row(
            event.created_at.isoformat() if event.created_at else "",
            event.type.value,
            detail,
        )
    console.print(table)


@app.command()
def purge(
    retention_days: Optional[int] = typer.Option(
        None, help="Override PLAN_GRAPH_WORKSPACE_RETENTION_DAYS"
    ),
):
    """Delete run workspaces older than the retention window."""
    _setup()
    settings = get_settings()
    days = retention_days if retention_days is not None else settings.workspace_retention_days
    store = create_workspace_store(settings.workspace_root)
    removed = store.purge_expired(days)
    console.print(f"Removed {len(removed)} workspace(s) older than {days} day(s)")
    for run_id in removed:
        console.print(f"  - {run_id}")


if __name__ == "__main__":
    app()
