"""CLI interface for auto mode."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import load_config
from .errors import AutoModeError
from .git_manager import GitBranchOracle
from .models import FeatureStatus
from .orchestration import OrphanDetector, RecoveryManager, RunningRegistry
from .planning import group_tasks_by_phase, is_spec_complete, parse_tasks_from_spec
from .status import select_eligible
from .store import JsonFeatureStore

console = Console()

# Windows-compatible symbols (cp1252 doesn't support Unicode checkmarks)
if sys.platform == "win32":
    SYM_OK = "[OK]"
    SYM_FAIL = "[X]"
else:
    SYM_OK = "✓"
    SYM_FAIL = "✗"

STATUS_COLORS = {
    FeatureStatus.BACKLOG: "white",
    FeatureStatus.PENDING: "white",
    FeatureStatus.RUNNING: "yellow",
    FeatureStatus.IN_PROGRESS: "yellow",
    FeatureStatus.PIPELINE_IMPLEMENTATION: "yellow",
    FeatureStatus.PIPELINE_TESTING: "yellow",
    FeatureStatus.PIPELINE_REVIEW: "yellow",
    FeatureStatus.WAITING_APPROVAL: "cyan",
    FeatureStatus.INTERRUPTED: "magenta",
    FeatureStatus.COMPLETED: "green",
    FeatureStatus.VERIFIED: "green",
    FeatureStatus.FAILED: "red",
}


def _store_for(project_path: str) -> JsonFeatureStore:
    try:
        config = load_config(project_path)
    except AutoModeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    return JsonFeatureStore(config.features_dir)


@click.group()
@click.version_option()
def main():
    """Auto mode - feature orchestration for multi-agent development."""
    pass


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
def status(project_path: str):
    """Show every feature of a project and which are ready to run."""
    store = _store_for(project_path)
    features = store.get_all_sync(project_path)

    if not features:
        console.print(f"[yellow]No features found in {store.features_path(project_path)}[/yellow]")
        return

    config = load_config(project_path)
    ready = {
        f.id for f in select_eligible(
            features, features, running_ids=[], slots=len(features),
            skip_verification=config.skip_verification,
        )
    }

    table = Table(title=f"Features: {Path(project_path).resolve().name}")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Depends On")
    table.add_column("Ready", justify="center")

    for f in sorted(features, key=lambda f: (-f.priority, f.id)):
        color = STATUS_COLORS.get(f.status, "white")
        table.add_row(
            f.id,
            f.title or "",
            f"[{color}]{f.status.value}[/{color}]",
            str(f.priority),
            ", ".join(f.dependencies),
            SYM_OK if f.id in ready else "",
        )

    console.print(table)

    completed = sum(1 for f in features if f.status.is_terminal_success)
    active = sum(1 for f in features if f.status.is_active)
    failed = sum(1 for f in features if f.status == FeatureStatus.FAILED)
    console.print(f"\n[green]Done:[/green] {completed}  "
                  f"[yellow]Active:[/yellow] {active}  "
                  f"[red]Failed:[/red] {failed}  "
                  f"[white]Ready:[/white] {len(ready)}")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
def orphans(project_path: str):
    """List features whose git branch no longer exists."""
    detector = OrphanDetector(_store_for(project_path), GitBranchOracle())
    found = asyncio.run(detector.detect_orphaned_features(project_path))

    if not found:
        console.print(f"[green]{SYM_OK} No orphaned features[/green]")
        return

    table = Table(title="Orphaned Features")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Missing Branch", style="red")
    table.add_column("Status")

    for orphan in found:
        table.add_row(
            orphan.feature.id,
            orphan.feature.title or "",
            orphan.missing_branch,
            orphan.feature.status.value,
        )

    console.print(table)


@main.command()
@click.argument('spec_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--check', is_flag=True, help='Also report whether the text reads as a finished spec')
def tasks(spec_file: str, check: bool):
    """Show the task checklist of a generated plan or spec."""
    text = Path(spec_file).read_text(encoding="utf-8")
    parsed = parse_tasks_from_spec(text)

    if check:
        if is_spec_complete(text):
            console.print(f"[green]{SYM_OK} Spec complete[/green]")
        else:
            console.print(f"[yellow]{SYM_FAIL} Spec not complete[/yellow]")

    if not parsed:
        console.print("[yellow]No tasks found[/yellow]")
        return

    for phase, phase_tasks in group_tasks_by_phase(parsed).items():
        table = Table(title=phase or "Tasks")
        table.add_column("ID", style="cyan")
        table.add_column("Description")
        table.add_column("File", style="dim")
        for task in phase_tasks:
            table.add_row(task.id, task.description, task.file_path or "")
        console.print(table)

    console.print(f"\n[bold]{len(parsed)}[/bold] task(s)")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('feature_id')
@click.option('--reason', default=None, help='Reason recorded in the log')
def interrupt(project_path: str, feature_id: str, reason: Optional[str]):
    """Mark a feature interrupted so it is resumed on the next start.

    Pipeline statuses are kept as they are.
    """
    recovery = RecoveryManager(_store_for(project_path), RunningRegistry())

    try:
        changed = asyncio.run(recovery.mark_feature_interrupted(project_path, feature_id, reason))
    except AutoModeError as e:
        console.print(f"[red]{SYM_FAIL} {e}[/red]")
        sys.exit(1)

    if changed:
        console.print(f"[green]{SYM_OK} Feature {feature_id} marked interrupted[/green]")
    else:
        console.print(f"[yellow]Feature {feature_id} kept its pipeline status[/yellow]")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=8000, help='Port to listen on')
@click.option('--reload', is_flag=True, help='Enable auto-reload for development')
def dashboard(project_path: str, host: str, port: int, reload: bool):
    """Start the dashboard server.

    Starts a FastAPI server that provides:
    - REST API at http://host:port/api/
    - WebSocket at ws://host:port/ws/events
    - API docs at http://host:port/docs

    Without an agent executor attached the server is read-only: features and
    orphans can be listed, auto-mode control answers 503.

    Example:
        automode dashboard ./my-project --port 8000
    """
    from .api import run_dashboard

    path = Path(project_path)
    console.print("[bold]Starting Auto Mode Dashboard[/bold]")
    console.print(f"Project: {path}")
    console.print(f"API: http://{host}:{port}/api/")
    console.print(f"Docs: http://{host}:{port}/docs")
    console.print(f"WebSocket: ws://{host}:{port}/ws/events")
    console.print("\nPress Ctrl+C to stop\n")

    try:
        run_dashboard(path, host=host, port=port, reload=reload)
    except KeyboardInterrupt:
        console.print("\n[yellow]Dashboard stopped[/yellow]")


if __name__ == "__main__":
    main()
