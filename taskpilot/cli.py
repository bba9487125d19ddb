"""
TASKPILOT CLI — The Interface

Task lifecycle:
  - taskpilot create "<prompt>" [--run]   (plan a task, optionally drain it)
  - taskpilot advance <id> [--all]        (run the next step, or all of them)
  - taskpilot approve <id>                (release a plan waiting for approval)
  - taskpilot cancel <id>                 (stop at the next step boundary)

Inspection:
  - taskpilot status <id>                 (full task view + notifications)
  - taskpilot read <id>                   (mark notifications read)
  - taskpilot list [--owner]              (newest first)
  - taskpilot results <id> [--format]     (summary / report / raw / all)

Plus utilities:
  - taskpilot batch <id>...               (drain tasks in parallel)
  - taskpilot check                       (config + API keys)
  - taskpilot init [path]                 (bootstrap .taskpilot)
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from taskpilot.audit_logger import AuditLogger
from taskpilot.config_loader import TaskPilotConfig, load_config, validate_api_keys
from taskpilot.controller import AdvanceMode, Controller
from taskpilot.errors import InvalidState, TaskPilotError
from taskpilot.event_bus import bus
from taskpilot.identity import BANNER, __codename__, __tagline__, __version__
from taskpilot.parallel import run_parallel
from taskpilot.registry import SqliteTaskRegistry
from taskpilot.results import ResultFormat

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".taskpilot" / ".env")

app = typer.Typer(
    name="taskpilot",
    help=f"{__codename__} — {__tagline__}\nThe Autonomous Task Orchestration Engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

RootOption = typer.Option(None, "--root", "-r", help="Project directory holding .taskpilot/ (default: cwd)")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Session wiring
# ---------------------------------------------------------------------------


@contextmanager
def _controller(root: Optional[Path], verbose: bool = False) -> Iterator[Controller]:
    """Open config, store, audit log and controller; map domain errors to exit 1."""
    _configure_logging(verbose)
    root = (root or Path.cwd()).resolve()
    config = load_config(root)

    registry = SqliteTaskRegistry(config.store_path(root))
    audit = AuditLogger(str(config.audit_path(root)), bus, config.audit.batch_size) if config.audit.enabled else None
    controller = Controller(config, registry, event_bus=bus)

    try:
        yield controller
    except InvalidState as e:
        console.print(f"[red]{e}[/] [dim](status: {e.status}, progress: {e.progress}%)[/]")
        raise typer.Exit(1)
    except (TaskPilotError, ValueError) as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)
    finally:
        if audit:
            audit.close()
        registry.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def create(
    prompt: str = typer.Argument(..., help="What you want done"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner id (default: anonymous)"),
    run: bool = typer.Option(False, "--run", help="Drain every step right after planning"),
    root: Optional[Path] = RootOption,
    verbose: bool = VerboseOption,
):
    """Plan a new task from a prompt."""
    _print_banner()

    with _controller(root, verbose) as controller:
        console.print("[cyan]🧠 Planning...[/]")
        summary = controller.create_task(prompt, owner)
        _print_plan(controller, summary["id"])

        if summary["status"] == "waiting_approval":
            console.print(f"\n[yellow]Plan is waiting for approval: taskpilot approve {summary['id']}[/]")
            return

        if run:
            view = controller.advance_task(summary["id"], AdvanceMode.DRAIN_ALL)
            _print_advance(view)
        else:
            console.print(f"\nRun it with: [bold]taskpilot advance {summary['id']} --all[/]")


@app.command()
def advance(
    task_id: str = typer.Argument(..., help="Task id"),
    all_steps: bool = typer.Option(False, "--all", "-a", help="Run every remaining step"),
    root: Optional[Path] = RootOption,
    verbose: bool = VerboseOption,
):
    """Run the next step of a task (or all remaining steps)."""
    mode = AdvanceMode.DRAIN_ALL if all_steps else AdvanceMode.SINGLE_STEP
    with _controller(root, verbose) as controller:
        view = controller.advance_task(task_id, mode)
        _print_advance(view)


@app.command()
def approve(
    task_id: str = typer.Argument(..., help="Task id"),
    root: Optional[Path] = RootOption,
):
    """Approve a plan that is waiting for approval."""
    with _controller(root) as controller:
        summary = controller.approve_task(task_id)
        console.print(f"[green]✅ Approved {summary['id']} — status: {summary['status']}[/]")


@app.command()
def cancel(
    task_id: str = typer.Argument(..., help="Task id"),
    root: Optional[Path] = RootOption,
):
    """Cancel a task. It stops at the next step boundary."""
    with _controller(root) as controller:
        ack = controller.cancel_task(task_id)
        color = "yellow" if ack["changed"] else "dim"
        console.print(f"[{color}]{ack['message']} ({ack['task_id']}: {ack['status']})[/]")


@app.command()
def status(
    task_id: str = typer.Argument(..., help="Task id"),
    root: Optional[Path] = RootOption,
):
    """Show the full state of a task, including its notification log."""
    with _controller(root) as controller:
        view = controller.get_status(task_id)

        table = Table(title=f"{view['id']} — {view['title']}", border_style="cyan")
        table.add_column("Property")
        table.add_column("Value")
        table.add_row("Status", _status_markup(view["status"]))
        table.add_row("Progress", f"{view['progress']}%")
        table.add_row("Step", f"{view['current_step']}/{view['total_steps']}")
        table.add_row("Phase", f"{view['current_phase']}/{view['total_phases']} {view['current_phase_name']}")
        table.add_row("Results", f"{view['results_count']} ({view['recovered_steps']} recovered, {view['failed_steps']} failed)")
        table.add_row("Owner", view["owner_id"])
        table.add_row("Language", view["language"])
        table.add_row("Unread", str(view["unread_notifications"]))
        if view["error"]:
            table.add_row("Error", f"[red]{view['error']}[/]")
        console.print(table)

        _print_notifications(view["notifications"])


@app.command()
def read(
    task_id: str = typer.Argument(..., help="Task id"),
    ids: Optional[List[str]] = typer.Option(None, "--id", help="Notification id (repeatable, default: all)"),
    root: Optional[Path] = RootOption,
):
    """Mark notifications as read."""
    with _controller(root) as controller:
        flipped = controller.mark_notifications_read(task_id, ids or None)
        console.print(f"[green]{flipped} notification(s) marked read[/]")


@app.command(name="list")
def list_tasks(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Only tasks of this owner"),
    root: Optional[Path] = RootOption,
):
    """List tasks, newest first."""
    with _controller(root) as controller:
        tasks = controller.list_tasks(owner)
        if not tasks:
            console.print("[dim]No tasks yet. Create one with: taskpilot create \"...\"[/]")
            return

        table = Table(title="Tasks", border_style="cyan")
        table.add_column("Id", style="dim")
        table.add_column("Title")
        table.add_column("Status")
        table.add_column("Progress")
        table.add_column("Unread")
        table.add_column("Created", style="dim")

        for t in tasks:
            table.add_row(
                t["id"],
                t["title"][:50],
                _status_markup(t["status"]),
                f"{t['progress']}%",
                str(t["unread_notifications"]),
                t["created_at"][:19],
            )
        console.print(table)


@app.command()
def results(
    task_id: str = typer.Argument(..., help="Task id"),
    fmt: ResultFormat = typer.Option(ResultFormat.ALL, "--format", "-f", help="summary, report, raw or all"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON payload"),
    root: Optional[Path] = RootOption,
    verbose: bool = VerboseOption,
):
    """Synthesize the results of a completed task."""
    with _controller(root, verbose) as controller:
        payload = controller.get_results(task_id, fmt)

        if as_json:
            console.print_json(data=payload)
            return

        output = payload["output"]
        if fmt is ResultFormat.RAW:
            for r in output["results"]:
                title = f"{r['step_index'] + 1}. {r['description']}"
                border = "red" if r["failed"] else "yellow" if r["recovered"] else "green"
                console.print(Panel(Markdown(r["text"]), title=title, border_style=border))
        elif fmt is ResultFormat.ALL:
            console.print(Panel(Markdown(output["summary"]), title="Executive Summary", border_style="cyan"))
            console.print(Panel(Markdown(output["report"]), title="Report", border_style="green"))
            meta = output["metadata"]
            console.print(
                f"[dim]{meta['total_steps']} steps · {meta['recovered_steps']} recovered · "
                f"{meta['failed_steps']} failed · {meta['duration_seconds']}s[/]"
            )
        else:
            console.print(Panel(Markdown(output["content"]), title=payload["title"], border_style="green"))


@app.command()
def batch(
    task_ids: List[str] = typer.Argument(..., help="Task ids to drain"),
    workers: int = typer.Option(3, "--workers", "-w", help="Max concurrent tasks"),
    root: Optional[Path] = RootOption,
    verbose: bool = VerboseOption,
):
    """Drain several tasks in parallel."""
    _print_banner()
    _configure_logging(verbose)

    drained = run_parallel((root or Path.cwd()), task_ids, max_workers=workers)

    failures = sum(1 for r in drained if r.get("status") != "completed")
    if failures:
        raise typer.Exit(1)


@app.command()
def check(
    root: Optional[Path] = RootOption,
):
    """Check TASKPILOT configuration and readiness."""
    _print_banner()

    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)

    root = (root or Path.cwd()).resolve()
    config = load_config(root)
    _print_config(config, root)


@app.command()
def init(
    path: Optional[Path] = typer.Argument(None, help="Project directory"),
):
    """Initialize a .taskpilot directory."""
    _print_banner()

    root = (path or Path.cwd()).resolve()
    tp_dir = root / ".taskpilot"
    tp_dir.mkdir(parents=True, exist_ok=True)
    (tp_dir / "logs").mkdir(exist_ok=True)

    config_path = tp_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# TASKPILOT project-level config overrides
# These merge with the built-in defaults.

# Override routing per agent role:
# routing:
#   searcher: "gemini/gemini-2.5-flash"
#   writer: "groq/llama-3.3-70b-versatile"

# Hold new plans until `taskpilot approve <id>`:
# intervention:
#   require_plan_approval: true

# Adjust limits:
# limits:
#   step_timeout_seconds: 180
#   inter_step_delay_seconds: 0.5
""")

    gitignore = root / ".gitignore"
    ignore_entries = [".taskpilot/tasks.db*", ".taskpilot/logs/"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# TASKPILOT\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# TASKPILOT\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized TASKPILOT in {tp_dir}[/]")
    console.print(f"  Config: {config_path}")
    console.print(f"  Logs:   {tp_dir / 'logs'}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_COLORS = {
    "completed": "green",
    "running": "cyan",
    "pending": "white",
    "waiting_approval": "yellow",
    "cancelled": "yellow",
    "failed": "red",
}

_KIND_ICONS = {"progress": "⏳", "warning": "⚠", "success": "✅", "error": "❌"}


def _status_markup(status_value: str) -> str:
    return f"[{_STATUS_COLORS.get(status_value, 'white')}]{status_value}[/]"


def _print_plan(controller: Controller, task_id: str) -> None:
    view = controller.get_status(task_id)
    task = controller.registry.get(task_id)

    lines = []
    last_phase = -1
    for entry in task.plan.flatten():
        if entry.phase_index != last_phase:
            lines.append(f"[bold]{entry.phase_index + 1}. {entry.phase_name}[/]")
            last_phase = entry.phase_index
        step = entry.step
        critical = " [red]*[/]" if step.is_critical else ""
        lines.append(f"   {entry.index + 1}. [cyan]{step.agent_role.value}[/] {step.description}{critical}")

    console.print(Panel(
        "\n".join(lines),
        title=f"📋 {view['title']} ({view['id']})",
        subtitle=f"{view['total_steps']} steps · {view['estimated_duration'] or 'no estimate'}",
        border_style="cyan",
    ))


def _print_advance(view: dict) -> None:
    console.print(
        f"\n[bold]{view['id']}[/] {_status_markup(view['status'])} — "
        f"{view['progress']}% · step {view['current_step']}/{view['total_steps']} · "
        f"{view['results_count']} results"
    )
    _print_notifications(view["notifications"])


def _print_notifications(notifications: list[dict]) -> None:
    for note in notifications:
        icon = _KIND_ICONS.get(note["kind"], "•")
        style = "dim" if note["read"] else "white"
        console.print(f"  {icon} [{style}]{note['message']}[/]")


def _print_config(config: TaskPilotConfig, root: Path) -> None:
    console.print("\n[bold]Routing:[/]")
    for role, model in config.routing.model_dump().items():
        console.print(f"  {role.capitalize() + ':':<13}{model}")
    if config.gateway.fallback_models:
        console.print(f"  {'Fallbacks:':<13}{', '.join(config.gateway.fallback_models)}")

    limits = config.limits
    console.print("\n[bold]Limits:[/]")
    console.print(f"  Step timeout:     {limits.step_timeout_seconds:g}s")
    console.print(f"  Inter-step delay: {limits.inter_step_delay_seconds:g}s")
    console.print(f"  Context window:   {limits.context_window_chars:,} chars")
    console.print(f"  Recovery window:  {limits.recovery_context_chars:,} chars")

    console.print("\n[bold]Storage:[/]")
    console.print(f"  Tasks:  {config.store_path(root)}")
    audit = config.audit_path(root) if config.audit.enabled else "disabled"
    console.print(f"  Audit:  {audit}")
    if config.intervention.require_plan_approval:
        console.print("\n[yellow]Plan approval required before execution.[/]")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
