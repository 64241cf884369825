"""agentsched CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from agentsched import __version__

app = typer.Typer(
    name="agentsched",
    help="agentsched - scheduled LLM agents with tool use",
    no_args_is_help=True,
)

console = Console()

_state: dict[str, str | None] = {"config": None}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agentsched v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
    config: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging to stderr"),
) -> None:
    """agentsched - scheduled LLM agents with tool use."""
    _state["config"] = config
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _engine():
    from agentsched.core.config.loader import load_config
    from agentsched.engine import build_engine

    return build_engine(load_config(_state["config"]))


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


# ════════════════════════════════════════════════════════════
# run: scheduler daemon
# ════════════════════════════════════════════════════════════


@app.command()
def run() -> None:
    """Start the scheduler and fire tasks until interrupted (Ctrl-C)."""
    engine = _engine()
    if not engine.config.scheduler.enabled:
        console.print("[yellow]Scheduler disabled in config (scheduler.enabled=false)[/yellow]")
        raise typer.Exit(code=1)

    async def _serve() -> None:
        await engine.scheduler.start()
        stats = engine.scheduler.get_stats()
        console.print(
            f"[green]Scheduler running:[/green] {stats.enabled_tasks} enabled tasks. "
            "Press Ctrl-C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            await engine.scheduler.shutdown()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\nScheduler stopped.")


# ════════════════════════════════════════════════════════════
# chat: one run against an agent
# ════════════════════════════════════════════════════════════


@app.command()
def chat(
    message: str | None = typer.Option(None, "--message", "-m", help="Single message to send"),
    agent: str = typer.Option("default", "--agent", "-a", help="Agent ID"),
    session: str = typer.Option("cli-default", "--session", "-s", help="Session ID"),
    model: str | None = typer.Option(None, "--model", help="Model override"),
) -> None:
    """Chat with an agent from the terminal."""
    from agentsched.agent.types import RunConfig, RunOptions
    from agentsched.core.errors import AgentSchedError

    engine = _engine()
    defaults = engine.config.orchestrator
    run_config = RunConfig(agent_id=agent, model_id=model)
    options = RunOptions(
        enable_tool_execution=defaults.enable_tool_execution,
        max_tool_executions=defaults.max_tool_executions,
        timeout_s=defaults.timeout_s,
    )

    async def _send(text: str) -> None:
        try:
            result = await engine.orchestrator.run(session, run_config, text, options)
        except AgentSchedError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)
        console.print(f"\n[bold cyan]{agent}:[/bold cyan] {result.response.text}\n")
        if result.tool_executions:
            console.print(f"[dim]{len(result.tool_executions)} tool executions[/dim]")

    if message:
        asyncio.run(_send(message))
        return

    console.print("[bold]agentsched interactive mode[/bold] (type 'exit' or 'quit' to leave)\n")

    async def _interactive() -> None:
        while True:
            try:
                user_input = console.input("[bold blue]You:[/bold blue] ")
            except (KeyboardInterrupt, EOFError):
                console.print("\nBye!")
                break
            text = user_input.strip()
            if not text:
                continue
            if text.lower() in ("exit", "quit"):
                console.print("Bye!")
                break
            await _send(text)

    asyncio.run(_interactive())


# ════════════════════════════════════════════════════════════
# status: config + store info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration, task and session status."""
    engine = _engine()
    config = engine.config
    stats = engine.scheduler.get_stats()
    session_stats = engine.sessions.all_stats()

    table = Table(title="agentsched status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Model", config.model.default)
    table.add_row("DB Path", str(config.db_path))
    table.add_row("Sessions", f"{config.sessions.backend} ({config.sessions.path})")
    table.add_row("Agents", ", ".join(a.id for a in engine.agents.list()))
    table.add_row("Tasks", f"{stats.total_tasks} ({stats.enabled_tasks} enabled)")
    table.add_row("Executions", str(stats.total_executions))
    table.add_row("Tasks with errors", str(stats.tasks_with_errors))
    table.add_row("Stored sessions", str(session_stats.total_sessions))

    console.print(table)


# ════════════════════════════════════════════════════════════
# task: scheduled task management (sub-command group)
# ════════════════════════════════════════════════════════════

task_app = typer.Typer(help="Manage scheduled tasks")
app.add_typer(task_app, name="task")


@task_app.command("add")
def task_add(
    name: str = typer.Option(..., "--name", "-n", help="Task name"),
    task_id: str | None = typer.Option(None, "--id", help="Task ID (generated if omitted)"),
    cron: str = typer.Option(..., "--cron", help="Cron expression (5 fields)"),
    wake_word: str = typer.Option(..., "--wake-word", "-w", help="Message sent on each run"),
    agent: str = typer.Option("default", "--agent", "-a", help="Agent ID"),
    model: str | None = typer.Option(None, "--model", help="Model override"),
    project: str | None = typer.Option(None, "--project", help="Project directory"),
    disabled: bool = typer.Option(False, "--disabled", help="Create disabled"),
    continue_session: bool = typer.Option(
        False, "--continue-session", help="Reuse the previous run's session"
    ),
    continue_prompt: str | None = typer.Option(
        None, "--continue-prompt", help="Message used instead of the wake word when continuing"
    ),
) -> None:
    """Schedule a new recurring task."""
    from agentsched.core.cron.types import AgentTaskConfig, ScheduleConfig
    from agentsched.core.errors import InvalidCronError

    engine = _engine()
    config = ScheduleConfig(
        task_id=task_id,
        name=name,
        cron_expression=cron,
        agent_config=AgentTaskConfig(agent_id=agent, model_id=model, project_directory=project),
        wake_word=wake_word,
        enabled=not disabled,
        continue_session=continue_session,
        continue_session_prompt=continue_prompt,
    )
    try:
        task_id = engine.scheduler.schedule_task(config)
    except InvalidCronError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    task = engine.scheduler.get_task(task_id)
    console.print(f"[green]Task scheduled:[/green] {task_id}")
    console.print(f"  [dim]Next run: {_fmt(task.next_run if task else None)}[/dim]")


@task_app.command("list")
def task_list() -> None:
    """List all scheduled tasks."""
    engine = _engine()
    tasks = engine.scheduler.list_tasks()

    if not tasks:
        console.print("[dim]No scheduled tasks found.[/dim]")
        return

    table = Table(title="Scheduled Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Cron", style="yellow")
    table.add_column("Agent", style="blue")
    table.add_column("Enabled", style="green")
    table.add_column("Runs", justify="right")
    table.add_column("Next run", style="dim")

    for t in tasks:
        table.add_row(
            t.id, t.name, t.cron_expression, t.agent_id,
            str(t.enabled), str(t.run_count), _fmt(t.next_run),
        )

    console.print(table)


@task_app.command("show")
def task_show(task_id: str = typer.Argument(help="Task ID")) -> None:
    """Show one task in detail."""
    engine = _engine()
    task = engine.scheduler.get_task(task_id)
    if task is None:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)

    table = Table(title=f"Task {task.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field, value in task.model_dump().items():
        if isinstance(value, datetime):
            value = _fmt(value)
        table.add_row(field, "-" if value is None else str(value))
    console.print(table)


@task_app.command("toggle")
def task_toggle(
    task_id: str = typer.Argument(help="Task ID"),
    enabled: bool = typer.Option(True, "--enable/--disable", help="Enable or disable"),
) -> None:
    """Enable or disable a task."""
    engine = _engine()
    if engine.scheduler.toggle_task(task_id, enabled):
        console.print(f"[green]Task {'enabled' if enabled else 'disabled'}:[/green] {task_id}")
    else:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)


@task_app.command("remove")
def task_remove(task_id: str = typer.Argument(help="Task ID to remove")) -> None:
    """Cancel a task and delete its execution history."""
    engine = _engine()
    if engine.scheduler.cancel_task(task_id):
        console.print(f"[green]Removed task:[/green] {task_id}")
    else:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)


@task_app.command("run")
def task_run(task_id: str = typer.Argument(help="Task ID to run now")) -> None:
    """Execute a task immediately (even if disabled)."""
    from agentsched.core.errors import SchedulerError

    engine = _engine()
    try:
        result = asyncio.run(engine.scheduler.execute_task_manually(task_id))
    except SchedulerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if result.success:
        console.print(
            f"[green]Task executed:[/green] session={result.session_id}, "
            f"messages={result.message_count}"
        )
    else:
        console.print(f"[red]Task failed:[/red] {result.error}")
        raise typer.Exit(code=1)


@task_app.command("history")
def task_history(
    task_id: str = typer.Argument(help="Task ID"),
    limit: int = typer.Option(20, "--limit", "-l", help="Most recent N executions"),
) -> None:
    """Show a task's execution history."""
    engine = _engine()
    history = engine.scheduler.get_task_execution_history(task_id)[-limit:]
    if not history:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(title=f"Executions of {task_id}")
    table.add_column("Executed", style="dim")
    table.add_column("Result")
    table.add_column("Session", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Error", style="red")

    for r in reversed(history):
        table.add_row(
            _fmt(r.executed_at),
            "[green]ok[/green]" if r.success else "[red]failed[/red]",
            r.session_id,
            str(r.message_count),
            r.error or "",
        )
    console.print(table)


# ════════════════════════════════════════════════════════════
# session: session management (sub-command group)
# ════════════════════════════════════════════════════════════

session_app = typer.Typer(help="Manage conversation sessions")
app.add_typer(session_app, name="session")


@session_app.command("list")
def session_list(
    agent: str | None = typer.Option(None, "--agent", "-a", help="Filter by agent ID"),
    task: str | None = typer.Option(None, "--task", "-t", help="Filter by task ID"),
    project: str | None = typer.Option(None, "--project", help="Filter by project directory"),
) -> None:
    """List stored sessions."""
    from agentsched.memory.file_store import FileSessionStore

    engine = _engine()
    sessions = engine.sessions
    if isinstance(sessions, FileSessionStore):
        metas = sessions.list_metadata(agent_id=agent, project_directory=project, task_id=task)
    else:
        metas = [m for m in map(sessions.get_metadata, sessions.list_ids()) if m]
        metas = [
            m for m in metas
            if (agent is None or m.agent_id == agent)
            and (task is None or m.task_id == task)
            and (project is None or m.project_directory == project)
        ]

    if not metas:
        console.print("[dim]No sessions found.[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Agent", style="blue")
    table.add_column("Type", style="yellow")
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="dim")

    for m in metas:
        table.add_row(
            m.session_id, m.agent_id or "-", m.execution_type,
            str(m.message_count), _fmt(m.updated_at),
        )
    console.print(table)


@session_app.command("show")
def session_show(session_id: str = typer.Argument(help="Session ID")) -> None:
    """Print a session's messages."""
    engine = _engine()
    if not engine.sessions.has(session_id):
        console.print(f"[red]Session not found:[/red] {session_id}")
        raise typer.Exit(code=1)

    for msg in engine.sessions.history(session_id):
        color = "blue" if msg.role == "user" else "cyan"
        console.print(f"[bold {color}]{msg.role}[/bold {color}] [dim]{_fmt(msg.created_at)}[/dim]")
        if msg.text:
            console.print(msg.text)
        for use in msg.tool_uses:
            console.print(f"  [yellow]→ {use.name}[/yellow] {use.input}")
        for res in msg.tool_results:
            console.print(f"  [dim]← {res.status}: {str(res.content)[:200]}[/dim]")
        console.print()


@session_app.command("delete")
def session_delete(session_id: str = typer.Argument(help="Session ID")) -> None:
    """Delete a session."""
    engine = _engine()
    if engine.sessions.delete(session_id):
        console.print(f"[green]Deleted session:[/green] {session_id}")
    else:
        console.print(f"[red]Session not found:[/red] {session_id}")
        raise typer.Exit(code=1)


@session_app.command("cleanup")
def session_cleanup(
    days: int | None = typer.Option(None, "--days", "-d", help="Max age in days"),
) -> None:
    """Delete old (file store) or empty (memory store) sessions."""
    from agentsched.memory.file_store import FileSessionStore
    from agentsched.memory.inmemory import InMemorySessionStore

    engine = _engine()
    sessions = engine.sessions
    if isinstance(sessions, FileSessionStore):
        max_age = timedelta(days=days if days is not None else engine.config.sessions.max_age_days)
        removed = sessions.cleanup_old_sessions(max_age)
    elif isinstance(sessions, InMemorySessionStore):
        removed = sessions.cleanup_empty_sessions()
    else:
        removed = 0
    console.print(f"[green]Removed {removed} sessions[/green]")
