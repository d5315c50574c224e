"""CLI entry point for cccontext."""

import time
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.text import Text

from cccontext import __version__
from cccontext.config import Config, display_config_warnings, load_config, save_config
from cccontext.display import build_session_panel, build_sessions_table, build_status_line
from cccontext.events import ErrorEvent, EventKind, SessionPathEvent
from cccontext.logging_config import setup_logging
from cccontext.models import SessionAggregate
from cccontext.session_watcher import ActiveSession, SessionWatcher
from cccontext.sessions_manager import SessionsManager
from cccontext.xdg_paths import get_config_file_path

app = typer.Typer(
    name="cccontext",
    help="Monitor context window usage of Claude Code sessions in real time.",
    no_args_is_help=False,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cccontext {__version__}")
        raise typer.Exit()


def _prepare(config_path: Path | None, debug: bool) -> Config:
    """Load configuration, report problems and set up logging."""
    config, warnings = load_config(config_path)
    if warnings:
        display_config_warnings(warnings, err_console)
    if debug:
        config = config.model_copy(update={"debug": True})
    setup_logging(debug=config.debug)
    return config


def _run_monitor(config: Config, target: ActiveSession, follow_latest: bool) -> None:
    """Tail one session and redraw its panel until interrupted.

    Args:
        config: Effective configuration.
        target: Session to start with.
        follow_latest: Switch to any newer session that appears.
    """
    watcher = SessionWatcher(config)
    state: dict[str, Any] = {"data": None, "status": f"Watching {target.file_path.name}", "current": target}

    def on_data(aggregate: SessionAggregate) -> None:
        if aggregate.session_id == state["current"].session_id:
            state["data"] = aggregate

    def on_error(event: ErrorEvent) -> None:
        state["status"] = f"Error: {event.error}"

    def on_compact(event: SessionPathEvent) -> None:
        state["status"] = "Compaction detected, session reloaded"

    def on_added(event: SessionPathEvent) -> None:
        current: ActiveSession = state["current"]
        if event.session_id == current.session_id:
            return
        watcher.stop_watching(current.session_id)
        state["current"] = ActiveSession(session_id=event.session_id, file_path=event.file_path)
        state["data"] = None
        state["status"] = f"Switched to new session {event.file_path.name}"
        watcher.watch_session(event.session_id, event.file_path)

    watcher.events.subscribe(EventKind.SESSION_DATA, on_data)
    watcher.events.subscribe(EventKind.ERROR, on_error)
    watcher.events.subscribe(EventKind.COMPACT_DETECTED, on_compact)
    if follow_latest:
        watcher.events.subscribe(EventKind.SESSION_ADDED, on_added)
        watcher.start_directory_watch()

    def render() -> RenderableType:
        status = build_status_line(f"{state['status']}  (Ctrl+C to exit)")
        if state["data"] is None:
            return Group(Text("Waiting for session data...", style="dim"), status)
        return Group(build_session_panel(state["data"]), status)

    try:
        watcher.watch_session(target.session_id, target.file_path)
        with Live(render(), console=console, refresh_per_second=4) as live:
            while True:
                time.sleep(config.watcher.poll_interval)
                watcher.process_events()
                live.update(render())
    except KeyboardInterrupt:
        console.print("\n[dim]Monitor stopped.[/]")
    finally:
        watcher.stop_all()


def _run_sessions_live(manager: SessionsManager, config: Config, limit: int) -> None:
    """Keep the session table up to date until interrupted."""
    state: dict[str, Any] = {"sessions": manager.initialize()}

    def on_update(sessions: list[SessionAggregate]) -> None:
        state["sessions"] = sessions

    manager.events.subscribe(EventKind.SESSIONS_UPDATED, on_update)

    def render() -> RenderableType:
        return Group(
            build_sessions_table(state["sessions"], limit),
            build_status_line(f"[Live] Auto-refreshing every {config.sessions.refresh_interval:g}s (Ctrl+C to exit)"),
        )

    try:
        with Live(render(), console=console, refresh_per_second=1) as live:
            last_refresh = time.monotonic()
            while True:
                time.sleep(config.watcher.poll_interval)
                manager.process_events()
                if time.monotonic() - last_refresh >= config.sessions.refresh_interval:
                    # Ages in the table move even when no file does
                    last_refresh = time.monotonic()
                    live.update(render())
    except KeyboardInterrupt:
        console.print("\n[dim]Sessions monitor stopped.[/]")
    finally:
        manager.destroy()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Enable debug logging."),
    ] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version."),
    ] = None,
) -> None:
    """Monitor the most recently active Claude Code session.

    Examples:
        cccontext                      # Live view of the latest session
        cccontext monitor --session 2  # Live view of the 2nd session in the list
        cccontext sessions --live      # Live list of all sessions
    """
    if ctx.invoked_subcommand is not None:
        return

    config = _prepare(config_path, debug)
    active = SessionWatcher(config).find_active_session()
    if active is None:
        err_console.print(f"[yellow]No active sessions found in {config.resolved_projects_dir}[/]")
        raise typer.Exit(1)

    _run_monitor(config, active, follow_latest=True)


@app.command()
def monitor(
    session: Annotated[
        int | None,
        typer.Option("--session", "-s", min=1, help="Session number from the 'sessions' list."),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Enable debug logging."),
    ] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
) -> None:
    """Monitor one session's context usage live."""
    config = _prepare(config_path, debug)

    if session is None:
        target = SessionWatcher(config).find_active_session()
        if target is None:
            err_console.print(f"[yellow]No active sessions found in {config.resolved_projects_dir}[/]")
            raise typer.Exit(1)
        _run_monitor(config, target, follow_latest=True)
        return

    sessions = SessionsManager(config).get_all_sessions()
    if session > len(sessions):
        err_console.print(f"[red]Error:[/] Session {session} not found ({len(sessions)} available).")
        raise typer.Exit(1)

    chosen = sessions[session - 1]
    _run_monitor(config, ActiveSession(chosen.session_id, chosen.file_path), follow_latest=False)


@app.command()
def sessions(
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Number of sessions to show."),
    ] = None,
    live: Annotated[
        bool,
        typer.Option("--live", "-l", help="Keep the list updating."),
    ] = False,
    clear_cache: Annotated[
        bool,
        typer.Option("--clear-cache", help="Discard cached session summaries first."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Enable debug logging."),
    ] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
) -> None:
    """List sessions with their context usage."""
    config = _prepare(config_path, debug)
    manager = SessionsManager(config)
    shown = limit or config.sessions.limit

    if clear_cache:
        manager.cache.clear_all()
        console.print("[dim]Session cache cleared.[/]")

    if live:
        _run_sessions_live(manager, config, shown)
        return

    console.print(build_sessions_table(manager.get_all_sessions(), shown))


config_app = typer.Typer(
    name="config",
    help="Configuration management commands.",
)
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
) -> None:
    """Show effective configuration, environment overrides included."""
    import yaml

    config, warnings = load_config(config_path)
    if warnings:
        display_config_warnings(warnings, err_console)

    data = config.model_dump(mode="json")
    data["projects_dir"] = str(config.resolved_projects_dir)
    console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))


@config_app.command("init")
def config_init(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-C", help="Config file path."),
    ] = None,
) -> None:
    """Create a default configuration file."""
    config_file = config_path or get_config_file_path()

    if config_file.exists():
        err_console.print(f"[yellow]Config file already exists:[/] {config_file}")
        raise typer.Exit(1)

    written = save_config(Config(), config_file)
    console.print(f"[green]✓[/] Created config file: {written}")


if __name__ == "__main__":
    app()
