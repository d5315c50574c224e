"""Rich renderables for session aggregates.

Builders are pure: they read aggregates and never modify them.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cccontext.auto_compact import AutoCompactInfo, AutoCompactLevel
from cccontext.context_tracker import format_duration, format_prompt, get_warning_message
from cccontext.models import SessionAggregate, WarningLevel
from cccontext.usage_calculator import format_cost, format_remaining_turns, format_tokens

BAR_WIDTH = 40
TABLE_BAR_WIDTH = 10

_BORDER_STYLES: dict[WarningLevel, str] = {
    WarningLevel.CRITICAL: "red",
    WarningLevel.SEVERE: "bright_red",
    WarningLevel.WARNING: "yellow",
    WarningLevel.NORMAL: "green",
}

_AUTO_COMPACT_STYLES: dict[AutoCompactLevel, str] = {
    AutoCompactLevel.ACTIVE: "bold red",
    AutoCompactLevel.CRITICAL: "red",
    AutoCompactLevel.WARNING: "yellow",
    AutoCompactLevel.NOTICE: "blue",
    AutoCompactLevel.NORMAL: "dim",
}


def percentage_style(percentage: float) -> str:
    """Pick a color for a usage percentage."""
    if percentage >= 95:
        return "red"
    if percentage >= 90:
        return "bright_red"
    if percentage >= 80:
        return "yellow"
    if percentage >= 60:
        return "bright_yellow"
    return "green"


def progress_bar(percentage: float, width: int = BAR_WIDTH) -> Text:
    """Build a block-character bar, clamped to 0-100%."""
    clamped = max(0.0, min(100.0, percentage))
    filled = int(clamped / 100 * width + 0.5)
    bar = Text()
    bar.append("█" * filled, style=percentage_style(clamped))
    bar.append("░" * (width - filled), style="dim")
    return bar


def format_age(moment: datetime | None, now: datetime | None = None) -> str:
    """Format how long ago something happened, e.g. "5m ago"."""
    if moment is None:
        return "Unknown"
    if now is None:
        now = datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)

    seconds = max(0, int((now - moment).total_seconds()))
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400
    if days > 0:
        return f"{days}d ago"
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return f"{seconds}s ago"


def format_auto_compact(info: AutoCompactInfo | None) -> Text:
    """Short cell text for the distance to auto-compact."""
    if info is None or not info.enabled:
        return Text("N/A", style="dim")
    if info.remaining_percentage <= 0:
        return Text("ACTIVE!", style="bold red")

    label = f"{info.remaining_percentage:.1f}%"
    if info.remaining_percentage <= 10:
        label = f"!{label}"
    elif info.remaining_percentage <= 20:
        label = f"⚠ {label}"
    return Text(label, style=_AUTO_COMPACT_STYLES[info.warning_level])


def build_session_panel(aggregate: SessionAggregate, now: datetime | None = None) -> Group:
    """Build the live view of a single session.

    Args:
        aggregate: Session to show.
        now: Reference time for the duration, defaults to the current time.

    Returns:
        Rich Group with session, context, latest turn and totals panels.
    """
    info = Text()
    info.append("Session: ", style="dim")
    info.append(f"{aggregate.session_id}\n", style="bold yellow")
    info.append("Model: ", style="dim")
    info.append(f"{aggregate.model_name or aggregate.model}\n", style="cyan")
    info.append("Started: ", style="dim")
    info.append(f"{format_duration(aggregate.first_timestamp, now)} ago", style="dim")
    if aggregate.is_compacted:
        info.append("  (compacted)", style="magenta")

    context = Text()
    context.append_text(progress_bar(aggregate.usage_percentage))
    context.append(f" {aggregate.usage_percentage:.1f}%", style=percentage_style(aggregate.usage_percentage))
    context.append(f" ({format_tokens(aggregate.context_tokens)}/{format_tokens(aggregate.context_window)})\n\n")
    context.append("Remaining: ", style="dim")
    context.append(format_tokens(aggregate.remaining_tokens), style="green")
    context.append(f" tokens ({aggregate.remaining_percentage:.1f}%)")

    auto_compact = aggregate.auto_compact
    if auto_compact.enabled:
        if auto_compact.remaining_percentage > 0:
            context.append("\nLeft until Auto-compact: ", style="dim")
            context.append(
                f"{auto_compact.remaining_percentage:.1f}%", style=_AUTO_COMPACT_STYLES[auto_compact.warning_level]
            )
        else:
            context.append("\nAUTO-COMPACT ACTIVE", style="bold red")

    warning = get_warning_message(aggregate)
    if warning:
        context.append(f"\n{warning}", style=_BORDER_STYLES[aggregate.warning_level])

    turn = Text()
    latest = aggregate.latest_usage
    if latest is None:
        turn.append("No recent turn data", style="dim")
    else:
        share = latest.total / aggregate.context_window * 100 if aggregate.context_window else 0.0
        turn.append("Input:  ", style="dim")
        turn.append(f"{format_tokens(latest.input)}", style="blue")
        turn.append(" tokens\nOutput: ", style="dim")
        turn.append(f"{format_tokens(latest.output)}", style="magenta")
        turn.append(" tokens\nCache:  ", style="dim")
        turn.append(f"{format_tokens(latest.cache)}", style="dim")
        turn.append(" tokens (read)\nTotal:  ", style="dim")
        turn.append(f"{format_tokens(latest.total)}", style="yellow")
        turn.append(f" tokens ({share:.2f}% of window)", style="dim")

    totals = Text()
    totals.append("Turns: ", style="dim")
    totals.append(f"{aggregate.turns}\n", style="cyan")
    totals.append("Total Tokens: ", style="dim")
    totals.append(f"{format_tokens(aggregate.total_tokens)}\n", style="yellow")
    totals.append("Cost: ", style="dim")
    totals.append(f"{format_cost(aggregate.total_cost)}\n", style="green")
    totals.append("Avg/Turn: ", style="dim")
    totals.append(f"{format_tokens(aggregate.average_tokens_per_turn)}\n")
    totals.append("Est. Remaining Turns: ", style="dim")
    totals.append(format_remaining_turns(aggregate.estimated_remaining_turns), style="cyan")

    prompt = Text(format_prompt(aggregate.latest_prompt, max_width=100) or "No prompt yet", style="dim")

    return Group(
        Panel(info, title="Session Info", border_style="blue"),
        Panel(context, title="Context Usage", border_style=_BORDER_STYLES[aggregate.warning_level]),
        Panel(turn, title="Latest Turn", border_style="blue"),
        Panel(prompt, title="Latest Prompt", border_style="blue"),
        Panel(totals, title="Session Totals", border_style="blue"),
    )


def build_sessions_table(
    sessions: Sequence[SessionAggregate],
    limit: int | None = None,
    now: datetime | None = None,
) -> Table:
    """Build the numbered session list.

    Args:
        sessions: Sessions in display order.
        limit: Show at most this many rows.
        now: Reference time for the "Last Active" column.

    Returns:
        Rich Table, one row per session.
    """
    table = Table(title="Claude Code Sessions", title_style="bold cyan", expand=False)
    table.add_column("No.", justify="right", style="dim")
    table.add_column("Session", style="yellow")
    table.add_column("Usage")
    table.add_column("Left until auto-compact", justify="right")
    table.add_column("Model(latest)", style="cyan")
    table.add_column("Turns", justify="right")
    table.add_column("Cost", justify="right", style="green")
    table.add_column("Last Active", style="dim")
    table.add_column("Latest Prompt", overflow="ellipsis")

    shown = sessions if limit is None else sessions[:limit]
    for index, session in enumerate(shown, start=1):
        usage = progress_bar(session.usage_percentage, TABLE_BAR_WIDTH)
        usage.append(f" {session.usage_percentage:5.1f}%")
        table.add_row(
            str(index),
            session.session_id[:8],
            usage,
            format_auto_compact(session.auto_compact),
            session.model_name or "Unknown",
            str(session.turns),
            format_cost(session.total_cost),
            format_age(session.last_modified, now),
            format_prompt(session.latest_prompt, max_width=50),
        )

    if not shown:
        table.caption = "No sessions found"
    return table


def build_status_line(message: str, style: str = "dim") -> Text:
    """One-line status text shown under a live view."""
    return Text(message, style=style)
