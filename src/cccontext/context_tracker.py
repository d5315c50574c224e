"""Derived context-window view for session aggregates."""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import UTC, datetime

from cccontext.auto_compact import calculate_auto_compact_info
from cccontext.config import AutoCompactConfig
from cccontext.model_config import get_context_window, get_model_name
from cccontext.models import SessionAggregate, WarningLevel
from cccontext.usage_calculator import estimate_remaining_turns

logger = logging.getLogger(__name__)

_WARNING_MESSAGES: dict[WarningLevel, str] = {
    WarningLevel.CRITICAL: "CRITICAL: Context limit nearly reached! (>95%)",
    WarningLevel.SEVERE: "WARNING: Approaching context limit (>90%)",
    WarningLevel.WARNING: "Notice: High context usage (>80%)",
}


def get_warning_level(usage_percentage: float) -> WarningLevel:
    """Bucket usage of the nominal context window."""
    if usage_percentage >= 95:
        return WarningLevel.CRITICAL
    if usage_percentage >= 90:
        return WarningLevel.SEVERE
    if usage_percentage >= 80:
        return WarningLevel.WARNING
    return WarningLevel.NORMAL


def refresh_derived(
    aggregate: SessionAggregate,
    settings: AutoCompactConfig | None = None,
    context_window_override: int | None = None,
) -> SessionAggregate:
    """Recompute every derived field of an aggregate in place.

    Args:
        aggregate: Aggregate to update.
        settings: Auto-compact constants.
        context_window_override: Forces the context window size.

    Returns:
        The same aggregate, for chaining.
    """
    if settings is None:
        settings = AutoCompactConfig()

    total_tokens = aggregate.total_tokens
    if aggregate.total_cache_tokens > total_tokens:
        logger.debug(
            "Cache tokens (%d) exceed total tokens (%d) for session %s, resetting to 0",
            aggregate.total_cache_tokens,
            total_tokens,
            aggregate.session_id,
        )
        aggregate.total_cache_tokens = 0

    context_tokens = aggregate.context_tokens

    context_window = get_context_window(aggregate.model, context_tokens, context_window_override)
    aggregate.context_window = context_window
    aggregate.model_name = get_model_name(aggregate.model)

    if context_window > 0:
        aggregate.usage_percentage = context_tokens / context_window * 100
        aggregate.remaining_tokens = max(0, context_window - context_tokens)
        aggregate.remaining_percentage = aggregate.remaining_tokens / context_window * 100
    else:
        aggregate.usage_percentage = 0.0
        aggregate.remaining_tokens = 0
        aggregate.remaining_percentage = 100.0

    aggregate.average_tokens_per_turn = int(context_tokens / aggregate.turns + 0.5) if aggregate.turns > 0 else 0
    aggregate.estimated_remaining_turns = estimate_remaining_turns(
        context_tokens, context_window, aggregate.average_tokens_per_turn
    )
    aggregate.warning_level = get_warning_level(aggregate.usage_percentage)
    aggregate.auto_compact = calculate_auto_compact_info(
        context_tokens,
        context_window,
        message_count=aggregate.message_count or aggregate.turns,
        cache_size=aggregate.total_cache_tokens,
        auto_compact_enabled=True,
        settings=settings,
    )
    return aggregate


def get_warning_message(aggregate: SessionAggregate) -> str | None:
    """Get the banner text for an aggregate's warning level, if any."""
    return _WARNING_MESSAGES.get(aggregate.warning_level)


def _char_width(char: str) -> int:
    return 2 if unicodedata.east_asian_width(char) in ("W", "F") else 1


def format_prompt(prompt: str | None, max_width: int = 50) -> str:
    """Collapse whitespace and truncate a prompt to a display width.

    Wide (CJK) characters count as two columns.
    """
    if not prompt:
        return ""

    clean = re.sub(r"\s+", " ", prompt).strip()
    width = 0
    result: list[str] = []
    for char in clean:
        char_width = _char_width(char)
        if width + char_width > max_width:
            return "".join(result) + "..."
        result.append(char)
        width += char_width
    return "".join(result)


def format_duration(start: datetime | None, now: datetime | None = None) -> str:
    """Format elapsed time since start as "1h 5m" or "12m"."""
    if start is None:
        return "Unknown"
    if now is None:
        now = datetime.now(UTC)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    minutes = max(0, int((now - start).total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
