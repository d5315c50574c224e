"""Auto-compact prediction for Claude Code sessions.

Claude Code compacts a conversation on its own once usage crosses a fixed
fraction of the context window. The window it measures against is smaller
than the nominal one because the host reserves tokens for its own
bookkeeping (system prompt, tool definitions, per-message framing, cached
prefixes). That overhead is not visible in the session log, so it is
estimated here from the message count and the cache size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

from cccontext.config import AutoCompactConfig

_DEFAULT_SETTINGS = AutoCompactConfig()


class AutoCompactLevel(StrEnum):
    """Proximity to the host's auto-compact trigger."""

    NORMAL = "normal"
    NOTICE = "notice"
    WARNING = "warning"
    CRITICAL = "critical"
    ACTIVE = "active"


@dataclass
class ClaudeContextStatus:
    """Context budget as the host sees it."""

    current_usage: int
    available_tokens: float
    effective_limit: float
    auto_compact_enabled: bool
    system_overhead: int
    percent_left: int
    percent_used: int
    remaining_tokens: float
    remaining_until_auto_compact: float | None
    warning_threshold: int
    error_threshold: int
    auto_compact_threshold: int
    is_above_warning_threshold: bool
    is_above_error_threshold: bool
    is_above_auto_compact_threshold: bool
    display_message: str | None

    @property
    def will_auto_compact(self) -> bool:
        """Whether the host compacts on its next turn."""
        return self.is_above_auto_compact_threshold


@dataclass
class AutoCompactInfo:
    """Auto-compact projection embedded in a session aggregate."""

    enabled: bool = True
    threshold: float = _DEFAULT_SETTINGS.trigger_fraction
    threshold_percentage: float = _DEFAULT_SETTINGS.trigger_fraction * 100
    remaining_percentage: int = 100
    remaining_tokens: int = 0
    warning_level: AutoCompactLevel = AutoCompactLevel.NORMAL
    will_compact_soon: bool = False
    effective_limit: int = 0
    system_overhead: int = 0
    auto_compact_threshold: int = 0

    @property
    def will_trigger(self) -> bool:
        """Alias used by the renderers."""
        return self.will_compact_soon


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def calculate_system_overhead(
    message_count: int = 0,
    cache_size: int = 0,
    settings: AutoCompactConfig = _DEFAULT_SETTINGS,
) -> int:
    """Estimate the tokens the host reserves beyond the logged usage.

    Args:
        message_count: Number of messages in the session.
        cache_size: Latest cache-read token count.
        settings: Overhead constants.

    Returns:
        Estimated overhead in tokens, capped at max_overhead_ratio of base_limit.
    """
    overhead = settings.base_overhead
    if message_count > 0:
        overhead += min(message_count * settings.per_message_overhead, settings.per_message_cap)
    if cache_size > 0:
        overhead += math.floor(cache_size * settings.cache_overhead_factor)

    max_overhead = math.floor(settings.base_limit * settings.max_overhead_ratio)
    return min(overhead, max_overhead)


def generate_display_message(
    percent_left: int,
    auto_compact_enabled: bool,
    is_above_warning_threshold: bool,
) -> str | None:
    """Build the status message the host would show, if any."""
    if not is_above_warning_threshold:
        return None
    if auto_compact_enabled:
        return f"Context left until auto-compact: {percent_left}%"
    return f"Context low ({percent_left}% remaining) · Run /compact to compact & continue"


def calculate_claude_context_status(
    current_usage: int,
    auto_compact_enabled: bool = False,
    available_tokens: int | None = None,
    message_count: int = 0,
    cache_size: int = 0,
    settings: AutoCompactConfig = _DEFAULT_SETTINGS,
) -> ClaudeContextStatus:
    """Compute the context budget after overhead and the auto-compact fraction.

    The warning and error thresholds here are fractions of the effective
    limit. They are unrelated to the session WarningLevel, which is measured
    against the nominal context window.

    Args:
        current_usage: Tokens currently in use.
        auto_compact_enabled: Whether the host will compact automatically.
        available_tokens: Nominal window. Defaults to settings.base_limit.
        message_count: Messages in the session, for the overhead estimate.
        cache_size: Cache-read tokens, for the overhead estimate.
        settings: Predictor constants.

    Returns:
        ClaudeContextStatus for the session.
    """
    if available_tokens is None:
        available_tokens = settings.base_limit

    system_overhead = calculate_system_overhead(message_count, cache_size, settings)
    adjusted = available_tokens - system_overhead
    auto_compact_threshold = adjusted * settings.trigger_fraction
    effective_limit = auto_compact_threshold if auto_compact_enabled else adjusted

    if effective_limit > 0:
        percent_left = max(0, _round_half_up((effective_limit - current_usage) / effective_limit * 100))
        percent_used = _round_half_up(current_usage / effective_limit * 100)
    else:
        percent_left = 0
        percent_used = 100

    warning_threshold = effective_limit * settings.warning_factor
    error_threshold = effective_limit * settings.error_factor

    is_above_warning = current_usage >= warning_threshold
    is_above_error = current_usage >= error_threshold
    is_above_auto_compact = auto_compact_enabled and current_usage >= auto_compact_threshold

    return ClaudeContextStatus(
        current_usage=current_usage,
        available_tokens=adjusted,
        effective_limit=effective_limit,
        auto_compact_enabled=auto_compact_enabled,
        system_overhead=system_overhead,
        percent_left=percent_left,
        percent_used=percent_used,
        remaining_tokens=max(0.0, effective_limit - current_usage),
        remaining_until_auto_compact=(
            max(0.0, auto_compact_threshold - current_usage) if auto_compact_enabled else None
        ),
        warning_threshold=_round_half_up(warning_threshold),
        error_threshold=_round_half_up(error_threshold),
        auto_compact_threshold=_round_half_up(auto_compact_threshold),
        is_above_warning_threshold=is_above_warning,
        is_above_error_threshold=is_above_error,
        is_above_auto_compact_threshold=is_above_auto_compact,
        display_message=generate_display_message(percent_left, auto_compact_enabled, is_above_warning),
    )


def get_auto_compact_warning_level(remaining_percentage: float) -> AutoCompactLevel:
    """Bucket the distance to the auto-compact trigger."""
    if remaining_percentage <= 0:
        return AutoCompactLevel.ACTIVE
    if remaining_percentage < 5:
        return AutoCompactLevel.CRITICAL
    if remaining_percentage < 10:
        return AutoCompactLevel.WARNING
    if remaining_percentage < 20:
        return AutoCompactLevel.NOTICE
    return AutoCompactLevel.NORMAL


def calculate_auto_compact_info(
    current_usage: int,
    context_window: int | None = None,
    message_count: int = 0,
    cache_size: int = 0,
    auto_compact_enabled: bool = True,
    settings: AutoCompactConfig = _DEFAULT_SETTINGS,
) -> AutoCompactInfo:
    """Project how close a session is to the host's auto-compact.

    With auto-compact disabled there is no trigger point: the level stays
    normal and the remaining figures describe the plain adjusted budget.

    Args:
        current_usage: Tokens currently in use.
        context_window: Nominal window. Defaults to settings.base_limit.
        message_count: Messages in the session.
        cache_size: Cache-read tokens.
        auto_compact_enabled: Whether the host compacts automatically.
        settings: Predictor constants.

    Returns:
        AutoCompactInfo for the session.
    """
    status = calculate_claude_context_status(
        current_usage,
        auto_compact_enabled,
        context_window,
        message_count=message_count,
        cache_size=cache_size,
        settings=settings,
    )

    if auto_compact_enabled and status.remaining_until_auto_compact is not None:
        if status.effective_limit > 0:
            remaining_percentage = _round_half_up(status.remaining_until_auto_compact / status.effective_limit * 100)
        else:
            remaining_percentage = 0
        remaining_tokens = math.floor(status.remaining_until_auto_compact)
        warning_level = get_auto_compact_warning_level(remaining_percentage)
        will_compact_soon = remaining_percentage < 5
    else:
        remaining_percentage = status.percent_left
        remaining_tokens = math.floor(status.remaining_tokens)
        warning_level = AutoCompactLevel.NORMAL
        will_compact_soon = False

    return AutoCompactInfo(
        enabled=auto_compact_enabled,
        threshold=settings.trigger_fraction,
        threshold_percentage=settings.trigger_fraction * 100,
        remaining_percentage=remaining_percentage,
        remaining_tokens=remaining_tokens,
        warning_level=warning_level,
        will_compact_soon=will_compact_soon,
        effective_limit=math.floor(status.effective_limit),
        system_overhead=status.system_overhead,
        auto_compact_threshold=status.auto_compact_threshold,
    )
