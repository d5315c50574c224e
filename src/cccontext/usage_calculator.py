"""Token usage and cost calculations."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, cast

from cccontext.model_config import get_model_pricing
from cccontext.models import get_message, get_usage

# Cache reads are billed at a tenth of the input price.
CACHE_READ_DISCOUNT = 0.1


@dataclass
class CostBreakdown:
    """Cost of a single usage record."""

    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    cache_creation_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Input plus output tokens."""
        return self.input_tokens + self.output_tokens


@dataclass
class SessionTotals:
    """Totals folded over a list of records."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cost: float = 0.0
    turns: int = 0
    average_tokens_per_turn: int = 0

    @property
    def total_tokens(self) -> int:
        """Input plus output tokens."""
        return self.total_input_tokens + self.total_output_tokens


def coerce_tokens(value: object) -> int:
    """Coerce a raw token field to a non-negative int.

    Anything that is not a finite, non-negative number counts as zero.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return 0
        return int(value)
    return 0


def calculate_cost(usage: Mapping[str, Any] | None, model: str) -> CostBreakdown:
    """Calculate the cost of one usage record.

    Args:
        usage: Raw usage mapping from a message, or None.
        model: Model id used for pricing.

    Returns:
        CostBreakdown; all zeros when usage is missing.
    """
    if not usage:
        return CostBreakdown()

    pricing = get_model_pricing(model)

    input_tokens = coerce_tokens(usage.get("input_tokens"))
    output_tokens = coerce_tokens(usage.get("output_tokens"))
    cache_read_tokens = coerce_tokens(usage.get("cache_read_input_tokens"))
    cache_creation_tokens = coerce_tokens(usage.get("cache_creation_input_tokens"))

    effective_input = input_tokens + cache_creation_tokens + cache_read_tokens * CACHE_READ_DISCOUNT
    input_cost = effective_input / 1_000_000 * pricing.input
    output_cost = output_tokens / 1_000_000 * pricing.output

    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_tokens=cache_read_tokens,
        cache_creation_tokens=cache_creation_tokens,
    )


def calculate_session_totals(records: Iterable[object], model: str) -> SessionTotals:
    """Fold JSONL records into session totals.

    Cache-read tokens keep the latest non-zero value because each report
    already reflects the cumulative cache state.

    Args:
        records: Parsed JSONL records.
        model: Model id used for pricing.

    Returns:
        SessionTotals for the records.
    """
    totals = SessionTotals()

    for record in records:
        if not isinstance(record, dict):
            continue
        message = get_message(cast(dict[str, Any], record))
        if message is None:
            continue

        cost = calculate_cost(get_usage(message), model)
        totals.total_input_tokens += cost.input_tokens
        totals.total_output_tokens += cost.output_tokens
        totals.total_cache_creation_tokens += cost.cache_creation_tokens
        if cost.cache_tokens > 0:
            totals.total_cache_tokens = cost.cache_tokens
        totals.total_cost += cost.total_cost

        if message.get("role") == "assistant":
            totals.turns += 1

    if totals.turns > 0:
        totals.average_tokens_per_turn = math.floor(totals.total_tokens / totals.turns + 0.5)

    return totals


def estimate_remaining_turns(current_tokens: int, context_window: int, average_tokens_per_turn: float) -> float:
    """Estimate how many more turns fit in the context window.

    Returns:
        math.inf when there is no per-turn average yet. Negative values mean
        the session is already over budget.
    """
    if average_tokens_per_turn == 0:
        return math.inf
    return math.floor((context_window - current_tokens) / average_tokens_per_turn)


def format_tokens(tokens: float) -> str:
    """Format token count for display, e.g. "1.2k" or "1.5M"."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}k"
    return str(int(tokens))


def format_cost(cost: float) -> str:
    """Format a cost in USD with two decimals, rounding half up."""
    rounded = Decimal(str(cost)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"${rounded}"


def format_remaining_turns(turns: float) -> str:
    """Format a remaining-turns estimate, with ∞ for the unbounded case."""
    if math.isinf(turns):
        return "∞"
    return str(int(turns))
