"""Model pricing and context window registry."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPricing:
    """Pricing for one model, in USD per million tokens."""

    input: float
    output: float
    name: str


PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-6": ModelPricing(5.0, 25.0, "Claude Opus 4.6"),
    "claude-opus-4-5-20251101": ModelPricing(5.0, 25.0, "Claude Opus 4.5"),
    "claude-opus-4-1-20250805": ModelPricing(15.0, 75.0, "Claude Opus 4.1"),
    "claude-opus-4-20250514": ModelPricing(15.0, 75.0, "Claude Opus 4"),
    "claude-3-opus-20241022": ModelPricing(15.0, 75.0, "Claude 3 Opus"),
    "claude-sonnet-4-5-20250929": ModelPricing(3.0, 15.0, "Claude Sonnet 4.5"),
    "claude-sonnet-4-20250514": ModelPricing(3.0, 15.0, "Claude Sonnet 4"),
    "claude-3-7-sonnet-20250219": ModelPricing(3.0, 15.0, "Claude Sonnet 3.7"),
    "claude-3-5-sonnet-20241022": ModelPricing(3.0, 15.0, "Claude 3.5 Sonnet"),
    "claude-haiku-4-5-20251001": ModelPricing(1.0, 5.0, "Claude Haiku 4.5"),
    "claude-3-5-haiku-20241022": ModelPricing(0.8, 4.0, "Claude 3.5 Haiku"),
    "claude-3-haiku-20240307": ModelPricing(0.25, 1.25, "Claude 3 Haiku"),
}

DEFAULT_PRICING = ModelPricing(3.0, 15.0, "Unknown Model")

CONTEXT_WINDOWS: dict[str, int] = {
    "claude-opus-4-6": 200_000,
    "claude-opus-4-5-20251101": 200_000,
    "claude-opus-4-1-20250805": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-3-opus-20241022": 200_000,
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-3-7-sonnet-20250219": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-haiku-4-5-20251001": 200_000,
    "claude-3-5-haiku-20241022": 200_000,
    "claude-3-haiku-20240307": 200_000,
    # Legacy models
    "claude-2.1": 200_000,
    "claude-2.0": 100_000,
    "claude-instant-1.2": 100_000,
}

DEFAULT_CONTEXT_WINDOW = 200_000
EXTENDED_CONTEXT_WINDOW = 1_000_000

# Usage above this fraction of the nominal window means the session must be
# running with the extended window.
AUTO_UPGRADE_THRESHOLD = 0.9


def get_model_pricing(model: str) -> ModelPricing:
    """Get pricing for a model, falling back to the default tier."""
    return PRICING.get(model, DEFAULT_PRICING)


def get_model_name(model: str) -> str:
    """Get the display name for a model."""
    return get_model_pricing(model).name


def get_context_window(
    model: str,
    current_tokens: int | None = None,
    override: int | None = None,
) -> int:
    """Get the context window size for a model.

    Args:
        model: Model identifier.
        current_tokens: Current usage. When it exceeds 90% of the nominal
            window the extended 1M window is returned instead.
        override: Explicit window size; wins over everything else.

    Returns:
        Context window size in tokens.
    """
    if override is not None:
        return override

    base_window = CONTEXT_WINDOWS.get(model, DEFAULT_CONTEXT_WINDOW)
    if current_tokens is not None and current_tokens > base_window * AUTO_UPGRADE_THRESHOLD:
        return EXTENDED_CONTEXT_WINDOW
    return base_window


def calculate_usage_percentage(model: str, total_tokens: int, override: int | None = None) -> float:
    """Calculate usage as a percentage of the model's effective window."""
    context_window = get_context_window(model, total_tokens, override)
    if context_window <= 0:
        return 0.0
    return total_tokens / context_window * 100
