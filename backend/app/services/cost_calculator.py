"""
Cost estimation for upstream model usage.

Estimates only: the usage ledger is observability data, not billing.
Decimal everywhere avoids floating-point drift when ledgers accumulate
thousands of small amounts.

Prices are hardcoded per 1K tokens in USD, keyed by OpenRouter model id.
"""

from decimal import Decimal

# ── Pricing table ───────────────────────────────────────────
# Source: https://openrouter.ai/models (snapshot).
#
# Format: model_id -> { "input": Decimal, "output": Decimal }

MODEL_PRICING: dict[str, dict[str, Decimal]] = {
    # Anthropic
    "anthropic/claude-3-haiku": {
        "input": Decimal("0.00025"),
        "output": Decimal("0.00125"),
    },
    "anthropic/claude-3-5-sonnet": {
        "input": Decimal("0.003"),
        "output": Decimal("0.015"),
    },
    "anthropic/claude-3-sonnet": {
        "input": Decimal("0.003"),
        "output": Decimal("0.015"),
    },
    "anthropic/claude-3-opus": {
        "input": Decimal("0.015"),
        "output": Decimal("0.075"),
    },
    # OpenAI
    "openai/gpt-4o": {
        "input": Decimal("0.0025"),
        "output": Decimal("0.01"),
    },
    "openai/gpt-4o-mini": {
        "input": Decimal("0.00015"),
        "output": Decimal("0.0006"),
    },
    # Google
    "google/gemini-flash-1.5": {
        "input": Decimal("0.000075"),
        "output": Decimal("0.0003"),
    },
}

# Pre-computed divisor — avoids repeated Decimal construction.
_ONE_THOUSAND = Decimal("1000")


def get_supported_models() -> list[str]:
    """Return a sorted list of model ids with known pricing."""
    return sorted(MODEL_PRICING.keys())


def calculate_cost(
    model_name: str,
    input_tokens: int,
    output_tokens: int,
) -> Decimal:
    """
    Estimate the USD cost of one upstream call.

    Args:
        model_name:    OpenRouter model id, a key in MODEL_PRICING.
        input_tokens:  Number of prompt tokens (>= 0).
        output_tokens: Number of completion tokens (>= 0).

    Returns:
        Decimal cost in USD.

    Raises:
        ValueError: If model_name is not in the pricing table.
    """
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None:
        supported = ", ".join(get_supported_models())
        raise ValueError(
            f"Unknown model '{model_name}'. "
            f"Supported models: {supported}"
        )

    input_cost = (Decimal(input_tokens) / _ONE_THOUSAND) * pricing["input"]
    output_cost = (Decimal(output_tokens) / _ONE_THOUSAND) * pricing["output"]

    return input_cost + output_cost
