"""Token cost estimation used by executors to fill ``total_cost``."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def estimate_cost(
    *,
    model: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    pricing: dict[str, ModelPricing],
) -> float | None:
    """Estimate the cost of one run, or None when usage or pricing is unknown."""

    entry = pricing.get(model.strip()) or pricing.get("*")
    if entry is None or prompt_tokens is None or completion_tokens is None:
        return None
    return (prompt_tokens / 1_000_000) * entry.input_per_1m + (
        completion_tokens / 1_000_000
    ) * entry.output_per_1m


def parse_pricing(raw: str) -> dict[str, ModelPricing]:
    """Parse ``AI_JOBS_PRICING``.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model acts as the fallback price
    """

    parsed: dict[str, ModelPricing] = {}
    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.rsplit(":", 2)]
        if len(parts) != 3 or not parts[0]:
            logger.warning("Ignoring malformed pricing entry: %r", value)
            continue
        model, input_price, output_price = parts
        try:
            parsed[model] = ModelPricing(
                input_per_1m=float(input_price),
                output_per_1m=float(output_price),
            )
        except ValueError:
            logger.warning("Ignoring pricing entry with non-numeric price: %r", value)
    return parsed
