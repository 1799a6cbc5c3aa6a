import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .types import Response, Usage

logger = logging.getLogger(__name__)

# USD per million tokens (input, output)
Pricing = Mapping[str, Tuple[float, float]]


def _add(total: Optional[float], value: Optional[float]) -> Optional[float]:
    if value is None:
        return total
    return value if total is None else total + value


class UsageTracker:
    """
    Accumulates token usage and cost across the turns of one run.

    Totals stay None until at least one turn reports a figure, so "not
    reported" is never confused with zero.

    Args:
        pricing: Optional per-model prices in USD per million tokens,
            {"model-id": (input_price, output_price)}. Used only when the vendor
            does not report a cost itself.
    """

    def __init__(self, pricing: Optional[Pricing] = None):
        self.pricing: Dict[str, Tuple[float, float]] = dict(pricing or {})
        self.input_tokens: Optional[int] = None
        self.output_tokens: Optional[int] = None
        self.total_tokens: Optional[int] = None
        self.cost: Optional[float] = None
        self.turns: List[Dict[str, Any]] = []

    def estimate_cost(self, model: Optional[str], usage: Usage) -> Optional[float]:
        if usage.cost is not None:
            return usage.cost
        if not model or model not in self.pricing:
            return None
        if usage.input_tokens is None or usage.output_tokens is None:
            return None
        input_price, output_price = self.pricing[model]
        return (usage.input_tokens * input_price + usage.output_tokens * output_price) / 1_000_000

    def add(self, response: Response) -> None:
        """Record the usage of one turn."""
        usage = response.usage
        self.turns.append({
            "model": response.model,
            "usage": usage.to_dict() if usage else None,
        })
        if usage is None:
            logger.debug("%s did not report usage for %s", response.provider, response.model)
            return
        self.input_tokens = _add(self.input_tokens, usage.input_tokens)
        self.output_tokens = _add(self.output_tokens, usage.output_tokens)
        self.total_tokens = _add(self.total_tokens, usage.total_tokens)
        self.cost = _add(self.cost, self.estimate_cost(response.model, usage))

    @property
    def reported(self) -> bool:
        return any(t["usage"] is not None for t in self.turns)

    def total(self) -> Optional[Usage]:
        """Aggregated usage, or None if no turn reported any."""
        if not self.reported:
            return None
        return Usage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            total_tokens=self.total_tokens,
            cost=self.cost,
            raw={"turns": list(self.turns)},
        )


def cost_info(model: Optional[str], usage: Optional[Usage]) -> Optional[Dict[str, Any]]:
    """Cost summary attached to response metadata by cost-tracking providers."""
    if usage is None:
        return None
    return {
        "model": model,
        "prompt_tokens": usage.input_tokens,
        "completion_tokens": usage.output_tokens,
        "total_tokens": usage.total_tokens,
        "cost": usage.cost,
    }
