"""Token accounting and pricing for text-generation calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

logger = logging.getLogger(__name__)

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "TokenUsage",
    "CostSnapshot",
    "BudgetExceededError",
    "CostTracker",
    "register_model_pricing",
]


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Price definition expressed in USD per 1K tokens."""

    prompt_per_1k: float
    completion_per_1k: float

    def estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens / 1000) * self.prompt_per_1k + (completion_tokens / 1000) * self.completion_per_1k


MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(prompt_per_1k=0.00015, completion_per_1k=0.0006),
    "gpt-4o": ModelPricing(prompt_per_1k=0.005, completion_per_1k=0.015),
    "gpt-4.1-mini": ModelPricing(prompt_per_1k=0.0004, completion_per_1k=0.0016),
}


@dataclass(slots=True)
class TokenUsage:
    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, prompt: int, completion: int, cost: float) -> None:
        self.calls += 1
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.cost_usd += cost

    def to_dict(self) -> dict[str, float | int]:
        return {
            "calls": self.calls,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.prompt_tokens + self.completion_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True, slots=True)
class CostSnapshot:
    """Single accounting event."""

    model: str
    tag: str | None
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float


class BudgetExceededError(RuntimeError):
    """Raised when recorded spend breaches a configured limit."""


@dataclass(slots=True)
class CostTracker:
    """Running spend per model and per call tag with an optional hard limit."""

    pricing: Mapping[str, ModelPricing] = field(default_factory=lambda: MODEL_PRICING)
    budget_limit: float | None = None
    warn_ratio: float = 0.9
    _by_model: Dict[str, TokenUsage] = field(default_factory=dict, init=False, repr=False)
    _by_tag: Dict[str, TokenUsage] = field(default_factory=dict, init=False, repr=False)
    _total_cost: float = field(default=0.0, init=False, repr=False)
    _warned: bool = field(default=False, init=False, repr=False)

    @property
    def total_cost(self) -> float:
        return self._total_cost

    def record(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        *,
        tag: str | None = None,
    ) -> CostSnapshot:
        pricing = self.pricing.get(model)
        cost = pricing.estimate_cost(prompt_tokens, completion_tokens) if pricing else 0.0
        self._by_model.setdefault(model, TokenUsage()).add(prompt_tokens, completion_tokens, cost)
        self._by_tag.setdefault(tag or "untagged", TokenUsage()).add(prompt_tokens, completion_tokens, cost)
        self._total_cost += cost

        if self.budget_limit is not None and self._total_cost > self.budget_limit:
            raise BudgetExceededError(
                f"Budget limit {self.budget_limit:.2f} USD exceeded: {self._total_cost:.4f}"
            )
        if self.should_warn() and not self._warned:
            self._warned = True
            logger.warning(
                "Spend %.4f USD reached %.0f%% of the %.2f USD budget",
                self._total_cost,
                self.warn_ratio * 100,
                self.budget_limit,
            )

        return CostSnapshot(
            model=model,
            tag=tag,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost,
        )

    def should_warn(self) -> bool:
        if self.budget_limit is None:
            return False
        return self._total_cost >= self.budget_limit * self.warn_ratio

    def remaining_budget(self) -> float | None:
        if self.budget_limit is None:
            return None
        return max(self.budget_limit - self._total_cost, 0.0)

    def usage_for(self, model: str) -> TokenUsage | None:
        return self._by_model.get(model)

    def usage_for_tag(self, tag: str) -> TokenUsage | None:
        return self._by_tag.get(tag)

    def reset(self) -> None:
        self._by_model.clear()
        self._by_tag.clear()
        self._total_cost = 0.0
        self._warned = False

    def to_dict(self) -> dict[str, object]:
        return {
            "total_cost_usd": round(self._total_cost, 6),
            "budget_limit": self.budget_limit,
            "by_model": {model: usage.to_dict() for model, usage in sorted(self._by_model.items())},
            "by_tag": {tag: usage.to_dict() for tag, usage in sorted(self._by_tag.items())},
        }

    def to_json(self, *, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


def register_model_pricing(model: str, *, prompt_per_1k: float, completion_per_1k: float) -> None:
    """Register or override pricing details for a model in ``MODEL_PRICING``."""

    MODEL_PRICING[model] = ModelPricing(prompt_per_1k=prompt_per_1k, completion_per_1k=completion_per_1k)
