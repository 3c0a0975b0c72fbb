"""Dataclass-driven configuration for the xstory package."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .graph.definition import DEFAULT_MAX_ITERATIONS
from .paths import default_output_root, resolve_output_path

__all__ = [
    "LLMConfig",
    "WorkflowConfig",
    "BudgetConfig",
    "XStoryConfig",
]


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover
        return default


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed completion clients."""

    model: str = field(default_factory=lambda: os.getenv("XSTORY_MODEL", "gpt-4o-mini"))
    base_url: str | None = field(
        default_factory=lambda: os.getenv("XSTORY_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    )
    temperature: float = field(default_factory=lambda: _env_float("XSTORY_TEMPERATURE", 0.0) or 0.0)
    max_tokens: int | None = field(default_factory=lambda: _env_int("XSTORY_MAX_TOKENS"))
    api_key_env: str = field(default_factory=lambda: os.getenv("XSTORY_API_KEY_ENV", "XSTORY_API_KEY"))
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY",)

    def resolve_api_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *self.fallback_api_key_envs)
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def client_kwargs(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        return {
            "model": model or self.model,
            "base_url": base_url or self.base_url,
            "api_key": api_key if api_key is not None else self.resolve_api_key(),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }


@dataclass(slots=True)
class WorkflowConfig:
    """Executor settings applied on top of each pipeline's own graph."""

    max_iterations: int | None = field(default_factory=lambda: _env_int("XSTORY_MAX_ITERATIONS"))
    interactive: bool = False

    def effective_max_iterations(self, graph_default: int = DEFAULT_MAX_ITERATIONS) -> int:
        return self.max_iterations if self.max_iterations is not None else graph_default


@dataclass(slots=True)
class BudgetConfig:
    """Spend guardrails for provider calls."""

    limit_usd: float | None = field(default_factory=lambda: _env_float("XSTORY_BUDGET_USD"))
    warn_ratio: float = field(default_factory=lambda: _env_float("XSTORY_BUDGET_WARN_RATIO", 0.9) or 0.9)

    def should_warn(self, spent: float) -> bool:
        if self.limit_usd is None:
            return False
        return spent >= self.limit_usd * self.warn_ratio


@dataclass(slots=True)
class XStoryConfig:
    """Primary configuration entry point for pipeline runs."""

    output_root: Path = field(default_factory=default_output_root)
    llm: LLMConfig = field(default_factory=LLMConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    log_level: str = field(default_factory=lambda: os.getenv("XSTORY_LOG_LEVEL", "INFO"))

    def with_output(self, output_root: Path | str | None) -> "XStoryConfig":
        if output_root is None:
            return self
        return replace(self, output_root=Path(output_root).expanduser())

    @property
    def output_path(self) -> Path:
        return resolve_output_path(self.output_root)

    def as_client_kwargs(self, **overrides: object) -> dict[str, object | None]:
        return self.llm.client_kwargs(**overrides)
