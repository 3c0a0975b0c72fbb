"""Text-generation collaborators for the xstory pipelines."""

from .client import (
    ChatMessage,
    Completion,
    CompletionClient,
    CompletionOptions,
    CompletionUsage,
    EmbeddingClient,
    OperationCancelled,
    ProviderDependencyError,
    ProviderError,
    run_cancellable,
    system,
    user,
)
from .cost import (
    MODEL_PRICING,
    BudgetExceededError,
    CostSnapshot,
    CostTracker,
    ModelPricing,
    TokenUsage,
    register_model_pricing,
)
from .mock import MockCompletionClient
from .providers import LangChainCompletionClient, ProviderSettings, build_client

__all__ = [
    "ChatMessage",
    "Completion",
    "CompletionClient",
    "CompletionOptions",
    "CompletionUsage",
    "EmbeddingClient",
    "OperationCancelled",
    "ProviderError",
    "ProviderDependencyError",
    "run_cancellable",
    "system",
    "user",
    "MODEL_PRICING",
    "ModelPricing",
    "TokenUsage",
    "CostSnapshot",
    "BudgetExceededError",
    "CostTracker",
    "register_model_pricing",
    "MockCompletionClient",
    "LangChainCompletionClient",
    "ProviderSettings",
    "build_client",
]
