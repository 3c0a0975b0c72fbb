"""xstory: workflow graphs for iterative story generation."""

from .config import BudgetConfig, LLMConfig, WorkflowConfig, XStoryConfig
from .graph import (
    Continue,
    Pause,
    RunGate,
    WorkflowContext,
    WorkflowEdge,
    WorkflowExecutor,
    WorkflowGraph,
    WorkflowNode,
    WorkflowRunResult,
    run_workflow,
)
from .io import LoadedDocument, load_input_resource
from .knowledge import InMemoryKnowledgeStore
from .llm import LangChainCompletionClient, MockCompletionClient, build_client
from .paths import resolve_output_path
from .pipelines import PIPELINES, get_pipeline
from .retrieval import RetrievalAPI, build_retrieval_api

__all__ = [
    "BudgetConfig",
    "LLMConfig",
    "WorkflowConfig",
    "XStoryConfig",
    "Continue",
    "Pause",
    "RunGate",
    "WorkflowContext",
    "WorkflowEdge",
    "WorkflowExecutor",
    "WorkflowGraph",
    "WorkflowNode",
    "WorkflowRunResult",
    "run_workflow",
    "LoadedDocument",
    "load_input_resource",
    "InMemoryKnowledgeStore",
    "LangChainCompletionClient",
    "MockCompletionClient",
    "build_client",
    "resolve_output_path",
    "PIPELINES",
    "get_pipeline",
    "RetrievalAPI",
    "build_retrieval_api",
]
