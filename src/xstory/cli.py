"""Command line interface for running xstory pipelines."""

from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

from dotenv import load_dotenv

from .config import XStoryConfig
from .graph import WorkflowContext, WorkflowExecutor, WorkflowRunResult
from .graph.export import draw_mermaid
from .io import iter_corpus_documents, load_input_resource, write_json
from .knowledge import InMemoryKnowledgeStore
from .llm import CostTracker, MockCompletionClient, build_client
from .paths import run_directory
from .pipelines import PIPELINES, get_pipeline
from .retrieval import build_retrieval_api

logger = logging.getLogger(__name__)

__all__ = ["build_parser", "main"]

PROVIDERS = ("mock", "openai")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xstory",
        description="Run story generation pipelines built on the xstory workflow executor.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        help="Logging level (defaults to XSTORY_LOG_LEVEL or INFO).",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run",
        help="Execute a pipeline and write result.json and cost.json.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    run_parser.add_argument("pipeline", choices=sorted(PIPELINES), help="Pipeline to execute.")
    _register_run_arguments(run_parser)

    graph_parser = subparsers.add_parser(
        "graph",
        help="Print a Mermaid diagram of a pipeline graph.",
        allow_abbrev=False,
    )
    graph_parser.add_argument("pipeline", choices=sorted(PIPELINES), help="Pipeline to draw.")

    subparsers.add_parser("list", help="List available pipelines.", allow_abbrev=False)
    return parser


def _register_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--input",
        required=True,
        help="Pipeline input (.md/.txt free text or .json object of fields).",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Directory for result.json and cost.json (defaults to a timestamped run directory).",
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        default="mock",
        help="Completion provider to use.",
    )
    parser.add_argument("--model", default=None, help="Model name for the openai provider.")
    parser.add_argument("--base-url", dest="base_url", default=None, help="Optional OpenAI-compatible base URL.")
    parser.add_argument("--canon", default=None, help="Knowledge store JSON file with scopes and entities.")
    parser.add_argument("--corpus", default=None, help="Directory of reference notes to index for retrieval.")
    parser.add_argument("--scope-id", dest="scope_id", default=None, help="Scope used for canon lookups.")
    parser.add_argument(
        "--max-iterations",
        dest="max_iterations",
        type=_positive_int,
        default=None,
        help="Override the pipeline's node execution limit.",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Pause at review breakpoints and prompt on the console.",
    )
    parser.add_argument(
        "--budget-usd",
        dest="budget_usd",
        type=float,
        default=None,
        help="Optional spend budget in USD before provider calls fail.",
    )


def _positive_int(token: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:  # pragma: no cover - argparse formatting
        raise argparse.ArgumentTypeError(f"Invalid integer value: {token}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("Values must be positive integers")
    return value


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_llm(args: argparse.Namespace, config: XStoryConfig, tracker: CostTracker):
    if args.provider == "mock":
        return MockCompletionClient(cost_tracker=tracker)
    return build_client(cost_tracker=tracker, **config.as_client_kwargs(model=args.model, base_url=args.base_url))


def _initial_state(spec, args: argparse.Namespace, *, interactive: bool) -> Mapping[str, Any]:
    loaded = load_input_resource(args.input)
    overrides: dict[str, Any] = {}
    if args.scope_id:
        overrides["scope_id"] = args.scope_id
    # pipelines with a review step only pause when asked to
    if interactive and "review" in inspect.signature(spec.create_state).parameters:
        overrides["review"] = True
    if loaded.structured:
        return spec.state_from_fields({**(loaded.fields or {}), **overrides})
    return spec.state_from_text(loaded.content, **overrides)


def _console_breakpoint(context_ref: list[WorkflowContext]):
    async def _handler(node_id: str, state: Mapping[str, Any]) -> Mapping[str, Any]:
        preview = json.dumps(dict(state), ensure_ascii=False, indent=2, default=str)
        print(f"\n--- Paused after '{node_id}' ---\n{preview}\n", file=sys.stderr)
        answer = await asyncio.to_thread(input, "Press Enter to continue or type 'q' to cancel: ")
        if answer.strip().lower() in {"q", "quit"} and context_ref:
            context_ref[0].cancel()
        return state

    return _handler


def _log_progress(node_id: str, state: Mapping[str, Any]) -> None:
    logger.info("Finished node '%s'", node_id)


async def _run_pipeline(args: argparse.Namespace, config: XStoryConfig) -> tuple[WorkflowRunResult[Any], CostTracker]:
    spec = get_pipeline(args.pipeline)
    interactive = args.interactive or config.workflow.interactive
    initial_state = _initial_state(spec, args, interactive=interactive)

    tracker = CostTracker(
        budget_limit=args.budget_usd if args.budget_usd is not None else config.budget.limit_usd,
        warn_ratio=config.budget.warn_ratio,
    )
    llm = _build_llm(args, config, tracker)
    knowledge = InMemoryKnowledgeStore.load(Path(args.canon)) if args.canon else None

    retrieval = None
    if args.corpus:
        embedder = llm if hasattr(llm, "embed") else None
        retrieval = await build_retrieval_api(iter_corpus_documents(args.corpus), embedder=embedder)

    graph = spec.build_graph()
    max_iterations = args.max_iterations or config.workflow.effective_max_iterations(graph.max_iterations)
    if max_iterations != graph.max_iterations:
        graph = graph.with_max_iterations(max_iterations)

    context_ref: list[WorkflowContext] = []
    context = WorkflowContext(
        llm=llm,
        knowledge=knowledge,
        retrieval=retrieval,
        on_progress=_log_progress,
        on_breakpoint=_console_breakpoint(context_ref) if interactive else None,
    )
    context_ref.append(context)

    result = await WorkflowExecutor(graph).run(initial_state, context)
    return result, tracker


def _command_run(args: argparse.Namespace, config: XStoryConfig) -> int:
    result, tracker = asyncio.run(_run_pipeline(args, config))

    output_dir = Path(args.output).expanduser() if args.output else run_directory(config.output_root, args.pipeline)
    write_json(output_dir / "result.json", result.to_dict())
    cost_path = output_dir / "cost.json"
    cost_path.parent.mkdir(parents=True, exist_ok=True)
    cost_path.write_text(tracker.to_json(), encoding="utf-8")

    print(f"{args.pipeline}: {result.status} ({len(result.nodes_visited)} nodes) -> {output_dir}")
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
    return 0 if result.ok else 1


def _command_graph(args: argparse.Namespace) -> int:
    spec = get_pipeline(args.pipeline)
    print(draw_mermaid(spec.build_graph(), spec.state_schema))
    return 0


def _command_list() -> int:
    for pipeline_id in sorted(PIPELINES):
        print(f"{pipeline_id}\t{PIPELINES[pipeline_id].description}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = XStoryConfig()
    try:
        _configure_logging(args.log_level or config.log_level)
        if args.command == "list":
            return _command_list()
        if args.command == "graph":
            return _command_graph(args)
        return _command_run(args, config)
    except (FileNotFoundError, NotADirectoryError, KeyError, ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
