"""Deterministic offline completion client used by tests and ``--provider mock``."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Sequence, Union

import numpy as np

from .client import ChatMessage, Completion, CompletionOptions, CompletionUsage, run_cancellable
from .cost import CostTracker

logger = logging.getLogger(__name__)

__all__ = ["MOCK_MODEL", "MockCall", "MockCompletionClient", "ScriptedResponse", "default_response"]

MOCK_MODEL = "mock"
EMBEDDING_DIMENSIONS = 64

ScriptedResponse = Union[str, Callable[[Sequence[ChatMessage]], str], List[str]]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def _estimate_tokens(text: str) -> int:
    return len(_TOKEN_RE.findall(text))


def _dump(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _last_user_text(messages: Sequence[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


def _section(messages: Sequence[ChatMessage], start: str, end: str) -> str:
    """Text of the last user message between two markdown headings."""

    text = _last_user_text(messages)
    if start in text:
        text = text.split(start, 1)[1]
    return text.split(end, 1)[0].strip()


_DEFAULT_RESPONSES: Dict[str, Callable[[Sequence[ChatMessage]], str]] = {
    "scene-draft.identify": lambda _: _dump(
        {"characters": [], "locations": [], "arcs": [], "rules": [], "items": []}
    ),
    "scene-draft.constraints": lambda _: "1. No active constraints were found.",
    "scene-draft.generate": lambda messages: "INT. MOCK SCENE - DAY\n\n"
    + _section(messages, "## Scene Outline", "## Constraints"),
    "scene-draft.continuity": lambda _: "[]",
    "scene-draft.deltas": lambda _: "[]",
    "scene-draft.revise": lambda messages: _section(messages, "## Original Draft", "## Contradictions to Fix"),
    "scene-draft.evaluate": lambda _: _dump({"pass": True, "score": 80, "suggestions": []}),
    "brainstorm.analyze": lambda _: "The story is at a quiet turning point with unresolved threads.",
    "brainstorm.generate": lambda _: _dump(
        [
            {
                "summary": "An unexpected visitor arrives",
                "expansion": "A stranger brings news that forces a decision.",
                "characters": [],
                "stakes": "Trust",
                "threads": [],
                "surpriseFactor": "medium",
            }
        ]
    ),
    "brainstorm.expand": lambda _: _dump(
        [{"subBeat": "The door opens", "type": "setup", "characters": [], "notes": ""}]
    ),
    "dialogue.analyze": lambda _: _dump({"characters": []}),
    "dialogue.refine": lambda messages: _section(messages, "## Original Passage", "## Character Voice Profiles"),
    "dialogue.evaluate": lambda _: _dump({"pass": True, "score": 75, "suggestions": []}),
    "continuity.audit": lambda _: "[]",
    "continuity.repair": lambda messages: _section(messages, "## Original Text", "## Issues to Fix"),
    "continuity.report": lambda _: _dump(
        {"summary": {"total": 0, "repaired": 0, "unresolved": 0}, "repairs": [], "unresolved": [], "recommendations": []}
    ),
}


def default_response(tag: str | None, messages: Sequence[ChatMessage]) -> str:
    """Canned content for a call tag; unknown tags echo the prompt size."""

    builder = _DEFAULT_RESPONSES.get(tag or "")
    if builder is not None:
        return builder(messages)
    return f"Mock response ({tag or 'untagged'}) for {_estimate_tokens(_last_user_text(messages))} tokens of input."


@dataclass(frozen=True, slots=True)
class MockCall:
    tag: str | None
    messages: tuple[ChatMessage, ...]
    options: CompletionOptions


@dataclass
class MockCompletionClient:
    """Completion client returning scripted or canned answers.

    ``responses`` maps a call tag (``"<pipeline>.<node>"``) to a string, a
    callable receiving the messages, or a list consumed one entry per call
    (the last entry repeats). Tags without a script fall back to
    :func:`default_response`.
    """

    responses: Mapping[str, ScriptedResponse] = field(default_factory=dict)
    delay: float = 0.0
    seed: int = 0
    cost_tracker: CostTracker | None = None
    model: str = MOCK_MODEL
    calls: List[MockCall] = field(default_factory=list, init=False)
    _cursor: Dict[str, int] = field(default_factory=dict, init=False, repr=False)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: CompletionOptions | None = None,
        signal: asyncio.Event | None = None,
    ) -> Completion:
        options = options or CompletionOptions()
        self.calls.append(MockCall(tag=options.tag, messages=tuple(messages), options=options))
        await run_cancellable(asyncio.sleep(max(self.delay, 0.0)), signal)

        content = self._resolve(options.tag, messages)
        usage = CompletionUsage(
            prompt_tokens=sum(_estimate_tokens(message.content) for message in messages),
            completion_tokens=_estimate_tokens(content),
        )
        if self.cost_tracker is not None:
            self.cost_tracker.record(self.model, usage.prompt_tokens, usage.completion_tokens, tag=options.tag)
        logger.debug("Mock completion for tag '%s' (%d chars)", options.tag, len(content))
        return Completion(content=content, finish_reason="stop", usage=usage, model=self.model)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Hashed bag-of-words vectors, L2-normalised."""

        vectors = np.zeros((len(texts), EMBEDDING_DIMENSIONS), dtype=float)
        for row, text in enumerate(texts):
            for token in _TOKEN_RE.findall(text.lower()):
                digest = hashlib.blake2b(f"{self.seed}:{token}".encode("utf-8"), digest_size=8).digest()
                bucket = int.from_bytes(digest, "little") % EMBEDDING_DIMENSIONS
                vectors[row, bucket] += 1.0
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return (vectors / norms).tolist()

    def calls_for(self, tag: str) -> list[MockCall]:
        return [call for call in self.calls if call.tag == tag]

    @property
    def tags(self) -> list[str | None]:
        return [call.tag for call in self.calls]

    def _resolve(self, tag: str | None, messages: Sequence[ChatMessage]) -> str:
        scripted = self.responses.get(tag or "")
        if scripted is None:
            return default_response(tag, messages)
        if isinstance(scripted, str):
            return scripted
        if isinstance(scripted, list):
            if not scripted:
                return default_response(tag, messages)
            position = self._cursor.get(tag or "", 0)
            self._cursor[tag or ""] = position + 1
            return scripted[min(position, len(scripted) - 1)]
        return scripted(messages)
