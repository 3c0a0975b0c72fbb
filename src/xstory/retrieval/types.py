"""Records shared by the retrieval indexes."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Literal

ResultSource = Literal["bm25", "embedding", "merged"]


@dataclass(frozen=True, slots=True)
class Document:
    """A unit of reference text, typically one note or manuscript chapter."""

    id: str
    title: str
    content: str
    note_id: str = ""


@dataclass(frozen=True, slots=True)
class SearchResult:
    document_id: str
    note_id: str
    title: str
    snippet: str
    score: float
    source: ResultSource = "bm25"

    def with_score(self, score: float, source: ResultSource | None = None) -> "SearchResult":
        return replace(self, score=score, source=source or self.source)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def extract_snippet(content: str, query: str, window: int = 200) -> str:
    """Return the window of *content* holding the most query terms."""

    terms = [term for term in query.lower().split() if term]
    lowered = content.lower()
    half = window // 2

    best_pos = 0
    best_score = 0
    for term in terms:
        idx = lowered.find(term)
        if idx < 0:
            continue
        nearby = lowered[max(0, idx - half) : min(len(content), idx + half)]
        score = sum(1 for other in terms if other in nearby)
        if score > best_score:
            best_score = score
            best_pos = idx

    start = max(0, best_pos - half)
    end = min(len(content), best_pos + half)
    snippet = content[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet
