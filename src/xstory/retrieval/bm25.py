"""BM25 keyword index over titled documents.

Titles count twice as much as bodies and query terms also match as word
prefixes (at a reduced weight), so ``"light"`` finds ``"lighthouse"``.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .types import Document, SearchResult, extract_snippet

logger = logging.getLogger(__name__)

__all__ = ["BM25Index", "tokenize"]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

TITLE_BOOST = 2.0
PREFIX_WEIGHT = 0.375


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


@dataclass(slots=True)
class _FieldStats:
    term_counts: Counter
    length: int


class BM25Index:
    def __init__(self, *, k1: float = 1.2, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b
        self._documents: Dict[str, Document] = {}
        self._fields: Dict[str, Dict[str, _FieldStats]] = {}

    @property
    def document_count(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._documents

    def add_document(self, document: Document) -> None:
        """Add or replace *document*."""

        self._documents[document.id] = document
        self._fields[document.id] = {
            "title": self._stats(document.title),
            "content": self._stats(document.content),
        }

    def add_documents(self, documents: Iterable[Document]) -> None:
        for document in documents:
            self.add_document(document)

    def remove_document(self, document_id: str) -> None:
        self._documents.pop(document_id, None)
        self._fields.pop(document_id, None)

    def clear(self) -> None:
        self._documents.clear()
        self._fields.clear()

    def get(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    def search(self, query: str, max_results: int = 10) -> List[SearchResult]:
        terms = tokenize(query)
        if not terms or not self._documents or max_results <= 0:
            return []

        scores: Dict[str, float] = {}
        for field_name, boost in (("title", TITLE_BOOST), ("content", 1.0)):
            avg_length = self._average_length(field_name)
            for term in terms:
                for index_term, weight in self._expand(term, field_name).items():
                    idf = self._idf(index_term, field_name)
                    for doc_id, fields in self._fields.items():
                        stats = fields[field_name]
                        tf = stats.term_counts.get(index_term, 0)
                        if not tf:
                            continue
                        norm = 1 - self.b + self.b * (stats.length / avg_length if avg_length else 0.0)
                        contribution = idf * (tf * (self.k1 + 1)) / (tf + self.k1 * norm)
                        scores[doc_id] = scores.get(doc_id, 0.0) + boost * weight * contribution

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:max_results]
        results: List[SearchResult] = []
        for doc_id, score in ranked:
            document = self._documents[doc_id]
            results.append(
                SearchResult(
                    document_id=doc_id,
                    note_id=document.note_id,
                    title=document.title,
                    snippet=extract_snippet(document.content, query),
                    score=score,
                    source="bm25",
                )
            )
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _stats(self, text: str) -> _FieldStats:
        tokens = tokenize(text)
        return _FieldStats(term_counts=Counter(tokens), length=len(tokens))

    def _average_length(self, field_name: str) -> float:
        lengths = [fields[field_name].length for fields in self._fields.values()]
        return sum(lengths) / len(lengths) if lengths else 0.0

    def _expand(self, term: str, field_name: str) -> Dict[str, float]:
        expanded: Dict[str, float] = {}
        for fields in self._fields.values():
            for index_term in fields[field_name].term_counts:
                if index_term == term:
                    expanded[index_term] = 1.0
                elif index_term.startswith(term):
                    expanded.setdefault(index_term, PREFIX_WEIGHT)
        return expanded

    def _idf(self, index_term: str, field_name: str) -> float:
        total = len(self._fields)
        containing = sum(1 for fields in self._fields.values() if index_term in fields[field_name].term_counts)
        return math.log(1 + (total - containing + 0.5) / (containing + 0.5))
