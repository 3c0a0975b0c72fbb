"""Unified retrieval: BM25 keyword search fused with optional embedding search."""

from __future__ import annotations

import logging
from typing import Dict, List, Protocol, runtime_checkable

from .bm25 import BM25Index
from .embedding import EmbeddingIndex
from .types import SearchResult

logger = logging.getLogger(__name__)

__all__ = ["RRF_K", "Retriever", "RetrievalAPI", "reciprocal_rank_fusion"]

RRF_K = 60


@runtime_checkable
class Retriever(Protocol):
    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        ...


def reciprocal_rank_fusion(
    ranked_lists: List[tuple[float, List[SearchResult]]],
    max_results: int,
    *,
    k: int = RRF_K,
) -> List[SearchResult]:
    """Merge weighted ranked lists; each hit scores ``weight / (k + rank)``.

    Ranks start at 1. Fused results are tagged ``"merged"``; the first list a
    document appears in supplies its title and snippet.
    """

    fused: Dict[str, float] = {}
    first_seen: Dict[str, SearchResult] = {}
    for weight, results in ranked_lists:
        for rank, result in enumerate(results, start=1):
            fused[result.document_id] = fused.get(result.document_id, 0.0) + weight / (k + rank)
            first_seen.setdefault(result.document_id, result)

    ordered = sorted(fused.items(), key=lambda item: -item[1])[:max_results]
    return [first_seen[doc_id].with_score(score, "merged") for doc_id, score in ordered]


class RetrievalAPI:
    """Implements :class:`Retriever` over a BM25 index and an embedding index."""

    def __init__(self, keyword_index: BM25Index, embedding_index: EmbeddingIndex | None = None) -> None:
        self.keyword_index = keyword_index
        self.embedding_index = embedding_index or EmbeddingIndex()
        self.bm25_weight = 0.6
        self.embedding_weight = 0.4

    def set_weights(self, bm25: float, embedding: float) -> None:
        """Set relative weights; they are normalised to sum to one."""

        total = bm25 + embedding
        if bm25 < 0 or embedding < 0 or total <= 0:
            raise ValueError("Retrieval weights must be non-negative and not both zero")
        self.bm25_weight = bm25 / total
        self.embedding_weight = embedding / total

    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        keyword_results = self.keyword_index.search(query, max_results * 2)

        embeddings = self.embedding_index
        if not embeddings.is_available or embeddings.document_count == 0:
            return keyword_results[:max_results]

        vector_results = await embeddings.search(query, max_results * 2)
        if not vector_results:
            return keyword_results[:max_results]

        logger.debug(
            "Fusing %d keyword and %d vector hits for query %r",
            len(keyword_results),
            len(vector_results),
            query,
        )
        return reciprocal_rank_fusion(
            [(self.bm25_weight, keyword_results), (self.embedding_weight, vector_results)],
            max_results,
        )

    @property
    def stats(self) -> dict[str, object]:
        return {
            "bm25_docs": self.keyword_index.document_count,
            "embedding_docs": self.embedding_index.document_count,
            "embedding_available": self.embedding_index.is_available,
        }
