"""Cosine-similarity index backed by an embedding client."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List

import numpy as np

from .types import Document, SearchResult

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..llm.client import EmbeddingClient

logger = logging.getLogger(__name__)

__all__ = ["EmbeddingIndex", "MAX_EMBED_CHARS"]

# Roughly 8k characters keeps a document under common embedding token limits.
MAX_EMBED_CHARS = 8000


class EmbeddingIndex:
    """Stores one normalised vector per document.

    Embedding failures are logged and leave the index unchanged, so retrieval
    falls back to keyword search.
    """

    def __init__(self, embedder: "EmbeddingClient | None" = None) -> None:
        self.embedder = embedder
        self._documents: Dict[str, Document] = {}
        self._ids: List[str] = []
        self._matrix: np.ndarray = np.zeros((0, 0), dtype=float)

    @property
    def is_available(self) -> bool:
        return self.embedder is not None and callable(getattr(self.embedder, "embed", None))

    @property
    def document_count(self) -> int:
        return len(self._ids)

    @property
    def dimensions(self) -> int:
        return int(self._matrix.shape[1]) if self._ids else 0

    async def add_documents(self, documents: Iterable[Document]) -> int:
        """Embed and store *documents*; returns how many were indexed."""

        if not self.is_available:
            raise RuntimeError("Embedding provider not available")
        batch = list(documents)
        if not batch:
            return 0
        texts = [f"{doc.title}\n\n{doc.content}"[:MAX_EMBED_CHARS] for doc in batch]
        try:
            vectors = await self.embedder.embed(texts)  # type: ignore[union-attr]
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to embed %d document(s): %s", len(batch), exc)
            return 0

        added = 0
        for doc, vector in zip(batch, vectors):
            np_vector = np.asarray(vector, dtype=float)
            if np_vector.size == 0:
                continue
            if self._ids and np_vector.size != self.dimensions:
                logger.warning(
                    "Skipping document %s: embedding has %d dimensions, index has %d",
                    doc.id,
                    np_vector.size,
                    self.dimensions,
                )
                continue
            self._store(doc, _normalise(np_vector))
            added += 1
        return added

    async def add_document(self, document: Document) -> bool:
        return await self.add_documents([document]) == 1

    def remove_document(self, document_id: str) -> None:
        if document_id not in self._documents:
            return
        position = self._ids.index(document_id)
        del self._ids[position]
        del self._documents[document_id]
        self._matrix = np.delete(self._matrix, position, axis=0)

    def clear(self) -> None:
        self._documents.clear()
        self._ids.clear()
        self._matrix = np.zeros((0, 0), dtype=float)

    async def search(self, query: str, max_results: int = 10) -> List[SearchResult]:
        if not self.is_available or not self._ids or max_results <= 0:
            return []
        try:
            vectors = await self.embedder.embed([query])  # type: ignore[union-attr]
        except Exception as exc:  # noqa: BLE001
            logger.error("Embedding search failed: %s", exc)
            return []
        if not vectors:
            return []

        query_vector = _normalise(np.asarray(vectors[0], dtype=float))
        if query_vector.size != self.dimensions:
            logger.warning("Query embedding has %d dimensions, index has %d", query_vector.size, self.dimensions)
            return []

        similarities = self._matrix @ query_vector
        order = np.argsort(-similarities, kind="stable")[:max_results]
        results: List[SearchResult] = []
        for position in order:
            doc = self._documents[self._ids[int(position)]]
            results.append(
                SearchResult(
                    document_id=doc.id,
                    note_id=doc.note_id,
                    title=doc.title,
                    snippet=doc.content[:200],
                    score=float(similarities[int(position)]),
                    source="embedding",
                )
            )
        return results

    def _store(self, doc: Document, vector: np.ndarray) -> None:
        if doc.id in self._documents:
            position = self._ids.index(doc.id)
            self._matrix[position] = vector
        elif self._ids:
            self._ids.append(doc.id)
            self._matrix = np.vstack([self._matrix, vector])
        else:
            self._ids.append(doc.id)
            self._matrix = vector.reshape(1, -1)
        self._documents[doc.id] = doc


def _normalise(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm
