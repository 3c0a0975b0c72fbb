"""Assemble a :class:`RetrievalAPI` from reference documents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from .api import RetrievalAPI
from .bm25 import BM25Index
from .embedding import EmbeddingIndex
from .types import Document

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..llm.client import EmbeddingClient

logger = logging.getLogger(__name__)

__all__ = ["build_retrieval_api"]


async def build_retrieval_api(
    documents: Iterable[Document],
    *,
    embedder: "EmbeddingClient | None" = None,
) -> RetrievalAPI:
    """Index *documents* for keyword search and, when possible, vector search."""

    batch = list(documents)
    keyword_index = BM25Index()
    keyword_index.add_documents(batch)

    embedding_index = EmbeddingIndex(embedder)
    if embedding_index.is_available and batch:
        indexed = await embedding_index.add_documents(batch)
        if indexed < len(batch):
            logger.warning("Embedded %d of %d documents; the rest rely on keyword search", indexed, len(batch))

    logger.info(
        "Retrieval index ready: %d keyword documents, %d embedded",
        keyword_index.document_count,
        embedding_index.document_count,
    )
    return RetrievalAPI(keyword_index, embedding_index)
