"""Reference-text retrieval: BM25, embeddings and rank fusion."""

from .api import RRF_K, RetrievalAPI, Retriever, reciprocal_rank_fusion
from .bm25 import BM25Index
from .builder import build_retrieval_api
from .embedding import EmbeddingIndex
from .types import Document, SearchResult, extract_snippet

__all__ = [
    "BM25Index",
    "Document",
    "EmbeddingIndex",
    "RRF_K",
    "RetrievalAPI",
    "Retriever",
    "SearchResult",
    "build_retrieval_api",
    "extract_snippet",
    "reciprocal_rank_fusion",
]
