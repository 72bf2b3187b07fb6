"""In-memory retrieval indexes over chunk embeddings and chunk text."""

from sanctum.index.fusion import RRF_K, rrf_fuse
from sanctum.index.keyword_index import KeywordIndex
from sanctum.index.vector_index import VectorIndex

__all__ = ["RRF_K", "KeywordIndex", "VectorIndex", "rrf_fuse"]
