"""
Vector stores for the Milvus store package.

MilvusVectorStore is the Milvus-backed implementation of the VectorStore
interface; hybrid_search holds the score fusion helpers it uses.
"""

from .base import VectorStore, SearchResult
from .milvus import MilvusVectorStore

__all__ = [
    "VectorStore",
    "SearchResult",
    "MilvusVectorStore",
]
