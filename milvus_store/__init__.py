"""
Milvus Store - typed documents, request builders and a search dispatcher on
top of the pymilvus client.
"""

__version__ = "0.1.0"

from milvus_store.document import Document, ExcludedField, describe_fields, project_fields
from milvus_store.errors import (
    CollectionError,
    DataError,
    ErrorCode,
    IndexManagementError,
    PartitionError,
    SearchError,
    StoreConnectionError,
    VectorStoreError,
)
from milvus_store.requests import QueryRequest, SearchMode, SearchRequest
from milvus_store.embedding_providers import (
    DenseEmbeddingProvider,
    FunctionEmbeddingProvider,
    OpenAIProvider,
    SentenceTransformersProvider,
)
from milvus_store.vector_stores import MilvusVectorStore, SearchResult, VectorStore
from milvus_store.client import MilvusStoreClient
from milvus_store.config import EmbeddingConfig, MilvusConfig, StoreConfig, load_config

__all__ = [
    "Document",
    "ExcludedField",
    "describe_fields",
    "project_fields",
    "ErrorCode",
    "VectorStoreError",
    "StoreConnectionError",
    "CollectionError",
    "PartitionError",
    "IndexManagementError",
    "DataError",
    "SearchError",
    "QueryRequest",
    "SearchMode",
    "SearchRequest",
    "DenseEmbeddingProvider",
    "FunctionEmbeddingProvider",
    "OpenAIProvider",
    "SentenceTransformersProvider",
    "VectorStore",
    "SearchResult",
    "MilvusVectorStore",
    "MilvusStoreClient",
    "EmbeddingConfig",
    "MilvusConfig",
    "StoreConfig",
    "load_config",
]
