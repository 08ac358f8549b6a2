"""
Client wrapper: collection and index management plus cached store handles.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymilvus import MilvusClient, MilvusException

from milvus_store.config import MilvusConfig
from milvus_store.embedding_providers import DenseEmbeddingProvider
from milvus_store.errors import (
    CollectionError,
    ErrorCode,
    IndexManagementError,
    StoreConnectionError,
    wrap_milvus_errors,
)
from milvus_store.schema import ExtraField, create_document_schema, create_index_params
from milvus_store.vector_stores.milvus import MilvusVectorStore

logger = logging.getLogger(__name__)

StoreKey = Tuple[str, str, int]


class MilvusStoreClient:
    """
    Wraps a pymilvus MilvusClient for one database.

    Store handles returned by get_vector_store are cached per (collection,
    metric type, embedding provider) and live as long as the client.
    """

    def __init__(
        self,
        client: MilvusClient,
        config: Optional[MilvusConfig] = None,
        embedding_provider: Optional[DenseEmbeddingProvider] = None,
    ):
        self._client = client
        self.config = config or MilvusConfig()
        self.embedding_provider = embedding_provider
        self._stores: Dict[StoreKey, MilvusVectorStore] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Optional[MilvusConfig] = None,
        embedding_provider: Optional[DenseEmbeddingProvider] = None,
    ) -> "MilvusStoreClient":
        """
        Connect to Milvus using config (environment settings by default).

        With initialize_schema set, the configured collection is created,
        indexed and loaded if it does not exist yet.
        """
        config = config or MilvusConfig()
        try:
            client = MilvusClient(
                uri=config.uri,
                user=config.user or "",
                password=config.password or "",
                db_name=config.db_name,
                token=config.token or "",
                timeout=config.timeout,
            )
        except MilvusException as exc:
            raise StoreConnectionError(
                f"Failed to connect to Milvus at {config.uri}",
                code=ErrorCode.CONNECTION_FAILED,
                details={"uri": config.uri, "db_name": config.db_name, "cause": str(exc)},
            ) from exc

        logger.info(f"Connected to Milvus at {config.uri} (db={config.db_name})")
        store_client = cls(client, config=config, embedding_provider=embedding_provider)
        if config.initialize_schema:
            store_client.initialize_default_collection(config)
        return store_client

    @property
    def native_client(self) -> MilvusClient:
        return self._client

    # Store handles

    def get_vector_store(
        self,
        collection_name: Optional[str] = None,
        embedding_provider: Optional[DenseEmbeddingProvider] = None,
        metric_type: Optional[str] = None,
    ) -> MilvusVectorStore:
        """Return the cached store for a collection, creating it on first use."""
        collection_name = collection_name or self.config.collection_name
        provider = embedding_provider or self.embedding_provider
        metric = (metric_type or self.config.metric_type.value).upper()
        key = (collection_name, metric, id(provider))

        store = self._stores.get(key)
        if store is None:
            with self._lock:
                store = self._stores.get(key)
                if store is None:
                    store = MilvusVectorStore(
                        self._client,
                        collection_name,
                        embedding_provider=provider,
                        metric_type=metric,
                    )
                    self._stores[key] = store
                    logger.debug("Created store handle for %s (%s)", collection_name, metric)
        return store

    def _evict(self, collection_name: str):
        with self._lock:
            for key in [k for k in self._stores if k[0] == collection_name]:
                del self._stores[key]

    # Collections

    def create_collection(self, collection_name: str, schema, index_params=None):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.COLLECTION_CREATE_FAILED,
            f"Failed to create collection {collection_name}",
            collection=collection_name,
        ):
            self._client.create_collection(
                collection_name=collection_name, schema=schema, index_params=index_params
            )
        logger.info(f"Created collection: {collection_name}")

    def create_document_collection(
        self,
        collection_name: str,
        dimension: int,
        metric_type: str = "COSINE",
        index_type: str = "AUTOINDEX",
        with_bm25: bool = True,
        extra_fields: Iterable[ExtraField] = (),
        load: bool = True,
    ):
        """Create a collection laid out for Document rows, index it and load it."""
        schema = create_document_schema(dimension, with_bm25=with_bm25, extra_fields=extra_fields)
        index_params = create_index_params(
            metric_type=metric_type, index_type=index_type, with_bm25=with_bm25
        )
        self.create_collection(collection_name, schema, index_params=index_params)
        if load:
            self.load_collection(collection_name)

    def drop_collection(self, collection_name: str):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.COLLECTION_DROP_FAILED,
            f"Failed to drop collection {collection_name}",
            collection=collection_name,
        ):
            self._client.drop_collection(collection_name=collection_name)
        self._evict(collection_name)
        logger.info(f"Dropped collection: {collection_name}")

    def has_collection(self, collection_name: str) -> bool:
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to check collection {collection_name}",
            collection=collection_name,
        ):
            return bool(self._client.has_collection(collection_name=collection_name))

    def list_collections(self) -> List[str]:
        with wrap_milvus_errors(CollectionError, ErrorCode.UNKNOWN_ERROR, "Failed to list collections"):
            return list(self._client.list_collections())

    def describe_collection(self, collection_name: str) -> Dict[str, Any]:
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.COLLECTION_NOT_FOUND,
            f"Failed to describe collection {collection_name}",
            collection=collection_name,
        ):
            return self._client.describe_collection(collection_name=collection_name)

    def rename_collection(self, old_name: str, new_name: str):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to rename collection {old_name} to {new_name}",
            collection=old_name,
            new_name=new_name,
        ):
            self._client.rename_collection(old_name=old_name, new_name=new_name)
        self._evict(old_name)
        logger.info(f"Renamed collection {old_name} to {new_name}")

    def load_collection(self, collection_name: str):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.COLLECTION_LOAD_FAILED,
            f"Failed to load collection {collection_name}",
            collection=collection_name,
        ):
            self._client.load_collection(collection_name=collection_name)
        logger.info(f"Loaded collection: {collection_name}")

    def release_collection(self, collection_name: str):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.COLLECTION_RELEASE_FAILED,
            f"Failed to release collection {collection_name}",
            collection=collection_name,
        ):
            self._client.release_collection(collection_name=collection_name)
        logger.info(f"Released collection: {collection_name}")

    def get_load_state(self, collection_name: str, partition_name: Optional[str] = None):
        with wrap_milvus_errors(
            CollectionError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to get load state of {collection_name}",
            collection=collection_name,
            partition=partition_name,
        ):
            return self._client.get_load_state(
                collection_name=collection_name, partition_name=partition_name or ""
            )

    # Indexes

    def create_index(self, collection_name: str, index_params):
        with wrap_milvus_errors(
            IndexManagementError,
            ErrorCode.INDEX_CREATE_FAILED,
            f"Failed to create index on {collection_name}",
            collection=collection_name,
        ):
            self._client.create_index(collection_name=collection_name, index_params=index_params)
        logger.info(f"Created index on {collection_name}")

    def drop_index(self, collection_name: str, index_name: str):
        with wrap_milvus_errors(
            IndexManagementError,
            ErrorCode.INDEX_DROP_FAILED,
            f"Failed to drop index {index_name}",
            collection=collection_name,
            index=index_name,
        ):
            self._client.drop_index(collection_name=collection_name, index_name=index_name)
        logger.info(f"Dropped index {index_name} from {collection_name}")

    def describe_index(self, collection_name: str, index_name: str) -> Dict[str, Any]:
        with wrap_milvus_errors(
            IndexManagementError,
            ErrorCode.INDEX_NOT_FOUND,
            f"Failed to describe index {index_name}",
            collection=collection_name,
            index=index_name,
        ):
            return self._client.describe_index(collection_name=collection_name, index_name=index_name)

    def list_indexes(self, collection_name: str, field_name: Optional[str] = None) -> List[str]:
        with wrap_milvus_errors(
            IndexManagementError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to list indexes of {collection_name}",
            collection=collection_name,
        ):
            return list(
                self._client.list_indexes(collection_name=collection_name, field_name=field_name or "")
            )

    # Setup

    def initialize_default_collection(self, config: Optional[MilvusConfig] = None) -> bool:
        """
        Create, index and load the configured collection if it does not exist.

        Returns:
            True if the collection was created, False if it already existed
        """
        config = config or self.config
        if self.has_collection(config.collection_name):
            logger.info(f"Collection {config.collection_name} already exists")
            return False

        self.create_document_collection(
            config.collection_name,
            config.embedding_dimension,
            metric_type=config.metric_type.value,
            index_type=config.index_type.value,
            with_bm25=config.enable_bm25,
        )
        return True

    def close(self):
        with self._lock:
            self._stores.clear()
        self._client.close()
        logger.debug("Closed Milvus client")

    def __enter__(self) -> "MilvusStoreClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
