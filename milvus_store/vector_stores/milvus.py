"""
Milvus-backed document store for a single collection.

Every method forwards to one (or, for hybrid search, two) native
``MilvusClient`` calls. Native failures are re-raised as VectorStoreError
subclasses tagged with an ErrorCode.
"""

import logging
from typing import Any, Dict, List, Optional, Type, Union

import numpy as np
from pymilvus import MilvusClient

from milvus_store.document import Document
from milvus_store.embedding_providers import DenseEmbeddingProvider
from milvus_store.errors import (
    DataError,
    ErrorCode,
    PartitionError,
    SearchError,
    wrap_milvus_errors,
)
from milvus_store.requests import QueryRequest, SearchMode, SearchRequest

from .base import SearchResult, T, VectorStore
from .hybrid_search import (
    ScoredHit,
    apply_similarity_threshold,
    merge_weighted_results,
    to_keyword_hits,
    to_vector_hits,
)

logger = logging.getLogger(__name__)

COUNT_FIELD = "count(*)"
BM25_METRIC = "BM25"


class MilvusVectorStore(VectorStore):
    """
    Document store bound to one Milvus collection.

    Args:
        client: Connected pymilvus MilvusClient
        collection_name: Collection this store reads and writes
        embedding_provider: Optional provider used to embed text queries and
            documents that arrive without an embedding
        metric_type: Dense metric of the collection's vector index
    """

    def __init__(
        self,
        client: MilvusClient,
        collection_name: str,
        embedding_provider: Optional[DenseEmbeddingProvider] = None,
        metric_type: str = "COSINE",
    ):
        self.client = client
        self._collection_name = collection_name
        self.embedding_provider = embedding_provider
        self.metric_type = metric_type.upper()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def __repr__(self) -> str:
        return f"MilvusVectorStore(collection={self._collection_name!r}, metric={self.metric_type})"

    # Writes

    def _embed_documents_if_needed(self, documents: List[Document]):
        """Fill in missing embeddings from content, in one batch."""
        pending = [d for d in documents if d.embedding is None and d.content is not None]
        if not pending:
            return
        if self.embedding_provider is None:
            logger.debug(
                "%d documents have no embedding and no provider is configured", len(pending)
            )
            return

        vectors = self.embedding_provider.embed_batch([d.content for d in pending])
        if len(vectors) != len(pending):
            raise DataError(
                "Embedding provider returned a wrong number of vectors",
                code=ErrorCode.DATA_INVALID,
                details={"expected": len(pending), "got": len(vectors)},
            )
        # Plain assignment skips the model validators, so coerce here
        for document, vector in zip(pending, vectors):
            document.embedding = np.asarray(vector, dtype=float).ravel().tolist()
        logger.debug("Embedded %d documents before write", len(pending))

    def _partition_kwargs(self, partition_name: Optional[str]) -> Dict[str, Any]:
        return {"partition_name": partition_name} if partition_name else {}

    def add(self, documents: List[Document], partition_name: Optional[str] = None):
        """Insert documents, embedding their content first if needed."""
        if not documents:
            return
        self._embed_documents_if_needed(documents)
        data = [d.to_entity() for d in documents]

        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_INSERT_FAILED,
            f"Failed to insert into {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            self.client.insert(
                collection_name=self._collection_name,
                data=data,
                **self._partition_kwargs(partition_name),
            )
        logger.info(f"Added {len(data)} documents to {self._collection_name}")

    def upsert(self, documents: List[Document], partition_name: Optional[str] = None):
        """Insert documents, replacing any existing rows with the same id."""
        if not documents:
            return
        self._embed_documents_if_needed(documents)
        data = [d.to_entity() for d in documents]

        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_UPSERT_FAILED,
            f"Failed to upsert into {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            self.client.upsert(
                collection_name=self._collection_name,
                data=data,
                **self._partition_kwargs(partition_name),
            )
        logger.info(f"Upserted {len(data)} documents to {self._collection_name}")

    def delete(self, ids: List[str], partition_name: Optional[str] = None):
        if not ids:
            return
        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_DELETE_FAILED,
            f"Failed to delete from {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            self.client.delete(
                collection_name=self._collection_name,
                ids=list(ids),
                **self._partition_kwargs(partition_name),
            )
        logger.info(f"Deleted {len(ids)} documents from {self._collection_name}")

    def delete_by_filter(self, expr: str, partition_name: Optional[str] = None):
        if not expr or not expr.strip():
            return
        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_DELETE_FAILED,
            f"Failed to delete from {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
            filter=expr,
        ):
            self.client.delete(
                collection_name=self._collection_name,
                filter=expr,
                **self._partition_kwargs(partition_name),
            )
        logger.info(f"Deleted documents matching '{expr}' from {self._collection_name}")

    # Reads

    def get_by_id(
        self,
        ids: List[str],
        partition_name: Optional[str] = None,
        result_type: Type[T] = Document,
        output_fields: Optional[List[str]] = None,
    ) -> List[T]:
        """
        Fetch documents by primary key.

        The default projection leaves out excluded fields, so ``embedding``
        is None on the returned documents unless requested. A missing
        partition yields an empty list.
        """
        if not ids:
            return []
        if partition_name and not self.has_partition(partition_name):
            logger.warning(
                f"Partition {partition_name} not found in {self._collection_name}"
            )
            return []

        fields = list(output_fields) if output_fields else result_type.output_fields()
        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_QUERY_FAILED,
            f"Failed to get documents from {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            rows = self.client.get(
                collection_name=self._collection_name,
                ids=list(ids),
                output_fields=fields,
                partition_names=[partition_name] if partition_name else None,
            )
        return [result_type.from_entity(row) for row in rows]

    def query(self, request: Union[QueryRequest, str]) -> List[Document]:
        """Filter read. A plain string is treated as QueryRequest.for_filter(string)."""
        if isinstance(request, str):
            request = QueryRequest.for_filter(request)

        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_QUERY_FAILED,
            f"Failed to query {self._collection_name}",
            collection=self._collection_name,
            partition=request.partition_name,
            filter=request.filter,
        ):
            rows = self.client.query(
                collection_name=self._collection_name,
                filter=request.filter,
                output_fields=request.resolved_output_fields(),
                partition_names=[request.partition_name] if request.partition_name else None,
                offset=request.offset,
                limit=request.limit,
            )
        return [request.result_type.from_entity(row) for row in rows]

    def count(self, partition_name: Optional[str] = None) -> int:
        with wrap_milvus_errors(
            DataError,
            ErrorCode.DATA_QUERY_FAILED,
            f"Failed to count {self._collection_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            rows = self.client.query(
                collection_name=self._collection_name,
                filter="",
                output_fields=[COUNT_FIELD],
                partition_names=[partition_name] if partition_name else None,
            )
        return int(rows[0][COUNT_FIELD]) if rows else 0

    # Search

    def search(self, request: SearchRequest) -> List[SearchResult]:
        """
        Run a VECTOR, KEYWORD or HYBRID search.

        Results are sorted by descending normalized score, filtered by the
        request's similarity threshold and truncated to top_k.

        Raises:
            SearchError: EMBEDDING_NOT_CONFIGURED when a text query needs a
                dense vector and no provider is set; SEARCH_FAILED when
                Milvus rejects the search
        """
        logger.debug(
            "Search on %s: mode=%s top_k=%d partitions=%s",
            self._collection_name,
            request.search_mode.value,
            request.top_k,
            list(request.partition_names),
        )

        if request.search_mode == SearchMode.KEYWORD:
            hits = self._keyword_search(request, request.top_k, request.offset)
        elif request.search_mode == SearchMode.HYBRID:
            hits = self._hybrid_search(request)
        else:
            query_vector = self._resolve_query_vector(request)
            hits = self._vector_search(request, query_vector, request.top_k, request.offset)

        hits = apply_similarity_threshold(hits, request.similarity_threshold, request.top_k)
        return [
            SearchResult(
                document=request.result_type.from_entity(hit.row()),
                score=hit.score,
                distance=hit.distance,
            )
            for hit in hits
        ]

    def _resolve_query_vector(self, request: SearchRequest) -> List[float]:
        if request.query_vector is not None:
            return request.query_vector
        if self.embedding_provider is None:
            raise SearchError(
                f"{request.search_mode.name} search with query_text needs an embedding provider",
                code=ErrorCode.EMBEDDING_NOT_CONFIGURED,
                details={"collection": self._collection_name},
            )
        return self.embedding_provider.embed_text(request.query_text)

    def _search_kwargs(self, request: SearchRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "collection_name": self._collection_name,
            "filter": request.filter or "",
            "output_fields": request.resolved_output_fields(),
        }
        if request.partition_names:
            kwargs["partition_names"] = list(request.partition_names)
        return kwargs

    def _run_search(self, **kwargs) -> List[Any]:
        with wrap_milvus_errors(
            SearchError,
            ErrorCode.SEARCH_FAILED,
            f"Search failed on {self._collection_name}",
            collection=self._collection_name,
            anns_field=kwargs.get("anns_field"),
        ):
            results = self.client.search(**kwargs)
        # One query vector in, one list of hits out
        return list(results[0]) if results else []

    def _vector_search(
        self, request: SearchRequest, query_vector: List[float], limit: int, offset: int = 0
    ) -> List[ScoredHit]:
        search_params: Dict[str, Any] = {
            "metric_type": self.metric_type,
            "params": dict(request.search_params),
        }
        if offset:
            search_params["offset"] = offset

        hits = self._run_search(
            data=[query_vector],
            anns_field=request.vector_field_name,
            limit=limit,
            search_params=search_params,
            **self._search_kwargs(request),
        )
        return to_vector_hits(hits, self.metric_type)

    def _keyword_search(self, request: SearchRequest, limit: int, offset: int = 0) -> List[ScoredHit]:
        """
        BM25 search over raw text.

        Milvus tokenizes query_text with the analyzer of the BM25 input column
        (request.text_field_name) and matches it against the sparse output.
        """
        logger.debug(
            "BM25 search on %s: text_field=%s sparse_field=%s limit=%d",
            self._collection_name,
            request.text_field_name,
            request.sparse_field_name,
            limit,
        )
        search_params: Dict[str, Any] = {"metric_type": BM25_METRIC, "params": {}}
        if offset:
            search_params["offset"] = offset

        hits = self._run_search(
            data=[request.query_text],
            anns_field=request.sparse_field_name,
            limit=limit,
            search_params=search_params,
            **self._search_kwargs(request),
        )
        return to_keyword_hits(hits)

    def _hybrid_search(self, request: SearchRequest) -> List[ScoredHit]:
        """Dense and BM25 searches over a doubled candidate pool, fused by weight."""
        query_vector = self._resolve_query_vector(request)
        pool = (request.top_k + request.offset) * 2

        vector_hits = self._vector_search(request, query_vector, pool)
        keyword_hits = self._keyword_search(request, pool)

        merged = merge_weighted_results(
            vector_hits,
            keyword_hits,
            request.vector_weight,
            request.keyword_weight,
        )
        return merged[request.offset:]

    # Partitions

    def create_partition(self, partition_name: str):
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.PARTITION_CREATE_FAILED,
            f"Failed to create partition {partition_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            self.client.create_partition(
                collection_name=self._collection_name, partition_name=partition_name
            )
        logger.info(f"Created partition {partition_name} in {self._collection_name}")

    def drop_partition(self, partition_name: str):
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.PARTITION_DROP_FAILED,
            f"Failed to drop partition {partition_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            self.client.drop_partition(
                collection_name=self._collection_name, partition_name=partition_name
            )
        logger.info(f"Dropped partition {partition_name} from {self._collection_name}")

    def has_partition(self, partition_name: str) -> bool:
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to check partition {partition_name}",
            collection=self._collection_name,
            partition=partition_name,
        ):
            return bool(
                self.client.has_partition(
                    collection_name=self._collection_name, partition_name=partition_name
                )
            )

    def list_partitions(self) -> List[str]:
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to list partitions of {self._collection_name}",
            collection=self._collection_name,
        ):
            return list(self.client.list_partitions(collection_name=self._collection_name))

    def load_partitions(self, partition_names: List[str]):
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.PARTITION_LOAD_FAILED,
            f"Failed to load partitions {partition_names}",
            collection=self._collection_name,
            partitions=list(partition_names),
        ):
            self.client.load_partitions(
                collection_name=self._collection_name, partition_names=list(partition_names)
            )
        logger.info(f"Loaded partitions {partition_names} of {self._collection_name}")

    def release_partitions(self, partition_names: List[str]):
        with wrap_milvus_errors(
            PartitionError,
            ErrorCode.PARTITION_RELEASE_FAILED,
            f"Failed to release partitions {partition_names}",
            collection=self._collection_name,
            partitions=list(partition_names),
        ):
            self.client.release_partitions(
                collection_name=self._collection_name, partition_names=list(partition_names)
            )
        logger.info(f"Released partitions {partition_names} of {self._collection_name}")

    # Maintenance

    def flush(self):
        with wrap_milvus_errors(
            DataError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to flush {self._collection_name}",
            collection=self._collection_name,
        ):
            self.client.flush(collection_name=self._collection_name)

    def compact(self):
        """Trigger compaction; returns the job id reported by Milvus."""
        with wrap_milvus_errors(
            DataError,
            ErrorCode.UNKNOWN_ERROR,
            f"Failed to compact {self._collection_name}",
            collection=self._collection_name,
        ):
            job_id = self.client.compact(collection_name=self._collection_name)
        logger.info(f"Compaction of {self._collection_name} started (job {job_id})")
        return job_id
