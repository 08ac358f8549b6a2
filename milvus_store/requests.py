"""
Immutable request objects for reads against a Milvus collection.

QueryRequest describes a scalar (filter) read, SearchRequest a similarity
search. Both are frozen pydantic models; validation runs once at
construction and the fluent helpers return validated copies.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from milvus_store.document import (
    FIELD_CONTENT,
    FIELD_EMBEDDING,
    FIELD_SPARSE,
    Document,
    project_fields,
)

DEFAULT_QUERY_LIMIT = 100
DEFAULT_TOP_K = 10


class SearchMode(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"

    @classmethod
    def from_string(cls, value: Optional[str], default: Optional["SearchMode"] = None) -> "SearchMode":
        """Parse a mode name, case-insensitively. ``bm25`` means KEYWORD."""
        normalized = (value or "").strip().lower()
        if normalized == "bm25":
            return cls.KEYWORD
        for mode in cls:
            if mode.value == normalized:
                return mode
        if default is not None:
            return default
        raise ValueError(f"Unknown search mode: {value!r}")


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True)

    def with_options(self, **changes: Any):
        """Return a validated copy with some fields replaced."""
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(changes)
        return type(self).model_validate(values)

    def resolved_output_fields(self) -> List[str]:
        """Explicit output fields, or the projection of the result type."""
        if self.output_fields:
            return list(self.output_fields)
        return project_fields(self.result_type)


class QueryRequest(_Request):
    """Scalar read: filter expression, optional partition, pagination."""

    filter: str = ""
    partition_name: Optional[str] = None
    offset: int = Field(0, ge=0)
    limit: int = Field(DEFAULT_QUERY_LIMIT, ge=1)
    output_fields: Tuple[str, ...] = ()
    result_type: Type[Document] = Document

    @classmethod
    def for_filter(cls, expr: str, result_type: Type[Document] = Document) -> "QueryRequest":
        return cls(filter=expr, result_type=result_type)

    @classmethod
    def paged(cls, expr: str, offset: int, limit: int) -> "QueryRequest":
        return cls(filter=expr, offset=offset, limit=limit)

    @classmethod
    def in_partition(cls, expr: str, partition_name: str) -> "QueryRequest":
        return cls(filter=expr, partition_name=partition_name)


class SearchRequest(_Request):
    """
    Similarity search request.

    Exactly one of query_text or query_vector is set. Text queries in VECTOR
    or HYBRID mode are embedded by the store's embedding provider; KEYWORD
    and HYBRID need the raw text for BM25.
    """

    query_text: Optional[str] = None
    query_vector: Optional[List[float]] = None
    top_k: int = Field(DEFAULT_TOP_K, ge=1)
    filter: Optional[str] = None
    partition_names: Tuple[str, ...] = ()
    output_fields: Tuple[str, ...] = ()
    search_mode: SearchMode = SearchMode.VECTOR

    # Hybrid fusion weights
    vector_weight: float = Field(0.5, allow_inf_nan=False)
    keyword_weight: float = Field(0.5, allow_inf_nan=False)

    similarity_threshold: float = Field(0.0, allow_inf_nan=False)
    vector_field_name: str = FIELD_EMBEDDING
    sparse_field_name: str = FIELD_SPARSE
    # BM25 input column; the server analyzes query_text with its analyzer
    text_field_name: str = FIELD_CONTENT

    # Index tuning, e.g. nprobe / ef
    search_params: Dict[str, Any] = Field(default_factory=dict)
    offset: int = Field(0, ge=0)
    result_type: Type[Document] = Document

    @field_validator("query_vector", mode="before")
    @classmethod
    def coerce_query_vector(cls, v):
        if isinstance(v, np.ndarray):
            return v.astype(float).ravel().tolist()
        return v

    @field_validator("search_mode", mode="before")
    @classmethod
    def coerce_search_mode(cls, v):
        if isinstance(v, str) and not isinstance(v, SearchMode):
            return SearchMode.from_string(v)
        return v

    @model_validator(mode="after")
    def check_query(self) -> "SearchRequest":
        has_text = self.query_text is not None
        has_vector = self.query_vector is not None

        if has_text == has_vector:
            raise ValueError("Exactly one of query_text or query_vector must be set")
        if has_text and not self.query_text.strip():
            raise ValueError("query_text must not be blank")
        if has_vector and not self.query_vector:
            raise ValueError("query_vector must not be empty")

        if self.search_mode in (SearchMode.KEYWORD, SearchMode.HYBRID) and not has_text:
            raise ValueError(f"{self.search_mode.name} search requires query_text")

        if self.search_mode == SearchMode.HYBRID:
            if self.vector_weight < 0 or self.keyword_weight < 0:
                raise ValueError("Hybrid weights must be non-negative")
            if self.vector_weight == 0 and self.keyword_weight == 0:
                raise ValueError("At least one hybrid weight must be positive")
        return self

    @classmethod
    def for_vector(
        cls, vector: List[float], top_k: int = DEFAULT_TOP_K, filter: Optional[str] = None
    ) -> "SearchRequest":
        return cls(query_vector=vector, top_k=top_k, filter=filter)

    @classmethod
    def for_text(
        cls, text: str, top_k: int = DEFAULT_TOP_K, filter: Optional[str] = None
    ) -> "SearchRequest":
        return cls(query_text=text, top_k=top_k, filter=filter)

    @classmethod
    def keyword(
        cls, text: str, top_k: int = DEFAULT_TOP_K, text_field_name: str = FIELD_CONTENT
    ) -> "SearchRequest":
        """BM25 search; text_field_name names the collection's BM25 input column."""
        return cls(
            query_text=text,
            top_k=top_k,
            text_field_name=text_field_name,
            search_mode=SearchMode.KEYWORD,
        )

    @classmethod
    def hybrid(
        cls,
        text: str,
        top_k: int = DEFAULT_TOP_K,
        vector_weight: float = 0.5,
        keyword_weight: float = 0.5,
    ) -> "SearchRequest":
        return cls(
            query_text=text,
            top_k=top_k,
            search_mode=SearchMode.HYBRID,
            vector_weight=vector_weight,
            keyword_weight=keyword_weight,
        )

    def in_partition(self, partition_name: str) -> "SearchRequest":
        if partition_name in self.partition_names:
            return self
        return self.with_options(partition_names=self.partition_names + (partition_name,))

    def with_search_param(self, key: str, value: Any) -> "SearchRequest":
        params = dict(self.search_params)
        params[key] = value
        return self.with_options(search_params=params)

    def nprobe(self, n: int) -> "SearchRequest":
        return self.with_search_param("nprobe", n)

    def ef(self, n: int) -> "SearchRequest":
        return self.with_search_param("ef", n)

    @property
    def is_text_query(self) -> bool:
        return self.query_text is not None

    @property
    def has_partitions(self) -> bool:
        return bool(self.partition_names)

    @property
    def requires_dense_vector(self) -> bool:
        return self.search_mode in (SearchMode.VECTOR, SearchMode.HYBRID)
