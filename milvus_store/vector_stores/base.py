"""
Base classes for vector stores.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, List, Optional, Type, TypeVar, Union

from milvus_store.document import Document
from milvus_store.requests import QueryRequest, SearchRequest

T = TypeVar("T", bound=Document)


@dataclass
class SearchResult(Generic[T]):
    """Result from a search."""

    document: T
    score: float  # Normalized to [0, 1], higher is better
    distance: float  # Raw metric value from Milvus

    @property
    def id(self) -> str:
        return self.document.id


class VectorStore(ABC):
    """Document store bound to one collection."""

    @property
    @abstractmethod
    def collection_name(self) -> str:
        pass

    @abstractmethod
    def add(self, documents: List[Document], partition_name: Optional[str] = None):
        """Insert documents."""
        pass

    @abstractmethod
    def upsert(self, documents: List[Document], partition_name: Optional[str] = None):
        """Insert or replace documents by id."""
        pass

    @abstractmethod
    def delete(self, ids: List[str], partition_name: Optional[str] = None):
        """Delete documents by id."""
        pass

    @abstractmethod
    def delete_by_filter(self, expr: str, partition_name: Optional[str] = None):
        """Delete documents matching a filter expression."""
        pass

    @abstractmethod
    def get_by_id(
        self,
        ids: List[str],
        partition_name: Optional[str] = None,
        result_type: Type[T] = Document,
        output_fields: Optional[List[str]] = None,
    ) -> List[T]:
        pass

    @abstractmethod
    def query(self, request: Union[QueryRequest, str]) -> List[Document]:
        pass

    @abstractmethod
    def search(self, request: SearchRequest) -> List[SearchResult]:
        pass

    @abstractmethod
    def count(self, partition_name: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def create_partition(self, partition_name: str):
        pass

    @abstractmethod
    def drop_partition(self, partition_name: str):
        pass

    @abstractmethod
    def has_partition(self, partition_name: str) -> bool:
        pass

    @abstractmethod
    def list_partitions(self) -> List[str]:
        pass

    @abstractmethod
    def load_partitions(self, partition_names: List[str]):
        pass

    @abstractmethod
    def release_partitions(self, partition_names: List[str]):
        pass

    def load_partition(self, partition_name: str):
        self.load_partitions([partition_name])

    def release_partition(self, partition_name: str):
        self.release_partitions([partition_name])

    @abstractmethod
    def flush(self):
        pass

    @abstractmethod
    def compact(self):
        pass
