"""
Error taxonomy for the Milvus store.

Every failure coming out of the native client is re-raised as one of the
classes below, tagged with a stable ``ErrorCode`` so callers can tell
"not found" apart from "operation failed" without matching on messages.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Type

from pymilvus import MilvusException


class ErrorCode(str, Enum):
    """Stable error codes, grouped by origin."""

    # Connection M0xx
    CONNECTION_FAILED = "M001"
    CONNECTION_TIMEOUT = "M002"
    AUTHENTICATION_FAILED = "M003"

    # Collection M1xx
    COLLECTION_NOT_FOUND = "M101"
    COLLECTION_ALREADY_EXISTS = "M102"
    COLLECTION_NOT_LOADED = "M103"
    COLLECTION_SCHEMA_INVALID = "M104"
    COLLECTION_CREATE_FAILED = "M105"
    COLLECTION_DROP_FAILED = "M106"
    COLLECTION_LOAD_FAILED = "M107"
    COLLECTION_RELEASE_FAILED = "M108"

    # Partition M2xx
    PARTITION_NOT_FOUND = "M201"
    PARTITION_ALREADY_EXISTS = "M202"
    PARTITION_CREATE_FAILED = "M203"
    PARTITION_DROP_FAILED = "M204"
    PARTITION_LOAD_FAILED = "M205"
    PARTITION_RELEASE_FAILED = "M206"

    # Index M3xx
    INDEX_CREATE_FAILED = "M301"
    INDEX_DROP_FAILED = "M302"
    INDEX_NOT_FOUND = "M303"

    # Data M4xx
    DATA_INSERT_FAILED = "M401"
    DATA_DELETE_FAILED = "M402"
    DATA_UPSERT_FAILED = "M403"
    DATA_NOT_FOUND = "M404"
    DATA_INVALID = "M405"
    DATA_QUERY_FAILED = "M406"

    # Search M5xx
    SEARCH_FAILED = "M501"
    SEARCH_PARAMS_INVALID = "M502"
    EMBEDDING_NOT_CONFIGURED = "M503"

    UNKNOWN_ERROR = "M999"

    @property
    def is_not_found(self) -> bool:
        return self.name.endswith("_NOT_FOUND")


class VectorStoreError(Exception):
    """
    Base exception for all store errors.

    Attributes:
        message: Human-readable error description
        code: Stable ErrorCode tag
        details: Extra context (collection, partition, ...), JSON-serializable
    """

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details or {})

    @property
    def is_not_found(self) -> bool:
        """True when the error means a missing collection/partition/index/row."""
        return self.code.is_not_found

    def asdict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization and logging."""
        return {
            "message": self.message,
            "code": self.code.value,
            "kind": self.code.name,
            "details": {k: self.details[k] for k in sorted(self.details)},
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class StoreConnectionError(VectorStoreError):
    """Connecting or authenticating to Milvus failed."""

    default_code = ErrorCode.CONNECTION_FAILED


class CollectionError(VectorStoreError):
    """Collection management failed."""

    default_code = ErrorCode.UNKNOWN_ERROR


class PartitionError(VectorStoreError):
    """Partition management failed."""

    default_code = ErrorCode.UNKNOWN_ERROR


class IndexManagementError(VectorStoreError):
    """Index creation, description or removal failed."""

    default_code = ErrorCode.UNKNOWN_ERROR


class DataError(VectorStoreError):
    """Insert, upsert, delete, get or query failed."""

    default_code = ErrorCode.UNKNOWN_ERROR


class SearchError(VectorStoreError):
    """Search failed or could not be dispatched."""

    default_code = ErrorCode.SEARCH_FAILED


@contextmanager
def wrap_milvus_errors(
    error_cls: Type[VectorStoreError], code: ErrorCode, message: str, **details: Any
) -> Iterator[None]:
    """Re-raise a MilvusException from the wrapped block as error_cls with code."""
    try:
        yield
    except MilvusException as exc:
        details.setdefault("cause", str(exc))
        raise error_cls(message, code=code, details=details) from exc
