"""
Document model for the Milvus store.

Provides a pydantic base document that maps 1:1 to a Milvus row, and the
field-projection resolver that decides which columns are requested back on
reads. Applications create their own document types by inheriting from
Document and adding fields; a pydantic ``alias`` overrides the column name.

Large write-only fields are declared with ``ExcludedField`` and are never
part of the default projection.
"""

import inspect
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.fields import FieldInfo

from milvus_store.utils import decode_json_field, json_serialize_safe

logger = logging.getLogger(__name__)

FIELD_ID = "id"
FIELD_CONTENT = "content"
FIELD_EMBEDDING = "embedding"
FIELD_SPARSE = "sparse"
FIELD_METADATA = "metadata"

ID_MAX_LENGTH = 128
CONTENT_MAX_LENGTH = 65535

EXCLUDE_FROM_OUTPUT = "exclude_from_output"

D = TypeVar("D", bound="Document")


def ExcludedField(default: Any = None, **kwargs: Any) -> Any:
    """A pydantic ``Field`` that is written to Milvus but not read back by default."""
    extra = dict(kwargs.pop("json_schema_extra", None) or {})
    extra[EXCLUDE_FROM_OUTPUT] = True
    if "default_factory" in kwargs:
        return Field(json_schema_extra=extra, **kwargs)
    return Field(default, json_schema_extra=extra, **kwargs)


class Document(BaseModel):
    """Base document: one row of a Milvus collection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., frozen=True, description="Primary key")
    content: Optional[str] = Field(None, description="Document text content")

    # Write-only: not returned on reads unless explicitly requested
    embedding: Optional[List[float]] = ExcludedField()
    # Generated server-side by the BM25 function over content
    sparse_vector: Optional[Dict[int, float]] = ExcludedField(alias=FIELD_SPARSE)

    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("embedding", mode="before")
    @classmethod
    def coerce_embedding(cls, v):
        if isinstance(v, np.ndarray):
            return v.astype(float).ravel().tolist()
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, v):
        return decode_json_field(v)

    @classmethod
    def of(
        cls: Type[D],
        id: str,
        content: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> D:
        return cls(id=id, content=content, embedding=embedding, metadata=metadata or {})

    def add_metadata(self: D, key: str, value: Any) -> D:
        self.metadata[key] = value
        return self

    def to_entity(self) -> Dict[str, Any]:
        """Convert to a Milvus row keyed by column names.

        ``None`` fields are left out so server-generated columns (the BM25
        sparse output) are never written.
        """
        entity = self.model_dump(by_alias=True, exclude_none=True)
        metadata_column = _physical_name(FIELD_METADATA, type(self).model_fields[FIELD_METADATA])
        entity[metadata_column] = json_serialize_safe(self.metadata)
        return entity

    @classmethod
    def from_entity(cls: Type[D], entity: Mapping[str, Any]) -> D:
        """Build this document type from a row returned by Milvus."""
        return cls.model_validate(dict(entity))

    @classmethod
    def output_fields(cls) -> List[str]:
        return project_fields(cls)


@dataclass(frozen=True)
class FieldDescriptor:
    """Static description of one document field."""

    name: str
    physical_name: str
    excluded: bool


def _physical_name(name: str, info: FieldInfo) -> str:
    return info.serialization_alias or info.alias or name


def _is_excluded(info: FieldInfo) -> bool:
    extra = info.json_schema_extra
    return isinstance(extra, dict) and bool(extra.get(EXCLUDE_FROM_OUTPUT))


@lru_cache(maxsize=None)
def describe_fields(document_type: Type[Document]) -> Tuple[FieldDescriptor, ...]:
    """
    Build the field descriptor for a document type.

    Walks the full MRO (mixins included) from the most-derived class down,
    so a field redeclared in a subclass is described once, at the subclass,
    with the subclass's settings.

    Raises:
        TypeError: If document_type is not a Document subclass
    """
    if not (inspect.isclass(document_type) and issubclass(document_type, Document)):
        raise TypeError(f"Expected a Document subclass, got {document_type!r}")

    fields = document_type.model_fields
    descriptors: List[FieldDescriptor] = []
    seen = set()

    def _describe(name: str):
        seen.add(name)
        info = fields[name]
        descriptors.append(
            FieldDescriptor(
                name=name,
                physical_name=_physical_name(name, info),
                excluded=_is_excluded(info),
            )
        )

    # Mixins contribute fields too, so every class but BaseModel is walked
    for klass in document_type.__mro__:
        if klass is BaseModel or klass is object:
            continue
        for name in inspect.get_annotations(klass):
            if name in fields and name not in seen:
                _describe(name)

    # Fields pydantic collected without a visible annotation
    for name in fields:
        if name not in seen:
            _describe(name)

    return tuple(descriptors)


def project_fields(document_type: Type[Document]) -> List[str]:
    """
    Return the column names to request when reading document_type.

    Excluded fields are skipped; duplicate column names keep the first
    (most-derived) occurrence.

    Raises:
        TypeError: If the type cannot be described or projects no fields
    """
    output: List[str] = []
    for descriptor in describe_fields(document_type):
        if descriptor.excluded or descriptor.physical_name in output:
            continue
        output.append(descriptor.physical_name)

    if not output:
        raise TypeError(f"{document_type.__name__} has no readable fields to project")
    return output
