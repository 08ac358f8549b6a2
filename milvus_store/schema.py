"""
Collection schema and index helpers for document collections.

The base layout matches the Document model: VARCHAR primary key ``id``,
analyzed ``content``, dense ``embedding``, BM25-generated ``sparse`` and JSON
``metadata``. Application fields are appended after the base fields.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from pymilvus import DataType, Function, FunctionType, MilvusClient

from milvus_store.document import (
    CONTENT_MAX_LENGTH,
    FIELD_CONTENT,
    FIELD_EMBEDDING,
    FIELD_ID,
    FIELD_METADATA,
    FIELD_SPARSE,
    ID_MAX_LENGTH,
)

logger = logging.getLogger(__name__)

# Default build params per dense index type
DEFAULT_INDEX_PARAMS: Dict[str, Dict[str, Any]] = {
    "AUTOINDEX": {},
    "FLAT": {},
    "HNSW": {"M": 16, "efConstruction": 200},
    "IVF_FLAT": {"nlist": 1024},
    "IVF_SQ8": {"nlist": 1024},
}

ExtraField = Tuple[str, DataType, Dict[str, Any]]


def bm25_function(
    input_field: str = FIELD_CONTENT,
    output_field: str = FIELD_SPARSE,
    name: Optional[str] = None,
) -> Function:
    """BM25 function generating a sparse vector from a text field."""
    return Function(
        name=name or f"bm25_{input_field}_to_{output_field}",
        input_field_names=[input_field],
        output_field_names=[output_field],
        function_type=FunctionType.BM25,
    )


def create_document_schema(
    dimension: int,
    with_bm25: bool = True,
    extra_fields: Iterable[ExtraField] = (),
    enable_dynamic_field: bool = True,
    description: str = "",
):
    """
    Build the schema for a document collection.

    Args:
        dimension: Dense embedding dimension
        with_bm25: Attach a BM25 function from content to the sparse field
        extra_fields: Application fields as (name, DataType, add_field kwargs)
        enable_dynamic_field: Accept row keys not declared in the schema
        description: Collection description

    Returns:
        A pymilvus CollectionSchema
    """
    if dimension <= 0:
        raise ValueError(f"Embedding dimension must be positive, got {dimension}")

    schema = MilvusClient.create_schema(
        auto_id=False, enable_dynamic_field=enable_dynamic_field, description=description
    )
    schema.add_field(
        field_name=FIELD_ID,
        datatype=DataType.VARCHAR,
        is_primary=True,
        max_length=ID_MAX_LENGTH,
    )
    schema.add_field(
        field_name=FIELD_CONTENT,
        datatype=DataType.VARCHAR,
        max_length=CONTENT_MAX_LENGTH,
        enable_analyzer=True,
    )
    schema.add_field(field_name=FIELD_EMBEDDING, datatype=DataType.FLOAT_VECTOR, dim=dimension)
    schema.add_field(field_name=FIELD_SPARSE, datatype=DataType.SPARSE_FLOAT_VECTOR)
    schema.add_field(field_name=FIELD_METADATA, datatype=DataType.JSON)

    for name, datatype, kwargs in extra_fields:
        schema.add_field(field_name=name, datatype=datatype, **kwargs)

    if with_bm25:
        schema.add_function(bm25_function(FIELD_CONTENT, FIELD_SPARSE))

    return schema


def create_index_params(
    metric_type: str = "COSINE",
    index_type: str = "AUTOINDEX",
    params: Optional[Dict[str, Any]] = None,
    with_bm25: bool = True,
):
    """
    Build index params for the dense and sparse vector fields.

    The sparse index uses the BM25 metric when the sparse field is produced
    by the BM25 function, IP otherwise.
    """
    index_type = index_type.upper()
    index_params = MilvusClient.prepare_index_params()
    index_params.add_index(
        field_name=FIELD_EMBEDDING,
        index_type=index_type,
        metric_type=metric_type.upper(),
        params=params if params is not None else dict(DEFAULT_INDEX_PARAMS.get(index_type, {})),
    )

    sparse_params: Dict[str, Any] = {"inverted_index_algo": "DAAT_MAXSCORE"}
    if with_bm25:
        sparse_params.update({"bm25_k1": 1.2, "bm25_b": 0.75})
    index_params.add_index(
        field_name=FIELD_SPARSE,
        index_type="SPARSE_INVERTED_INDEX",
        metric_type="BM25" if with_bm25 else "IP",
        params=sparse_params,
    )
    logger.debug("Index params: dense=%s/%s bm25=%s", index_type, metric_type, with_bm25)
    return index_params
