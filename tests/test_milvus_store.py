import logging
from typing import Optional
from unittest.mock import MagicMock

import numpy as np
import pytest
from pydantic import BaseModel
from pymilvus import MilvusException

from milvus_store.document import Document
from milvus_store.errors import DataError, ErrorCode, PartitionError, SearchError
from milvus_store.requests import QueryRequest, SearchRequest
from milvus_store.vector_stores.milvus import MilvusVectorStore


class Segment(Document):
    knowledge_id: Optional[str] = None


class TenantMixin(BaseModel):
    tenant: Optional[str] = None


class TenantDoc(Document, TenantMixin):
    title: Optional[str] = None


class TestWrites:
    def test_round_trip_hides_embedding(self, store):
        store.add([Document.of("x", "c", embedding=[0.1, 0.2], metadata={"k": "v"})])

        [doc] = store.get_by_id(["x"])
        assert doc.content == "c"
        assert doc.metadata == {"k": "v"}
        assert doc.embedding is None

    def test_embedding_returned_when_requested(self, store):
        store.add([Document.of("x", "c", embedding=[0.1, 0.2])])
        [doc] = store.get_by_id(["x"], output_fields=["id", "embedding"])
        assert doc.embedding == [0.1, 0.2]

    def test_identical_upserts_leave_one_row(self, store):
        store.upsert([Document.of("x", "first")])
        store.upsert([Document.of("x", "second", metadata={"v": 2})])

        assert store.count() == 1
        [doc] = store.get_by_id(["x"])
        assert doc.content == "second"
        assert doc.metadata == {"v": 2}

    def test_empty_writes_are_noops(self):
        client = MagicMock()
        store = MilvusVectorStore(client, "docs")
        store.add([])
        store.upsert([])
        store.delete([])
        store.delete_by_filter("  ")
        assert client.method_calls == []

    def test_add_embeds_missing_vectors(self, embedding_store, fake_client):
        docs = [Document.of("a", "abc"), Document.of("b", "hello", embedding=[9.0, 9.0, 9.0])]
        embedding_store.add(docs)

        rows = fake_client.partitions["_default"]
        assert rows["a"]["embedding"] == [3.0, 1.0, 0.0]
        assert rows["b"]["embedding"] == [9.0, 9.0, 9.0]

    def test_provider_called_once_per_batch(self, fake_client):
        provider = MagicMock()
        provider.embed_batch.return_value = [[1.0], [2.0]]
        store = MilvusVectorStore(fake_client, "docs", embedding_provider=provider)

        store.add([Document.of("a", "x"), Document.of("b", "y")])
        provider.embed_batch.assert_called_once_with(["x", "y"])

    def test_numpy_provider_output_stored_as_floats(self, fake_client):
        provider = MagicMock()
        provider.embed_batch.return_value = np.array([[1, 2], [3, 4]], dtype=np.float32)
        store = MilvusVectorStore(fake_client, "docs", embedding_provider=provider)
        doc = Document.of("a", "x")

        store.add([doc, Document.of("b", "y")])

        assert doc.embedding == [1.0, 2.0]
        stored = fake_client.partitions["_default"]["b"]["embedding"]
        assert stored == [3.0, 4.0]
        assert all(type(v) is float for v in stored)

    def test_delete_by_id_and_filter(self, store):
        store.add([Document.of("a", "one"), Document.of("b", "two"), Document.of("c", "two")])
        store.delete(["a"])
        store.delete_by_filter('content == "two"')
        assert store.count() == 0

    def test_insert_failure_is_wrapped(self):
        client = MagicMock()
        client.insert.side_effect = MilvusException(message="schema mismatch")
        store = MilvusVectorStore(client, "docs")

        with pytest.raises(DataError) as excinfo:
            store.add([Document.of("a", "c")])

        assert excinfo.value.code is ErrorCode.DATA_INSERT_FAILED
        assert excinfo.value.details["collection"] == "docs"
        assert isinstance(excinfo.value.__cause__, MilvusException)

    def test_partition_forwarded(self):
        client = MagicMock()
        store = MilvusVectorStore(client, "docs")
        store.upsert([Document.of("a", "c")], partition_name="kb001")
        client.upsert.assert_called_once_with(
            collection_name="docs",
            data=[{"id": "a", "content": "c", "metadata": {}}],
            partition_name="kb001",
        )


class TestReads:
    def test_query_with_string_filter(self, store):
        store.add([Document.of("a", "one"), Document.of("b", "two")])
        docs = store.query('content == "two"')
        assert [d.id for d in docs] == ["b"]

    def test_query_pagination_and_projection(self):
        client = MagicMock()
        client.query.return_value = [{"id": "a", "knowledge_id": "kb"}]
        store = MilvusVectorStore(client, "docs")

        [doc] = store.query(QueryRequest(filter="x > 1", offset=5, limit=10, result_type=Segment))

        assert isinstance(doc, Segment)
        client.query.assert_called_once_with(
            collection_name="docs",
            filter="x > 1",
            output_fields=["knowledge_id", "id", "content", "metadata"],
            partition_names=None,
            offset=5,
            limit=10,
        )

    def test_get_by_id_result_type(self, store):
        store.add([Segment(id="s", content="c", knowledge_id="kb")])
        [doc] = store.get_by_id(["s"], result_type=Segment)
        assert isinstance(doc, Segment)
        assert doc.knowledge_id == "kb"

    def test_mixin_fields_round_trip(self, store):
        store.add([TenantDoc(id="t", content="c", title="T", tenant="acme")])
        [doc] = store.get_by_id(["t"], result_type=TenantDoc)
        assert (doc.title, doc.tenant) == ("T", "acme")

    def test_get_by_id_empty_ids(self, store):
        assert store.get_by_id([]) == []

    def test_query_failure_is_wrapped(self):
        client = MagicMock()
        client.query.side_effect = MilvusException(message="bad expr")
        store = MilvusVectorStore(client, "docs")

        with pytest.raises(DataError) as excinfo:
            store.query("x ==")
        assert excinfo.value.code is ErrorCode.DATA_QUERY_FAILED


class TestPartitions:
    def test_partition_lifecycle(self, store):
        store.create_partition("kb001")
        store.add([Document.of(f"doc-{i}", f"text {i}") for i in range(5)], partition_name="kb001")
        assert store.count("kb001") == 5
        assert store.count() == 5

        store.load_partition("kb001")
        store.release_partition("kb001")
        store.drop_partition("kb001")

        assert not store.has_partition("kb001")
        assert store.get_by_id([f"doc-{i}" for i in range(5)], partition_name="kb001") == []

    def test_list_partitions(self, store):
        store.create_partition("kb001")
        assert store.list_partitions() == ["_default", "kb001"]

    def test_duplicate_partition_raises(self, store):
        store.create_partition("kb001")
        with pytest.raises(PartitionError) as excinfo:
            store.create_partition("kb001")
        assert excinfo.value.code is ErrorCode.PARTITION_CREATE_FAILED

    def test_drop_loaded_partition_raises(self, store):
        store.create_partition("kb001")
        store.load_partitions(["kb001"])
        with pytest.raises(PartitionError) as excinfo:
            store.drop_partition("kb001")
        assert excinfo.value.code is ErrorCode.PARTITION_DROP_FAILED


class TestMaintenance:
    def test_flush_and_compact(self, store, fake_client):
        store.flush()
        assert fake_client.flushed == 1
        assert store.compact() == 1001

    def test_collection_name(self, store):
        assert store.collection_name == "docs"


class TestSearch:
    def test_vector_search(self, store, fake_client, make_hit):
        fake_client.search_hits["embedding"] = [
            make_hit("a", 0.9, content="alpha"),
            make_hit("b", 0.3, content="beta"),
        ]
        request = SearchRequest.for_vector([0.1, 0.2], top_k=5, filter="x == 1").nprobe(8)

        results = store.search(request)

        assert [r.id for r in results] == ["a", "b"]
        assert results[0].document.content == "alpha"
        assert results[0].score == pytest.approx(0.9)
        call = fake_client.search_calls[0]
        assert call["anns_field"] == "embedding"
        assert call["limit"] == 5
        assert call["filter"] == "x == 1"
        assert call["search_params"] == {"metric_type": "COSINE", "params": {"nprobe": 8}}
        assert call["output_fields"] == ["id", "content", "metadata"]

    def test_vector_search_offset_and_partitions(self, store, fake_client):
        store.search(SearchRequest(query_vector=[0.1], offset=3).in_partition("kb001"))
        call = fake_client.search_calls[0]
        assert call["search_params"]["offset"] == 3
        assert call["partition_names"] == ["kb001"]

    def test_threshold_applied(self, store, fake_client, make_hit):
        fake_client.search_hits["embedding"] = [make_hit("a", 0.9), make_hit("b", 0.5)]
        results = store.search(SearchRequest(query_vector=[0.1], similarity_threshold=0.7))
        assert [r.id for r in results] == ["a"]

    def test_l2_scores_normalized(self, fake_client, make_hit):
        fake_client.search_hits["embedding"] = [make_hit("a", 1.0)]
        store = MilvusVectorStore(fake_client, "docs", metric_type="l2")

        [result] = store.search(SearchRequest.for_vector([0.1]))
        assert result.score == pytest.approx(0.5)
        assert result.distance == 1.0

    def test_text_query_embedded(self, embedding_store, fake_client):
        embedding_store.search(SearchRequest.for_text("abcd"))
        assert fake_client.search_calls[0]["data"] == [[4.0, 1.0, 0.0]]

    def test_text_query_without_provider(self, store, fake_client):
        with pytest.raises(SearchError) as excinfo:
            store.search(SearchRequest.for_text("query"))
        assert excinfo.value.code is ErrorCode.EMBEDDING_NOT_CONFIGURED
        assert fake_client.search_calls == []

    def test_keyword_search(self, store, fake_client, make_hit):
        fake_client.search_hits["sparse"] = [make_hit("a", 0.8), make_hit("b", 0.4)]

        results = store.search(SearchRequest.keyword("milvus", top_k=3))

        assert [r.score for r in results] == [pytest.approx(0.8), pytest.approx(0.4)]
        assert [r.distance for r in results] == [0.8, 0.4]
        call = fake_client.search_calls[0]
        assert call["data"] == ["milvus"]
        assert call["anns_field"] == "sparse"
        assert call["search_params"]["metric_type"] == "BM25"
        assert call["limit"] == 3

    def test_keyword_scores_clamped(self, store, fake_client, make_hit):
        fake_client.search_hits["sparse"] = [make_hit("a", 12.0), make_hit("b", 0.3)]

        results = store.search(SearchRequest.keyword("milvus"))

        assert [r.score for r in results] == [1.0, pytest.approx(0.3)]
        assert results[0].distance == 12.0

    def test_keyword_threshold_is_absolute(self, store, fake_client, make_hit):
        # A lone weak match must not be promoted to a perfect score
        fake_client.search_hits["sparse"] = [make_hit("a", 0.01)]

        request = SearchRequest.keyword("milvus").with_options(similarity_threshold=0.9)
        assert store.search(request) == []

    def test_keyword_search_logs_text_field(self, store, caplog):
        request = SearchRequest.keyword("milvus", text_field_name="body")
        with caplog.at_level(logging.DEBUG, logger="milvus_store.vector_stores.milvus"):
            store.search(request)
        assert "text_field=body" in caplog.text

    def test_hybrid_search(self, embedding_store, fake_client, make_hit):
        fake_client.search_hits["embedding"] = [make_hit("A", 0.9), make_hit("B", 0.4)]
        fake_client.search_hits["sparse"] = [make_hit("B", 0.8), make_hit("C", 0.5)]

        results = embedding_store.search(SearchRequest.hybrid("query", top_k=3))

        assert [r.id for r in results] == ["B", "A", "C"]
        assert [r.score for r in results] == [
            pytest.approx(0.6),
            pytest.approx(0.45),
            pytest.approx(0.25),
        ]
        assert [c["anns_field"] for c in fake_client.search_calls] == ["embedding", "sparse"]
        assert all(c["limit"] == 6 for c in fake_client.search_calls)

    def test_hybrid_top_k_cuts_after_fusion(self, embedding_store, fake_client, make_hit):
        fake_client.search_hits["embedding"] = [make_hit("A", 0.9), make_hit("B", 0.4)]
        fake_client.search_hits["sparse"] = [make_hit("B", 0.8), make_hit("C", 0.5)]

        results = embedding_store.search(SearchRequest.hybrid("query", top_k=2))

        assert [r.id for r in results] == ["B", "A"]
        assert all(c["limit"] == 4 for c in fake_client.search_calls)

    def test_hybrid_without_provider(self, store, fake_client):
        with pytest.raises(SearchError) as excinfo:
            store.search(SearchRequest.hybrid("query"))
        assert excinfo.value.code is ErrorCode.EMBEDDING_NOT_CONFIGURED
        assert fake_client.search_calls == []

    def test_search_failure_is_wrapped(self):
        client = MagicMock()
        client.search.side_effect = MilvusException(message="collection not loaded")
        store = MilvusVectorStore(client, "docs")

        with pytest.raises(SearchError) as excinfo:
            store.search(SearchRequest.for_vector([0.1]))
        assert excinfo.value.code is ErrorCode.SEARCH_FAILED
        assert "collection not loaded" in excinfo.value.details["cause"]
