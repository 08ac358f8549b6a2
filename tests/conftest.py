import re

import pytest
from pymilvus import MilvusException

from milvus_store.embedding_providers import FunctionEmbeddingProvider
from milvus_store.vector_stores.milvus import MilvusVectorStore

DEFAULT_PARTITION = "_default"

_EQUALS_FILTER = re.compile(r'^\s*(\w+)\s*==\s*["\'](.*)["\']\s*$')
_IN_FILTER = re.compile(r"^\s*id\s+in\s+\[(.*)\]\s*$")


class FakeMilvusClient:
    """
    In-memory stand-in for pymilvus.MilvusClient, for one collection.

    Rows live per partition, keyed by primary key. Search hits are not
    computed; tests set them per anns_field in ``search_hits``.
    """

    def __init__(self):
        self.partitions = {DEFAULT_PARTITION: {}}
        self.loaded = set()
        self.search_hits = {}
        self.search_calls = []
        self.flushed = 0
        self.compactions = 0

    def _partition(self, partition_name):
        name = partition_name or DEFAULT_PARTITION
        if name not in self.partitions:
            raise MilvusException(message=f"partition not found[partition={name}]")
        return self.partitions[name]

    def _targets(self, partition_names):
        if not partition_names:
            return list(self.partitions.values())
        return [self._partition(name) for name in partition_names]

    def _matches(self, row, expr):
        if not expr:
            return True
        match = _EQUALS_FILTER.match(expr)
        if match:
            return str(row.get(match.group(1))) == match.group(2)
        match = _IN_FILTER.match(expr)
        if match:
            ids = [part.strip().strip("'\"") for part in match.group(1).split(",")]
            return row["id"] in ids
        raise MilvusException(message=f"cannot parse expression: {expr}")

    @staticmethod
    def _project(row, output_fields):
        projected = {"id": row["id"]}
        for field in output_fields or []:
            if field in row:
                projected[field] = row[field]
        return projected

    # Data

    def insert(self, collection_name, data, partition_name=None, **kwargs):
        partition = self._partition(partition_name)
        for row in data:
            partition[row["id"]] = dict(row)
        return {"insert_count": len(data)}

    def upsert(self, collection_name, data, partition_name=None, **kwargs):
        partition = self._partition(partition_name)
        for row in data:
            for rows in self.partitions.values():
                rows.pop(row["id"], None)
            partition[row["id"]] = dict(row)
        return {"upsert_count": len(data)}

    def delete(self, collection_name, ids=None, filter=None, partition_name=None, **kwargs):
        targets = self._targets([partition_name] if partition_name else None)
        deleted = 0
        for rows in targets:
            for row_id in list(rows):
                if (ids is not None and row_id in ids) or (
                    filter is not None and self._matches(rows[row_id], filter)
                ):
                    del rows[row_id]
                    deleted += 1
        return {"delete_count": deleted}

    def get(self, collection_name, ids, output_fields=None, partition_names=None, **kwargs):
        results = []
        for rows in self._targets(partition_names):
            for row_id in ids:
                if row_id in rows:
                    results.append(self._project(rows[row_id], output_fields))
        return results

    def query(
        self,
        collection_name,
        filter="",
        output_fields=None,
        partition_names=None,
        offset=0,
        limit=None,
        **kwargs,
    ):
        rows = [
            row
            for partition in self._targets(partition_names)
            for row in partition.values()
            if self._matches(row, filter)
        ]
        if output_fields == ["count(*)"]:
            return [{"count(*)": len(rows)}]
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [self._project(row, output_fields) for row in rows]

    def search(
        self,
        collection_name,
        data,
        filter="",
        limit=10,
        output_fields=None,
        search_params=None,
        partition_names=None,
        anns_field=None,
        **kwargs,
    ):
        self.search_calls.append(
            {
                "data": data,
                "filter": filter,
                "limit": limit,
                "output_fields": output_fields,
                "search_params": search_params,
                "partition_names": partition_names,
                "anns_field": anns_field,
            }
        )
        return [list(self.search_hits.get(anns_field, []))[:limit]]

    # Partitions

    def create_partition(self, collection_name, partition_name, **kwargs):
        if partition_name in self.partitions:
            raise MilvusException(message=f"partition already exists: {partition_name}")
        self.partitions[partition_name] = {}

    def drop_partition(self, collection_name, partition_name, **kwargs):
        if partition_name in self.loaded:
            raise MilvusException(message="partition cannot be dropped, release it first")
        self.partitions.pop(partition_name, None)

    def has_partition(self, collection_name, partition_name, **kwargs):
        return partition_name in self.partitions

    def list_partitions(self, collection_name, **kwargs):
        return list(self.partitions)

    def load_partitions(self, collection_name, partition_names, **kwargs):
        for name in partition_names:
            self._partition(name)
            self.loaded.add(name)

    def release_partitions(self, collection_name, partition_names, **kwargs):
        for name in partition_names:
            self.loaded.discard(name)

    # Maintenance

    def flush(self, collection_name, **kwargs):
        self.flushed += 1

    def compact(self, collection_name, **kwargs):
        self.compactions += 1
        return 1000 + self.compactions

    def close(self):
        pass


def hit(hit_id, distance, **entity):
    """A search hit shaped like the ones MilvusClient.search returns."""
    return {"id": hit_id, "distance": distance, "entity": {"id": hit_id, **entity}}


@pytest.fixture
def make_hit():
    return hit


@pytest.fixture
def fake_client():
    return FakeMilvusClient()


@pytest.fixture
def embedder():
    # Deterministic 3-d vectors derived from text length
    return FunctionEmbeddingProvider(lambda text: [float(len(text)), 1.0, 0.0], dimension=3)


@pytest.fixture
def store(fake_client):
    return MilvusVectorStore(fake_client, "docs")


@pytest.fixture
def embedding_store(fake_client, embedder):
    return MilvusVectorStore(fake_client, "docs", embedding_provider=embedder)
