"""
Command-line interface for the Milvus store.
"""

import argparse
import json
import logging
import sys

from milvus_store.client import MilvusStoreClient
from milvus_store.config import load_config
from milvus_store.errors import VectorStoreError
from milvus_store.requests import QueryRequest, SearchMode, SearchRequest

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Milvus document store command-line interface")
    parser.add_argument("--config", "-c", help="Path to a YAML configuration file")
    parser.add_argument("--collection", help="Collection to use instead of the configured one")
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init", help="Create, index and load the configured collection")
    subparsers.add_parser("collections", help="List collections")
    subparsers.add_parser("partitions", help="List partitions of the collection")

    count_parser = subparsers.add_parser("count", help="Count documents")
    count_parser.add_argument("--partition", "-p", help="Only count this partition")

    query_parser = subparsers.add_parser("query", help="Read documents matching a filter")
    query_parser.add_argument("--filter", "-f", default="", help="Filter expression")
    query_parser.add_argument("--limit", "-n", type=int, default=100, help="Maximum rows")
    query_parser.add_argument("--offset", type=int, default=0, help="Rows to skip")
    query_parser.add_argument("--partition", "-p", help="Partition to read from")

    search_parser = subparsers.add_parser("search", help="Similarity search")
    query_input = search_parser.add_mutually_exclusive_group(required=True)
    query_input.add_argument("--text", "-t", help="Query text")
    query_input.add_argument("--vector", help="Query vector as a JSON list")
    search_parser.add_argument(
        "--mode",
        "-m",
        default="vector",
        help="Search mode: vector, keyword (bm25) or hybrid",
    )
    search_parser.add_argument("--top-k", "-k", type=int, default=10, help="Number of results")
    search_parser.add_argument("--filter", "-f", help="Filter expression")
    search_parser.add_argument(
        "--partition", "-p", action="append", default=[], help="Partition to search (repeatable)"
    )
    search_parser.add_argument(
        "--threshold", type=float, default=0.0, help="Minimum normalized score"
    )
    return parser


def _dump(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _document_payload(document) -> dict:
    return document.model_dump(exclude_none=True)


def run(args, client: MilvusStoreClient, collection_name: str) -> None:
    if args.command == "init":
        created = client.initialize_default_collection(
            client.config.model_copy(update={"collection_name": collection_name})
        )
        _dump({"collection": collection_name, "created": created})
        return

    if args.command == "collections":
        _dump(client.list_collections())
        return

    store = client.get_vector_store(collection_name)

    if args.command == "partitions":
        _dump(store.list_partitions())

    elif args.command == "count":
        _dump(
            {
                "collection": collection_name,
                "partition": args.partition,
                "count": store.count(args.partition),
            }
        )

    elif args.command == "query":
        request = QueryRequest(
            filter=args.filter,
            partition_name=args.partition,
            offset=args.offset,
            limit=args.limit,
        )
        _dump([_document_payload(d) for d in store.query(request)])

    elif args.command == "search":
        request = SearchRequest(
            query_text=args.text,
            query_vector=json.loads(args.vector) if args.vector else None,
            top_k=args.top_k,
            filter=args.filter,
            partition_names=tuple(args.partition),
            search_mode=SearchMode.from_string(args.mode),
            similarity_threshold=args.threshold,
        )
        _dump(
            [
                {
                    "id": result.id,
                    "score": result.score,
                    "distance": result.distance,
                    "document": _document_payload(result.document),
                }
                for result in store.search(request)
            ]
        )


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    collection_name = args.collection or config.milvus.collection_name

    try:
        with MilvusStoreClient.from_config(
            config.milvus, embedding_provider=config.embedding.create_provider()
        ) as client:
            run(args, client, collection_name)
    except VectorStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.debug("Error details: %s", e.asdict())
        return 1
    except ValueError as e:
        print(f"Error: invalid request: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
