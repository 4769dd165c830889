"""
CLI for searching the vector index by a text query.

Example:
    python -m scripts.search_query --query "where is the cache key built" --top-k 5
"""

from __future__ import annotations

import argparse
import asyncio

from coderag.config import get_settings
from coderag.container import open_services
from coderag.vector_store.base import SearchOptions


async def search(args: argparse.Namespace) -> None:
    services = await open_services(get_settings())
    try:
        q_vec = await services.embedding_service.embed_query(args.query)
        results = await services.vector_store.similarity_search(
            q_vec, SearchOptions(limit=args.top_k, min_score=args.min_score)
        )
    finally:
        await services.aclose()

    if not results:
        print("No results")
        return

    for idx, result in enumerate(results, start=1):
        doc = result.document
        snippet = doc.text[: args.snippet].replace("\n", " ")
        print(f"\n#{idx} score={result.score:.4f} id={doc.id}")
        print("metadata:", doc.metadata)
        print("text:", snippet + ("..." if len(doc.text) > args.snippet else ""))


def main() -> None:
    parser = argparse.ArgumentParser(description="Search indexed chunks by text query.")
    parser.add_argument("--query", "-q", required=True, help="Query text")
    parser.add_argument("--top-k", type=int, default=5, help="How many results to return")
    parser.add_argument("--min-score", type=float, default=None, help="Minimum similarity score")
    parser.add_argument("--snippet", type=int, default=300, help="Snippet length")
    args = parser.parse_args()
    asyncio.run(search(args))


if __name__ == "__main__":
    main()
