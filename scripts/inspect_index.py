"""
Utility script to inspect indexed chunks without embeddings.

Usage:
    python -m scripts.inspect_index --limit 5 --offset 0
"""

from __future__ import annotations

import argparse
import asyncio
import json

from coderag.config import get_settings
from coderag.vector_store import get_vector_store

FIELD_ORDER = ["filePath", "relativePath", "startLine", "endLine", "language", "chunkIndex"]


async def inspect(limit: int, offset: int) -> None:
    # Read-only: the collection is never initialised or written here.
    store = get_vector_store(get_settings())
    total = await store.get_document_count()
    metadata = await store.get_metadata()
    docs = await store.list_documents(limit=limit, offset=offset)

    print(f"Collection file: {store.file_path}")
    if metadata:
        print(f"Embedding dimension: {metadata.embedding_dimension}, created: {metadata.created}")
    print(f"Total documents in collection: {total}")
    print(f"Showing {len(docs)} documents (offset={offset}, limit={limit})")
    for idx, doc in enumerate(docs, start=1):
        print(f"\n#{idx}: {doc.id}")
        ordered_meta = {k: doc.metadata.get(k) for k in FIELD_ORDER if k in doc.metadata} | {
            k: v for k, v in doc.metadata.items() if k not in FIELD_ORDER
        }
        print("Metadata:", json.dumps(ordered_meta, ensure_ascii=False))
        snippet = doc.text[:400].replace("\n", " ")
        print("Text:", snippet + ("..." if len(doc.text) > 400 else ""))


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect stored chunks in the vector store.")
    parser.add_argument("--limit", type=int, default=5, help="Number of documents to show")
    parser.add_argument("--offset", type=int, default=0, help="Offset for pagination")
    args = parser.parse_args()
    asyncio.run(inspect(args.limit, args.offset))


if __name__ == "__main__":
    main()
