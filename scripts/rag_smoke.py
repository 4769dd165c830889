"""
Simple smoke test of the RAG pipeline.

Example:
    python -m scripts.rag_smoke --question "How is the embedding cache keyed?" --stream
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from coderag.config import get_settings, setup_logging
from coderag.container import open_services
from coderag.errors import CodeRAGError
from coderag.rag.pipeline import RAGOptions, StreamChunk


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RAG pipeline smoke test.")
    parser.add_argument("--question", "-q", required=True, help="Question about the workspace")
    parser.add_argument("--max-results", type=int, default=None, help="Override number of context chunks")
    parser.add_argument("--rag-only", action="store_true", help="Skip the LLM and show retrieved code only")
    parser.add_argument("--stream", action="store_true", help="Stream the answer")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    services = await open_services(get_settings())
    options = RAGOptions(max_results=args.max_results, force_rag_only_mode=args.rag_only)
    try:
        if args.stream:
            printed = 0

            def on_chunk(chunk: StreamChunk) -> None:
                nonlocal printed
                print(chunk.content[printed:], end="", flush=True)
                printed = len(chunk.content)
                if chunk.done:
                    print()
                    if chunk.error:
                        print(f"[error] {chunk.error}")

            await services.orchestrator.stream_query(args.question, on_chunk, options)
            return

        response = await services.orchestrator.query(args.question, options)
    finally:
        await services.aclose()

    print("\n=== RAG Smoke Result ===")
    print(f"rag_only: {response.rag_only}  stage: {response.stage.value}  model: {response.model}")
    print(f"answer:\n{response.content}")
    print("\nSources:")
    for idx, result in enumerate(response.sources, start=1):
        meta = result.document.metadata
        print(f"#{idx} {meta.get('filePath')}:{meta.get('startLine')}-{meta.get('endLine')} score={result.score:.3f}")
    if response.usage:
        print("Usage:", response.usage)


def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)
    args = parse_args()

    try:
        asyncio.run(run(args))
    except CodeRAGError:
        logger.exception("RAG smoke failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
