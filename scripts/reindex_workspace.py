"""
CLI for a full reindex of the workspace.

Example:
    python -m scripts.reindex_workspace --root ./my-project
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from coderag.config import load_settings, setup_logging
from coderag.container import open_services
from coderag.errors import CodeRAGError
from coderag.indexing.pipeline import TqdmProgressReporter


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Full reindex of the workspace.")
    parser.add_argument("--root", default=None, help="Workspace root (defaults to WORKSPACE_ROOT).")
    parser.add_argument(
        "--embed-batch",
        type=int,
        default=None,
        help="Batch size for embedding requests.",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    overrides = {}
    if args.root:
        overrides["workspace_root"] = args.root
    if args.embed_batch:
        overrides["embed_batch_size"] = args.embed_batch
    settings = load_settings(**overrides)

    services = await open_services(settings)
    reporter = TqdmProgressReporter()
    try:
        summary = await services.indexing_service.index_workspace(progress=reporter)
    finally:
        reporter.close()
        await services.aclose()

    print(
        f"Status: {summary.status}; files indexed: {summary.files_indexed}/{summary.files_total}, "
        f"skipped: {summary.files_skipped}, chunks: {summary.chunks_indexed} "
        f"(elapsed {summary.elapsed_sec:.2f}s)"
    )
    return 0


def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)
    args = parse_args()

    try:
        sys.exit(asyncio.run(run(args)))
    except CodeRAGError:
        logger.exception("Reindex failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
