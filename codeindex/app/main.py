from __future__ import annotations

"""Command-line entrypoint for indexing and searching a local codebase."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from codeindex.app.dependencies import (
    get_context_retriever,
    get_metrics_collector,
    get_pipeline,
    get_token_estimator,
)
from codeindex.app.metrics import metrics_payload
from codeindex.app.settings import settings
from codeindex.loaders.files import discover_source_files
from codeindex.rag.pipeline import IndexingReport

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
            stream=sys.stderr,
        )
    logger.setLevel(level)


def _write_metrics(path: Path) -> None:
    """Write the Prometheus exposition for this run, e.g. for a textfile collector."""
    body, _ = metrics_payload()
    path.write_bytes(body)
    logger.info("metrics_written", extra={"path": str(path), "bytes": len(body)})


def _report_payload(report: IndexingReport) -> dict[str, object]:
    return {
        "codebase_id": report.codebase_id,
        "run_id": report.run_id,
        "total_files": report.total_files,
        "indexed_files": report.indexed_files,
        "failed_files": report.failed_files,
        "chunk_count": report.chunk_count,
        "root_hash": report.root_hash,
        "languages": report.languages,
        "frameworks": report.frameworks,
        "errors": [{"path": error.file_path, "error": error.error} for error in report.errors],
    }


async def _index(root: Path, codebase_id: str) -> IndexingReport:
    files = discover_source_files(root, max_bytes=settings.max_file_bytes)
    return await get_pipeline().run(codebase_id, files)


async def _search(root: Path, codebase_id: str, query: str, limit: int, threshold: float) -> list[dict[str, object]]:
    await _index(root, codebase_id)
    expanded = await get_context_retriever().retrieve(codebase_id, query, limit=limit, threshold=threshold)
    return [
        {
            "file_path": item.main_chunk.file_path,
            "start_line": item.expanded_start_line,
            "end_line": item.expanded_end_line,
            "symbols": item.main_chunk.symbols,
            "context": item.full_context,
        }
        for item in expanded
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="codeindex", description="Index and search a local codebase.")
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Index a directory and print the report.")
    index.add_argument("root", type=Path)
    index.add_argument("--codebase-id", default=None)
    index.add_argument("--metrics-file", type=Path, default=None)

    count = commands.add_parser("count", help="Print the token estimate for a file.")
    count.add_argument("path", type=Path)

    search = commands.add_parser("search", help="Index a directory, then run a hybrid search.")
    search.add_argument("root", type=Path)
    search.add_argument("query")
    search.add_argument("--codebase-id", default=None)
    search.add_argument("--limit", type=int, default=settings.search_limit)
    search.add_argument("--threshold", type=float, default=settings.similarity_threshold)
    search.add_argument("--metrics-file", type=Path, default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)

    if args.command == "count":
        text = args.path.read_text(encoding="utf-8", errors="ignore")
        print(get_token_estimator().count_tokens(text))
        return 0

    root = args.root.resolve()
    if not root.is_dir():
        logger.error("root_not_directory", extra={"root": str(root)})
        return 2
    codebase_id = args.codebase_id or root.name

    if args.command == "index":
        report = asyncio.run(_index(root, codebase_id))
        print(json.dumps(_report_payload(report), indent=2))
        if args.metrics_file is not None:
            _write_metrics(args.metrics_file)
        return 1 if report.errors else 0

    results = asyncio.run(_search(root, codebase_id, args.query, args.limit, args.threshold))
    print(json.dumps(results, indent=2))
    if args.metrics_file is not None:
        _write_metrics(args.metrics_file)
    stats = get_metrics_collector().get_statistics()
    logger.info(
        "search_statistics",
        extra={"searches": stats.total_searches, "average_latency": stats.average_search_latency},
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
