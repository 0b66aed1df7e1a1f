from __future__ import annotations

"""Local source file loader for indexing."""

import logging
from pathlib import Path

from codeindex.rag.types import Language, SourceFile

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "build", "dist"}


def load_source_file(path: Path, root: Path | None = None) -> SourceFile:
    """Load a source file from disk; the path is stored relative to root."""
    content = path.read_text(encoding="utf-8", errors="ignore")
    relative = path.relative_to(root) if root is not None else path
    return SourceFile(path=relative.as_posix(), content=content)


def discover_source_files(
    root: Path,
    max_bytes: int = 1_048_576,
    ignored_dirs: set[str] | None = None,
) -> list[SourceFile]:
    """Walk root and load files whose extension maps to a known language."""
    skip = DEFAULT_IGNORED_DIRS if ignored_dirs is None else ignored_dirs
    files: list[SourceFile] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        if any(part in skip for part in path.relative_to(root).parts[:-1]):
            continue
        if Language.from_extension(path.suffix) == Language.UNKNOWN:
            continue
        if path.stat().st_size > max_bytes:
            logger.info("source_file_skipped", extra={"path": str(path), "reason": "too_large"})
            continue
        files.append(load_source_file(path, root=root))
    logger.info("source_files_discovered", extra={"root": str(root), "count": len(files)})
    return files
