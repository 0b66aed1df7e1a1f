from __future__ import annotations

"""Token-bounded chunking strategies for prose and source code."""

import logging
import re
from typing import Callable, Sequence

from codeindex.loaders.segmenter import (
    TextSpan,
    extract_lines,
    extract_logical_units,
    extract_paragraphs,
    extract_sentences,
)
from codeindex.rag.tokens import TokenEstimator
from codeindex.rag.types import ChunkingStrategy, ChunkMetadata, HierarchicalChunk, Language, TextChunk

logger = logging.getLogger(__name__)

Splitter = Callable[[str, TextSpan], list[TextSpan]]

_MARKDOWN_HEADER_RE = re.compile(r"^(#+)(?:\s|$)")
_UPPERCASE_HEADER_MAX_CHARS = 80


class ChunkingError(RuntimeError):
    """Raised when a chunking request is invalid or unsupported."""
    pass


def split_sentences_on_period(text: str, span: TextSpan) -> list[TextSpan]:
    return extract_sentences(text, ".", span.start, span.end)


def split_sentences(text: str, span: TextSpan) -> list[TextSpan]:
    return extract_sentences(text, ".!?", span.start, span.end)


def split_paragraphs(text: str, span: TextSpan) -> list[TextSpan]:
    return extract_paragraphs(text, span.start, span.end)


def split_lines(text: str, span: TextSpan) -> list[TextSpan]:
    return extract_lines(text, span.start, span.end)


def _header_depth(line: str) -> int | None:
    stripped = line.strip()
    if not stripped:
        return None
    match = _MARKDOWN_HEADER_RE.match(stripped)
    if match:
        return len(match.group(1))
    if len(stripped) <= _UPPERCASE_HEADER_MAX_CHARS and stripped.isupper():
        return 1
    return None


def split_sections(text: str, span: TextSpan) -> list[TextSpan]:
    """Split a span at its outermost headers.

    A header on the span's first line titles the span itself and does not
    start a new section.
    """
    headers: list[tuple[int, int]] = []
    cursor = span.start
    while cursor < span.end:
        newline = text.find("\n", cursor, span.end)
        line_end = span.end if newline < 0 else newline
        depth = _header_depth(text[cursor:line_end])
        if depth is not None and cursor > span.start:
            headers.append((cursor, depth))
        cursor = line_end + 1
    if not headers:
        return [span]
    outermost = min(depth for _, depth in headers)
    boundaries = [offset for offset, depth in headers if depth == outermost]

    sections: list[TextSpan] = []
    start = span.start
    for boundary in boundaries + [span.end]:
        piece = text[start:boundary]
        stripped_end = start + len(piece.rstrip())
        leading = len(piece) - len(piece.lstrip())
        if stripped_end > start + leading:
            sections.append(
                TextSpan(text=text[start + leading : stripped_end], start=start + leading, end=stripped_end)
            )
        start = boundary
    return sections


def pack_units(
    text: str,
    units: Sequence[TextSpan],
    max_tokens: int,
    estimator: TokenEstimator,
    metadata: ChunkMetadata,
    splitters: Sequence[Splitter] = (),
) -> list[TextChunk]:
    """Greedily merge adjacent units into chunks that fit the token budget.

    Chunk content is the source slice from the first to the last merged unit,
    so character ranges always address the original text. A unit that alone
    exceeds the budget is handed to the next splitter; when no splitter is
    left it is emitted as an oversized chunk.
    """
    chunks: list[TextChunk] = []
    current: tuple[int, int] | None = None

    def flush() -> None:
        nonlocal current
        if current is None:
            return
        start, end = current
        content = text[start:end]
        chunks.append(
            TextChunk(
                content=content,
                token_count=estimator.count_tokens(content),
                start_index=start,
                end_index=end,
                metadata=metadata,
            )
        )
        current = None

    for unit in units:
        if estimator.count_tokens(unit.text) > max_tokens:
            flush()
            pieces = splitters[0](text, unit) if splitters else [unit]
            if len(pieces) > 1 or (pieces and splitters[1:]):
                chunks.extend(
                    pack_units(text, pieces, max_tokens, estimator, metadata, splitters[1:])
                )
            else:
                current = (unit.start, unit.end)
                flush()
            continue
        if current is None:
            current = (unit.start, unit.end)
            continue
        merged = text[current[0] : unit.end]
        if estimator.count_tokens(merged) <= max_tokens:
            current = (current[0], unit.end)
        else:
            flush()
            current = (unit.start, unit.end)
    flush()
    return chunks


def _line_offsets(text: str) -> list[int]:
    offsets = [0]
    for index, char in enumerate(text):
        if char == "\n":
            offsets.append(index + 1)
    return offsets


def code_units(code: str, language: Language) -> list[TextSpan]:
    """Declaration units plus the code between them, in source order."""
    offsets = _line_offsets(code)
    units: list[TextSpan] = []
    cursor = 0
    for unit in extract_logical_units(code, language):
        start = offsets[unit.start_line - 1]
        end = offsets[unit.end_line] - 1 if unit.end_line < len(offsets) else len(code)
        while end > start and code[end - 1].isspace():
            end -= 1
        if start < cursor or end <= start:
            continue
        units.extend(extract_paragraphs(code, cursor, start))
        units.append(TextSpan(text=code[start:end], start=start, end=end))
        cursor = end
    units.extend(extract_paragraphs(code, cursor, len(code)))
    return units


class Chunker:
    """Chunker bound to a single strategy.

    Semantic and late chunkers treat source code as prose; the code-structure
    chunker only serves ``chunk_code``; only the hierarchical chunker builds
    chunk trees.
    """

    def __init__(self, strategy: ChunkingStrategy, estimator: TokenEstimator) -> None:
        self.strategy = strategy
        self.estimator = estimator

    def chunk(self, text: str, max_tokens: int, strategy: ChunkingStrategy) -> list[TextChunk]:
        """Split text into chunks of at most max_tokens using the bound strategy."""
        self._require_positive(max_tokens)
        if strategy != self.strategy or strategy == ChunkingStrategy.CODE_STRUCTURE:
            raise ChunkingError(f"Strategy not supported: {strategy.value}")
        if not text.strip():
            return []
        whole = TextSpan(text=text, start=0, end=len(text))
        if strategy == ChunkingStrategy.SEMANTIC:
            units = extract_paragraphs(text)
            splitters: list[Splitter] = [split_sentences_on_period]
        elif strategy == ChunkingStrategy.LATE:
            units = extract_sentences(text, ".!?")
            splitters = []
        else:
            units = split_sections(text, whole)
            splitters = [split_paragraphs, split_sentences_on_period]
        metadata = ChunkMetadata(
            strategy=strategy,
            semantic_level=1 if strategy == ChunkingStrategy.HIERARCHICAL else None,
        )
        chunks = pack_units(text, units, max_tokens, self.estimator, metadata, splitters)
        logger.debug(
            "text_chunked",
            extra={"strategy": strategy.value, "chunks": len(chunks), "max_tokens": max_tokens},
        )
        return chunks

    def chunk_code(self, code: str, max_tokens: int, language: Language) -> list[TextChunk]:
        """Split source code, preferring whole declarations as chunk boundaries."""
        self._require_positive(max_tokens)
        if self.strategy in {ChunkingStrategy.SEMANTIC, ChunkingStrategy.LATE}:
            return self.chunk(code, max_tokens, self.strategy)
        if self.strategy != ChunkingStrategy.CODE_STRUCTURE:
            raise ChunkingError(f"Strategy not supported: {self.strategy.value}")
        if not code.strip():
            return []
        metadata = ChunkMetadata(strategy=ChunkingStrategy.CODE_STRUCTURE, language=language)
        chunks = pack_units(
            code,
            code_units(code, language),
            max_tokens,
            self.estimator,
            metadata,
            [split_lines],
        )
        logger.debug(
            "code_chunked",
            extra={"language": language.value, "chunks": len(chunks), "max_tokens": max_tokens},
        )
        return chunks

    def chunk_hierarchically(
        self,
        text: str,
        levels: int,
        max_tokens_per_level: Sequence[int],
    ) -> HierarchicalChunk:
        """Build a chunk tree whose level 0 node is the whole document."""
        if self.strategy != ChunkingStrategy.HIERARCHICAL:
            raise ChunkingError(f"Strategy not supported: {ChunkingStrategy.HIERARCHICAL.value}")
        if levels <= 0 or levels > len(max_tokens_per_level):
            raise ChunkingError(
                f"Invalid hierarchy: levels={levels} with {len(max_tokens_per_level)} level budgets"
            )
        budgets = list(max_tokens_per_level[:levels])
        for budget in budgets:
            self._require_positive(budget)
        return self._build_node(text, TextSpan(text=text, start=0, end=len(text)), 0, budgets)

    def _build_node(
        self,
        text: str,
        span: TextSpan,
        depth: int,
        budgets: list[int],
    ) -> HierarchicalChunk:
        tokens = self.estimator.count_tokens(span.text)
        if len(budgets) <= 1:
            return HierarchicalChunk(content=span.text, level=depth, token_count=tokens)
        parts = self._hierarchy_parts(text, span)
        if len(parts) <= 1:
            return HierarchicalChunk(content=span.text, level=depth, token_count=tokens)
        children: list[HierarchicalChunk] = []
        for part in parts:
            part_tokens = self.estimator.count_tokens(part.text)
            if part_tokens > budgets[1] and len(budgets) > 2:
                children.append(self._build_node(text, part, depth + 1, budgets[1:]))
            else:
                children.append(
                    HierarchicalChunk(content=part.text, level=depth + 1, token_count=part_tokens)
                )
        return HierarchicalChunk(
            content=span.text,
            level=depth,
            token_count=tokens,
            children=tuple(children),
        )

    def _hierarchy_parts(self, text: str, span: TextSpan) -> list[TextSpan]:
        for splitter in (split_sections, split_paragraphs, split_sentences, split_lines):
            parts = splitter(text, span)
            if len(parts) > 1:
                return parts
        return [span]

    def _require_positive(self, max_tokens: int) -> None:
        if max_tokens <= 0:
            raise ChunkingError(f"Invalid input: max_tokens must be positive, got {max_tokens}")


def build_chunker(strategy: str | ChunkingStrategy, estimator: TokenEstimator) -> Chunker:
    """Factory for chunkers from a strategy name or enum value."""
    try:
        resolved = ChunkingStrategy(str(getattr(strategy, "value", strategy)).strip().lower())
    except ValueError as exc:
        raise ChunkingError(f"Unknown chunking strategy: {strategy}") from exc
    return Chunker(resolved, estimator)
