from __future__ import annotations

"""Lossless meta-token compression of repeated phrases."""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from codeindex.rag.tokens import TokenEstimator

logger = logging.getLogger(__name__)

_WORD_OR_SPACE_RE = re.compile(r"\S+|\s+")


class CompressionError(RuntimeError):
    """Raised when compressed context cannot be produced or restored."""
    pass


class CompressionTechnique(str, Enum):
    META_TOKEN = "meta_token"
    CONTEXTUAL = "contextual"


@dataclass(frozen=True)
class CompressionMetadata:
    technique: CompressionTechnique
    original_tokens: int
    compressed_tokens: int
    compression_ratio: float
    quality_score: float = 1.0
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CompressedContext:
    """Compressed text plus everything needed to restore it."""
    compressed_text: str
    original_token_count: int
    compressed_token_count: int
    compression_ratio: float
    technique: CompressionTechnique
    metadata: CompressionMetadata


def compression_ratio(original_tokens: int, compressed_tokens: int) -> float:
    if original_tokens <= 0:
        return 1.0
    return compressed_tokens / original_tokens


@dataclass
class MetaTokenCompressor:
    """Replace frequent 3-5 word phrases with short placeholders.

    Phrases only match when their words are separated by single spaces, and
    placeholders use a prefix absent from the input, so decompression
    restores the original text exactly.
    """
    estimator: TokenEstimator
    min_pattern_words: int = 3
    max_pattern_words: int = 5
    min_occurrences: int = 2
    max_patterns: int = 20
    technique: CompressionTechnique = field(init=False, default=CompressionTechnique.META_TOKEN)

    def compress(self, text: str, target_ratio: float) -> CompressedContext:
        tokens = _WORD_OR_SPACE_RE.findall(text)
        patterns = self._select_patterns(tokens)
        prefix = self._placeholder_prefix(text)
        mapping = {f"{prefix}{index}]": " ".join(words) for index, words in enumerate(patterns)}
        compressed_text = self._substitute(tokens, {words: key for key, words in zip(mapping, patterns)})

        original_tokens = self.estimator.count_tokens(text)
        compressed_tokens = self.estimator.count_tokens(compressed_text)
        ratio = compression_ratio(original_tokens, compressed_tokens)
        logger.debug(
            "meta_token_compressed",
            extra={"patterns": len(mapping), "ratio": round(ratio, 3), "target_ratio": target_ratio},
        )
        return CompressedContext(
            compressed_text=compressed_text,
            original_token_count=original_tokens,
            compressed_token_count=compressed_tokens,
            compression_ratio=ratio,
            technique=self.technique,
            metadata=CompressionMetadata(
                technique=self.technique,
                original_tokens=original_tokens,
                compressed_tokens=compressed_tokens,
                compression_ratio=ratio,
                parameters={
                    "meta_token_count": str(len(mapping)),
                    "mapping": json.dumps(mapping, ensure_ascii=False),
                    "compression_percentage": f"{(1.0 - ratio) * 100:.1f}%",
                    "target_ratio": str(target_ratio),
                },
            ),
        )

    def decompress(self, compressed: CompressedContext) -> str:
        if compressed.technique != self.technique:
            raise CompressionError(
                f"Incompatible technique: expected {self.technique.value}, found {compressed.technique.value}"
            )
        raw = compressed.metadata.parameters.get("mapping")
        if raw is None:
            raise CompressionError("Missing metadata: meta-token mapping not found")
        try:
            mapping = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CompressionError("Missing metadata: meta-token mapping is not valid JSON") from exc
        if not isinstance(mapping, dict) or not mapping:
            return compressed.compressed_text
        keys = sorted(mapping, key=len, reverse=True)
        pattern = re.compile("|".join(re.escape(key) for key in keys))
        return pattern.sub(lambda match: mapping[match.group(0)], compressed.compressed_text)

    def _windows(self, tokens: list[str]) -> Iterator[tuple[int, tuple[str, ...]]]:
        """Yield (start index, words) for every single-space separated word window."""
        for start in range(len(tokens)):
            if tokens[start].isspace():
                continue
            words = [tokens[start]]
            cursor = start + 1
            while len(words) < self.max_pattern_words and cursor + 1 < len(tokens):
                if tokens[cursor] != " ":
                    break
                words.append(tokens[cursor + 1])
                cursor += 2
                if len(words) >= self.min_pattern_words:
                    yield start, tuple(words)

    def _select_patterns(self, tokens: list[str]) -> list[tuple[str, ...]]:
        counts: Counter[tuple[str, ...]] = Counter(words for _, words in self._windows(tokens))
        frequent = [
            (words, count) for words, count in counts.items() if count >= self.min_occurrences
        ]
        frequent.sort(key=lambda item: (-item[1], -len(" ".join(item[0])), item[0]))
        return [words for words, _ in frequent[: self.max_patterns]]

    def _placeholder_prefix(self, text: str) -> str:
        prefix = "[M"
        while prefix in text:
            prefix += "M"
        return prefix

    def _substitute(self, tokens: list[str], placeholders: dict[tuple[str, ...], str]) -> str:
        if not placeholders:
            return "".join(tokens)
        by_start: dict[int, list[tuple[str, ...]]] = {}
        for start, words in self._windows(tokens):
            if words in placeholders:
                by_start.setdefault(start, []).append(words)

        output: list[str] = []
        index = 0
        while index < len(tokens):
            candidates = by_start.get(index)
            if candidates:
                best = max(candidates, key=lambda words: (len(words), len(" ".join(words))))
                output.append(placeholders[best])
                index += 2 * len(best) - 1
                continue
            output.append(tokens[index])
            index += 1
        return "".join(output)
