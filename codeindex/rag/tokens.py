from __future__ import annotations

"""Provider-specific token estimators and budget-respecting truncation."""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol

import regex

logger = logging.getLogger(__name__)


class TokenizationError(RuntimeError):
    """Raised when token estimation, truncation or decoding cannot proceed."""
    pass


class TokenizerProvider(str, Enum):
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    APPLE = "apple"
    OPENROUTER = "openrouter"
    BEDROCK = "bedrock"


class TokenEstimator(Protocol):
    """Protocol shared by every estimator profile."""
    provider: TokenizerProvider

    def count_tokens(self, text: str) -> int:
        raise NotImplementedError

    def encode(self, text: str) -> list[int]:
        raise NotImplementedError

    def decode(self, tokens: list[int]) -> str:
        raise NotImplementedError

    def truncate(self, text: str, max_tokens: int) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class EstimatorProfile:
    """Tuning knobs for the heuristic estimator.

    Words at or under ``word_byte_threshold`` UTF-8 bytes count as one token;
    longer words add one token per ``subword_bytes`` bytes over the threshold.
    When ``bytes_per_token`` is set it replaces that rule with a flat ratio.
    """
    name: str
    word_byte_threshold: int = 4
    subword_bytes: int | None = None
    bytes_per_token: float | None = None
    whitespace_chars_per_token: int = 1
    whitespace_collapse_after: int = 4
    digits_per_token: int = 3


APPLE_PROFILE = EstimatorProfile(name="apple", word_byte_threshold=4)
GEMINI_PROFILE = EstimatorProfile(
    name="gemini",
    word_byte_threshold=3,
    subword_bytes=4,
    whitespace_chars_per_token=2,
)
BPE_PROFILE = EstimatorProfile(name="bpe", word_byte_threshold=4)

OPENROUTER_BYTES_PER_TOKEN: dict[str, float] = {
    "openai": 4.0,
    "anthropic": 4.0,
    "mistral": 4.0,
    "google": 4.5,
    "meta": 3.8,
    "cohere": 4.2,
    "generic": 4.0,
}

_SEGMENT_RE = re.compile(
    r"(?P<space>\s+)"
    r"|(?P<digits>\d+)"
    r"|(?P<word>[^\W\d_]+(?:['’][^\W\d_]+)*)"
    r"|(?P<punct>(?:[^\w\s]|_)+)"
)

# Pre-tokenization pattern of the cl100k_base encoding.
CL100K_PATTERN = (
    r"'(?i:[sdmt]|ll|ve|re)|[^\r\n\p{L}\p{N}]?+\p{L}+|\p{N}{1,3}"
    r"| ?[^\s\p{L}\p{N}]++[\r\n]*|\s*[\r\n]|\s+(?!\S)|\s+"
)
_BPE_PRETOKEN_RE = regex.compile(CL100K_PATTERN)


def _whitespace_tokens(segment: str, profile: EstimatorProfile) -> int:
    length = len(segment)
    head = min(length, profile.whitespace_collapse_after)
    tail = length - head
    tokens = math.ceil(head / profile.whitespace_chars_per_token)
    if tail:
        tokens += math.ceil(tail / profile.whitespace_collapse_after)
    return tokens


def _word_tokens(byte_length: int, profile: EstimatorProfile) -> int:
    if byte_length == 0:
        return 0
    if profile.bytes_per_token:
        return max(1, math.ceil(byte_length / profile.bytes_per_token))
    threshold = profile.word_byte_threshold
    if byte_length <= threshold:
        return 1
    subword = profile.subword_bytes or threshold
    return 1 + math.ceil((byte_length - threshold) / subword)


class _TruncatingEstimator:
    """Shared truncation and decoding behaviour for estimators."""
    provider: TokenizerProvider

    def count_tokens(self, text: str) -> int:
        raise NotImplementedError

    def encode(self, text: str) -> list[int]:
        """Return placeholder IDs; estimates carry no vocabulary."""
        if not text:
            return []
        return list(range(self.count_tokens(text)))

    def decode(self, tokens: list[int]) -> str:
        raise TokenizationError(
            f"Decoding unavailable: the {self.provider.value} estimator has no vocabulary"
        )

    def truncate(self, text: str, max_tokens: int) -> str:
        """Return the longest prefix of text that fits within max_tokens."""
        if max_tokens <= 0:
            raise TokenizationError("Invalid input: max_tokens must be positive")
        if not text or self.count_tokens(text) <= max_tokens:
            return text

        low, high = 0, len(text)
        best = ""
        while low <= high:
            mid = (low + high) // 2
            candidate = text[:mid]
            if self.count_tokens(candidate) <= max_tokens:
                best = candidate
                low = mid + 1
            else:
                high = mid - 1
        return self._back_off_to_whitespace(text, best, max_tokens)

    def _back_off_to_whitespace(self, text: str, prefix: str, max_tokens: int) -> str:
        """Avoid cutting a word in half when a shorter prefix still fits."""
        if not prefix or len(prefix) >= len(text):
            return prefix
        if text[len(prefix)].isspace() or prefix[-1].isspace():
            return prefix
        boundary = max(prefix.rfind(" "), prefix.rfind("\n"), prefix.rfind("\t"))
        if boundary <= 0:
            return prefix
        candidate = prefix[:boundary]
        if self.count_tokens(candidate) <= max_tokens:
            return candidate
        return prefix


@dataclass
class HeuristicTokenEstimator(_TruncatingEstimator):
    """Word-boundary estimator tuned by a provider profile."""
    provider: TokenizerProvider
    profile: EstimatorProfile = APPLE_PROFILE

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        total = 0
        for match in _SEGMENT_RE.finditer(text):
            total += self._segment_tokens(match.lastgroup or "punct", match.group(0))
        return max(1, total)

    def _segment_tokens(self, kind: str, segment: str) -> int:
        if kind == "space":
            return _whitespace_tokens(segment, self.profile)
        if kind == "digits":
            return math.ceil(len(segment) / self.profile.digits_per_token)
        if kind == "word":
            return _word_tokens(len(segment.encode("utf-8")), self.profile)
        return len(segment)


@dataclass
class BytePairEstimator(_TruncatingEstimator):
    """cl100k-style estimator, exact once a rank vocabulary is loaded.

    Without a vocabulary each cl100k pre-token is estimated from its byte
    length. With one, counting, encoding and decoding go through a
    ``tiktoken.Encoding`` built from the ranks.
    """
    provider: TokenizerProvider = TokenizerProvider.OPENAI
    vocabulary: dict[bytes, int] | None = None
    profile: EstimatorProfile = BPE_PROFILE
    encoding: Any = field(init=False, repr=False, default=None)
    _token_ids: frozenset[int] = field(init=False, repr=False, default=frozenset())

    def __post_init__(self) -> None:
        if self.vocabulary is not None:
            self.load_vocabulary(self.vocabulary)

    @property
    def has_vocabulary(self) -> bool:
        return self.encoding is not None

    def load_vocabulary(self, ranks: Mapping[bytes, int]) -> None:
        """Install a ``token bytes -> rank`` vocabulary as a tiktoken encoding.

        Every single byte must be ranked so that any input can be encoded.
        """
        try:
            import tiktoken
        except ImportError as exc:
            raise TokenizationError("tiktoken is required to use a BPE vocabulary") from exc
        vocabulary = dict(ranks)
        missing = [value for value in range(256) if bytes([value]) not in vocabulary]
        if missing:
            raise TokenizationError(
                f"Vocabulary is missing {len(missing)} single-byte tokens"
            )
        self.encoding = tiktoken.Encoding(
            name=f"codeindex-{self.provider.value}",
            pat_str=CL100K_PATTERN,
            mergeable_ranks=vocabulary,
            special_tokens={},
        )
        self.vocabulary = vocabulary
        self._token_ids = frozenset(vocabulary.values())
        logger.info(
            "bpe_vocabulary_loaded",
            extra={"provider": self.provider.value, "size": len(vocabulary)},
        )

    @classmethod
    def from_tiktoken_file(
        cls,
        path: str,
        provider: TokenizerProvider = TokenizerProvider.OPENAI,
    ) -> BytePairEstimator:
        """Load a vocabulary with tiktoken's own .tiktoken reader."""
        try:
            from tiktoken.load import load_tiktoken_bpe
        except ImportError as exc:
            raise TokenizationError("tiktoken is required to load .tiktoken vocabularies") from exc
        return cls(provider=provider, vocabulary=load_tiktoken_bpe(path))

    def pre_tokenize(self, text: str) -> list[str]:
        return _BPE_PRETOKEN_RE.findall(text)

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        if self.encoding is not None:
            return len(self.encoding.encode_ordinary(text))
        return sum(self._estimate(piece) for piece in self.pre_tokenize(text))

    def encode(self, text: str) -> list[int]:
        if not text:
            return []
        if self.encoding is None:
            return super().encode(text)
        return self.encoding.encode_ordinary(text)

    def decode(self, tokens: list[int]) -> str:
        if self.encoding is None:
            raise TokenizationError(
                "Decoding unavailable: vocabulary not loaded, token estimates cannot be inverted"
            )
        unknown = [token for token in tokens if token not in self._token_ids]
        if unknown:
            raise TokenizationError(f"Unknown token ID: {unknown[0]}")
        try:
            return self.encoding.decode_bytes(tokens).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TokenizationError("Decoded bytes are not valid UTF-8") from exc

    def _estimate(self, piece: str) -> int:
        byte_length = len(piece.encode("utf-8"))
        if byte_length <= 1:
            return 1
        stripped = piece.strip()
        if not stripped:
            return _whitespace_tokens(piece, self.profile)
        if stripped.isdigit():
            return math.ceil(len(stripped) / self.profile.digits_per_token)
        if not any(char.isalnum() for char in stripped):
            return len(stripped)
        return _word_tokens(len(stripped.encode("utf-8")), self.profile)


@dataclass
class BedrockTokenEstimator(_TruncatingEstimator):
    """Routes to the estimator matching the Bedrock model family."""
    model_family: str = "claude"
    provider: TokenizerProvider = field(init=False, default=TokenizerProvider.BEDROCK)
    delegate: TokenEstimator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.model_family in {"claude", "mistral"}:
            self.delegate = BytePairEstimator(provider=TokenizerProvider.CLAUDE)
        elif self.model_family in {"titan", "cohere"}:
            self.delegate = BytePairEstimator(provider=TokenizerProvider.OPENAI)
        elif self.model_family == "llama":
            self.delegate = HeuristicTokenEstimator(
                provider=TokenizerProvider.GEMINI, profile=GEMINI_PROFILE
            )
        else:
            raise TokenizationError(f"Unsupported Bedrock model family: {self.model_family}")

    def count_tokens(self, text: str) -> int:
        return self.delegate.count_tokens(text)

    def encode(self, text: str) -> list[int]:
        return self.delegate.encode(text)

    def decode(self, tokens: list[int]) -> str:
        return self.delegate.decode(tokens)


def detect_bedrock_family(model_id: str) -> str:
    """Infer the Bedrock model family from a model identifier."""
    lowered = model_id.lower()
    if "anthropic" in lowered or "claude" in lowered:
        return "claude"
    if "amazon" in lowered or "titan" in lowered:
        return "titan"
    if "meta" in lowered or "llama" in lowered:
        return "llama"
    if "mistral" in lowered:
        return "mistral"
    if "cohere" in lowered or "command" in lowered:
        return "cohere"
    return "claude"


def detect_openrouter_family(model_name: str) -> str:
    """Infer the model family from an OpenRouter model name."""
    lowered = model_name.lower()
    if "openai" in lowered or "gpt" in lowered:
        return "openai"
    if "anthropic" in lowered or "claude" in lowered:
        return "anthropic"
    if "google" in lowered or "gemini" in lowered or "palm" in lowered:
        return "google"
    if "meta" in lowered or "llama" in lowered:
        return "meta"
    if "mistral" in lowered or "mixtral" in lowered:
        return "mistral"
    if "cohere" in lowered or "command" in lowered:
        return "cohere"
    return "generic"


def openrouter_profile(family: str) -> EstimatorProfile:
    ratio = OPENROUTER_BYTES_PER_TOKEN.get(family, OPENROUTER_BYTES_PER_TOKEN["generic"])
    return EstimatorProfile(name=f"openrouter:{family}", bytes_per_token=ratio)


def build_token_estimator(
    provider: str | TokenizerProvider,
    model: str | None = None,
    vocabulary_path: str | None = None,
) -> TokenEstimator:
    """Factory for token estimators based on provider and optional model name."""
    try:
        resolved = TokenizerProvider(str(getattr(provider, "value", provider)).strip().lower())
    except ValueError as exc:
        raise TokenizationError(f"Unsupported tokenizer provider: {provider}") from exc

    if resolved in {TokenizerProvider.OPENAI, TokenizerProvider.CLAUDE}:
        if vocabulary_path:
            return BytePairEstimator.from_tiktoken_file(vocabulary_path, provider=resolved)
        return BytePairEstimator(provider=resolved)
    if resolved == TokenizerProvider.GEMINI:
        return HeuristicTokenEstimator(provider=resolved, profile=GEMINI_PROFILE)
    if resolved == TokenizerProvider.APPLE:
        return HeuristicTokenEstimator(provider=resolved, profile=APPLE_PROFILE)
    if resolved == TokenizerProvider.OPENROUTER:
        family = detect_openrouter_family(model or "")
        return HeuristicTokenEstimator(provider=resolved, profile=openrouter_profile(family))
    return BedrockTokenEstimator(model_family=detect_bedrock_family(model or ""))
