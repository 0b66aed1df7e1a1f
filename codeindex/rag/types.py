from __future__ import annotations

"""Core data types for segmentation, chunking and retrieval."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Union


class Language(str, Enum):
    SWIFT = "swift"
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    GO = "go"
    RUST = "rust"
    JAVA = "java"
    KOTLIN = "kotlin"
    CSHARP = "csharp"
    OBJECTIVE_C = "objective_c"
    C = "c"
    CPP = "cpp"
    RUBY = "ruby"
    PHP = "php"
    SCALA = "scala"
    DART = "dart"
    R = "r"
    LUA = "lua"
    UNKNOWN = "unknown"

    @classmethod
    def from_extension(cls, extension: str) -> Language:
        """Map a file extension (with or without the dot) to a language."""
        return _EXTENSION_LANGUAGES.get(extension.lower().lstrip("."), cls.UNKNOWN)


_EXTENSION_LANGUAGES: dict[str, Language] = {
    "swift": Language.SWIFT,
    "py": Language.PYTHON,
    "js": Language.JAVASCRIPT,
    "jsx": Language.JAVASCRIPT,
    "mjs": Language.JAVASCRIPT,
    "cjs": Language.JAVASCRIPT,
    "ts": Language.TYPESCRIPT,
    "tsx": Language.TYPESCRIPT,
    "go": Language.GO,
    "rs": Language.RUST,
    "java": Language.JAVA,
    "kt": Language.KOTLIN,
    "kts": Language.KOTLIN,
    "cs": Language.CSHARP,
    "m": Language.OBJECTIVE_C,
    "mm": Language.OBJECTIVE_C,
    "h": Language.C,
    "c": Language.C,
    "cpp": Language.CPP,
    "cc": Language.CPP,
    "cxx": Language.CPP,
    "hpp": Language.CPP,
    "rb": Language.RUBY,
    "php": Language.PHP,
    "scala": Language.SCALA,
    "dart": Language.DART,
    "r": Language.R,
    "lua": Language.LUA,
}


class SymbolKind(str, Enum):
    CLASS = "class"
    STRUCT = "struct"
    PROTOCOL = "protocol"
    FUNCTION = "function"
    ENUM = "enum"


class ChunkingStrategy(str, Enum):
    SEMANTIC = "semantic"
    CODE_STRUCTURE = "code_structure"
    LATE = "late"
    HIERARCHICAL = "hierarchical"


@dataclass(frozen=True)
class Symbol:
    """Named declaration found in source code."""
    name: str
    kind: SymbolKind
    start_line: int
    end_line: int


@dataclass(frozen=True)
class LogicalUnit:
    """Balanced declaration extracted from source code."""
    name: str
    content: str
    start_line: int
    end_line: int


@dataclass(frozen=True)
class ParsedChunk:
    """Parser output before it is turned into a persisted chunk."""
    content: str
    start_line: int
    end_line: int
    type: str
    symbols: list[str] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    token_count: int = 0


@dataclass(frozen=True)
class ChunkMetadata:
    strategy: ChunkingStrategy
    language: Language | None = None
    semantic_level: int | None = None
    topic: str | None = None


@dataclass(frozen=True)
class TextChunk:
    """Token-bounded span of a document with its character range."""
    content: str
    token_count: int
    start_index: int
    end_index: int
    metadata: ChunkMetadata

    @property
    def character_range(self) -> range:
        return range(self.start_index, self.end_index)


@dataclass(frozen=True)
class HierarchicalChunk:
    """Node of a multi-level chunk tree; leaves have no children."""
    content: str
    level: int
    token_count: int
    children: tuple[HierarchicalChunk, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self) -> Iterator[HierarchicalChunk]:
        """Yield this node and all descendants in pre-order."""
        stack: list[HierarchicalChunk] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> list[HierarchicalChunk]:
        return [node for node in self.walk() if node.is_leaf]


@dataclass(frozen=True)
class CodeChunk:
    """Chunk as handed to the persistence repository."""
    file_id: str
    codebase_id: str
    file_path: str
    content: str
    content_hash: str
    start_line: int
    end_line: int
    chunk_type: str
    language: Language
    symbols: list[str] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    token_count: int = 0
    enriched_content: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class CodeEmbedding:
    chunk_id: str
    codebase_id: str
    embedding: list[float]
    model: str


@dataclass(frozen=True)
class SourceFile:
    """Raw file content handed to the indexing pipeline."""
    path: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def extension(self) -> str:
        name = self.path.rsplit("/", 1)[-1]
        if "." not in name:
            return ""
        return name.rsplit(".", 1)[-1].lower()

    @property
    def language(self) -> Language:
        return Language.from_extension(self.extension)


@dataclass(frozen=True)
class EnrichedChunk:
    original_chunk: CodeChunk
    enriched_content: str


@dataclass(frozen=True)
class IntegrityLeaf:
    id: str
    hash: str
    file_path: str


@dataclass(frozen=True)
class IntegrityBranch:
    id: str
    hash: str
    left: IntegrityNode
    right: IntegrityNode


IntegrityNode = Union[IntegrityLeaf, IntegrityBranch]


@dataclass(frozen=True)
class IntegrityTree:
    root_hash: str
    root_node: IntegrityNode | None
    total_leaves: int


@dataclass(frozen=True)
class FlatIntegrityNode:
    """Integrity node annotated with its depth and position for storage."""
    node: IntegrityNode
    level: int
    position: int

    @property
    def is_leaf(self) -> bool:
        return isinstance(self.node, IntegrityLeaf)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.node.id,
            "hash": self.node.hash,
            "level": self.level,
            "position": self.position,
            "kind": "leaf" if self.is_leaf else "branch",
            "file_path": None,
            "left_id": None,
            "right_id": None,
        }
        if isinstance(self.node, IntegrityLeaf):
            record["file_path"] = self.node.file_path
        else:
            record["left_id"] = self.node.left.id
            record["right_id"] = self.node.right.id
        return record


@dataclass(frozen=True)
class SearchResult:
    """Chunk with its component and combined retrieval scores."""
    chunk: CodeChunk
    score: float
    vector_similarity: float = 0.0
    bm25_score: float = 0.0


@dataclass(frozen=True)
class SurroundingChunks:
    before: list[CodeChunk]
    after: list[CodeChunk]

    @property
    def total_chunks(self) -> int:
        return len(self.before) + len(self.after)

    @property
    def is_empty(self) -> bool:
        return not self.before and not self.after


@dataclass(frozen=True)
class ExpandedChunk:
    main_chunk: CodeChunk
    surrounding: SurroundingChunks
    full_context: str
    expanded_start_line: int
    expanded_end_line: int

    @property
    def line_count(self) -> int:
        return self.expanded_end_line - self.expanded_start_line + 1

    @property
    def has_expansion(self) -> bool:
        return not self.surrounding.is_empty
