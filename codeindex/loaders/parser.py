from __future__ import annotations

"""Language-aware parsing of source files into line-addressed chunks."""

from dataclasses import dataclass, field

from codeindex.loaders.chunking import Chunker
from codeindex.loaders.imports import extract_imports
from codeindex.loaders.segmenter import extract_symbols
from codeindex.rag.tokens import TokenEstimator
from codeindex.rag.types import ChunkingStrategy, Language, ParsedChunk


def file_extension(file_path: str) -> str:
    name = file_path.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


@dataclass
class CodeParser:
    """Combine declaration-aware chunking with symbol and import extraction."""
    estimator: TokenEstimator
    chunker: Chunker | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.chunker is None:
            self.chunker = Chunker(ChunkingStrategy.CODE_STRUCTURE, self.estimator)

    def parse_code(self, code: str, file_path: str, max_tokens: int) -> list[ParsedChunk]:
        extension = file_extension(file_path)
        language = Language.from_extension(extension)
        imports = extract_imports(code, extension)
        symbols = extract_symbols(code, language)

        parsed: list[ParsedChunk] = []
        for chunk in self.chunker.chunk_code(code, max_tokens, language):
            start_line = code.count("\n", 0, chunk.start_index) + 1
            end_line = start_line + chunk.content.count("\n")
            contained = [
                symbol for symbol in symbols if start_line <= symbol.start_line <= end_line
            ]
            parsed.append(
                ParsedChunk(
                    content=chunk.content,
                    start_line=start_line,
                    end_line=end_line,
                    type=contained[0].kind.value if contained else "block",
                    symbols=[symbol.name for symbol in contained],
                    imports=list(imports),
                    token_count=chunk.token_count,
                )
            )
        return parsed
