from __future__ import annotations

"""Line-oriented segmentation of source code and prose."""

import re
from dataclasses import dataclass

from codeindex.rag.types import Language, LogicalUnit, Symbol, SymbolKind

_MODIFIERS = {
    "public",
    "private",
    "protected",
    "internal",
    "fileprivate",
    "open",
    "static",
    "final",
    "override",
    "export",
    "default",
    "async",
    "abstract",
    "sealed",
    "data",
    "inline",
    "virtual",
    "extern",
    "unsafe",
    "mutating",
    "nonisolated",
    "indirect",
    "partial",
    "readonly",
    "declare",
    "pub",
    "const",
    "typedef",
}

DECLARATION_KEYWORDS: dict[Language, dict[str, SymbolKind | None]] = {
    Language.SWIFT: {
        "class": SymbolKind.CLASS,
        "actor": SymbolKind.CLASS,
        "struct": SymbolKind.STRUCT,
        "protocol": SymbolKind.PROTOCOL,
        "enum": SymbolKind.ENUM,
        "func": SymbolKind.FUNCTION,
        "extension": None,
    },
    Language.GO: {
        "func": SymbolKind.FUNCTION,
        "type": SymbolKind.STRUCT,
    },
    Language.RUST: {
        "fn": SymbolKind.FUNCTION,
        "struct": SymbolKind.STRUCT,
        "enum": SymbolKind.ENUM,
        "trait": SymbolKind.PROTOCOL,
        "impl": None,
        "mod": None,
    },
    Language.JAVA: {
        "class": SymbolKind.CLASS,
        "interface": SymbolKind.PROTOCOL,
        "enum": SymbolKind.ENUM,
        "record": SymbolKind.STRUCT,
    },
    Language.KOTLIN: {
        "class": SymbolKind.CLASS,
        "object": SymbolKind.CLASS,
        "interface": SymbolKind.PROTOCOL,
        "enum": SymbolKind.ENUM,
        "fun": SymbolKind.FUNCTION,
    },
    Language.CSHARP: {
        "class": SymbolKind.CLASS,
        "struct": SymbolKind.STRUCT,
        "interface": SymbolKind.PROTOCOL,
        "enum": SymbolKind.ENUM,
        "record": SymbolKind.STRUCT,
        "namespace": None,
    },
    Language.JAVASCRIPT: {
        "function": SymbolKind.FUNCTION,
        "function*": SymbolKind.FUNCTION,
        "class": SymbolKind.CLASS,
    },
    Language.TYPESCRIPT: {
        "function": SymbolKind.FUNCTION,
        "function*": SymbolKind.FUNCTION,
        "class": SymbolKind.CLASS,
        "interface": SymbolKind.PROTOCOL,
        "enum": SymbolKind.ENUM,
        "namespace": None,
    },
    Language.C: {
        "struct": SymbolKind.STRUCT,
        "enum": SymbolKind.ENUM,
        "union": SymbolKind.STRUCT,
    },
    Language.CPP: {
        "class": SymbolKind.CLASS,
        "struct": SymbolKind.STRUCT,
        "enum": SymbolKind.ENUM,
        "union": SymbolKind.STRUCT,
        "namespace": None,
    },
    Language.OBJECTIVE_C: {
        "@interface": SymbolKind.CLASS,
        "@implementation": SymbolKind.CLASS,
        "@protocol": SymbolKind.PROTOCOL,
        "struct": SymbolKind.STRUCT,
        "enum": SymbolKind.ENUM,
    },
}

_PYTHON_DECLARATION_RE = re.compile(r"^(?P<indent>[ \t]*)(?:async[ \t]+)?(?P<keyword>def|class)[ \t]+(?P<name>\w+)")
_NAME_RE = re.compile(r"[A-Za-z_$][\w$]*")
_C_FUNCTION_RE = re.compile(r"^[A-Za-z_][\w\s\*&:<>,]*?[\s\*&](?P<name>[A-Za-z_~][\w:~]*)\s*\([^;]*$")
_C_CONTROL_WORDS = {"if", "for", "while", "switch", "return", "else", "do", "case", "typedef"}
_COMMENT_PREFIXES = ("//", "/*", "*", "--")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n")


@dataclass(frozen=True)
class TextSpan:
    """Slice of a source text with its character offsets."""
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class _Declaration:
    keyword: str
    name: str
    kind: SymbolKind | None


def _parse_declaration(stripped: str, language: Language) -> _Declaration | None:
    table = DECLARATION_KEYWORDS.get(language)
    if not table or not stripped or stripped.startswith(_COMMENT_PREFIXES):
        return None
    words = stripped.split()
    position = 0
    for index, word in enumerate(words):
        base = word.split("<", 1)[0]
        if base in table:
            keyword = base
            position = index
            break
        if word in _MODIFIERS or word.startswith("pub(") or (word.startswith("@") and word not in table):
            continue
        return _parse_c_function(stripped, language)
    else:
        return None

    rest = " ".join(words[position + 1 :])
    if keyword == "enum" and rest.startswith(("class ", "struct ")):
        rest = rest.split(" ", 1)[1]
    if rest.startswith("("):
        closing = rest.find(")")
        rest = rest[closing + 1 :].lstrip() if closing >= 0 else ""
    match = _NAME_RE.match(rest)
    name = match.group(0) if match else keyword.lstrip("@")
    kind = table[keyword]
    if language == Language.GO and keyword == "type":
        kind = SymbolKind.PROTOCOL if " interface" in rest else SymbolKind.STRUCT
    return _Declaration(keyword=keyword, name=name, kind=kind)


def _parse_c_function(stripped: str, language: Language) -> _Declaration | None:
    if language not in {Language.C, Language.CPP}:
        return None
    if stripped.split()[0].split("(")[0] in _C_CONTROL_WORDS:
        return None
    match = _C_FUNCTION_RE.match(stripped)
    if not match:
        return None
    return _Declaration(keyword="function", name=match.group("name"), kind=SymbolKind.FUNCTION)


def _count_braces(line: str) -> tuple[int, int]:
    return line.count("{"), line.count("}")


@dataclass
class _OpenUnit:
    declaration: _Declaration
    start_line: int
    declaration_line: int
    lines: list[str]
    depth: int = 0
    seen_brace: bool = False


def _close(unit: _OpenUnit, end_line: int) -> tuple[LogicalUnit, _OpenUnit]:
    content = "\n".join(unit.lines[: end_line - unit.start_line + 1])
    logical = LogicalUnit(
        name=unit.declaration.name,
        content=content,
        start_line=unit.start_line,
        end_line=end_line,
    )
    return logical, unit


def _scan_braced_units(code: str, language: Language) -> list[tuple[LogicalUnit, _OpenUnit]]:
    """Collect top-level declarations whose body is delimited by braces."""
    units: list[tuple[LogicalUnit, _OpenUnit]] = []
    current: _OpenUnit | None = None
    lines = code.split("\n")
    for index, line in enumerate(lines):
        line_number = index + 1
        stripped = line.strip()

        if current is not None and not current.seen_brace:
            # Signature without a body yet: a blank line or a new declaration ends it.
            if not stripped or _parse_declaration(stripped, language) is not None:
                units.append(_close(current, line_number - 1))
                current = None

        if current is None:
            declaration = _parse_declaration(stripped, language)
            if declaration is None:
                continue
            opened, closed = _count_braces(line)
            current = _OpenUnit(
                declaration=declaration,
                start_line=line_number,
                declaration_line=line_number,
                lines=[line],
                depth=opened - closed,
                seen_brace=opened > 0,
            )
            ends_at_end_marker = declaration.keyword.startswith("@")
            if ends_at_end_marker:
                current.seen_brace = True
                current.depth = 1
            elif (current.seen_brace and current.depth <= 0) or (
                not current.seen_brace and stripped.endswith(";")
            ):
                units.append(_close(current, line_number))
                current = None
            continue

        current.lines.append(line)
        if current.declaration.keyword.startswith("@"):
            if stripped == "@end":
                units.append(_close(current, line_number))
                current = None
            continue
        opened, closed = _count_braces(line)
        if opened:
            current.seen_brace = True
        current.depth += opened - closed
        if current.seen_brace and current.depth <= 0:
            units.append(_close(current, line_number))
            current = None

    if current is not None:
        units.append(_close(current, len(lines)))
    return units


def _scan_python_units(code: str) -> list[tuple[LogicalUnit, _OpenUnit]]:
    """Collect top-level ``def``/``class`` blocks by indentation."""
    units: list[tuple[LogicalUnit, _OpenUnit]] = []
    lines = code.split("\n")
    current: _OpenUnit | None = None
    last_content_line = 0
    decorator_start: int | None = None

    for index, line in enumerate(lines):
        line_number = index + 1
        stripped = line.strip()
        top_level = bool(stripped) and not line[0].isspace()
        comment = stripped.startswith("#")

        if current is not None and top_level and not comment and not stripped.startswith((")", "]", "}")):
            units.append(_close(current, last_content_line))
            current = None

        if current is None:
            if not stripped:
                continue
            if top_level and stripped.startswith("@"):
                if decorator_start is None:
                    decorator_start = line_number
                continue
            match = _PYTHON_DECLARATION_RE.match(line)
            if top_level and match:
                keyword = match.group("keyword")
                start = decorator_start or line_number
                current = _OpenUnit(
                    declaration=_Declaration(
                        keyword=keyword,
                        name=match.group("name"),
                        kind=SymbolKind.CLASS if keyword == "class" else SymbolKind.FUNCTION,
                    ),
                    start_line=start,
                    declaration_line=line_number,
                    lines=lines[start - 1 : line_number],
                )
                last_content_line = line_number
            decorator_start = None
            continue

        current.lines.append(line)
        if stripped and not comment:
            last_content_line = line_number

    if current is not None:
        units.append(_close(current, last_content_line))
    return units


def _scan_units(code: str, language: Language) -> list[tuple[LogicalUnit, _OpenUnit]]:
    if language == Language.PYTHON:
        return _scan_python_units(code)
    return _scan_braced_units(code, language)


def has_declaration_scanner(language: Language) -> bool:
    return language == Language.PYTHON or language in DECLARATION_KEYWORDS


def extract_logical_units(code: str, language: Language | None = None) -> list[LogicalUnit]:
    """Return top-level declarations as balanced logical units.

    Languages without a declaration scanner fall back to blank-line
    paragraphs so callers always receive line-addressed units.
    """
    resolved = language or Language.SWIFT
    if not code.strip():
        return []
    if not has_declaration_scanner(resolved):
        return _paragraph_units(code)
    return [unit for unit, _ in _scan_units(code, resolved)]


def _paragraph_units(code: str) -> list[LogicalUnit]:
    units: list[LogicalUnit] = []
    for span in extract_paragraphs(code):
        start_line = code.count("\n", 0, span.start) + 1
        end_line = start_line + span.text.count("\n")
        first_line = span.text.split("\n", 1)[0].strip()
        units.append(
            LogicalUnit(
                name=first_line[:40],
                content=span.text,
                start_line=start_line,
                end_line=end_line,
            )
        )
    return units


def extract_symbols(code: str, language: Language) -> list[Symbol]:
    """Return named declarations at any nesting depth.

    Top-level declarations span their whole unit; nested ones are reported
    on their declaration line.
    """
    if not code.strip() or not has_declaration_scanner(language):
        return []
    unit_ends = {
        state.declaration_line: unit.end_line for unit, state in _scan_units(code, language)
    }
    symbols: list[Symbol] = []
    for index, line in enumerate(code.split("\n")):
        line_number = index + 1
        if language == Language.PYTHON:
            match = _PYTHON_DECLARATION_RE.match(line)
            if not match:
                continue
            declaration = _Declaration(
                keyword=match.group("keyword"),
                name=match.group("name"),
                kind=SymbolKind.CLASS if match.group("keyword") == "class" else SymbolKind.FUNCTION,
            )
        else:
            declaration = _parse_declaration(line.strip(), language)
        if declaration is None or declaration.kind is None:
            continue
        symbols.append(
            Symbol(
                name=declaration.name,
                kind=declaration.kind,
                start_line=line_number,
                end_line=unit_ends.get(line_number, line_number),
            )
        )
    return symbols


def extract_paragraphs(text: str, start: int = 0, end: int | None = None) -> list[TextSpan]:
    """Split text on blank lines, keeping offsets of the trimmed paragraphs."""
    stop = len(text) if end is None else end
    spans: list[TextSpan] = []
    cursor = start
    for match in _PARAGRAPH_BREAK_RE.finditer(text, start, stop):
        _append_trimmed(spans, text, cursor, match.start())
        cursor = match.end()
    _append_trimmed(spans, text, cursor, stop)
    return spans


def extract_sentences(text: str, terminators: str = ".!?", start: int = 0, end: int | None = None) -> list[TextSpan]:
    """Split ``text[start:end]`` after terminator characters followed by whitespace."""
    stop = len(text) if end is None else end
    pattern = re.compile(rf"(?<=[{re.escape(terminators)}])\s+")
    spans: list[TextSpan] = []
    cursor = start
    for match in pattern.finditer(text, start, stop):
        _append_trimmed(spans, text, cursor, match.start())
        cursor = match.end()
    _append_trimmed(spans, text, cursor, stop)
    return spans


def extract_lines(text: str, start: int = 0, end: int | None = None) -> list[TextSpan]:
    """Split ``text[start:end]`` into non-blank lines with offsets."""
    stop = len(text) if end is None else end
    spans: list[TextSpan] = []
    cursor = start
    while cursor < stop:
        newline = text.find("\n", cursor, stop)
        line_end = stop if newline < 0 else newline
        _append_trimmed(spans, text, cursor, line_end, strip_leading=False)
        cursor = line_end + 1
    return spans


def _append_trimmed(
    spans: list[TextSpan],
    text: str,
    start: int,
    end: int,
    strip_leading: bool = True,
) -> None:
    while strip_leading and start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if end > start and text[start:end].strip():
        spans.append(TextSpan(text=text[start:end], start=start, end=end))
