from __future__ import annotations

"""Segmentation and import extraction tests."""

from codeindex.loaders.imports import extract_imports
from codeindex.loaders.segmenter import (
    extract_lines,
    extract_logical_units,
    extract_paragraphs,
    extract_sentences,
    extract_symbols,
)
from codeindex.rag.types import Language, SymbolKind

SWIFT_SOURCE = """import Foundation

struct Point {
    var x: Int
    func length() -> Int {
        return x
    }
}

func helper() {
    print("hi")
}"""

PYTHON_SOURCE = """import os
from typing import Any


@decorator
def run(value):
    return value


class Worker:
    def go(self):
        pass
"""


def test_swift_units_follow_brace_depth() -> None:
    units = extract_logical_units(SWIFT_SOURCE, Language.SWIFT)

    assert [(unit.name, unit.start_line, unit.end_line) for unit in units] == [
        ("Point", 3, 8),
        ("helper", 10, 12),
    ]
    assert units[0].content.startswith("struct Point {")
    assert units[0].content.endswith("}")


def test_logical_units_default_to_swift() -> None:
    assert [unit.name for unit in extract_logical_units(SWIFT_SOURCE)] == ["Point", "helper"]


def test_swift_symbols_include_nested_declarations() -> None:
    symbols = extract_symbols(SWIFT_SOURCE, Language.SWIFT)

    assert [(symbol.name, symbol.kind, symbol.start_line, symbol.end_line) for symbol in symbols] == [
        ("Point", SymbolKind.STRUCT, 3, 8),
        ("length", SymbolKind.FUNCTION, 5, 5),
        ("helper", SymbolKind.FUNCTION, 10, 12),
    ]


def test_python_units_use_indentation_and_keep_decorators() -> None:
    units = extract_logical_units(PYTHON_SOURCE, Language.PYTHON)

    assert [(unit.name, unit.start_line, unit.end_line) for unit in units] == [
        ("run", 5, 7),
        ("Worker", 10, 12),
    ]
    assert units[0].content.startswith("@decorator")

    symbols = extract_symbols(PYTHON_SOURCE, Language.PYTHON)
    assert [(symbol.name, symbol.kind) for symbol in symbols] == [
        ("run", SymbolKind.FUNCTION),
        ("Worker", SymbolKind.CLASS),
        ("go", SymbolKind.FUNCTION),
    ]


def test_python_column_zero_comment_stays_inside_function() -> None:
    code = "def f():\n    a = 1\n# note\n    return a\n\n\ndef g():\n    pass\n"

    units = extract_logical_units(code, Language.PYTHON)

    assert [(unit.name, unit.start_line, unit.end_line) for unit in units] == [("f", 1, 4), ("g", 7, 8)]
    assert units[0].content.endswith("return a")
    assert [(symbol.name, symbol.end_line) for symbol in extract_symbols(code, Language.PYTHON)] == [
        ("f", 4),
        ("g", 8),
    ]


def test_python_trailing_comment_does_not_extend_unit() -> None:
    code = "def f():\n    return 1\n# about g\ndef g():\n    pass\n"

    units = extract_logical_units(code, Language.PYTHON)

    assert [(unit.name, unit.start_line, unit.end_line) for unit in units] == [("f", 1, 2), ("g", 4, 5)]


def test_python_decorator_survives_blank_line() -> None:
    code = "@cache\n\ndef load():\n    return 1\n"

    units = extract_logical_units(code, Language.PYTHON)

    assert [(unit.name, unit.start_line, unit.end_line) for unit in units] == [("load", 1, 4)]
    assert units[0].content.startswith("@cache")


def test_go_receivers_and_interfaces() -> None:
    code = (
        "type Handler interface {\n"
        "    Serve() error\n"
        "}\n"
        "\n"
        "func (s *Server) Start() error {\n"
        "    return nil\n"
        "}\n"
    )
    symbols = extract_symbols(code, Language.GO)

    assert [(symbol.name, symbol.kind) for symbol in symbols] == [
        ("Handler", SymbolKind.PROTOCOL),
        ("Start", SymbolKind.FUNCTION),
    ]


def test_unscanned_language_falls_back_to_paragraphs() -> None:
    code = "x <- 1\ny <- 2\n\nprint(x + y)\n"

    units = extract_logical_units(code, Language.R)

    assert [(unit.start_line, unit.end_line) for unit in units] == [(1, 2), (4, 4)]
    assert extract_symbols(code, Language.R) == []


def test_segmentation_never_fails_on_unbalanced_input() -> None:
    code = "class Broken {\n    func open() {\n"

    units = extract_logical_units(code, Language.SWIFT)

    assert len(units) == 1
    assert units[0].end_line == 3
    assert extract_logical_units("   \n", Language.SWIFT) == []


def test_text_spans_keep_offsets() -> None:
    text = "First one. Second one!\n\nThird para"

    paragraphs = extract_paragraphs(text)
    sentences = extract_sentences(text)
    lines = extract_lines(text)

    assert [span.text for span in paragraphs] == ["First one. Second one!", "Third para"]
    assert [span.text for span in sentences] == ["First one.", "Second one!", "Third para"]
    assert [span.text for span in lines] == ["First one. Second one!", "Third para"]
    for span in paragraphs + sentences + lines:
        assert text[span.start : span.end] == span.text


def test_extract_imports_per_extension() -> None:
    assert extract_imports("import Foundation\nimport UIKit\n", "swift") == ["Foundation", "UIKit"]
    assert extract_imports("import os\nfrom typing import Any\n", "py") == ["os", "typing"]
    assert extract_imports(
        "import React from 'react';\nconst _ = require(\"lodash\");\n", "js"
    ) == ["react", "lodash"]
    assert extract_imports("use std::collections::HashMap;\n", "rs") == ["std"]
    assert extract_imports("#include <stdio.h>\n#import <UIKit/UIKit.h>\n", "h") == ["stdio", "UIKit"]
    assert extract_imports('import "fmt"\n', ".go") == ["fmt"]
    assert extract_imports("anything", "txt") == []
