from __future__ import annotations

"""Per-language import extraction keyed by file extension."""

from typing import Callable


def _between(line: str, start: str, end: str) -> str | None:
    begin = line.find(start)
    if begin < 0:
        return None
    begin += len(start)
    finish = line.find(end, begin)
    if finish < 0:
        return None
    return line[begin:finish]


def _swift(line: str) -> str | None:
    if not line.startswith("import "):
        return None
    return line[len("import ") :].strip()


def _objective_c(line: str) -> str | None:
    if not line.startswith(("#import ", "@import ")):
        return None
    cleaned = line[len("#import ") :].strip().strip('<>"')
    return cleaned.split("/")[0].replace(";", "").strip()


def _python(line: str) -> str | None:
    if line.startswith("import "):
        return line[len("import ") :].split(" as ")[0].split(",")[0].strip()
    if line.startswith("from ") and " import " in line:
        return line.split(" import ")[0][len("from ") :].strip()
    return None


def _javascript(line: str) -> str | None:
    for start, end in (("from '", "'"), ('from "', '"'), ("require('", "')"), ('require("', '")')):
        if start in line:
            found = _between(line, start, end)
            if found is not None:
                return found
    return None


def _java(line: str) -> str | None:
    if not line.startswith("import "):
        return None
    return line[len("import ") :].replace("static ", "").replace(";", "").strip()


def _go(line: str) -> str | None:
    if line.startswith("import "):
        line = line[len("import ") :].strip()
    if len(line) > 1 and line.startswith('"') and line.endswith('"'):
        return line.strip('"')
    return None


def _rust(line: str) -> str | None:
    if line.startswith("use "):
        return line[len("use ") :].replace(";", "").split("::")[0].strip()
    if line.startswith("extern crate "):
        return line[len("extern crate ") :].replace(";", "").strip()
    return None


def _csharp(line: str) -> str | None:
    if not line.startswith("using ") or "(" in line:
        return None
    return line[len("using ") :].replace(";", "").strip()


def _ruby(line: str) -> str | None:
    for prefix in ("require_relative ", "require "):
        if line.startswith(prefix):
            return line[len(prefix) :].strip().strip("'\"")
    return None


def _php(line: str) -> str | None:
    if not line.startswith("use "):
        return None
    return line[len("use ") :].replace(";", "").split(" as ")[0].strip()


def _c(line: str) -> str | None:
    if not line.startswith("#include "):
        return None
    header = line[len("#include ") :].strip().strip('<>"').split("/")[-1]
    for suffix in (".hpp", ".h"):
        if header.endswith(suffix):
            return header[: -len(suffix)]
    return header


def _header(line: str) -> str | None:
    return _objective_c(line) or _c(line)


def _scala(line: str) -> str | None:
    if not line.startswith("import "):
        return None
    return line[len("import ") :].split(".")[0].strip()


def _dart(line: str) -> str | None:
    if not line.startswith("import '"):
        return None
    found = _between(line, "import '", "'")
    if found is None:
        return None
    name = found.split("/")[-1]
    return name[: -len(".dart")] if name.endswith(".dart") else name


def _r(line: str) -> str | None:
    for prefix in ("library(", "require("):
        if line.startswith(prefix):
            return line[len(prefix) :].replace(")", "").strip("\"'")
    return None


def _lua(line: str) -> str | None:
    if "require(" not in line and 'require "' not in line and "require '" not in line:
        return None
    target = line[line.find("require") + len("require") :]
    return target.replace("(", "").replace(")", "").strip().strip("\"'").strip()


IMPORT_RULES: dict[str, Callable[[str], str | None]] = {
    "swift": _swift,
    "m": _objective_c,
    "mm": _objective_c,
    "h": _header,
    "py": _python,
    "js": _javascript,
    "jsx": _javascript,
    "ts": _javascript,
    "tsx": _javascript,
    "mjs": _javascript,
    "cjs": _javascript,
    "java": _java,
    "kt": _java,
    "kts": _java,
    "go": _go,
    "rs": _rust,
    "cs": _csharp,
    "rb": _ruby,
    "php": _php,
    "c": _c,
    "cpp": _c,
    "cc": _c,
    "cxx": _c,
    "hpp": _c,
    "scala": _scala,
    "dart": _dart,
    "r": _r,
    "lua": _lua,
}


def extract_imports(code: str, file_extension: str) -> list[str]:
    """Return imported module names in source order; unknown extensions yield []."""
    rule = IMPORT_RULES.get(file_extension.lower().lstrip("."))
    if rule is None:
        return []
    imports: list[str] = []
    for line in code.split("\n"):
        name = rule(line.strip())
        if name:
            imports.append(name)
    return imports
