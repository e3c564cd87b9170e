from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

DEFAULT_LANGUAGE = "javascript"


@dataclass(frozen=True, slots=True)
class LanguageSpec:
    name: str
    extensions: tuple[str, ...]
    aliases: tuple[str, ...] = field(default=())


LANGUAGES: tuple[LanguageSpec, ...] = (
    LanguageSpec("javascript", (".js", ".jsx", ".mjs", ".cjs"), ("js", "node", "nodejs")),
    LanguageSpec("typescript", (".ts", ".tsx"), ("ts",)),
    LanguageSpec("python", (".py",), ("py", "python3")),
    LanguageSpec("java", (".java",)),
    LanguageSpec("csharp", (".cs",), ("c#", "cs", "c-sharp", "dotnet")),
    LanguageSpec("php", (".php",)),
    LanguageSpec("go", (".go",), ("golang",)),
    LanguageSpec("rust", (".rs",), ("rs",)),
    LanguageSpec("ruby", (".rb",), ("rb",)),
    LanguageSpec("kotlin", (".kt", ".kts"), ("kt",)),
    LanguageSpec("cpp", (".cpp", ".cc", ".cxx", ".hpp"), ("c++",)),
    LanguageSpec("c", (".c", ".h")),
)

_EXT_TO_LANG = {ext: spec.name for spec in LANGUAGES for ext in spec.extensions}
_ALIASES = {alias: spec.name for spec in LANGUAGES for alias in (spec.name, *spec.aliases)}

KNOWN_LANGUAGES: frozenset[str] = frozenset(spec.name for spec in LANGUAGES)


def normalize_language(value: str) -> str:
    """
    Return the canonical language tag for `value`.

    Unknown tags are returned lower-cased and stripped so callers can still
    compare them; use `is_known_language()` to validate.
    """

    key = value.strip().lower()
    return _ALIASES.get(key, key)


def is_known_language(value: str) -> bool:
    return normalize_language(value) in KNOWN_LANGUAGES


def detect_language_from_extension(path: PurePath | str) -> str | None:
    """
    Best-effort language detection based on file extension.

    Returns the canonical language name from `LANGUAGES` or None if unsupported.
    """

    return _EXT_TO_LANG.get(PurePath(path).suffix.lower())


def supported_extensions() -> set[str]:
    return set(_EXT_TO_LANG)


# Ordered content heuristics; the first matching signature wins.
_CONTENT_SIGNATURES: tuple[tuple[str, Callable[[str], bool]], ...] = (
    (
        "javascript",
        lambda code: "function" in code and ("var " in code or "let " in code or "const " in code),
    ),
    ("python", lambda code: "def " in code and "import " in code),
    # C# before Java: `private ` alone would claim most C# classes.
    ("csharp", lambda code: "using " in code and "namespace " in code),
    (
        "java",
        lambda code: "public class" in code or "private " in code or "public static void main" in code,
    ),
    ("php", lambda code: "<?php" in code),
    ("go", lambda code: "func " in code and "package " in code),
)


def detect_language(code: str, *, default: str = DEFAULT_LANGUAGE) -> str:
    """Classify a snippet by textual signatures, falling back to `default`."""

    for name, matches in _CONTENT_SIGNATURES:
        if matches(code):
            return name
    return normalize_language(default)


def resolve_language(
    code: str,
    *,
    hint: str | None = None,
    file_path: PurePath | str | None = None,
    default: str = DEFAULT_LANGUAGE,
) -> str:
    """
    Pick the effective language for an analysis call.

    A real file path is authoritative when its extension is known; otherwise a
    language hint wins over content sniffing.
    """

    if file_path:
        by_ext = detect_language_from_extension(file_path)
        if by_ext is not None:
            return by_ext
    if hint is not None and hint.strip():
        return normalize_language(hint)
    return detect_language(code, default=default)


# Specific import/annotation signatures only; generic keywords produce false positives.
_FRAMEWORK_SIGNATURES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("react", ("from 'react'", 'from "react"', "from react", "import React", "require('react')", 'require("react")')),
    ("django", ("from django", "import django")),
    ("express", ("express()", "require('express')", 'require("express")', "from 'express'", 'from "express"')),
    ("spring", ("@RestController", "@SpringBootApplication", "import org.springframework")),
    ("csharp-web", ("using Microsoft.AspNetCore", "using System.Web.Mvc", ": ControllerBase", ": Controller")),
)

_FRAMEWORK_EXTENSIONS: dict[str, str] = {
    ".jsx": "react",
    ".tsx": "react",
    ".cs": "csharp-web",
}

_DATABASE_MARKERS = (
    "select",
    "insert",
    "update",
    "delete",
    "query",
    "execute",
    "findone",
    "findmany",
    "user.objects",
    "model.find",
    "repository",
)


def detect_frameworks(code: str, file_path: PurePath | str | None = None) -> tuple[str, ...]:
    """
    Return the frameworks a snippet appears to use, in a stable order.

    Detection is best-effort: it checks import/require signatures in the text
    and file-extension conventions (e.g. `.tsx` implies React).
    """

    found: list[str] = []
    for name, signatures in _FRAMEWORK_SIGNATURES:
        if any(sig in code for sig in signatures):
            found.append(name)

    if file_path:
        by_ext = _FRAMEWORK_EXTENSIONS.get(PurePath(file_path).suffix.lower())
        if by_ext is not None and by_ext not in found:
            found.append(by_ext)

    return tuple(found)


def contains_database_code(code: str) -> bool:
    lowered = code.lower()
    return any(marker in lowered for marker in _DATABASE_MARKERS)
