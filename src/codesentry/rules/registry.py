from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from importlib.resources.abc import Traversable
from importlib.resources import files
from pathlib import Path
from types import MappingProxyType
from typing import Any

from codesentry.config import CodeSentryConfig
from codesentry.engine.types import Severity
from codesentry.languages.registry import is_known_language, normalize_language
from codesentry.rules.base import (
    ALL_LANGUAGES,
    LanguageScope,
    Pattern,
    RuleCategory,
    RuleCollection,
    SourceKind,
    count_rules,
    empty_collection,
)

logger = logging.getLogger(__name__)


class RuleSourceError(ValueError):
    """Raised when a rule source file is structurally invalid."""


class PatternError(ValueError):
    """Raised when a single pattern (or category header) cannot be used."""


@dataclass(frozen=True, slots=True)
class RuleSource:
    name: str
    location: Path | Traversable
    kind: SourceKind = "quality"
    language: str | None = None
    framework_scoped: bool = False

    def read_text(self) -> str:
        return self.location.read_text(encoding="utf-8")


def _builtin(filename: str) -> Traversable:
    return files("codesentry.rules") / "data" / filename


def builtin_sources() -> tuple[RuleSource, ...]:
    return (
        RuleSource("core", _builtin("core.json")),
        RuleSource("extended", _builtin("extended.json")),
        RuleSource("framework", _builtin("frameworks.json"), framework_scoped=True),
        RuleSource("language:csharp", _builtin("csharp.json"), language="csharp"),
        RuleSource("owasp", _builtin("owasp.json"), kind="security"),
    )


class RuleRepository:
    """
    Loads independently-sourced rule collections.

    Loading is fail-soft: a missing or malformed source yields an empty
    collection (and a warning) instead of an exception, so the other sources
    still load.
    """

    def __init__(self, sources: Sequence[RuleSource]) -> None:
        self._sources = tuple(sources)

    @classmethod
    def from_config(cls, config: CodeSentryConfig) -> RuleRepository:
        enabled = set(config.rules.sources)
        sources = [s for s in builtin_sources() if s.name in enabled]
        for name, raw_path in config.rules.extra.items():
            path = Path(raw_path)
            if not path.is_absolute():
                path = config.project_dir / path
            kind = config.rules.extra_kinds.get(name, "quality")
            sources.append(RuleSource(name, path, kind=kind))
        return cls(sources)

    @property
    def sources(self) -> tuple[RuleSource, ...]:
        return self._sources

    def load(self) -> tuple[RuleCollection, ...]:
        collections = tuple(load_source(source) for source in self._sources)
        _log_rules_stats(collections)
        return collections


def load_source(source: RuleSource) -> RuleCollection:
    try:
        raw = source.read_text()
        data = json.loads(raw)
        categories = parse_rule_source(data, source_name=source.name)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("rule source %r could not be read: %s", source.name, exc)
        return _empty_for(source)
    except json.JSONDecodeError as exc:
        logger.warning("rule source %r is not valid JSON: %s", source.name, exc)
        return _empty_for(source)
    except RuleSourceError as exc:
        logger.warning("rule source %r is malformed: %s", source.name, exc)
        return _empty_for(source)

    return RuleCollection(
        name=source.name,
        kind=source.kind,
        categories=MappingProxyType(categories),
        language=source.language,
        framework_scoped=source.framework_scoped,
    )


def _empty_for(source: RuleSource) -> RuleCollection:
    return empty_collection(
        source.name,
        kind=source.kind,
        language=source.language,
        framework_scoped=source.framework_scoped,
    )


def parse_rule_source(data: Any, *, source_name: str) -> dict[str, RuleCategory]:
    """
    Parse a decoded rule source into an ordered mapping of categories.

    The source maps category keys to `{title, severity, patterns: [...]}`. A
    value without `patterns` is treated as a group whose dict-valued entries are
    nested categories.
    """

    if not isinstance(data, dict):
        raise RuleSourceError("top-level value must be an object mapping category keys to categories")

    categories: dict[str, RuleCategory] = {}
    for key, value in data.items():
        if not isinstance(value, dict):
            # Tolerate metadata such as "version": "1.0".
            continue
        category = _parse_category_safely(str(key), value, source_name=source_name, inherited=Severity.MEDIUM)
        if category is not None:
            categories[str(key)] = category
    return categories


def _parse_category_safely(
    key: str,
    value: dict[str, Any],
    *,
    source_name: str,
    inherited: Severity,
) -> RuleCategory | None:
    try:
        return _parse_category(key, value, source_name=source_name, inherited=inherited)
    except PatternError as exc:
        logger.warning("rule source %r: skipping category %r: %s", source_name, key, exc)
        return None


def _parse_category(key: str, value: dict[str, Any], *, source_name: str, inherited: Severity) -> RuleCategory:
    raw_severity = value.get("severity")
    try:
        severity = Severity.parse(raw_severity) if raw_severity is not None else inherited
    except ValueError as exc:
        raise PatternError(str(exc)) from exc

    title = value.get("title")
    if not isinstance(title, str) or not title.strip():
        title = key.replace("_", " ").replace("-", " ").title()

    cwe_raw = value.get("cwe_mappings", value.get("cwe", []))
    if isinstance(cwe_raw, str):
        cwe_raw = [cwe_raw]
    if not isinstance(cwe_raw, list) or any(not isinstance(c, str) for c in cwe_raw):
        raise PatternError("`cwe_mappings` must be a list of strings")

    patterns_raw = value.get("patterns", [])
    if not isinstance(patterns_raw, list):
        raise RuleSourceError(f"category {key!r}: `patterns` must be a list")

    patterns: list[Pattern] = []
    for index, item in enumerate(patterns_raw):
        try:
            patterns.append(_parse_pattern(item, source_name=source_name))
        except PatternError as exc:
            logger.warning("rule source %r: skipping pattern #%d in %r: %s", source_name, index, key, exc)

    subcategories: dict[str, RuleCategory] = {}
    for child_key, child in value.items():
        if child_key in {"patterns", "cwe_mappings", "cwe"} or not isinstance(child, dict):
            continue
        parsed = _parse_category_safely(str(child_key), child, source_name=source_name, inherited=severity)
        if parsed is not None:
            subcategories[str(child_key)] = parsed

    return RuleCategory(
        key=key,
        title=title.strip(),
        severity=severity,
        patterns=tuple(patterns),
        subcategories=MappingProxyType(subcategories),
        cwe=tuple(cwe_raw),
    )


def _parse_pattern(item: Any, *, source_name: str) -> Pattern:
    if not isinstance(item, dict):
        raise PatternError("pattern entry must be an object")

    source = item.get("pattern")
    if not isinstance(source, str) or not source:
        raise PatternError("`pattern` must be a non-empty string")
    try:
        regex = re.compile(source, re.IGNORECASE)
    except re.error as exc:
        raise PatternError(f"invalid regular expression {source!r}: {exc}") from exc

    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        raise PatternError(f"pattern {source!r} has no description")

    return Pattern(
        source=source,
        regex=regex,
        language=_parse_language_scope(item.get("language", ALL_LANGUAGES)),
        sub_category=_optional_str(item.get("category")) or "general",
        description=description.strip(),
        example=_optional_str(item.get("example")),
        fix=_optional_str(item.get("fix")),
    )


def _parse_language_scope(value: Any) -> LanguageScope:
    if isinstance(value, str):
        tags: Iterable[Any] = [value]
    elif isinstance(value, list) and value:
        tags = value
    else:
        raise PatternError("`language` must be a string or a non-empty list of strings")

    normalized: set[str] = set()
    for tag in tags:
        if not isinstance(tag, str):
            raise PatternError("`language` entries must be strings")
        if tag.strip().lower() == ALL_LANGUAGES:
            return ALL_LANGUAGES
        if not is_known_language(tag):
            raise PatternError(f"unknown language {tag!r}")
        normalized.add(normalize_language(tag))

    if isinstance(value, str):
        return normalized.pop()
    return frozenset(normalized)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _log_rules_stats(collections: Iterable[RuleCollection]) -> None:
    total = 0
    for collection in collections:
        count = count_rules(collection)
        total += count
        logger.info("%s: %d rule(s)", collection.name, count)
    logger.info("total: %d rule(s)", total)
