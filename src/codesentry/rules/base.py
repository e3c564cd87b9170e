from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from codesentry.engine.types import IssueKind, Severity

ALL_LANGUAGES = "all"

LanguageScope = str | frozenset[str]
SourceKind = IssueKind


@dataclass(frozen=True, slots=True)
class Pattern:
    """
    A single textual signature plus the metadata reported when it matches.

    `regex` is compiled once at load time; compiled patterns are stateless, so
    one instance is safely shared by every analysis call.
    """

    source: str
    regex: re.Pattern[str]
    language: LanguageScope
    sub_category: str
    description: str
    example: str | None = None
    fix: str | None = None


@dataclass(frozen=True, slots=True)
class RuleCategory:
    key: str
    title: str
    severity: Severity
    patterns: tuple[Pattern, ...] = ()
    subcategories: Mapping[str, RuleCategory] = field(default_factory=lambda: MappingProxyType({}))
    cwe: tuple[str, ...] = ()

    def walk(self) -> Iterator[RuleCategory]:
        """Yield this category and every nested sub-category, depth first."""

        yield self
        for child in self.subcategories.values():
            yield from child.walk()


@dataclass(frozen=True, slots=True)
class RuleCollection:
    name: str
    kind: SourceKind = "quality"
    categories: Mapping[str, RuleCategory] = field(default_factory=lambda: MappingProxyType({}))
    # Set for collections that only apply to one language (e.g. "language:csharp").
    language: str | None = None
    # Framework collections apply category-by-category to the detected frameworks.
    framework_scoped: bool = False

    def iter_categories(self) -> Iterator[RuleCategory]:
        for category in self.categories.values():
            yield from category.walk()

    def subset(self, keys: Iterable[str]) -> RuleCollection:
        """Return a view restricted to the given top-level category keys (in collection order)."""

        wanted = set(keys)
        selected = {k: v for k, v in self.categories.items() if k in wanted}
        return RuleCollection(
            name=self.name,
            kind=self.kind,
            categories=MappingProxyType(selected),
            language=self.language,
            framework_scoped=self.framework_scoped,
        )

    @property
    def is_empty(self) -> bool:
        return not self.categories


def count_rules(collection: RuleCollection) -> int:
    """Total number of patterns across all categories, nested ones included."""

    def _count(category: RuleCategory) -> int:
        return len(category.patterns) + sum(_count(child) for child in category.subcategories.values())

    return sum(_count(category) for category in collection.categories.values())


def empty_collection(
    name: str,
    *,
    kind: SourceKind = "quality",
    language: str | None = None,
    framework_scoped: bool = False,
) -> RuleCollection:
    return RuleCollection(name=name, kind=kind, language=language, framework_scoped=framework_scoped)
