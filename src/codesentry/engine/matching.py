from __future__ import annotations

import re

from codesentry.engine.types import MAX_CONFIDENCE, MIN_CONFIDENCE, Impact, Issue, Match
from codesentry.languages.registry import normalize_language
from codesentry.rules.base import ALL_LANGUAGES, Pattern, RuleCategory, RuleCollection

DEFAULT_MATCH_CONFIDENCE = 0.8

_SUB_CATEGORY_BONUS: dict[str, float] = {
    "security": 0.2,
    "performance": 0.1,
}

_IMPACT_BY_CATEGORY: dict[str, Impact] = {
    "naming_conventions": "readability",
    "function_complexity": "maintainability",
    "code_duplication": "maintainability",
    "error_handling": "reliability",
    "performance": "performance",
    "security": "security",
    "maintainability": "maintainability",
    "code_style": "readability",
    "documentation": "maintainability",
    # extended collection
    "sql_injection": "security",
    "xss": "security",
    "command_injection": "security",
    "insecure_crypto": "security",
    "insecure_deserialization": "security",
    "async_patterns": "reliability",
    "resource_management": "reliability",
    "debugging_leftovers": "readability",
    # framework collection
    "database_patterns": "performance",
    # language:csharp collection
    "csharp_security_rules": "security",
    "csharp_quality_rules": "maintainability",
    "csharp_modern_features": "modernization",
    "csharp_web_security": "security",
}

# OWASP Top 10 category keys ("A01_broken_access_control" ... "A10_...").
_OWASP_KEY = re.compile(r"^A\d{2}_")


def is_applicable(pattern: Pattern, language: str) -> bool:
    scope = pattern.language
    if isinstance(scope, str):
        scope_norm = normalize_language(scope)
        return scope_norm == ALL_LANGUAGES or scope_norm == normalize_language(language)
    lang = normalize_language(language)
    return ALL_LANGUAGES in scope or any(normalize_language(tag) == lang for tag in scope)


def find_line_matches(line: str, regex: re.Pattern[str], *, line_number: int = 1) -> list[Match]:
    """
    Return every non-overlapping match of `regex` in a single line.

    Pure: nothing is carried over between calls. Zero-width matches are
    dropped since they carry no text to report.
    """

    matches: list[Match] = []
    for m in regex.finditer(line):
        if not m.group(0):
            continue
        matches.append(
            Match(
                line=line_number,
                column=m.start() + 1,
                text=m.group(0),
                confidence=DEFAULT_MATCH_CONFIDENCE,
            )
        )
    return matches


def find_matches(code: str, pattern: Pattern) -> list[Match]:
    """Scan `code` line by line; patterns never match across line boundaries."""

    matches: list[Match] = []
    for idx, raw in enumerate(code.split("\n"), start=1):
        matches.extend(find_line_matches(raw.rstrip("\r"), pattern.regex, line_number=idx))
    return matches


def calculate_confidence(match: Match, pattern: Pattern) -> float:
    confidence = match.confidence + _SUB_CATEGORY_BONUS.get(pattern.sub_category.lower(), 0.0)
    return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence)), 2)


def assess_impact(category_key: str) -> Impact:
    impact = _IMPACT_BY_CATEGORY.get(category_key)
    if impact is not None:
        return impact
    if _OWASP_KEY.match(category_key):
        return "security"
    return "general"


def analyze_with_rule_collection(code: str, language: str, collection: RuleCollection) -> list[Issue]:
    """
    Run every applicable pattern of `collection` against `code`.

    Emits one issue per match, in collection order (category, then pattern,
    then position).
    """

    issues: list[Issue] = []
    for category in collection.iter_categories():
        for pattern in category.patterns:
            if not is_applicable(pattern, language):
                continue
            for match in find_matches(code, pattern):
                issues.append(_issue_for(collection, category, pattern, match))
    return issues


def _issue_for(collection: RuleCollection, category: RuleCategory, pattern: Pattern, match: Match) -> Issue:
    return Issue(
        source=collection.name,
        category=category.title,
        severity=category.severity,
        line=match.line,
        column=match.column,
        message=f"{category.title}: {pattern.description}",
        confidence=calculate_confidence(match, pattern),
        sub_category=pattern.sub_category,
        category_key=category.key,
        impact=assess_impact(category.key),
        kind=collection.kind,
        fix=pattern.fix,
        example=pattern.example,
        description=pattern.description,
        cwe=category.cwe,
    )
