from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from codesentry import __version__
from codesentry.engine.aggregation import severity_breakdown
from codesentry.engine.types import AnalysisResult, FileReport, Issue

ENGINE_VERSION = __version__


def quality_record(issue: Issue) -> dict[str, Any]:
    record: dict[str, Any] = {
        "line": issue.line,
        "message": issue.message,
        "severity": issue.severity.value,
        "category": issue.sub_category or "general",
    }
    if issue.fix:
        record["fix"] = issue.fix
    record["confidence"] = issue.confidence
    return record


def security_record(issue: Issue) -> dict[str, Any]:
    record: dict[str, Any] = {
        "category": issue.category,
        "line": issue.line,
        "message": issue.message,
        "severity": issue.severity.value,
        "description": issue.description or issue.message,
    }
    if issue.fix:
        record["fix"] = issue.fix
    record["confidence"] = issue.confidence
    if issue.cwe:
        record["cweMapping"] = list(issue.cwe)
    return record


# Advice per OWASP Top 10 category, keyed like the owasp rule source.
OWASP_RECOMMENDATIONS: Mapping[str, str] = MappingProxyType(
    {
        "A01_broken_access_control": "Enforce access control checks and validate permissions on every endpoint",
        "A02_cryptographic_failures": "Use strong cryptographic algorithms and keep keys out of the code",
        "A03_injection": "Use parameterized queries and validate or sanitize all user input",
        "A04_insecure_design": "Design security controls in from the start and apply secure design principles",
        "A05_security_misconfiguration": "Review and harden the security configuration of every component",
        "A06_vulnerable_components": "Keep dependencies up to date and scan them for known vulnerabilities",
        "A07_identification_failures": "Use robust authentication and secure session management",
        "A08_integrity_failures": "Verify the integrity of data and code before trusting it",
        "A09_logging_failures": "Log security-relevant events and monitor them",
        "A10_server_side_request_forgery": "Validate and filter URLs before the server requests them",
    }
)
DEFAULT_RECOMMENDATION = "Review and improve the security practices in this area"
MAX_RECOMMENDATIONS = 3


def _priority(count: int) -> str:
    if count > 3:
        return "HIGH"
    if count > 1:
        return "MEDIUM"
    return "LOW"


def security_recommendations(issues: Iterable[Issue]) -> list[dict[str, Any]]:
    """Advice for the most frequent security categories, most frequent first."""

    counts = Counter(i.category_key or i.category for i in issues if i.kind == "security")
    return [
        {
            "category": key,
            "count": count,
            "priority": _priority(count),
            "recommendation": OWASP_RECOMMENDATIONS.get(key, DEFAULT_RECOMMENDATION),
        }
        for key, count in counts.most_common(MAX_RECOMMENDATIONS)
    ]


def security_report(issues: Sequence[Issue], *, now: datetime | None = None) -> dict[str, Any]:
    vulnerabilities = [i for i in issues if i.kind == "security"]
    counts = severity_breakdown(vulnerabilities)
    analyzed_at = now or datetime.now(timezone.utc)
    return {
        "summary": {
            "total": len(vulnerabilities),
            "critical": counts.critical,
            "high": counts.high,
            "medium": counts.medium,
            "low": counts.low,
        },
        "vulnerabilities": [security_record(i) for i in vulnerabilities],
        "recommendations": security_recommendations(vulnerabilities),
        "metadata": {
            "analyzed_at": analyzed_at.isoformat(),
            "engine": "CodeSentry",
            "version": ENGINE_VERSION,
        },
    }


def issue_record(issue: Issue) -> dict[str, Any]:
    """Record for the unified list: the kind-specific record plus provenance."""

    base = security_record(issue) if issue.kind == "security" else quality_record(issue)
    base.update(
        {
            "column": issue.column,
            "type": issue.kind,
            "source": issue.source,
            "impact": issue.impact,
        }
    )
    return base


def envelope(result: AnalysisResult) -> dict[str, Any]:
    counts = severity_breakdown(result.issues)
    return {
        "summary": {
            "total_issues": len(result.issues),
            "quality_issues": sum(1 for i in result.issues if i.kind == "quality"),
            "security_issues": sum(1 for i in result.issues if i.kind == "security"),
            "by_severity": {
                "critical": counts.critical,
                "high": counts.high,
                "medium": counts.medium,
                "low": counts.low,
            },
        },
        "issues": [issue_record(i) for i in result.issues],
        "analysis_info": {
            "language": result.language,
            "rules_applied": result.rules_applied,
            "engine_version": ENGINE_VERSION,
        },
    }


def render_json(reports: Sequence[FileReport]) -> str:
    """
    A single report renders as the bare envelope; several files render as
    `{"tool": ..., "files": [{"path": ..., <envelope>}, ...]}`.
    """

    if len(reports) == 1:
        return json.dumps(envelope(reports[0].result), indent=2)

    payload = {
        "tool": {"name": "CodeSentry", "version": __version__},
        "files": [{"path": r.path, **envelope(r.result)} for r in reports],
    }
    return json.dumps(payload, indent=2)
