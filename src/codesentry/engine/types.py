from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

Impact = Literal[
    "readability",
    "maintainability",
    "reliability",
    "performance",
    "security",
    "modernization",
    "general",
]
IssueKind = Literal["quality", "security"]

MIN_CONFIDENCE = 0.30
MAX_CONFIDENCE = 0.95


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: object) -> Severity:
        """
        Parse a severity from rule/config text (case-insensitive).

        Raises ValueError for unknown values so bad data is caught where it is
        read, not later while sorting.
        """

        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise ValueError(f"severity must be a string, got {type(value).__name__}")
        normalized = value.strip().upper()
        if normalized == "WARNING":
            normalized = "MEDIUM"
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"unknown severity {value!r} (expected one of: {valid})") from None


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


@dataclass(frozen=True, slots=True)
class Match:
    line: int  # 1-based
    column: int  # 1-based
    text: str
    confidence: float = 0.8


@dataclass(frozen=True, slots=True)
class Issue:
    source: str
    category: str
    severity: Severity
    line: int  # 1-based
    column: int  # 1-based
    message: str
    confidence: float
    sub_category: str = "general"
    category_key: str = ""
    impact: Impact = "general"
    kind: IssueKind = "quality"
    fix: str | None = None
    example: str | None = None
    description: str | None = None
    cwe: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.severity, Severity):
            raise ValueError(f"Issue severity must be a Severity, got {self.severity!r}")
        if not (MIN_CONFIDENCE <= self.confidence <= MAX_CONFIDENCE):
            raise ValueError(f"Issue confidence {self.confidence!r} is outside [{MIN_CONFIDENCE}, {MAX_CONFIDENCE}]")
        if self.line < 1 or self.column < 1:
            raise ValueError(f"Issue location must be 1-based, got line={self.line} column={self.column}")


@dataclass(frozen=True, slots=True)
class Metrics:
    total_lines: int
    code_lines: int
    comment_lines: int
    cyclomatic_complexity: int
    average_lines_per_function: int
    max_nesting_depth: int
    function_count: int
    duplicated_lines: int
    comment_ratio: float


@dataclass(frozen=True, slots=True)
class SeverityBreakdown:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    language: str
    frameworks: tuple[str, ...]
    metrics: Metrics
    quality_issues: tuple[Issue, ...]
    security_issues: tuple[Issue, ...]
    issues: tuple[Issue, ...]
    rules_applied: int = 0


@dataclass(frozen=True, slots=True)
class FileReport:
    # Display path ("<stdin>" for piped input).
    path: str
    result: AnalysisResult
