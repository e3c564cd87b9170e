from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePath

from codesentry.config import CodeSentryConfig
from codesentry.engine.aggregation import merge
from codesentry.engine.matching import analyze_with_rule_collection
from codesentry.engine.metrics import analyze_metrics, calculate_metrics
from codesentry.engine.types import AnalysisResult, Issue
from codesentry.languages.registry import contains_database_code, detect_frameworks, resolve_language
from codesentry.rules.base import RuleCollection, count_rules
from codesentry.rules.registry import RuleRepository

logger = logging.getLogger(__name__)

DATABASE_CATEGORY = "database_patterns"


@dataclass(frozen=True, slots=True)
class Analyzer:
    """
    Immutable analysis entry point: configuration plus loaded rule collections.

    Built once at startup and shared read-only by every analysis call. To pick
    up changed rule sources, build a new instance (`reload()`).
    """

    config: CodeSentryConfig
    collections: tuple[RuleCollection, ...]

    def reload(self) -> Analyzer:
        return build_analyzer(self.config)

    def collections_for(self, code: str, language: str, frameworks: Iterable[str]) -> tuple[RuleCollection, ...]:
        framework_set = tuple(frameworks)
        selected: list[RuleCollection] = []
        for collection in self.collections:
            if collection.is_empty:
                continue
            if collection.framework_scoped:
                keys = list(framework_set)
                if contains_database_code(code):
                    keys.append(DATABASE_CATEGORY)
                subset = collection.subset(keys)
                if not subset.is_empty:
                    selected.append(subset)
            elif collection.language is not None:
                # A language collection also applies when that language's web framework shows up
                # (e.g. "language:csharp" for "csharp-web").
                if collection.language == language or any(
                    fw.startswith(f"{collection.language}-") for fw in framework_set
                ):
                    selected.append(collection)
            else:
                selected.append(collection)
        return tuple(selected)

    def analyze(
        self,
        code: str,
        language: str | None = None,
        *,
        file_path: PurePath | str | None = None,
        extra_issues: Iterable[Issue] = (),
    ) -> AnalysisResult:
        effective = resolve_language(
            code,
            hint=language,
            file_path=file_path,
            default=self.config.default_language,
        )
        frameworks = detect_frameworks(code, file_path)
        applied = self.collections_for(code, effective, frameworks)

        quality: list[Issue] = []
        security: list[Issue] = []
        for collection in applied:
            found = analyze_with_rule_collection(code, effective, collection)
            (security if collection.kind == "security" else quality).extend(found)

        metrics = calculate_metrics(code)
        metric_issues = analyze_metrics(code, self.config.metrics, metrics=metrics)
        extra = list(extra_issues)

        logger.debug(
            "analyzed %d line(s) as %s (frameworks: %s) with %d collection(s)",
            metrics.total_lines,
            effective,
            ", ".join(frameworks) or "none",
            len(applied),
        )

        return AnalysisResult(
            language=effective,
            frameworks=frameworks,
            metrics=metrics,
            quality_issues=tuple(merge(quality, metric_issues, extra)),
            security_issues=tuple(merge(security)),
            issues=tuple(merge(quality, metric_issues, extra, security)),
            rules_applied=sum(count_rules(c) for c in applied),
        )

    def analyze_quality(self, code: str, language: str | None = None) -> tuple[Issue, ...]:
        return self.analyze(code, language).quality_issues

    def analyze_security(self, code: str, language: str | None = None) -> tuple[Issue, ...]:
        return self.analyze(code, language).security_issues

    def analyze_files(
        self,
        paths: Iterable[Path],
        *,
        workers: int | None = None,
        on_file_done: Callable[[Path], None] | None = None,
    ) -> list[tuple[Path, AnalysisResult]]:
        """Analyze files from disk; unreadable files are logged and skipped."""

        file_list = list(paths)
        effective_workers = workers or 1
        results: list[tuple[Path, AnalysisResult]] = []

        if effective_workers <= 1 or len(file_list) <= 1:
            for path in file_list:
                result = self._analyze_file(path)
                if result is not None:
                    results.append((path, result))
                if on_file_done is not None:
                    on_file_done(path)
            return results

        max_workers = min(effective_workers, len(file_list))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            for path, result in zip(file_list, executor.map(self._analyze_file, file_list), strict=True):
                if result is not None:
                    results.append((path, result))
                if on_file_done is not None:
                    on_file_done(path)
        return results

    def _analyze_file(self, path: Path) -> AnalysisResult | None:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("skipping %s: %s", path, exc)
            return None
        return self.analyze(text, file_path=path)


def build_analyzer(
    config: CodeSentryConfig | None = None,
    *,
    repository: RuleRepository | None = None,
) -> Analyzer:
    cfg = config or CodeSentryConfig()
    repo = repository or RuleRepository.from_config(cfg)
    return Analyzer(config=cfg, collections=repo.load())


def iter_source_files(root: Path, *, extensions: Iterable[str]) -> Iterator[Path]:
    """Yield files under `root` with a supported extension, skipping hidden and vendored directories."""

    wanted = {e.lower() for e in extensions}
    if root.is_file():
        yield root
        return
    for path in sorted(root.rglob("*")):
        rel_parts = path.relative_to(root).parts
        if any(part.startswith(".") or part in _SKIP_DIRS for part in rel_parts[:-1]):
            continue
        if path.is_file() and path.suffix.lower() in wanted:
            yield path


_SKIP_DIRS = frozenset({"node_modules", "venv", "__pycache__", "dist", "build", "bin", "obj"})
