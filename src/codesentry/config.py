from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, cast

from codesentry.engine.types import IssueKind
from codesentry.languages.registry import DEFAULT_LANGUAGE, is_known_language, normalize_language


class ConfigError(ValueError):
    """Raised when a CodeSentry configuration file is invalid."""


BUILTIN_SOURCES: tuple[str, ...] = ("core", "extended", "framework", "language:csharp", "owasp")
_SOURCE_KINDS = {"quality", "security"}


@dataclass(frozen=True, slots=True)
class RulesConfig:
    sources: tuple[str, ...] = BUILTIN_SOURCES
    # name -> path of additional JSON rule sources
    extra: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    extra_kinds: Mapping[str, IssueKind] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    complexity_high: int = 10
    complexity_critical: int = 15
    function_length: int = 100
    nesting_depth: int = 6
    duplication_ratio: float = 0.1
    comment_ratio: float = 0.05
    comment_min_lines: int = 50


@dataclass(frozen=True, slots=True)
class GitHubConfig:
    max_comments: int = 50
    count_hunk_headers: bool = False


@dataclass(frozen=True, slots=True)
class LintersConfig:
    eslint: bool = False
    flake8: bool = False


@dataclass(frozen=True, slots=True)
class CodeSentryConfig:
    default_language: str = DEFAULT_LANGUAGE
    rules: RulesConfig = field(default_factory=RulesConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    linters: LintersConfig = field(default_factory=LintersConfig)
    project_dir: Path = field(default_factory=lambda: Path("."))


def load_config(project_dir: Path | str = ".") -> CodeSentryConfig:
    """
    Load CodeSentry configuration from `pyproject.toml` within `project_dir`.

    If no file / no `[tool.codesentry]` table exists, returns defaults.
    """

    project_dir_path = Path(project_dir)
    pyproject_path = project_dir_path / "pyproject.toml"
    if not pyproject_path.exists():
        return CodeSentryConfig(project_dir=project_dir_path)

    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {pyproject_path}: {exc}") from exc

    tool_table = data.get("tool", {})
    if not isinstance(tool_table, dict):
        return CodeSentryConfig(project_dir=project_dir_path)

    table = tool_table.get("codesentry", {})
    if not isinstance(table, dict) or not table:
        return CodeSentryConfig(project_dir=project_dir_path)

    return parse_config_table(table, project_dir=project_dir_path)


def parse_config_table(table: dict[str, Any], *, project_dir: Path) -> CodeSentryConfig:
    default_language = table.get("default-language", table.get("default_language", DEFAULT_LANGUAGE))
    if not isinstance(default_language, str) or not default_language.strip():
        raise ConfigError("`tool.codesentry.default-language` must be a non-empty string.")
    if not is_known_language(default_language):
        raise ConfigError(f"`tool.codesentry.default-language` is not a supported language: {default_language!r}.")

    return CodeSentryConfig(
        default_language=normalize_language(default_language),
        rules=_parse_rules_config(table.get("rules", {})),
        metrics=_parse_metrics_config(table.get("metrics", {})),
        github=_parse_github_config(table.get("github", {})),
        linters=_parse_linters_config(table.get("linters", {})),
        project_dir=project_dir,
    )


def _get(table: dict[str, Any], key: str, default: Any) -> Any:
    # Accept both `kebab-case` and `snake_case` keys.
    return table.get(key, table.get(key.replace("-", "_"), default))


def _require_table(value: Any, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{field_name}` must be a table.")
    return cast(dict[str, Any], value)


def _parse_rules_config(value: Any) -> RulesConfig:
    table = _require_table(value, field_name="tool.codesentry.rules")

    sources_raw = table.get("sources", list(BUILTIN_SOURCES))
    if not isinstance(sources_raw, list) or any(not isinstance(v, str) for v in sources_raw):
        raise ConfigError("`tool.codesentry.rules.sources` must be a list of strings.")
    sources = tuple(v.strip() for v in sources_raw if v.strip())
    unknown = [s for s in sources if s not in BUILTIN_SOURCES]
    if unknown:
        valid = ", ".join(BUILTIN_SOURCES)
        raise ConfigError(f"`tool.codesentry.rules.sources` contains unknown source(s): {', '.join(unknown)}. ({valid})")

    extra_raw = _require_table(table.get("extra"), field_name="tool.codesentry.rules.extra")
    extra: dict[str, str] = {}
    for name, path in extra_raw.items():
        if not isinstance(path, str) or not path.strip():
            raise ConfigError(f"`tool.codesentry.rules.extra.{name}` must be a string path.")
        if name in BUILTIN_SOURCES:
            raise ConfigError(f"`tool.codesentry.rules.extra.{name}` conflicts with a built-in source name.")
        extra[str(name)] = path.strip()

    kinds_raw = _require_table(_get(table, "extra-kinds", None), field_name="tool.codesentry.rules.extra-kinds")
    extra_kinds: dict[str, IssueKind] = {}
    for name, kind in kinds_raw.items():
        if kind not in _SOURCE_KINDS:
            raise ConfigError(f"`tool.codesentry.rules.extra-kinds.{name}` must be one of: quality, security.")
        if name not in extra:
            raise ConfigError(f"`tool.codesentry.rules.extra-kinds.{name}` has no matching `extra` source.")
        extra_kinds[str(name)] = cast(IssueKind, kind)

    return RulesConfig(
        sources=sources,
        extra=MappingProxyType(extra),
        extra_kinds=MappingProxyType(extra_kinds),
    )


def _positive_int(table: dict[str, Any], key: str, default: int, *, section: str) -> int:
    value = _get(table, key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"`tool.codesentry.{section}.{key}` must be an integer > 0.")
    return value


def _ratio(table: dict[str, Any], key: str, default: float, *, section: str) -> float:
    value = _get(table, key, default)
    if not isinstance(value, int | float) or isinstance(value, bool) or not (0.0 <= float(value) <= 1.0):
        raise ConfigError(f"`tool.codesentry.{section}.{key}` must be a number between 0 and 1.")
    return float(value)


def _bool(table: dict[str, Any], key: str, default: bool, *, section: str) -> bool:
    value = _get(table, key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"`tool.codesentry.{section}.{key}` must be a boolean.")
    return value


def _parse_metrics_config(value: Any) -> MetricsConfig:
    table = _require_table(value, field_name="tool.codesentry.metrics")
    defaults = MetricsConfig()
    high = _positive_int(table, "complexity-high", defaults.complexity_high, section="metrics")
    critical = _positive_int(table, "complexity-critical", defaults.complexity_critical, section="metrics")
    if critical < high:
        raise ConfigError("`tool.codesentry.metrics.complexity-critical` must be >= `complexity-high`.")
    return MetricsConfig(
        complexity_high=high,
        complexity_critical=critical,
        function_length=_positive_int(table, "function-length", defaults.function_length, section="metrics"),
        nesting_depth=_positive_int(table, "nesting-depth", defaults.nesting_depth, section="metrics"),
        duplication_ratio=_ratio(table, "duplication-ratio", defaults.duplication_ratio, section="metrics"),
        comment_ratio=_ratio(table, "comment-ratio", defaults.comment_ratio, section="metrics"),
        comment_min_lines=_positive_int(table, "comment-min-lines", defaults.comment_min_lines, section="metrics"),
    )


def _parse_github_config(value: Any) -> GitHubConfig:
    table = _require_table(value, field_name="tool.codesentry.github")
    defaults = GitHubConfig()
    return GitHubConfig(
        max_comments=_positive_int(table, "max-comments", defaults.max_comments, section="github"),
        count_hunk_headers=_bool(table, "count-hunk-headers", defaults.count_hunk_headers, section="github"),
    )


def _parse_linters_config(value: Any) -> LintersConfig:
    table = _require_table(value, field_name="tool.codesentry.linters")
    return LintersConfig(
        eslint=_bool(table, "eslint", False, section="linters"),
        flake8=_bool(table, "flake8", False, section="linters"),
    )
