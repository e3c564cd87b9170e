from __future__ import annotations

import json
import logging
import random
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from hashlib import sha1
from typing import Any

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"

_GITHUB_GET_MAX_ATTEMPTS = 4
_GITHUB_POST_MAX_ATTEMPTS = 3
_GITHUB_RETRY_BACKOFF_BASE_SECONDS = 0.5
_GITHUB_RETRY_BACKOFF_CAP_SECONDS = 8.0

_MARKER_PREFIX = "codesentry:v1"


def _is_retryable_http_status(code: int) -> bool:
    return code == 429 or 500 <= code < 600


def _retry_sleep_seconds(attempt: int) -> float:
    """
    Exponential backoff delay with jitter.

    attempt=0 is the first retry after the initial failure.
    """

    upper = min(_GITHUB_RETRY_BACKOFF_CAP_SECONDS, _GITHUB_RETRY_BACKOFF_BASE_SECONDS * (2**attempt))
    # "Equal jitter": sleep in [upper/2, upper]
    return float((upper / 2.0) + random.uniform(0.0, upper / 2.0))


def _sleep_before_retry(attempt: int) -> None:
    time.sleep(_retry_sleep_seconds(attempt))


def _close_quietly(exc: urllib.error.HTTPError) -> None:
    try:
        exc.close()
    except OSError:
        pass


def _urlopen_json_with_retry(req: urllib.request.Request, *, timeout: int, max_attempts: int) -> object:
    """Read and decode JSON from an idempotent (GET) request, with retries."""

    for attempt in range(max_attempts):
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read()
            return json.loads(raw.decode("utf-8"))
        except urllib.error.HTTPError as exc:
            _close_quietly(exc)
            if _is_retryable_http_status(int(exc.code)) and attempt < max_attempts - 1:
                _sleep_before_retry(attempt)
                continue
            raise
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError, UnicodeDecodeError):
            if attempt < max_attempts - 1:
                _sleep_before_retry(attempt)
                continue
            raise
    raise RuntimeError("unreachable")


def _post_json_with_retry(
    url: str,
    payload: dict[str, Any],
    *,
    token: str,
    description: str,
    already_posted: Callable[[], bool],
) -> bool:
    """
    POST `payload`; retry only on 429/5xx responses.

    Before each retry `already_posted()` is consulted, since a POST that failed
    with a retryable status may still have been applied. Network errors are not
    retried.
    """

    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers=_github_headers(token),
        method="POST",
    )
    for attempt in range(_GITHUB_POST_MAX_ATTEMPTS):
        try:
            with urllib.request.urlopen(req, timeout=20) as resp:
                _ = resp.read()
            return True
        except urllib.error.HTTPError as exc:
            retryable = _is_retryable_http_status(int(exc.code))
            is_last_attempt = attempt >= _GITHUB_POST_MAX_ATTEMPTS - 1
            if retryable and not is_last_attempt:
                _close_quietly(exc)
                if already_posted():
                    return True
                _sleep_before_retry(attempt)
                continue

            try:
                msg = exc.read().decode("utf-8", errors="replace")
            except OSError:
                msg = str(exc)
            _close_quietly(exc)
            logger.warning("Failed to create %s (%s): %s", description, exc.code, msg)
            return False
        except (urllib.error.URLError, TimeoutError) as exc:
            logger.warning("Failed to create %s: %s", description, exc)
            return False

    return False


def review_comment_payload(*, body: str, commit_id: str, path: str, position: int) -> dict[str, Any]:
    return {
        "body": body,
        "commit_id": commit_id,
        "path": path,
        "position": int(position),
        "side": "RIGHT",
    }


class GitHubReviewSink:
    """Posts inline review comments and summary comments to one pull request."""

    def __init__(self, *, token: str, repository: str, pull_number: int, commit_id: str) -> None:
        self.token = token
        self.repository = repository
        self.pull_number = pull_number
        self.commit_id = commit_id

    @property
    def _review_comments_url(self) -> str:
        return f"{GITHUB_API}/repos/{self.repository}/pulls/{self.pull_number}/comments"

    @property
    def _issue_comments_url(self) -> str:
        return f"{GITHUB_API}/repos/{self.repository}/issues/{self.pull_number}/comments"

    def existing_keys(self) -> set[str]:
        """Marker keys of CodeSentry comments already on the PR (inline and summary)."""

        return _fetch_marker_keys(self._review_comments_url, self.token) | _fetch_marker_keys(
            self._issue_comments_url, self.token
        )

    def post_review_comment(self, *, path: str, position: int, body: str, key: str) -> bool:
        payload = review_comment_payload(body=body, commit_id=self.commit_id, path=path, position=position)
        return _post_json_with_retry(
            self._review_comments_url,
            payload,
            token=self.token,
            description=f"review comment for {path} (position {position})",
            already_posted=lambda: key in _fetch_marker_keys(self._review_comments_url, self.token),
        )

    def post_summary_comment(self, *, body: str, key: str) -> bool:
        return _post_json_with_retry(
            self._issue_comments_url,
            {"body": body},
            token=self.token,
            description="summary comment",
            already_posted=lambda: key in _fetch_marker_keys(self._issue_comments_url, self.token),
        )


def _fetch_marker_keys(base_url: str, token: str) -> set[str]:
    keys: set[str] = set()
    # Bounded paging; no Link-header parsing.
    for page in range(1, 11):
        req = urllib.request.Request(
            f"{base_url}?per_page=100&page={page}",
            headers=_github_headers(token),
            method="GET",
        )
        try:
            data = _urlopen_json_with_retry(req, timeout=15, max_attempts=_GITHUB_GET_MAX_ATTEMPTS)
        except (urllib.error.HTTPError, urllib.error.URLError, TimeoutError, json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Could not list existing comments at %s", base_url)
            return keys

        if not isinstance(data, list) or not data:
            break

        for item in data:
            body = item.get("body") if isinstance(item, dict) else None
            if not isinstance(body, str):
                continue
            key = extract_marker_key(body)
            if key:
                keys.add(key)

        if len(data) < 100:
            break

    return keys


def comment_key(*, path: str, line: int) -> str:
    digest = sha1(f"{path}\n{int(line)}".encode()).hexdigest()
    return digest[:12]


def summary_key(findings_fingerprint: str) -> str:
    return "summary-" + sha1(findings_fingerprint.encode()).hexdigest()[:12]


def comment_marker(*, key: str, path: str, line: int) -> str:
    return f"<!-- {_MARKER_PREFIX} key={key} path={path} line={int(line)} -->"


def summary_marker(*, key: str) -> str:
    return f"<!-- {_MARKER_PREFIX} key={key} -->"


def extract_marker_key(body: str) -> str | None:
    for line in body.splitlines():
        line = line.strip()
        if line.startswith(f"<!-- {_MARKER_PREFIX} ") and line.endswith("-->"):
            fields = _parse_marker_fields(line)
            key = fields.get("key")
            if key:
                return key
            path = fields.get("path")
            line_no = fields.get("line")
            if path and line_no:
                try:
                    return comment_key(path=path, line=int(line_no))
                except ValueError:
                    return None
    return None


def _parse_marker_fields(marker_line: str) -> dict[str, str]:
    """
    Parse `<!-- codesentry:v1 key=abc path=src/app.py line=12 -->` into a dict.

    Values must not contain spaces.
    """

    stripped = marker_line.strip()
    if stripped.startswith("<!--"):
        stripped = stripped[4:].strip()
    if stripped.endswith("-->"):
        stripped = stripped[:-3].strip()

    if not stripped.startswith(_MARKER_PREFIX):
        return {}

    out: dict[str, str] = {}
    for token in stripped.split()[1:]:
        if "=" not in token:
            continue
        k, v = token.split("=", 1)
        if k and v:
            out[k] = v
    return out


def _github_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "Content-Type": "application/json",
        "User-Agent": "codesentry",
        "X-GitHub-Api-Version": "2022-11-28",
    }
