from __future__ import annotations

import pytest

from codesentry.config import CodeSentryConfig
from codesentry.engine.detection import Analyzer, build_analyzer


@pytest.fixture(scope="session")
def analyzer() -> Analyzer:
    return build_analyzer(CodeSentryConfig())
