from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from codesentry import __version__
from codesentry.engine.detection import Analyzer
from codesentry.engine.types import AnalysisResult
from codesentry.reporters.json_reporter import envelope, quality_record, security_record, security_report

logger = logging.getLogger(__name__)

HEALTH_TEXT = "CodeSentry API is running"


class ReviewRequest(BaseModel):
    code: str | None = None
    language: str | None = None


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def create_app(analyzer: Analyzer) -> FastAPI:
    """
    Build the HTTP API around an already-loaded analyzer.

    The analyzer is shared read-only by all requests.
    """

    app = FastAPI(title="CodeSentry", version=__version__)
    app.state.analyzer = analyzer

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(_request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("rejected request body: %s", exc.errors())
        return _error(400, "Invalid request body")

    def _run(body: ReviewRequest, render: Callable[[AnalysisResult], Any], endpoint: str) -> Any:
        if body.code is None or not body.code.strip():
            return _error(400, "Missing or empty code")
        try:
            result = analyzer.analyze(body.code, body.language)
            return render(result)
        except Exception:
            logger.exception("Error in %s", endpoint)
            return _error(500, "Internal server error")

    @app.get("/", response_class=PlainTextResponse)
    def health() -> str:
        return HEALTH_TEXT

    @app.post("/review")
    def review(body: ReviewRequest) -> Any:
        return _run(body, envelope, "/review")

    @app.post("/review/quality")
    def review_quality(body: ReviewRequest) -> Any:
        return _run(body, lambda r: [quality_record(i) for i in r.quality_issues], "/review/quality")

    @app.post("/owasp-review")
    def owasp_review(body: ReviewRequest) -> Any:
        return _run(body, lambda r: [security_record(i) for i in r.security_issues], "/owasp-review")

    @app.post("/owasp-review/report")
    def owasp_report(body: ReviewRequest) -> Any:
        return _run(body, lambda r: security_report(r.security_issues), "/owasp-review/report")

    return app


def serve(analyzer: Analyzer, *, host: str = "127.0.0.1", port: int = 3000) -> None:
    import uvicorn

    logger.info("listening on http://%s:%d", host, port)
    uvicorn.run(create_app(analyzer), host=host, port=port, log_level="info")
