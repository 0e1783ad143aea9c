from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from cellito.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
ANSWER_COUNT = Counter(
    "cellito_answers_total",
    "Answers returned by strategy",
    ["strategy"],
)
ANSWER_CONFIDENCE = Histogram(
    "cellito_answer_confidence",
    "Confidence of returned answers",
    buckets=(0, 20, 40, 60, 80, 95, 100),
)
WEB_SEARCHES = Counter(
    "cellito_web_searches_total",
    "Queries that triggered a web search",
)
INDEX_BUILDS = Counter(
    "cellito_index_builds_total",
    "Index build requests by outcome",
    ["outcome"],
)


def observe_answer(strategy: str, confidence: int, web_search_used: bool = False) -> None:
    if not settings.metrics_enabled:
        return
    ANSWER_COUNT.labels(strategy).inc()
    ANSWER_CONFIDENCE.observe(confidence)
    if web_search_used:
        WEB_SEARCHES.inc()


def observe_index_build(outcome: str) -> None:
    if not settings.metrics_enabled:
        return
    INDEX_BUILDS.labels(outcome).inc()


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
