"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du pipeline de thèmes natals (sources des thèmes,
appels fournisseur, retries, blocages du limiteur, échecs d'écriture en cache) et expose
`/metrics`.
"""

import re
import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Pipeline metrics
CHART_REQUESTS = Counter(
    "chart_requests_total",
    "Chart generation requests by outcome source",
    ["source"],
)
PROVIDER_CALLS = Counter(
    "chart_provider_calls_total",
    "Calls to the remote chart provider",
    ["call", "outcome"],
)
PROVIDER_RETRIES = Counter(
    "chart_provider_retries_total",
    "Retries scheduled for provider calls",
    ["call", "reason"],
)
PROVIDER_LATENCY = Histogram(
    "chart_provider_latency_seconds",
    "Latency of provider calls (all attempts included)",
    ["call"],
)
RATE_LIMIT_BLOCKS = Counter(
    "chart_rate_limit_blocks_total",
    "Chart requests refused by the local rate limiter",
)
CACHE_WRITE_FAILURES = Counter(
    "chart_cache_write_failures_total",
    "Charts returned without being cached",
)
ASSET_FAILURES = Counter(
    "chart_asset_failures_total",
    "Chart images that could not be fetched or stored",
    ["stage"],
)
ASSET_CACHE_BYTES = Gauge(
    "chart_asset_cache_bytes",
    "Total size of the chart image cache",
)

_FINGERPRINT_SEGMENT = re.compile(r"/natal:[0-9a-f]+")
_ASSET_SEGMENT = re.compile(r"/assets/[^/]+$")


def normalize_route(path: str) -> str:
    """Normalise un chemin pour garder des labels à faible cardinalité."""
    path = _FINGERPRINT_SEGMENT.sub("/{fingerprint}", path)
    return _ASSET_SEGMENT.sub("/assets/{asset}", path)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware Prometheus: comptage et latence des requêtes HTTP par route."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = normalize_route(request.scope.get("path", "unknown"))
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
