"""Tests pour les métriques Prometheus.

Ce module teste que les métriques Prometheus sont correctement exposées via l'endpoint /metrics.
"""

from fastapi.testclient import TestClient

from astrochart.app.main import app
from astrochart.app.metrics import normalize_route
from astrochart.core.http_constants import HTTP_OK


def test_metrics_exposed():
    """Teste que l'endpoint /metrics expose les métriques Prometheus."""
    c = TestClient(app)
    c.get("/health")
    r = c.get("/metrics")
    assert r.status_code == HTTP_OK
    assert b"http_requests_total" in r.content
    assert b"chart_requests_total" in r.content
    assert b"chart_rate_limit_blocks_total" in r.content


def test_routes_are_normalized():
    assert normalize_route("/v1/charts/natal:0123abcd") == "/v1/charts/{fingerprint}"
    assert normalize_route("/v1/charts/assets/0123abcd.svg") == "/v1/charts/assets/{asset}"
    assert normalize_route("/v1/charts/natal") == "/v1/charts/natal"
