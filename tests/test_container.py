"""Tests pour les chemins de configuration du container.

Ce module vérifie le choix du backend de stockage (Redis, mémoire, repli mémoire) selon
`REDIS_URL`/`REQUIRE_REDIS` et la disponibilité de Redis.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest

from astrochart.core.container import Container
from astrochart.core.settings import Settings
from astrochart.infra.repositories import InMemoryChartRepo, RedisChartRepo
from tests.fakes import FakeRedis

REDIS_URL = "redis://localhost:6379/0"


def _settings(tmp_path: Any, **overrides: Any) -> Settings:
    return Settings(ASSET_CACHE_DIR=str(tmp_path / "assets"), **overrides)


def test_container_memory_path(tmp_path: Any) -> None:
    c = Container(_settings(tmp_path, REDIS_URL=None))
    assert c.storage_backend == "memory"
    assert isinstance(c.chart_repo, InMemoryChartRepo)
    assert c.chart_service.charts is c.chart_repo


def test_container_redis_path(tmp_path: Any) -> None:
    with patch("astrochart.core.container.redis.Redis.from_url", return_value=FakeRedis()):
        c = Container(_settings(tmp_path, REDIS_URL=REDIS_URL))
    assert c.storage_backend == "redis"
    assert isinstance(c.chart_repo, RedisChartRepo)


def test_container_unreachable_redis_falls_back_to_memory(tmp_path: Any) -> None:
    client = FakeRedis()
    with (
        patch.object(client, "ping", side_effect=ConnectionError("refused")),
        patch("astrochart.core.container.redis.Redis.from_url", return_value=client),
    ):
        c = Container(_settings(tmp_path, REDIS_URL=REDIS_URL))
    assert c.storage_backend == "memory-fallback"


def test_container_require_redis_raises(tmp_path: Any) -> None:
    with pytest.raises(RuntimeError):
        Container(_settings(tmp_path, REDIS_URL=None, REQUIRE_REDIS=True))
    with (
        patch(
            "astrochart.core.container.redis.Redis.from_url",
            side_effect=ConnectionError("refused"),
        ),
        pytest.raises(RuntimeError),
    ):
        Container(_settings(tmp_path, REDIS_URL=REDIS_URL, REQUIRE_REDIS=True))


def test_container_wires_settings(tmp_path: Any) -> None:
    c = Container(
        _settings(
            tmp_path,
            REDIS_URL=None,
            RL_MAX_REQ_PER_WINDOW=10,
            CHART_CACHE_STALE_DAYS=7,
            OFFLINE_MODE=True,
        )
    )
    assert c.rate_limiter.config.max_requests == 10
    assert c.chart_service.stale_after.days == 7
    assert c.connectivity.is_online() is False
