"""
Conteneur d'injection de dépendances et configuration application.

Instancie les composants centraux (settings, cache de thèmes, cache de visuels, limiteur,
client fournisseur) et expose un singleton `container` utilisé par le reste de l'application.
"""

from datetime import timedelta

import redis

from astrochart.core.clock import SystemClock
from astrochart.core.settings import Settings, get_settings
from astrochart.domain.services import NatalChartService
from astrochart.infra.asset_store import FileAssetStore
from astrochart.infra.connectivity import StaticConnectivity
from astrochart.infra.http_clients import ChartProviderClient
from astrochart.infra.rate_limit import (
    InMemoryCounterStore,
    RateLimitConfig,
    RedisCounterStore,
    SlidingWindowRateLimiter,
)
from astrochart.infra.repositories import InMemoryChartRepo, RedisChartRepo
from astrochart.infra.retry import RetryPolicy


class Container:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.clock = SystemClock()
        self._init_stores()
        self.asset_store = FileAssetStore(
            self.settings.ASSET_CACHE_DIR, max_bytes=self.settings.ASSET_CACHE_MAX_BYTES
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            RateLimitConfig(
                max_requests=self.settings.RL_MAX_REQ_PER_WINDOW,
                window_seconds=self.settings.RL_WINDOW_SECONDS,
                requests_per_chart=self.settings.RL_REQUESTS_PER_CHART,
                monthly_budget=self.settings.MONTHLY_CREDIT_BUDGET,
            ),
            store=self.counter_store,
        )
        self.provider = ChartProviderClient(
            self.settings.PROVIDER_BASE_URL,
            self.settings.PROVIDER_API_KEY,
            data_path=self.settings.PROVIDER_DATA_PATH,
            image_path=self.settings.PROVIDER_IMAGE_PATH,
            image_format=self.settings.IMAGE_FORMAT,
            image_size=self.settings.IMAGE_SIZE,
            policy=RetryPolicy(
                connect_timeout=self.settings.PROVIDER_CONNECT_TIMEOUT_S,
                total_timeout=self.settings.PROVIDER_TOTAL_TIMEOUT_S,
                max_attempts=self.settings.PROVIDER_MAX_ATTEMPTS,
                base_delay=self.settings.PROVIDER_BACKOFF_BASE_S,
                max_delay=self.settings.PROVIDER_BACKOFF_MAX_S,
            ),
        )
        self.connectivity = StaticConnectivity(online=not self.settings.OFFLINE_MODE)
        self.chart_service = NatalChartService(
            provider=self.provider,
            rate_limiter=self.rate_limiter,
            chart_repo=self.chart_repo,
            asset_store=self.asset_store,
            connectivity=self.connectivity,
            clock=self.clock,
            stale_after=self.stale_after,
        )

    @property
    def stale_after(self) -> timedelta:
        return timedelta(days=self.settings.CHART_CACHE_STALE_DAYS)

    def _init_stores(self) -> None:
        """Redis si configuré et joignable, sinon mémoire (sauf si REQUIRE_REDIS)."""
        max_entries = self.settings.CHART_CACHE_MAX_ENTRIES
        if self.settings.REDIS_URL:
            try:
                client = redis.Redis.from_url(self.settings.REDIS_URL, decode_responses=True)
                client.ping()
                self.chart_repo = RedisChartRepo(client=client, max_entries=max_entries)
                self.counter_store = RedisCounterStore(client=client)
                self.storage_backend = "redis"
            except Exception as err:
                if self.settings.REQUIRE_REDIS:
                    raise RuntimeError("Redis required but unavailable") from err
                self.chart_repo = InMemoryChartRepo(max_entries=max_entries)
                self.counter_store = InMemoryCounterStore()
                self.storage_backend = "memory-fallback"
        else:
            if self.settings.REQUIRE_REDIS:
                raise RuntimeError("Redis required but REDIS_URL not set")
            self.chart_repo = InMemoryChartRepo(max_entries=max_entries)
            self.counter_store = InMemoryCounterStore()
            self.storage_backend = "memory"


container = Container()
