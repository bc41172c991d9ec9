"""Orchestration de l'obtention d'un thème natal.

Objectif du module
------------------
- Servir un thème depuis le cache quand c'est possible (même périmé, même hors ligne).
- Sinon: consommer le quota local, appeler le fournisseur (données et visuel en parallèle),
  mapper la réponse, stocker le visuel et le thème, renvoyer le résultat.
- Les échecs non fatals (visuel, écriture en cache) deviennent des avertissements.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog

from astrochart.app.metrics import (
    ASSET_CACHE_BYTES,
    ASSET_FAILURES,
    CACHE_WRITE_FAILURES,
    CHART_REQUESTS,
    RATE_LIMIT_BLOCKS,
)
from astrochart.core.clock import Clock, SystemClock
from astrochart.domain.entities import (
    DEFAULT_STALE_AFTER,
    AssetReference,
    BirthQuery,
    CachedChartEntry,
    ChartSource,
    MonthlyUsage,
    NatalChart,
)
from astrochart.domain.errors import (
    CacheWriteFailure,
    ChartPipelineError,
    ConnectivityRequired,
    PartialAssetFailure,
    RateLimited,
)
from astrochart.domain.mapper import map_chart
from astrochart.infra.asset_store import FileAssetStore
from astrochart.infra.connectivity import ConnectivityProbe, StaticConnectivity
from astrochart.infra.http_clients import ChartImage, ChartProviderClient
from astrochart.infra.rate_limit import SlidingWindowRateLimiter

log = structlog.get_logger(__name__)


def asset_id_for(fingerprint: str) -> str:
    """Identifiant de visuel dérivé de l'empreinte (sans le préfixe `natal:`)."""
    return fingerprint.split(":", 1)[-1]


@dataclass
class ChartOutcome:
    """Thème obtenu, sa provenance et les avertissements non fatals."""

    chart: NatalChart
    source: ChartSource
    warnings: list[ChartPipelineError] = field(default_factory=list)

    @property
    def from_cache(self) -> bool:
        return self.source != "network"


class NatalChartService:
    """Service métier d'acquisition et de mise en cache des thèmes natals.

    Responsabilités:
    - Lire/écrire le cache de thèmes (`chart_repo`) et le cache de visuels (`asset_store`).
    - Faire respecter le quota local (`rate_limiter`) avant tout appel réseau.
    - Appeler le fournisseur (`provider`) et mapper sa réponse en `NatalChart`.
    """

    def __init__(
        self,
        provider: ChartProviderClient,
        rate_limiter: SlidingWindowRateLimiter,
        chart_repo: Any,
        asset_store: FileAssetStore,
        connectivity: ConnectivityProbe | None = None,
        clock: Clock | None = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ):
        """Initialise le service avec ses dépendances.

        Paramètres:
        - provider: client du fournisseur distant (données + visuel).
        - rate_limiter: limiteur à fenêtre glissante, partagé par le processus.
        - chart_repo: cache de thèmes (InMemory ou Redis).
        - asset_store: cache disque des visuels.
        - connectivity: sonde réseau (en ligne par défaut).
        - clock: horloge UTC (système par défaut).
        - stale_after: âge au-delà duquel un thème est signalé périmé (et purgeable).
        """
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.charts = chart_repo
        self.assets = asset_store
        self.connectivity = connectivity or StaticConnectivity(True)
        self.clock = clock or SystemClock()
        self.stale_after = stale_after

    # ------------------------------------------------------------------ generation

    async def generate(self, query: BirthQuery, force_refresh: bool = False) -> ChartOutcome:
        """Renvoie le thème de `query`, depuis le cache ou le fournisseur.

        Raises:
            ConnectivityRequired: hors ligne sans thème en cache.
            RateLimited: quota local atteint (aucun appel réseau n'a été fait).
            ProviderError: échec de l'appel « données » après retries.
            MappingError: réponse fournisseur invalide (rien n'est mis en cache).
        """
        fingerprint = query.fingerprint()
        bound = log.bind(fingerprint=fingerprint, force_refresh=force_refresh)

        if not force_refresh:
            cached = await self._load_cached(fingerprint)
            if cached is not None:
                bound.info("chart_cache_hit")
                CHART_REQUESTS.labels(source="cache").inc()
                return ChartOutcome(chart=cached, source="cache")

        if not self.connectivity.is_online():
            cached = await self._load_cached(fingerprint)
            if cached is None:
                bound.warning("chart_offline_miss")
                raise ConnectivityRequired()
            bound.info("chart_offline_cache_hit")
            CHART_REQUESTS.labels(source="offline_cache").inc()
            return ChartOutcome(chart=cached, source="offline_cache")

        decision = await asyncio.to_thread(
            self.rate_limiter.acquire,
            self.clock.now(),
            units=self.rate_limiter.config.requests_per_chart,
        )
        if not decision.allowed:
            RATE_LIMIT_BLOCKS.inc()
            bound.info("chart_rate_limited", retry_after=decision.retry_after)
            raise RateLimited(decision.retry_after)

        raw, image, warnings = await self._fetch(query)
        chart = map_chart(raw, query, self.clock.now())

        if image is not None:
            asset = await self._store_image(fingerprint, image, warnings)
            if asset is not None:
                chart = chart.with_image(asset)

        await self._store_chart(chart, warnings)
        bound.info(
            "chart_generated",
            has_image=chart.image_asset is not None,
            warnings=[w.code for w in warnings],
        )
        CHART_REQUESTS.labels(source="network").inc()
        return ChartOutcome(chart=chart, source="network", warnings=warnings)

    async def generate_chart(self, query: BirthQuery, force_refresh: bool = False) -> NatalChart:
        outcome = await self.generate(query, force_refresh=force_refresh)
        return outcome.chart

    async def _fetch(
        self, query: BirthQuery
    ) -> tuple[dict[str, Any], ChartImage | None, list[ChartPipelineError]]:
        """Lance les deux appels en parallèle; l'échec « données » annule le visuel."""
        data_task = asyncio.create_task(self.provider.fetch_chart_data(query))
        image_task = asyncio.create_task(self.provider.fetch_chart_image(query))
        warnings: list[ChartPipelineError] = []
        try:
            raw = await data_task
        except BaseException:
            image_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await image_task
            raise

        try:
            image = await image_task
        except asyncio.CancelledError:
            image_task.cancel()
            raise
        except Exception as exc:
            ASSET_FAILURES.labels(stage="fetch").inc()
            log.warning("chart_image_fetch_failed", error=str(exc))
            warnings.append(
                PartialAssetFailure(f"Chart image unavailable: {exc}", {"stage": "fetch"})
            )
            image = None
        return raw, image, warnings

    async def _store_image(
        self,
        fingerprint: str,
        image: ChartImage,
        warnings: list[ChartPipelineError],
    ) -> AssetReference | None:
        asset_id = asset_id_for(fingerprint)
        try:
            asset = await asyncio.to_thread(
                self.assets.save_asset, asset_id, image.format, image.data
            )
            await asyncio.to_thread(self.assets.enforce_storage_limit)
        except (OSError, ValueError) as exc:
            ASSET_FAILURES.labels(stage="store").inc()
            log.warning("chart_image_store_failed", asset_id=asset_id, error=str(exc))
            warnings.append(
                PartialAssetFailure(f"Chart image could not be stored: {exc}", {"stage": "store"})
            )
            return None
        return asset

    async def _store_chart(self, chart: NatalChart, warnings: list[ChartPipelineError]) -> None:
        try:
            evicted = await asyncio.to_thread(self.charts.save, chart, self.clock.now())
        except Exception as exc:
            CACHE_WRITE_FAILURES.inc()
            log.warning("chart_cache_write_failed", fingerprint=chart.fingerprint, error=str(exc))
            warnings.append(CacheWriteFailure(f"Chart could not be cached: {exc}"))
            return
        await self._drop_assets(evicted)

    async def _load_cached(self, fingerprint: str) -> NatalChart | None:
        """Lecture du cache; une erreur de lecture est traitée comme une absence."""
        try:
            return await asyncio.to_thread(self.charts.load, fingerprint, self.clock.now())
        except Exception as exc:
            log.warning("chart_cache_read_failed", fingerprint=fingerprint, error=str(exc))
            return None

    async def _drop_assets(self, entries: list[CachedChartEntry]) -> None:
        for entry in entries:
            if not entry.image_asset_id or not entry.image_format:
                continue
            try:
                await asyncio.to_thread(
                    self.assets.delete_asset, entry.image_asset_id, entry.image_format
                )
            except (OSError, ValueError) as exc:
                log.warning(
                    "chart_asset_cleanup_failed", asset_id=entry.image_asset_id, error=str(exc)
                )

    # ------------------------------------------------------------------ cache helpers

    async def get_cached_chart(self, fingerprint: str) -> NatalChart | None:
        """Thème en cache pour une empreinte, sans appel réseau."""
        return await self._load_cached(fingerprint)

    def get_cached_entry(self, fingerprint: str) -> CachedChartEntry | None:
        return self.charts.get_entry(fingerprint)

    def is_stale(self, chart: NatalChart) -> bool:
        """Signal informatif: un thème périmé reste servi."""
        return self.clock.now() - chart.generated_at > self.stale_after

    async def clear_old_charts(self, max_age: timedelta | None = None) -> int:
        """Supprime les thèmes (et leurs visuels) générés il y a plus de `max_age`."""
        removed = await asyncio.to_thread(
            self.charts.clear_older_than, self.clock.now(), max_age or self.stale_after
        )
        await self._drop_assets(removed)
        log.info("chart_cache_pruned", removed=len(removed))
        return len(removed)

    def image_cache_size(self) -> int:
        size = self.assets.total_size()
        ASSET_CACHE_BYTES.set(size)
        return size

    def load_chart_image(self, asset_id: str, fmt: str) -> bytes | None:
        return self.assets.load_asset(asset_id, fmt)

    def has_chart_image(self, asset_id: str, fmt: str) -> bool:
        return self.assets.exists(asset_id, fmt)

    # ------------------------------------------------------------------ quota helpers

    def can_generate_chart(self) -> bool:
        return self.rate_limiter.can_make_request(self.clock.now()).allowed

    def retry_after_seconds(self) -> float:
        return self.rate_limiter.retry_after(self.clock.now())

    def monthly_usage(self) -> MonthlyUsage:
        return self.rate_limiter.monthly_usage(self.clock.now())
