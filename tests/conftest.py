"""Configuration de test pour pytest avec gestion des chemins.

Ce module ajoute la racine du projet au sys.path, isole le cache disque des visuels dans un
répertoire temporaire et fournit les fixtures communes (horloge figée, fournisseur factice,
service assemblé).
"""

import os
import sys
import tempfile
from datetime import UTC, datetime

import pytest

# Ensure project root is on sys.path so that
# imports like `from astrochart...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Le conteneur global est construit à l'import: pas de Redis, cache disque jetable.
os.environ["REDIS_URL"] = ""
os.environ["REQUIRE_REDIS"] = "false"
os.environ.setdefault("ASSET_CACHE_DIR", tempfile.mkdtemp(prefix="astrochart-assets-"))

from astrochart.core.clock import FixedClock  # noqa: E402
from astrochart.domain.services import NatalChartService  # noqa: E402
from astrochart.infra.asset_store import FileAssetStore  # noqa: E402
from astrochart.infra.connectivity import StaticConnectivity  # noqa: E402
from astrochart.infra.rate_limit import RateLimitConfig, SlidingWindowRateLimiter  # noqa: E402
from astrochart.infra.repositories import InMemoryChartRepo  # noqa: E402
from tests.fakes import FakeProvider  # noqa: E402

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def chart_repo() -> InMemoryChartRepo:
    return InMemoryChartRepo(max_entries=10)


@pytest.fixture
def asset_store(tmp_path) -> FileAssetStore:
    return FileAssetStore(tmp_path / "assets")


@pytest.fixture
def rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(RateLimitConfig())


@pytest.fixture
def connectivity() -> StaticConnectivity:
    return StaticConnectivity(online=True)


@pytest.fixture
def service(provider, rate_limiter, chart_repo, asset_store, connectivity, clock):
    """Service complet branché sur des dépendances en mémoire."""
    return NatalChartService(
        provider=provider,
        rate_limiter=rate_limiter,
        chart_repo=chart_repo,
        asset_store=asset_store,
        connectivity=connectivity,
        clock=clock,
    )
