"""
Application principale FastAPI.

Ce module assemble les composants de l'application: logging, middlewares, gestionnaires
d'erreurs, routes et métriques du service de thèmes natals.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug
- Ajouter les middlewares (request id, métriques)
- Monter les routers (santé, thèmes, métriques)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from astrochart.api.errors import install_error_handlers
from astrochart.api.routes_charts import router as charts_router
from astrochart.api.routes_health import router as health_router
from astrochart.app.metrics import PrometheusMiddleware, metrics_router
from astrochart.core.container import container
from astrochart.core.logging import setup_logging
from astrochart.middlewares.request_id import RequestIDMiddleware


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    await container.provider.aclose()


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Lit les paramètres d'exécution
    - Ajoute les middlewares de traçabilité et de mesure
    - Publie les routes de santé, de thèmes et de métriques
    """
    settings = container.settings
    setup_logging(debug=settings.APP_DEBUG, env=settings.APP_ENV)
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG, lifespan=_lifespan)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PrometheusMiddleware)
    install_error_handlers(app)
    app.include_router(health_router)
    app.include_router(charts_router)
    app.include_router(metrics_router)
    return app


app = create_app()
