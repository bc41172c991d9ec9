"""Dépendances partagées pour les routes de l'API.

Les routes reçoivent le service via `Depends(get_chart_service)`; les tests remplacent cette
dépendance par `app.dependency_overrides`.
"""

from astrochart.core.container import container
from astrochart.domain.services import NatalChartService


def get_chart_service() -> NatalChartService:
    return container.chart_service
