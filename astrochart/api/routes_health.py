"""
Endpoint de santé du service de thèmes.

`/health` répond toujours 200: `status` passe à `degraded` hors ligne (seul le cache est servi)
et les champs détaillent le stockage, le quota glissant et la taille des caches.
"""

from fastapi import APIRouter, Depends

from astrochart.api.deps import get_chart_service
from astrochart.core.container import container
from astrochart.domain.services import NatalChartService

router = APIRouter(tags=["health"])


@router.get("/health")
def health(service: NatalChartService = Depends(get_chart_service)):
    online = service.connectivity.is_online()
    return {
        "status": "ok" if online else "degraded",
        "storage": container.storage_backend,
        "online": online,
        "can_generate": service.can_generate_chart(),
        "cached_charts": service.charts.count(),
        "image_cache_bytes": service.image_cache_size(),
    }
