"""Routes liées au calcul et à la consultation des thèmes natals.

Objectif du module
------------------
- Offrir des endpoints REST pour obtenir un thème à partir de données de naissance (cache ou
  fournisseur), le relire par empreinte, suivre le quota et servir les visuels en cache.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from astrochart.api.deps import get_chart_service
from astrochart.api.schemas import ChartResponse, NatalChartRequest, UsageResponse, WarningPayload
from astrochart.core.http_constants import HTTP_NOT_FOUND
from astrochart.domain.entities import NatalChart
from astrochart.domain.services import NatalChartService

router = APIRouter(prefix="/v1/charts", tags=["charts"])

_MEDIA_TYPES = {"svg": "image/svg+xml", "png": "image/png"}


def _image_url(chart: NatalChart) -> str | None:
    if chart.image_asset is None:
        return None
    return f"{router.prefix}/assets/{chart.image_asset.id}.{chart.image_asset.format}"


@router.post("/natal", response_model=ChartResponse)
async def create_natal_chart(
    payload: NatalChartRequest,
    service: NatalChartService = Depends(get_chart_service),
):
    """Renvoie le thème (cache si présent, sinon fournisseur) et sa provenance."""
    outcome = await service.generate(payload.to_query(), force_refresh=payload.force_refresh)
    return ChartResponse(
        fingerprint=outcome.chart.fingerprint,
        source=outcome.source,
        chart=outcome.chart,
        image_url=_image_url(outcome.chart),
        stale=service.is_stale(outcome.chart),
        warnings=[
            WarningPayload(code=w.code, message=w.message, details=w.details)
            for w in outcome.warnings
        ],
    )


@router.get("/usage", response_model=UsageResponse)
def get_usage(service: NatalChartService = Depends(get_chart_service)):
    """Consommation mensuelle et disponibilité immédiate du quota."""
    usage = service.monthly_usage()
    return UsageResponse(
        month=usage.month,
        request_count=usage.request_count,
        estimated_charts=usage.estimated_charts,
        credits_consumed=usage.credits_consumed,
        credits_remaining=usage.credits_remaining,
        monthly_budget=usage.monthly_budget,
        can_generate=service.can_generate_chart(),
        retry_after_seconds=service.retry_after_seconds(),
    )


@router.get("/assets/{asset_id}.{fmt}")
def get_chart_asset(
    asset_id: str,
    fmt: str,
    service: NatalChartService = Depends(get_chart_service),
):
    """Sert un visuel en cache (SVG ou PNG), sinon 404."""
    if fmt not in _MEDIA_TYPES:
        raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Asset not found")
    try:
        data = service.load_chart_image(asset_id, fmt)
    except ValueError:
        data = None
    if data is None:
        raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Asset not found")
    return Response(content=data, media_type=_MEDIA_TYPES[fmt])


@router.get("/{fingerprint}", response_model=ChartResponse)
async def get_cached_chart(
    fingerprint: str,
    service: NatalChartService = Depends(get_chart_service),
):
    """Récupère un thème en cache par empreinte, sinon 404 (aucun appel réseau)."""
    chart = await service.get_cached_chart(fingerprint)
    if chart is None:
        raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Chart not found")
    return ChartResponse(
        fingerprint=chart.fingerprint,
        source="cache",
        chart=chart,
        image_url=_image_url(chart),
        stale=service.is_stale(chart),
    )
