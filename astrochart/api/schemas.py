# Schémas Pydantic exposés par l'API (requêtes et réponses).

from typing import Any

from pydantic import BaseModel, Field, model_validator

from astrochart.core.container import container
from astrochart.domain.entities import BirthQuery, ChartSource, NatalChart, check_calendar_date


class NatalChartRequest(BaseModel):
    """Requête de calcul d'un thème natal.

    Champs:
    - year/month/day/hour/minute: date et heure locales de naissance
    - latitude/longitude: coordonnées décimales
    - tz_offset_hours: décalage UTC en heures (ex. 2.0, -5.5)
    - house_system: système de maisons (`HOUSE_SYSTEM` de la configuration par défaut)
    - force_refresh: ignorer le cache (hors ligne, le cache reste servi)
    """

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    tz_offset_hours: float = Field(..., ge=-14.0, le=14.0)
    house_system: str = Field(default_factory=lambda: container.settings.HOUSE_SYSTEM)
    name: str | None = None
    place: str | None = None
    force_refresh: bool = False

    @model_validator(mode="after")
    def _existing_date(self) -> "NatalChartRequest":
        check_calendar_date(self.year, self.month, self.day)
        return self

    def to_query(self) -> BirthQuery:
        return BirthQuery(**self.model_dump(exclude={"force_refresh"}))


class WarningPayload(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ChartResponse(BaseModel):
    """Thème renvoyé, sa provenance (cache, network, offline_cache) et ses avertissements."""

    fingerprint: str
    source: ChartSource
    chart: NatalChart
    image_url: str | None = None
    stale: bool = False
    warnings: list[WarningPayload] = Field(default_factory=list)


class UsageResponse(BaseModel):
    """Consommation du mois courant et état du quota glissant."""

    month: str
    request_count: int
    estimated_charts: int
    credits_consumed: int
    credits_remaining: int
    monthly_budget: int
    can_generate: bool
    retry_after_seconds: float
