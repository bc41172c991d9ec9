"""
Entités du domaine métier.

Ce module définit les modèles de données du pipeline de thème natal: requête de naissance (et son
empreinte de cache), planètes, points, maisons, maîtres de maisons, aspects et l'agrégat
`NatalChart`, ainsi que l'entrée persistée `CachedChartEntry`.
"""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from astrochart.domain.zodiac import AspectType, PlanetName, PointType, ZodiacSign

ImageFormat = Literal["svg", "png"]
ChartSource = Literal["cache", "network", "offline_cache"]

MAX_RANKED_ASPECTS = 20
DEFAULT_STALE_AFTER = timedelta(days=30)
DEFAULT_HOUSE_SYSTEM = "placidus"


def check_calendar_date(year: int, month: int, day: int) -> None:
    """Lève ValueError si la date n'existe pas (ex. 31 février)."""
    try:
        date(year, month, day)
    except ValueError as exc:
        raise ValueError(f"invalid birth date {year:04d}-{month:02d}-{day:02d}: {exc}") from exc


class BirthQuery(BaseModel):
    """Données de naissance pour le calcul d'un thème (valeur immuable)."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    tz_offset_hours: float = Field(..., ge=-14.0, le=14.0)
    house_system: str = DEFAULT_HOUSE_SYSTEM
    name: str | None = None
    place: str | None = None

    @model_validator(mode="after")
    def _existing_date(self) -> BirthQuery:
        check_calendar_date(self.year, self.month, self.day)
        return self

    def canonical(self) -> str:
        """Forme canonique utilisée pour l'empreinte.

        Les coordonnées sont arrondies à 4 décimales (~11 m) et le décalage horaire à la minute;
        `name` et `place` sont des libellés et n'en font pas partie.
        """
        offset_minutes = round(self.tz_offset_hours * 60)
        return "|".join(
            [
                f"{self.year:04d}-{self.month:02d}-{self.day:02d}",
                f"{self.hour:02d}:{self.minute:02d}",
                f"{round(self.latitude, 4):.4f}",
                f"{round(self.longitude, 4):.4f}",
                f"{offset_minutes:+d}",
                self.house_system.strip().lower(),
            ]
        )

    def fingerprint(self) -> str:
        """Clé de cache déterministe dérivée de la forme canonique."""
        digest = hashlib.sha256(self.canonical().encode("utf-8")).hexdigest()[:32]
        return f"natal:{digest}"


class Planet(BaseModel):
    """Position d'une planète dans le thème."""

    model_config = ConfigDict(frozen=True)

    name: PlanetName
    sign: ZodiacSign
    longitude: float = Field(..., ge=0.0, lt=360.0)
    house: int = Field(..., ge=1, le=12)
    retrograde: bool = False


class AstrologicalPoint(BaseModel):
    """Point non planétaire (nœuds, Lilith, angles)."""

    model_config = ConfigDict(frozen=True)

    point: PointType
    longitude: float = Field(..., ge=0.0, lt=360.0)
    sign: ZodiacSign
    house: int = Field(..., ge=1, le=12)

    @property
    def degree_in_sign(self) -> float:
        return self.longitude % 30.0


class House(BaseModel):
    """Maison astrologique (numéro, signe et longitude de la cuspide)."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=1, le=12)
    sign: ZodiacSign
    cusp: float = Field(..., ge=0.0, lt=360.0)


class Aspect(BaseModel):
    """Aspect entre deux participants (planète ou point)."""

    model_config = ConfigDict(frozen=True)

    first: str
    second: str
    type: AspectType
    orb: float = Field(..., ge=0.0)
    angle: float = Field(..., ge=0.0, le=180.0)

    def involves(self, body: str) -> bool:
        return body in (self.first, self.second)


class HouseRuler(BaseModel):
    """Maître traditionnel d'une maison et sa propre position."""

    model_config = ConfigDict(frozen=True)

    house: int = Field(..., ge=1, le=12)
    ruler: PlanetName
    ruler_sign: ZodiacSign
    ruler_house: int = Field(..., ge=1, le=12)
    ruler_longitude: float
    aspects: list[Aspect] = Field(default_factory=list)


class AssetReference(BaseModel):
    """Référence vers un visuel binaire stocké dans le cache d'assets."""

    model_config = ConfigDict(frozen=True)

    id: str
    format: ImageFormat


class NatalChart(BaseModel):
    """Agrégat validé d'un thème natal."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    house_system: str
    planets: list[Planet] = Field(..., min_length=10, max_length=10)
    points: list[AstrologicalPoint]
    houses: list[House] = Field(..., min_length=12, max_length=12)
    house_rulers: list[HouseRuler] = Field(..., min_length=12, max_length=12)
    aspects: list[Aspect] = Field(default_factory=list, max_length=MAX_RANKED_ASPECTS)
    # None lorsque le visuel n'a pas pu être obtenu (thème partiel mais valide).
    image_asset: AssetReference | None = None
    generated_at: datetime

    @property
    def image_asset_id(self) -> str | None:
        return self.image_asset.id if self.image_asset else None

    @property
    def image_format(self) -> str | None:
        return self.image_asset.format if self.image_asset else None

    @property
    def ascendant(self) -> AstrologicalPoint | None:
        return self.point(PointType.ASCENDANT)

    @property
    def midheaven(self) -> AstrologicalPoint | None:
        return self.point(PointType.MIDHEAVEN)

    def planet(self, name: PlanetName) -> Planet | None:
        return next((p for p in self.planets if p.name == name), None)

    def point(self, point_type: PointType) -> AstrologicalPoint | None:
        return next((p for p in self.points if p.point == point_type), None)

    def house_ruler(self, house: int) -> HouseRuler | None:
        return next((r for r in self.house_rulers if r.house == house), None)

    def with_image(self, asset: AssetReference | None) -> NatalChart:
        return self.model_copy(update={"image_asset": asset})


class CachedChartEntry(BaseModel):
    """Forme persistée d'un thème dans le cache."""

    fingerprint: str
    chart: NatalChart
    generated_at: datetime
    last_accessed_at: datetime
    image_asset_id: str | None = None
    image_format: ImageFormat | None = None

    @classmethod
    def from_chart(cls, chart: NatalChart, now: datetime) -> CachedChartEntry:
        return cls(
            fingerprint=chart.fingerprint,
            chart=chart,
            generated_at=chart.generated_at,
            last_accessed_at=now,
            image_asset_id=chart.image_asset_id,
            image_format=chart.image_format,
        )

    def age(self, now: datetime) -> timedelta:
        return now - self.generated_at

    def is_stale(self, now: datetime, max_age: timedelta = DEFAULT_STALE_AFTER) -> bool:
        """Signal informatif: ne déclenche ni suppression ni rafraîchissement."""
        return self.age(now) > max_age


class MonthlyUsage(BaseModel):
    """Consommation du mois calendaire courant (UTC)."""

    month: str
    request_count: int
    estimated_charts: int
    credits_consumed: int
    monthly_budget: int

    @property
    def credits_remaining(self) -> int:
        return max(0, self.monthly_budget - self.credits_consumed)
