# ============================================================
# Module : astrochart/domain/mapper.py
# Objet  : Conversion des enregistrements bruts du fournisseur en `NatalChart`.
# Invariants :
#  - Fonction pure: aucune E/S, aucune horloge (generated_at est fourni).
#  - Tout ou rien: le premier enregistrement invalide lève `MappingError`.
#  - Le Nœud Sud est toujours recalculé, jamais repris du fournisseur.
# ============================================================
"""Mapping des réponses fournisseur vers l'agrégat de domaine.

Format attendu (clés alternatives acceptées entre parenthèses)::

    {
      "planets": [{"name", "sign", "full_degree" (absolute_longitude),
                   "is_retro" (retrograde), "house"}],
      "houses":  [{"house" (index), "sign", "degree" (cusp_longitude)}],
      "aspects": [{"aspecting_planet" (first_body), "aspected_planet" (second_body),
                   "type" (aspect_type), "orb"}],
      "ascendant": float, "midheaven": float
    }
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from astrochart.domain.entities import (
    MAX_RANKED_ASPECTS,
    Aspect,
    AstrologicalPoint,
    BirthQuery,
    House,
    HouseRuler,
    NatalChart,
    Planet,
)
from astrochart.domain.errors import MappingError
from astrochart.domain.zodiac import (
    AspectType,
    PlanetName,
    PointType,
    ZodiacSign,
    angular_separation,
    opposite_house,
    opposite_longitude,
    ruler_of,
)

_PLANET_NAMES = {p.value.lower(): p for p in PlanetName}

_POINT_ALIASES: dict[str, PointType] = {
    "node": PointType.NORTH_NODE,
    "north node": PointType.NORTH_NODE,
    "true node": PointType.NORTH_NODE,
    "mean node": PointType.NORTH_NODE,
    "south node": PointType.SOUTH_NODE,
    "lilith": PointType.LILITH,
    "mean lilith": PointType.LILITH,
    "black moon": PointType.LILITH,
    "black moon lilith": PointType.LILITH,
    "ascendant": PointType.ASCENDANT,
    "asc": PointType.ASCENDANT,
    "midheaven": PointType.MIDHEAVEN,
    "mc": PointType.MIDHEAVEN,
    "medium coeli": PointType.MIDHEAVEN,
}

_SIGN_NAMES: dict[str, ZodiacSign] = {}
for _sign in ZodiacSign:
    _SIGN_NAMES[_sign.value.lower()] = _sign
    _SIGN_NAMES[_sign.value[:3].lower()] = _sign

_ASPECT_NAMES = {a.value.lower(): a for a in AspectType}
_ASPECT_NAMES.update(
    {
        "inconjunct": AspectType.QUINCUNX,
        "semi-sextile": AspectType.SEMISEXTILE,
        "semi-square": AspectType.SEMISQUARE,
        "sesqui-square": AspectType.SESQUISQUARE,
        "sesquiquadrate": AspectType.SESQUISQUARE,
    }
)

_TRUE_FLAGS = {"true", "yes", "y", "r", "1", "retrograde"}
_FALSE_FLAGS = {"false", "no", "n", "d", "0", "", "direct"}

HOUSE_COUNT = 12
ASCENDANT_HOUSE = 1
MIDHEAVEN_HOUSE = 10


def _normalize_name(raw: Any) -> str:
    return " ".join(str(raw).replace("_", " ").replace("-", " ").split()).lower()


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return None


def parse_sign(raw: Any, field: str) -> ZodiacSign:
    """Validate a sign string (full name or 3-letter abbreviation)."""
    if not isinstance(raw, str):
        raise MappingError(field, raw, "sign must be a string")
    sign = _SIGN_NAMES.get(raw.strip().lower())
    if sign is None:
        raise MappingError(field, raw, "unknown zodiac sign")
    return sign


def parse_longitude(raw: Any, field: str) -> float:
    """Validate an absolute longitude in [0, 360)."""
    if isinstance(raw, bool) or raw is None:
        raise MappingError(field, raw, "longitude must be numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError) as err:
        raise MappingError(field, raw, "longitude must be numeric") from err
    if not math.isfinite(value) or not 0.0 <= value < 360.0:
        raise MappingError(field, raw, "longitude outside [0, 360)")
    return value


def parse_house_number(raw: Any, field: str) -> int:
    """Validate a house number in [1, 12]."""
    if isinstance(raw, bool) or raw is None:
        raise MappingError(field, raw, "house must be an integer")
    try:
        value = float(raw)
    except (TypeError, ValueError) as err:
        raise MappingError(field, raw, "house must be an integer") from err
    if not value.is_integer() or not 1 <= int(value) <= HOUSE_COUNT:
        raise MappingError(field, raw, "house outside 1..12")
    return int(value)


def parse_retrograde(raw: Any, field: str) -> bool:
    """Parse the provider retrograde flag (bool, 0/1, "true"/"false", "R"/"D")."""
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        flag = raw.strip().lower()
        if flag in _TRUE_FLAGS:
            return True
        if flag in _FALSE_FLAGS:
            return False
    raise MappingError(field, raw, "unrecognised retrograde flag")


def parse_orb(raw: Any, field: str) -> float:
    if isinstance(raw, bool) or raw is None:
        raise MappingError(field, raw, "orb must be numeric")
    try:
        value = abs(float(raw))
    except (TypeError, ValueError) as err:
        raise MappingError(field, raw, "orb must be numeric") from err
    if not math.isfinite(value):
        raise MappingError(field, raw, "orb must be finite")
    return value


def resolve_body(raw: Any, field: str) -> PlanetName | PointType:
    """Resolve a raw body name to a planet or a special point."""
    if not isinstance(raw, str) or not raw.strip():
        raise MappingError(field, raw, "body name must be a non-empty string")
    name = _normalize_name(raw)
    if name in _PLANET_NAMES:
        return _PLANET_NAMES[name]
    if name in _POINT_ALIASES:
        return _POINT_ALIASES[name]
    raise MappingError(field, raw, "unknown planet or point")


def parse_aspect_type(raw: Any, field: str) -> AspectType:
    if not isinstance(raw, str):
        raise MappingError(field, raw, "aspect type must be a string")
    aspect_type = _ASPECT_NAMES.get(raw.strip().lower())
    if aspect_type is None:
        raise MappingError(field, raw, "unknown aspect type")
    return aspect_type


def _records(raw: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    records = raw.get(key)
    if not isinstance(records, list):
        raise MappingError(key, records, "expected a list of records")
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise MappingError(f"{key}[{index}]", record, "expected an object")
    return records


def south_node_from(north: AstrologicalPoint) -> AstrologicalPoint:
    """Derive the South Node from the North Node (opposite point)."""
    longitude = opposite_longitude(north.longitude)
    return AstrologicalPoint(
        point=PointType.SOUTH_NODE,
        longitude=longitude,
        sign=ZodiacSign.from_longitude(longitude),
        house=opposite_house(north.house),
    )


def map_bodies(
    records: list[Mapping[str, Any]],
) -> tuple[list[Planet], dict[PointType, AstrologicalPoint]]:
    """Map planet records; special points found in the same list are returned apart."""
    planets: dict[PlanetName, Planet] = {}
    points: dict[PointType, AstrologicalPoint] = {}

    for index, record in enumerate(records):
        prefix = f"planets[{index}]"
        body = resolve_body(record.get("name"), f"{prefix}.name")
        if body is PointType.SOUTH_NODE:
            # Recomputed from the North Node below.
            continue
        sign = parse_sign(record.get("sign"), f"{prefix}.sign")
        longitude = parse_longitude(
            _pick(record, "full_degree", "absolute_longitude", "longitude"),
            f"{prefix}.full_degree",
        )

        if isinstance(body, PlanetName):
            if body in planets:
                raise MappingError(f"{prefix}.name", record.get("name"), "duplicate planet")
            planets[body] = Planet(
                name=body,
                sign=sign,
                longitude=longitude,
                house=parse_house_number(record.get("house"), f"{prefix}.house"),
                retrograde=parse_retrograde(
                    _pick(record, "is_retro", "retrograde", "is_retrograde"),
                    f"{prefix}.is_retro",
                ),
            )
            continue

        if body in points:
            raise MappingError(f"{prefix}.name", record.get("name"), "duplicate point")
        if body is PointType.ASCENDANT:
            house = ASCENDANT_HOUSE
        elif body is PointType.MIDHEAVEN:
            house = MIDHEAVEN_HOUSE
        else:
            house = parse_house_number(record.get("house"), f"{prefix}.house")
        points[body] = AstrologicalPoint(point=body, longitude=longitude, sign=sign, house=house)

    missing = [p.value for p in PlanetName if p not in planets]
    if missing:
        raise MappingError("planets", missing, "missing planets")

    ordered = [planets[p] for p in PlanetName]
    return ordered, points


def map_houses(records: list[Mapping[str, Any]]) -> list[House]:
    houses: dict[int, House] = {}
    for index, record in enumerate(records):
        prefix = f"houses[{index}]"
        number = parse_house_number(_pick(record, "house", "index", "number"), f"{prefix}.house")
        # Le signe brut est validé, mais le signe retenu dérive de la cuspide.
        parse_sign(record.get("sign"), f"{prefix}.sign")
        cusp = parse_longitude(_pick(record, "degree", "cusp_longitude", "cusp"), f"{prefix}.degree")
        if number in houses:
            raise MappingError(f"{prefix}.house", number, "duplicate house")
        houses[number] = House(number=number, sign=ZodiacSign.from_longitude(cusp), cusp=cusp)

    if len(houses) != HOUSE_COUNT:
        missing = [n for n in range(1, HOUSE_COUNT + 1) if n not in houses]
        raise MappingError("houses", missing, "missing houses")
    return [houses[n] for n in range(1, HOUSE_COUNT + 1)]


def _angle_point(
    raw: Mapping[str, Any],
    key: str,
    point_type: PointType,
    house_number: int,
    houses: list[House],
) -> AstrologicalPoint:
    value = raw.get(key)
    if value is None:
        longitude = houses[house_number - 1].cusp
    else:
        longitude = parse_longitude(value, key)
    return AstrologicalPoint(
        point=point_type,
        longitude=longitude,
        sign=ZodiacSign.from_longitude(longitude),
        house=house_number,
    )


def rank_aspects(aspects: list[Aspect]) -> list[Aspect]:
    """Sort by orb (tightest first), ties broken by aspect-type priority."""
    return sorted(aspects, key=lambda a: (a.orb, a.type.priority))


def map_aspects(
    records: list[Mapping[str, Any]],
    longitudes: dict[str, float],
) -> list[Aspect]:
    """Map raw aspects, validating both participants against the mapped bodies."""
    aspects: list[Aspect] = []
    for index, record in enumerate(records):
        prefix = f"aspects[{index}]"
        participants: list[str] = []
        for key, aliases in (
            ("first", ("aspecting_planet", "first_body", "planet_1")),
            ("second", ("aspected_planet", "second_body", "planet_2")),
        ):
            field = f"{prefix}.{aliases[0]}"
            body = resolve_body(_pick(record, *aliases), field)
            if body.value not in longitudes:
                raise MappingError(field, body.value, f"{key} participant not in chart")
            participants.append(body.value)
        aspect_type = parse_aspect_type(_pick(record, "type", "aspect_type", "aspect"), f"{prefix}.type")
        aspects.append(
            Aspect(
                first=participants[0],
                second=participants[1],
                type=aspect_type,
                orb=parse_orb(record.get("orb"), f"{prefix}.orb"),
                angle=angular_separation(longitudes[participants[0]], longitudes[participants[1]]),
            )
        )
    return rank_aspects(aspects)


def compute_house_rulers(
    houses: list[House],
    planets: list[Planet],
    aspects: list[Aspect],
) -> list[HouseRuler]:
    by_name = {p.name: p for p in planets}
    rulers: list[HouseRuler] = []
    for house in houses:
        ruler_name = ruler_of(house.sign)
        ruler = by_name.get(ruler_name)
        if ruler is None:
            raise MappingError(f"house_rulers[{house.number}]", ruler_name.value, "ruler missing")
        rulers.append(
            HouseRuler(
                house=house.number,
                ruler=ruler_name,
                ruler_sign=ruler.sign,
                ruler_house=ruler.house,
                ruler_longitude=ruler.longitude,
                aspects=[a for a in aspects if a.involves(ruler_name.value)],
            )
        )
    return rulers


def map_chart(raw: Any, query: BirthQuery, generated_at: datetime) -> NatalChart:
    """Construit un `NatalChart` validé ou lève `MappingError`.

    Args:
        raw: Réponse JSON décodée de l'appel « données du thème ».
        query: Requête de naissance (fournit l'empreinte et le système de maisons).
        generated_at: Horodatage de génération (injecté pour rester pur).

    Returns:
        NatalChart: 10 planètes, 12 maisons, 12 maîtres, au plus 20 aspects classés.

    Raises:
        MappingError: au premier enregistrement invalide.
    """
    if not isinstance(raw, Mapping):
        raise MappingError("response", type(raw).__name__, "expected an object")
    status = raw.get("status")
    if status is not None and str(status).strip().lower() not in {"true", "ok", "success"}:
        raise MappingError("status", status, "provider returned a failure status")

    planets, points = map_bodies(_records(raw, "planets"))
    houses = map_houses(_records(raw, "houses"))

    if PointType.ASCENDANT not in points:
        points[PointType.ASCENDANT] = _angle_point(
            raw, "ascendant", PointType.ASCENDANT, ASCENDANT_HOUSE, houses
        )
    if PointType.MIDHEAVEN not in points:
        points[PointType.MIDHEAVEN] = _angle_point(
            raw, "midheaven", PointType.MIDHEAVEN, MIDHEAVEN_HOUSE, houses
        )
    north = points.get(PointType.NORTH_NODE)
    if north is not None:
        points[PointType.SOUTH_NODE] = south_node_from(north)

    longitudes = {p.name.value: p.longitude for p in planets}
    longitudes.update({pt.value: point.longitude for pt, point in points.items()})

    ranked = map_aspects(_records(raw, "aspects") if "aspects" in raw else [], longitudes)
    return NatalChart(
        fingerprint=query.fingerprint(),
        house_system=query.house_system,
        planets=planets,
        points=[points[pt] for pt in PointType if pt in points],
        houses=houses,
        house_rulers=compute_house_rulers(houses, planets, ranked),
        aspects=ranked[:MAX_RANKED_ASPECTS],
        image_asset=None,
        generated_at=generated_at,
    )
