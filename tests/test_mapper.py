"""Tests du mapping des réponses fournisseur vers `NatalChart`."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from astrochart.domain.errors import MappingError
from astrochart.domain.mapper import map_chart, parse_retrograde, rank_aspects
from astrochart.domain.zodiac import AspectType, PlanetName, PointType, ZodiacSign
from tests.fakes import sample_payload, sample_query

GENERATED_AT = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
PLANET_COUNT = 10
HOUSE_COUNT = 12
MAX_ASPECTS = 20
EXTRA_ASPECTS = 20
SOUTH_NODE_LONGITUDE = 255.0
SOUTH_NODE_HOUSE = 9
ASCENDANT_CUSP = 15.0
MIDHEAVEN_CUSP = 285.0
MARS_PLUTO_ANGLE = 120.0
SUN_MOON_ANGLE = 104.75


def _map(payload=None):
    return map_chart(payload or sample_payload(), sample_query(), GENERATED_AT)


def test_maps_complete_chart() -> None:
    chart = _map()
    assert chart.fingerprint == sample_query().fingerprint()
    assert [p.name for p in chart.planets] == list(PlanetName)
    assert len(chart.houses) == HOUSE_COUNT
    assert len(chart.house_rulers) == HOUSE_COUNT
    assert chart.generated_at == GENERATED_AT
    assert chart.image_asset is None


def test_retrograde_flags_are_parsed_from_raw_representations() -> None:
    chart = _map()
    retro = {p.name: p.retrograde for p in chart.planets}
    assert retro[PlanetName.MERCURY] is True  # "true"
    assert retro[PlanetName.SATURN] is True  # bool
    assert retro[PlanetName.NEPTUNE] is True  # 1
    assert retro[PlanetName.PLUTO] is True  # "R"
    assert retro[PlanetName.MOON] is False  # "false"
    assert retro[PlanetName.VENUS] is False  # 0
    assert retro[PlanetName.MARS] is False  # "D"
    assert retro[PlanetName.URANUS] is False  # absent


@pytest.mark.parametrize("raw", ["maybe", 2, 1.5, [True]])
def test_unrecognised_retrograde_flag_is_rejected(raw) -> None:
    with pytest.raises(MappingError):
        parse_retrograde(raw, "planets[0].is_retro")


def test_south_node_is_derived_from_north_node() -> None:
    chart = _map()
    north = chart.point(PointType.NORTH_NODE)
    south = chart.point(PointType.SOUTH_NODE)
    assert north is not None and south is not None
    assert south.longitude == SOUTH_NODE_LONGITUDE
    assert south.sign == ZodiacSign.SAGITTARIUS
    assert south.house == SOUTH_NODE_HOUSE


def test_provider_south_node_is_ignored() -> None:
    payload = sample_payload()
    payload["planets"].append(
        {"name": "South Node", "sign": "Aries", "full_degree": 10.0, "house": 1}
    )
    south = _map(payload).point(PointType.SOUTH_NODE)
    assert south is not None
    assert south.longitude == SOUTH_NODE_LONGITUDE


def test_chart_without_node_has_no_south_node() -> None:
    chart = _map(sample_payload(include_node=False))
    assert chart.point(PointType.NORTH_NODE) is None
    assert chart.point(PointType.SOUTH_NODE) is None


def test_angles_prefer_top_level_values() -> None:
    payload = sample_payload()
    payload["ascendant"] = 16.5
    chart = _map(payload)
    assert chart.ascendant is not None
    assert chart.ascendant.longitude == 16.5
    assert chart.ascendant.house == 1
    assert chart.midheaven is not None
    assert chart.midheaven.house == 10


def test_angles_fall_back_to_house_cusps() -> None:
    chart = _map(sample_payload(include_angles=False))
    assert chart.ascendant is not None and chart.midheaven is not None
    assert chart.ascendant.longitude == ASCENDANT_CUSP
    assert chart.midheaven.longitude == MIDHEAVEN_CUSP
    assert chart.midheaven.sign == ZodiacSign.CAPRICORN


def test_aspects_sorted_by_orb_then_priority() -> None:
    chart = _map()
    ordered = [(a.first, a.second, a.type) for a in chart.aspects]
    assert ordered == [
        ("Mars", "Pluto", AspectType.TRINE),
        ("Mercury", "Sun", AspectType.CONJUNCTION),
        ("Sun", "Mars", AspectType.SQUARE),
        ("Moon", "Venus", AspectType.SQUARE),
        ("Venus", "Saturn", AspectType.TRINE),
        ("Sun", "Moon", AspectType.TRINE),
    ]
    assert chart.aspects[0].angle == MARS_PLUTO_ANGLE
    assert chart.aspects[-1].angle == SUN_MOON_ANGLE


def test_aspects_are_truncated_but_rulers_see_all() -> None:
    chart = _map(sample_payload(extra_aspects=EXTRA_ASPECTS))
    assert len(chart.aspects) == MAX_ASPECTS
    jupiter_rule = chart.house_ruler(9)
    assert jupiter_rule is not None
    assert jupiter_rule.ruler == PlanetName.JUPITER
    assert len(jupiter_rule.aspects) == EXTRA_ASPECTS
    kept = [a for a in chart.aspects if a.involves("Jupiter")]
    assert len(kept) < EXTRA_ASPECTS


def test_house_rulers_follow_traditional_table() -> None:
    chart = _map()
    first = chart.house_ruler(1)
    assert first is not None
    assert first.ruler == PlanetName.MARS
    assert first.ruler_sign == ZodiacSign.CANCER
    assert first.ruler_house == 3
    assert [(a.first, a.second) for a in first.aspects] == [("Mars", "Pluto"), ("Sun", "Mars")]
    rulers = {r.house: r.ruler for r in chart.house_rulers}
    assert rulers[10] == PlanetName.SATURN
    assert rulers[11] == PlanetName.SATURN
    assert rulers[12] == PlanetName.JUPITER


def test_sign_abbreviations_and_case_are_accepted() -> None:
    payload = sample_payload()
    payload["planets"][0]["sign"] = "ari"
    payload["planets"][1]["sign"] = "lEO"
    chart = _map(payload)
    assert chart.planets[0].sign == ZodiacSign.ARIES
    assert chart.planets[1].sign == ZodiacSign.LEO


def test_rank_aspects_is_stable_for_equal_keys() -> None:
    chart = _map()
    squares = [a for a in chart.aspects if a.type == AspectType.SQUARE]
    assert rank_aspects(list(reversed(squares))) == list(reversed(squares))


class TestMappingFailures:
    """Un seul enregistrement invalide rejette tout le thème."""

    def test_missing_planet(self) -> None:
        payload = sample_payload()
        payload["planets"] = [p for p in payload["planets"] if p["name"] != "Pluto"]
        with pytest.raises(MappingError) as exc:
            _map(payload)
        assert exc.value.field == "planets"
        assert exc.value.value == ["Pluto"]

    def test_duplicate_planet(self) -> None:
        payload = sample_payload()
        payload["planets"].append(dict(payload["planets"][0]))
        with pytest.raises(MappingError):
            _map(payload)

    def test_unknown_sign(self) -> None:
        payload = sample_payload()
        payload["planets"][0]["sign"] = "Ophiuchus"
        with pytest.raises(MappingError) as exc:
            _map(payload)
        assert exc.value.field == "planets[0].sign"

    @pytest.mark.parametrize("longitude", [360.0, -0.5, "abc", None, float("nan")])
    def test_invalid_longitude(self, longitude) -> None:
        payload = sample_payload()
        payload["planets"][2]["full_degree"] = longitude
        with pytest.raises(MappingError) as exc:
            _map(payload)
        assert exc.value.field == "planets[2].full_degree"

    @pytest.mark.parametrize("house", [0, 13, 2.5, "x"])
    def test_invalid_house(self, house) -> None:
        payload = sample_payload()
        payload["planets"][3]["house"] = house
        with pytest.raises(MappingError):
            _map(payload)

    def test_unknown_body(self) -> None:
        payload = sample_payload()
        payload["planets"][0]["name"] = "Chiron"
        with pytest.raises(MappingError):
            _map(payload)

    def test_missing_house(self) -> None:
        payload = sample_payload()
        payload["houses"].pop()
        with pytest.raises(MappingError) as exc:
            _map(payload)
        assert exc.value.field == "houses"

    def test_aspect_with_point_absent_from_chart(self) -> None:
        payload = sample_payload(include_node=False)
        payload["aspects"].append(
            {"aspecting_planet": "Sun", "aspected_planet": "Lilith", "type": "Trine", "orb": 1.0}
        )
        with pytest.raises(MappingError):
            _map(payload)

    def test_unknown_aspect_type(self) -> None:
        payload = sample_payload()
        payload["aspects"][0]["type"] = "Novile"
        with pytest.raises(MappingError):
            _map(payload)

    def test_failure_status(self) -> None:
        payload = sample_payload()
        payload["status"] = False
        with pytest.raises(MappingError) as exc:
            _map(payload)
        assert exc.value.field == "status"

    def test_non_object_response(self) -> None:
        with pytest.raises(MappingError):
            map_chart(["not", "a", "chart"], sample_query(), GENERATED_AT)


def test_south_node_opposite_taurus_node() -> None:
    payload = sample_payload()
    node = next(p for p in payload["planets"] if p["name"] == "Node")
    node.update({"sign": "Taurus", "full_degree": 47.0, "house": 3})
    south = _map(payload).point(PointType.SOUTH_NODE)
    assert south is not None
    assert south.longitude == 227.0
    assert south.sign == ZodiacSign.SCORPIO
    assert south.degree_in_sign == 17.0
    assert south.house == SOUTH_NODE_HOUSE


def test_twenty_five_aspects_ranked_and_truncated() -> None:
    payload = sample_payload()
    payload["aspects"] = [
        {
            "aspecting_planet": "Sun",
            "aspected_planet": "Moon",
            "type": "Trine",
            "orb": (index * 7) % 25 / 4,
        }
        for index in range(25)
    ]
    chart = _map(payload)
    orbs = [a.orb for a in chart.aspects]
    assert len(orbs) == MAX_ASPECTS
    assert orbs == sorted(orbs)
