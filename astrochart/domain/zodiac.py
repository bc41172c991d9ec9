"""Tables astrologiques fixes (signes, planètes, maîtrises, aspects).

Objectif du module
------------------
- Définir les ensembles fermés du domaine (signes, corps, points, types d'aspects).
- Fournir la géométrie élémentaire: signe d'une longitude, point opposé, écart angulaire.
- Porter la table des maîtrises traditionnelles (7 planètes classiques).
"""

from __future__ import annotations

from enum import Enum


class ZodiacSign(str, Enum):
    """Les 12 signes tropicaux, dans l'ordre zodiacal (0° Bélier = 0°)."""

    ARIES = "Aries"
    TAURUS = "Taurus"
    GEMINI = "Gemini"
    CANCER = "Cancer"
    LEO = "Leo"
    VIRGO = "Virgo"
    LIBRA = "Libra"
    SCORPIO = "Scorpio"
    SAGITTARIUS = "Sagittarius"
    CAPRICORN = "Capricorn"
    AQUARIUS = "Aquarius"
    PISCES = "Pisces"

    @classmethod
    def from_longitude(cls, longitude: float) -> ZodiacSign:
        """Return the sign containing an ecliptic longitude (any real value)."""
        index = int((longitude % 360.0) // 30.0)
        return _SIGNS[index % 12]


_SIGNS: tuple[ZodiacSign, ...] = tuple(ZodiacSign)


class PlanetName(str, Enum):
    """Les 10 corps d'un thème natal."""

    SUN = "Sun"
    MOON = "Moon"
    MERCURY = "Mercury"
    VENUS = "Venus"
    MARS = "Mars"
    JUPITER = "Jupiter"
    SATURN = "Saturn"
    URANUS = "Uranus"
    NEPTUNE = "Neptune"
    PLUTO = "Pluto"


class PointType(str, Enum):
    """Points astrologiques non planétaires."""

    NORTH_NODE = "North Node"
    SOUTH_NODE = "South Node"
    LILITH = "Lilith"
    ASCENDANT = "Ascendant"
    MIDHEAVEN = "Midheaven"


class AspectType(str, Enum):
    """Types d'aspects majeurs et mineurs."""

    CONJUNCTION = "Conjunction"
    OPPOSITION = "Opposition"
    SQUARE = "Square"
    TRINE = "Trine"
    SEXTILE = "Sextile"
    QUINCUNX = "Quincunx"
    SEMISEXTILE = "Semisextile"
    SEMISQUARE = "Semisquare"
    SESQUISQUARE = "Sesquisquare"
    QUINTILE = "Quintile"
    BIQUINTILE = "Biquintile"

    @property
    def angle(self) -> float:
        return ASPECT_ANGLES[self]

    @property
    def priority(self) -> int:
        """Rang de départage à orbe égal (plus petit = plus fort)."""
        return ASPECT_PRIORITY.get(self, MINOR_ASPECT_PRIORITY)


ASPECT_ANGLES: dict[AspectType, float] = {
    AspectType.CONJUNCTION: 0.0,
    AspectType.OPPOSITION: 180.0,
    AspectType.SQUARE: 90.0,
    AspectType.TRINE: 120.0,
    AspectType.SEXTILE: 60.0,
    AspectType.QUINCUNX: 150.0,
    AspectType.SEMISEXTILE: 30.0,
    AspectType.SEMISQUARE: 45.0,
    AspectType.SESQUISQUARE: 135.0,
    AspectType.QUINTILE: 72.0,
    AspectType.BIQUINTILE: 144.0,
}

MINOR_ASPECT_PRIORITY = 3
ASPECT_PRIORITY: dict[AspectType, int] = {
    AspectType.CONJUNCTION: 0,
    AspectType.OPPOSITION: 0,
    AspectType.SQUARE: 1,
    AspectType.TRINE: 1,
    AspectType.SEXTILE: 2,
}

# Maîtrises traditionnelles (Ptolémée): les 7 planètes visibles uniquement.
TRADITIONAL_RULERS: dict[ZodiacSign, PlanetName] = {
    ZodiacSign.ARIES: PlanetName.MARS,
    ZodiacSign.TAURUS: PlanetName.VENUS,
    ZodiacSign.GEMINI: PlanetName.MERCURY,
    ZodiacSign.CANCER: PlanetName.MOON,
    ZodiacSign.LEO: PlanetName.SUN,
    ZodiacSign.VIRGO: PlanetName.MERCURY,
    ZodiacSign.LIBRA: PlanetName.VENUS,
    ZodiacSign.SCORPIO: PlanetName.MARS,
    ZodiacSign.SAGITTARIUS: PlanetName.JUPITER,
    ZodiacSign.CAPRICORN: PlanetName.SATURN,
    ZodiacSign.AQUARIUS: PlanetName.SATURN,
    ZodiacSign.PISCES: PlanetName.JUPITER,
}


def ruler_of(sign: ZodiacSign) -> PlanetName:
    """Return the traditional ruler of a sign."""
    return TRADITIONAL_RULERS[sign]


def opposite_longitude(longitude: float) -> float:
    """Point opposé (180°), normalisé dans [0, 360)."""
    return (longitude + 180.0) % 360.0


def opposite_house(house: int) -> int:
    """Maison opposée par arithmétique d'index (décalage fixe de 6)."""
    # Exact only for whole-sign / equal houses; quadrant systems can differ.
    return ((house + 5) % 12) + 1


def angular_separation(first: float, second: float) -> float:
    """Plus court arc entre deux longitudes, dans [0, 180]."""
    diff = abs(first - second) % 360.0
    return 360.0 - diff if diff > 180.0 else diff
