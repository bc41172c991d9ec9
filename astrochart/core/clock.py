"""Horloges injectables.

Le limiteur de débit et les caches ne lisent jamais l'heure murale directement: ils reçoivent une
horloge, ce qui rend leur comportement reproductible en test.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source de temps (UTC, timezone-aware)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Horloge système en UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Horloge figée, avançable manuellement (tests, scripts de rejeu)."""

    def __init__(self, current: datetime) -> None:
        self.current = _ensure_utc(current)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = _ensure_utc(current)

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
