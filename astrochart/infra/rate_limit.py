"""
Limiteur de débit client pour les appels au fournisseur de thèmes.

Ce module implémente une fenêtre glissante (5 requêtes / 60 s par défaut) et le suivi de la
consommation mensuelle (mois calendaire UTC). Les horodatages sont conservés dans un
`CounterStore` injecté: mémoire de processus ou sorted set Redis pour survivre aux redémarrages
et être partagé entre processus.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NamedTuple, Protocol

import redis

from astrochart.domain.entities import MonthlyUsage

log = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_REQUESTS_PER_CHART = 2
DEFAULT_MONTHLY_BUDGET = 5000

# Les horodatages du mois courant restent dans la clé; 32 jours couvrent le plus long mois.
COUNTER_TTL_SECONDS = 32 * 24 * 3600

# KEYS[1] = sorted set des horodatages (score = secondes epoch)
# ARGV = now, window_start, limit, units, prune_before, ttl
ACQUIRE_SCRIPT = """
local key = KEYS[1]
local now = ARGV[1]
local window_start = ARGV[2]
local limit = tonumber(ARGV[3])
local units = tonumber(ARGV[4])
local prune_before = ARGV[5]
local ttl = tonumber(ARGV[6])

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. prune_before)
local current = redis.call('ZCOUNT', key, window_start, '+inf')

if current < limit then
    local seq = redis.call('INCRBY', key .. ':seq', units)
    for i = 1, units do
        redis.call('ZADD', key, now, now .. ':' .. (seq - units + i))
    end
    redis.call('EXPIRE', key, ttl)
    redis.call('EXPIRE', key .. ':seq', ttl)
    return {1, current, ''}
end

local oldest = redis.call('ZRANGEBYSCORE', key, window_start, '+inf', 'WITHSCORES', 'LIMIT', 0, 1)
local oldest_score = ''
if #oldest > 0 then
    oldest_score = oldest[2]
end
return {0, current, oldest_score}
"""


class Admission(NamedTuple):
    """Réponse d'un store à une demande d'admission."""

    allowed: bool
    count: int
    oldest: float | None = None


@dataclass
class RateLimitConfig:
    """Configuration du limiteur."""

    max_requests: int = DEFAULT_MAX_REQUESTS
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    requests_per_chart: int = DEFAULT_REQUESTS_PER_CHART
    monthly_budget: int = DEFAULT_MONTHLY_BUDGET


@dataclass
class RateLimitDecision:
    """Résultat d'une vérification de quota."""

    allowed: bool
    remaining: int
    retry_after: float = 0.0


class CounterStore(Protocol):
    """Persistance des horodatages de requêtes (secondes epoch).

    `acquire` purge, compte la fenêtre et enregistre `units` horodatages en une seule
    opération atomique vis-à-vis des autres utilisateurs du même store.
    """

    def load(self) -> list[float]: ...

    def append(self, timestamps: list[float]) -> None: ...

    def prune(self, before: float) -> None: ...

    def acquire(
        self,
        now: float,
        window_start: float,
        limit: int,
        units: int,
        prune_before: float,
    ) -> Admission: ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._timestamps: list[float] = []
        self._lock = threading.Lock()

    def load(self) -> list[float]:
        with self._lock:
            return list(self._timestamps)

    def append(self, timestamps: list[float]) -> None:
        with self._lock:
            self._timestamps.extend(timestamps)

    def prune(self, before: float) -> None:
        with self._lock:
            self._timestamps = [ts for ts in self._timestamps if ts >= before]

    def acquire(
        self,
        now: float,
        window_start: float,
        limit: int,
        units: int,
        prune_before: float,
    ) -> Admission:
        with self._lock:
            self._timestamps = [ts for ts in self._timestamps if ts >= prune_before]
            in_window = [ts for ts in self._timestamps if ts >= window_start]
            if len(in_window) < limit:
                self._timestamps.extend([now] * units)
                return Admission(True, len(in_window))
            return Admission(False, len(in_window), min(in_window))


class RedisCounterStore:
    """Horodatages persistés dans un sorted set Redis (score = horodatage).

    L'admission passe par un script Lua: plusieurs processus partageant la clé ne peuvent
    pas dépasser ensemble la limite de la fenêtre.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str = "ratelimit:timestamps",
        client: redis.Redis | None = None,
    ) -> None:
        if client is None:
            if not url:
                raise ValueError("url or client is required")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.client = client
        self.key = key
        self._script_sha: str | None = None

    def _get_script_hash(self) -> str:
        if self._script_sha is None:
            self._script_sha = self.client.script_load(ACQUIRE_SCRIPT)
            log.debug("Loaded rate limit script", extra={"sha": self._script_sha})
        return self._script_sha

    def load(self) -> list[float]:
        return [float(score) for _, score in self.client.zrange(self.key, 0, -1, withscores=True)]

    def append(self, timestamps: list[float]) -> None:
        if timestamps:
            self.client.zadd(self.key, {f"{ts!r}:{uuid.uuid4().hex}": ts for ts in timestamps})

    def prune(self, before: float) -> None:
        self.client.zremrangebyscore(self.key, "-inf", f"({before!r}")

    def acquire(
        self,
        now: float,
        window_start: float,
        limit: int,
        units: int,
        prune_before: float,
    ) -> Admission:
        args = (repr(now), repr(window_start), limit, units, repr(prune_before), COUNTER_TTL_SECONDS)
        try:
            result = self.client.evalsha(self._get_script_hash(), 1, self.key, *args)
        except redis.exceptions.NoScriptError:
            # Cache de scripts vidé (redémarrage, SCRIPT FLUSH)
            self._script_sha = None
            result = self.client.evalsha(self._get_script_hash(), 1, self.key, *args)
        allowed, count, oldest = result
        return Admission(bool(int(allowed)), int(count), float(oldest) if oldest else None)


def _month_start(now: datetime) -> datetime:
    return now.astimezone(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_token(now: datetime) -> str:
    """Identifiant du mois calendaire UTC, ex. « 2025-03 »."""
    return now.astimezone(UTC).strftime("%Y-%m")


class SlidingWindowRateLimiter:
    """Rate limiter basé sur une fenêtre glissante, avec compteur mensuel.

    Le contrôle et l'enregistrement (`acquire`) forment une seule opération du store; le
    limiteur ne lève jamais d'exception: un store défaillant est journalisé et traité comme
    vide (fail-open).
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        store: CounterStore | None = None,
    ) -> None:
        self.config = config or RateLimitConfig()
        self.store: CounterStore = store or InMemoryCounterStore()
        self._lock = threading.Lock()

    def _load(self) -> list[float]:
        try:
            return self.store.load()
        except Exception as e:
            log.warning("Rate limit store unavailable, failing open", extra={"error": str(e)})
            return []

    def _window_timestamps(self, timestamps: list[float], now: datetime) -> list[float]:
        cutoff = now.timestamp() - self.config.window_seconds
        return [ts for ts in timestamps if ts >= cutoff]

    def _prune_cutoff(self, now: datetime) -> float:
        return min(
            now.timestamp() - self.config.window_seconds,
            _month_start(now).timestamp(),
        )

    def _prune(self, timestamps: list[float], now: datetime) -> list[float]:
        """Drop timestamps outside both the window and the current month."""
        cutoff = self._prune_cutoff(now)
        kept = [ts for ts in timestamps if ts >= cutoff]
        if len(kept) != len(timestamps):
            try:
                self.store.prune(cutoff)
            except Exception as e:
                log.warning("Rate limit store prune failed", extra={"error": str(e)})
        return kept

    def _retry_after(self, oldest: float | None, now: datetime) -> float:
        if oldest is None:
            return self.config.window_seconds
        return max(0.0, self.config.window_seconds - (now.timestamp() - oldest))

    def _decide(self, timestamps: list[float], now: datetime) -> RateLimitDecision:
        in_window = self._window_timestamps(timestamps, now)
        count = len(in_window)
        if count < self.config.max_requests:
            return RateLimitDecision(
                allowed=True,
                remaining=self.config.max_requests - count,
            )
        return RateLimitDecision(
            allowed=False,
            remaining=0,
            retry_after=self._retry_after(min(in_window), now),
        )

    def can_make_request(self, now: datetime) -> RateLimitDecision:
        """Vérifie si une requête est autorisée (sans l'enregistrer)."""
        with self._lock:
            timestamps = self._prune(self._load(), now)
            return self._decide(timestamps, now)

    def record_request(self, now: datetime, units: int = 1) -> None:
        """Enregistre `units` requêtes effectivement envoyées à `now`."""
        with self._lock:
            try:
                self.store.append([now.timestamp()] * units)
            except Exception as e:
                log.warning("Rate limit store write failed", extra={"error": str(e)})

    def acquire(self, now: datetime, units: int = 1) -> RateLimitDecision:
        """Contrôle et enregistre `units` requêtes en une opération atomique du store.

        Deux limiteurs partageant le même store (deux workers sur une même clé Redis)
        n'admettent jamais ensemble plus de `max_requests` requêtes dans la fenêtre.
        """
        limit = self.config.max_requests
        ts = now.timestamp()
        with self._lock:
            try:
                admission = self.store.acquire(
                    now=ts,
                    window_start=ts - self.config.window_seconds,
                    limit=limit,
                    units=units,
                    prune_before=self._prune_cutoff(now),
                )
            except Exception as e:
                log.warning("Rate limit store unavailable, failing open", extra={"error": str(e)})
                return RateLimitDecision(allowed=True, remaining=max(0, limit - units))
        if admission.allowed:
            return RateLimitDecision(allowed=True, remaining=max(0, limit - admission.count - units))
        decision = RateLimitDecision(
            allowed=False,
            remaining=0,
            retry_after=self._retry_after(admission.oldest, now),
        )
        log.info(
            "Rate limit exceeded",
            extra={"retry_after": decision.retry_after, "units": units},
        )
        return decision

    def retry_after(self, now: datetime) -> float:
        """Secondes avant la prochaine requête autorisée (0 si immédiatement)."""
        decision = self.can_make_request(now)
        return 0.0 if decision.allowed else decision.retry_after

    def monthly_usage(self, now: datetime) -> MonthlyUsage:
        """Consommation du mois calendaire UTC courant."""
        with self._lock:
            timestamps = self._load()
        token = month_token(now)
        count = sum(1 for ts in timestamps if month_token(datetime.fromtimestamp(ts, UTC)) == token)
        return MonthlyUsage(
            month=month_token(now),
            request_count=count,
            estimated_charts=math.floor(count / max(1, self.config.requests_per_chart)),
            credits_consumed=count,
            monthly_budget=self.config.monthly_budget,
        )
