"""
Repositories du cache de thèmes.

Ce module fournit le cache persistant des thèmes calculés, indexé par empreinte de requête, avec
une version en mémoire et une version Redis. Les deux versions appliquent la même politique:
écriture atomique de l'entrée complète, éviction LRU au-delà de `max_entries`. Une lecture ne
touche que l'index d'accès, jamais l'entrée elle-même: une écriture concurrente n'est pas écrasée
et une entrée supprimée entre-temps ne réapparaît pas.
"""

import logging
import threading
from collections import OrderedDict
from datetime import UTC, datetime, timedelta

import redis
from pydantic import ValidationError

from astrochart.domain.entities import DEFAULT_STALE_AFTER, CachedChartEntry, NatalChart

log = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 200


class InMemoryChartRepo:
    """
    Cache de thèmes en mémoire (utilisé pour dev/tests).

    L'ordre d'insertion de l'`OrderedDict` suit l'ordre d'accès: la tête est l'entrée la moins
    récemment utilisée. Les dates de dernier accès sont tenues à part des entrées.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._db: OrderedDict[str, CachedChartEntry] = OrderedDict()
        self._accessed: dict[str, datetime] = {}
        self._lock = threading.RLock()

    def _with_access(self, entry: CachedChartEntry) -> CachedChartEntry:
        accessed = self._accessed.get(entry.fingerprint)
        if accessed is None:
            return entry
        return entry.model_copy(update={"last_accessed_at": accessed})

    def _pop(self, fingerprint: str) -> CachedChartEntry:
        entry = self._with_access(self._db.pop(fingerprint))
        self._accessed.pop(fingerprint, None)
        return entry

    def save(self, chart: NatalChart, now: datetime) -> list[CachedChartEntry]:
        """Enregistre/écrase un thème; renvoie les entrées évincées."""
        entry = CachedChartEntry.from_chart(chart, now)
        with self._lock:
            self._db[entry.fingerprint] = entry
            self._db.move_to_end(entry.fingerprint)
            self._accessed[entry.fingerprint] = now
            evicted: list[CachedChartEntry] = []
            while len(self._db) > self.max_entries:
                evicted.append(self._pop(next(iter(self._db))))
            return evicted

    def load(self, fingerprint: str, now: datetime) -> NatalChart | None:
        """Retourne le thème en cache et met à jour son rang LRU."""
        with self._lock:
            entry = self._db.get(fingerprint)
            if entry is None:
                return None
            self._db.move_to_end(fingerprint)
            self._accessed[fingerprint] = now
            return entry.chart

    def get_entry(self, fingerprint: str) -> CachedChartEntry | None:
        """Retourne l'entrée sans toucher à l'ordre LRU."""
        with self._lock:
            entry = self._db.get(fingerprint)
            return None if entry is None else self._with_access(entry)

    def find_stale(self, now: datetime, older_than: timedelta = DEFAULT_STALE_AFTER) -> list[str]:
        with self._lock:
            return [fp for fp, entry in self._db.items() if entry.is_stale(now, older_than)]

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            if fingerprint not in self._db:
                return False
            self._pop(fingerprint)
            return True

    def count(self) -> int:
        return len(self._db)

    def clear_older_than(
        self, now: datetime, max_age: timedelta = DEFAULT_STALE_AFTER
    ) -> list[CachedChartEntry]:
        """Supprime les entrées générées il y a plus de `max_age`."""
        with self._lock:
            return [self._pop(fp) for fp in self.find_stale(now, max_age)]


class RedisChartRepo:
    """Cache de thèmes adossé à Redis.

    - `chart:{fingerprint}`: entrée JSON complète (écrite en un seul `SET`, jamais réécrite
      par une lecture).
    - `chart:lru`: sorted set (score = dernier accès, epoch) servant à l'éviction; c'est lui qui
      fait foi pour `last_accessed_at`.
    """

    LRU_KEY = "chart:lru"

    def __init__(
        self,
        url: str | None = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        client: redis.Redis | None = None,
    ):
        """Crée un client Redis à partir de l'URL fournie (ou utilise `client`)."""
        if client is None:
            if not url:
                raise ValueError("url or client is required")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.client = client
        self.max_entries = max_entries

    @staticmethod
    def _key(fingerprint: str) -> str:
        return f"chart:{fingerprint}"

    def _decode(
        self, fingerprint: str, raw: str | None, accessed: float | None = None
    ) -> CachedChartEntry | None:
        if not raw:
            return None
        try:
            entry = CachedChartEntry.model_validate_json(raw)
        except ValidationError as err:
            log.warning(
                "Discarding unreadable chart cache entry",
                extra={"fingerprint": fingerprint, "error": str(err)},
            )
            self.delete(fingerprint)
            return None
        if accessed is None:
            return entry
        return entry.model_copy(
            update={"last_accessed_at": datetime.fromtimestamp(float(accessed), UTC)}
        )

    def save(self, chart: NatalChart, now: datetime) -> list[CachedChartEntry]:
        """Sérialise l'entrée en JSON et la stocke avec son index LRU."""
        entry = CachedChartEntry.from_chart(chart, now)
        pipe = self.client.pipeline(transaction=True)
        pipe.set(self._key(entry.fingerprint), entry.model_dump_json())
        pipe.zadd(self.LRU_KEY, {entry.fingerprint: now.timestamp()})
        pipe.execute()
        return self._evict()

    def _evict(self) -> list[CachedChartEntry]:
        overflow = int(self.client.zcard(self.LRU_KEY)) - self.max_entries
        if overflow <= 0:
            return []
        victims = list(self.client.zrange(self.LRU_KEY, 0, overflow - 1, withscores=True))
        entries = self.client.mget([self._key(fp) for fp, _ in victims])
        pipe = self.client.pipeline(transaction=True)
        for fp, _ in victims:
            pipe.delete(self._key(fp))
            pipe.zrem(self.LRU_KEY, fp)
        pipe.execute()
        evicted: list[CachedChartEntry] = []
        for (_, score), raw in zip(victims, entries, strict=True):
            if raw:
                try:
                    entry = CachedChartEntry.model_validate_json(raw)
                except ValidationError:
                    continue
                evicted.append(
                    entry.model_copy(
                        update={"last_accessed_at": datetime.fromtimestamp(float(score), UTC)}
                    )
                )
        return evicted

    def load(self, fingerprint: str, now: datetime) -> NatalChart | None:
        """Charge le thème `chart:{fingerprint}` et met à jour son score LRU.

        `XX`: le score n'est mis à jour que si l'empreinte est encore indexée.
        """
        entry = self._decode(fingerprint, self.client.get(self._key(fingerprint)))
        if entry is None:
            return None
        self.client.zadd(self.LRU_KEY, {fingerprint: now.timestamp()}, xx=True)
        return entry.chart

    def get_entry(self, fingerprint: str) -> CachedChartEntry | None:
        raw = self.client.get(self._key(fingerprint))
        return self._decode(fingerprint, raw, self.client.zscore(self.LRU_KEY, fingerprint))

    def _entries(self) -> list[CachedChartEntry]:
        indexed = list(self.client.zrange(self.LRU_KEY, 0, -1, withscores=True))
        if not indexed:
            return []
        raws = self.client.mget([self._key(fp) for fp, _ in indexed])
        entries = []
        for (fp, score), raw in zip(indexed, raws, strict=True):
            entry = self._decode(fp, raw, score)
            if entry is not None:
                entries.append(entry)
        return entries

    def find_stale(self, now: datetime, older_than: timedelta = DEFAULT_STALE_AFTER) -> list[str]:
        return [e.fingerprint for e in self._entries() if e.is_stale(now, older_than)]

    def delete(self, fingerprint: str) -> bool:
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(self._key(fingerprint))
        pipe.zrem(self.LRU_KEY, fingerprint)
        deleted, _ = pipe.execute()
        return bool(deleted)

    def count(self) -> int:
        return int(self.client.zcard(self.LRU_KEY))

    def clear_older_than(
        self, now: datetime, max_age: timedelta = DEFAULT_STALE_AFTER
    ) -> list[CachedChartEntry]:
        removed = [e for e in self._entries() if e.is_stale(now, max_age)]
        for entry in removed:
            self.delete(entry.fingerprint)
        return removed
