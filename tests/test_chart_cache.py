"""Tests du cache de thèmes (mémoire et Redis factice)."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from astrochart.domain.entities import AssetReference
from astrochart.domain.mapper import map_chart
from astrochart.infra.repositories import InMemoryChartRepo, RedisChartRepo
from tests.fakes import FakeRedis, sample_payload, sample_query

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
MAX_ENTRIES = 3


def _chart(minute: int = 30, generated_at: datetime = NOW):
    return map_chart(sample_payload(), sample_query(minute=minute), generated_at)


@pytest.fixture(params=["memory", "redis"])
def repo(request):
    if request.param == "memory":
        return InMemoryChartRepo(max_entries=MAX_ENTRIES)
    return RedisChartRepo(client=FakeRedis(), max_entries=MAX_ENTRIES)


def test_save_then_load_round_trip(repo) -> None:
    chart = _chart().with_image(AssetReference(id="abc123", format="svg"))
    repo.save(chart, NOW)
    loaded = repo.load(chart.fingerprint, NOW + timedelta(minutes=1))
    assert loaded == chart
    entry = repo.get_entry(chart.fingerprint)
    assert entry is not None
    assert entry.image_asset_id == "abc123"
    assert entry.image_format == "svg"
    assert entry.last_accessed_at == NOW + timedelta(minutes=1)


def test_missing_entry(repo) -> None:
    assert repo.load("natal:unknown", NOW) is None
    assert repo.get_entry("natal:unknown") is None
    assert repo.delete("natal:unknown") is False


def test_save_replaces_existing_entry(repo) -> None:
    first = _chart()
    repo.save(first, NOW)
    refreshed = _chart(generated_at=NOW + timedelta(days=1))
    repo.save(refreshed, NOW + timedelta(days=1))
    assert repo.count() == 1
    assert repo.load(first.fingerprint, NOW).generated_at == NOW + timedelta(days=1)


def test_lru_eviction_keeps_recently_loaded(repo) -> None:
    charts = [_chart(minute=m) for m in (1, 2, 3)]
    for offset, chart in enumerate(charts):
        repo.save(chart, NOW + timedelta(seconds=offset))
    # Le premier thème est relu: il devient le plus récent.
    repo.load(charts[0].fingerprint, NOW + timedelta(seconds=10))

    evicted = repo.save(_chart(minute=4), NOW + timedelta(seconds=20))

    assert [e.fingerprint for e in evicted] == [charts[1].fingerprint]
    assert repo.count() == MAX_ENTRIES
    assert repo.get_entry(charts[0].fingerprint) is not None
    assert repo.get_entry(charts[1].fingerprint) is None


def test_stale_entries_are_reported_not_removed(repo) -> None:
    old = _chart(minute=1, generated_at=NOW - timedelta(days=40))
    fresh = _chart(minute=2)
    repo.save(old, NOW)
    repo.save(fresh, NOW)
    assert repo.find_stale(NOW) == [old.fingerprint]
    assert repo.count() == 2
    # Un thème périmé reste servi.
    assert repo.load(old.fingerprint, NOW) is not None


def test_clear_older_than(repo) -> None:
    old = _chart(minute=1, generated_at=NOW - timedelta(days=40))
    fresh = _chart(minute=2)
    repo.save(old, NOW)
    repo.save(fresh, NOW)
    removed = repo.clear_older_than(NOW)
    assert [e.fingerprint for e in removed] == [old.fingerprint]
    assert repo.count() == 1
    assert repo.get_entry(fresh.fingerprint) is not None


def test_delete(repo) -> None:
    chart = _chart()
    repo.save(chart, NOW)
    assert repo.delete(chart.fingerprint) is True
    assert repo.count() == 0


class TestRedisLayout:
    def setup_method(self) -> None:
        self.client = FakeRedis()
        self.repo = RedisChartRepo(client=self.client, max_entries=MAX_ENTRIES)

    def test_entry_and_lru_index(self) -> None:
        chart = _chart()
        self.repo.save(chart, NOW)
        raw = self.client.strings[f"chart:{chart.fingerprint}"]
        assert json.loads(raw)["fingerprint"] == chart.fingerprint
        assert self.client.zsets["chart:lru"] == {chart.fingerprint: NOW.timestamp()}

    def test_unreadable_entry_is_discarded(self) -> None:
        chart = _chart()
        self.repo.save(chart, NOW)
        self.client.strings[f"chart:{chart.fingerprint}"] = "{not json"
        assert self.repo.load(chart.fingerprint, NOW) is None
        assert self.repo.count() == 0

    def test_failed_write_leaves_no_partial_entry(self) -> None:
        self.client.fail_writes = True
        with pytest.raises(ConnectionError):
            self.repo.save(_chart(), NOW)
        assert self.client.strings == {}
        assert self.client.zsets == {}

    def test_requires_url_or_client(self) -> None:
        with pytest.raises(ValueError):
            RedisChartRepo()

    def test_load_keeps_entry_saved_concurrently(self) -> None:
        first = _chart()
        self.repo.save(first, NOW)
        refreshed = _chart(generated_at=NOW + timedelta(days=1))

        def save_during_read(_key: str) -> None:
            self.client.on_get = None
            self.repo.save(refreshed, NOW + timedelta(days=1))

        self.client.on_get = save_during_read
        self.repo.load(first.fingerprint, NOW + timedelta(days=2))

        entry = self.repo.get_entry(first.fingerprint)
        assert entry.generated_at == NOW + timedelta(days=1)
        assert entry.last_accessed_at == NOW + timedelta(days=2)

    def test_load_does_not_resurrect_deleted_entry(self) -> None:
        chart = _chart()
        self.repo.save(chart, NOW)

        def delete_during_read(_key: str) -> None:
            self.client.on_get = None
            self.repo.delete(chart.fingerprint)

        self.client.on_get = delete_during_read
        self.repo.load(chart.fingerprint, NOW + timedelta(minutes=1))

        assert self.repo.get_entry(chart.fingerprint) is None
        assert self.repo.count() == 0
        assert self.client.zsets.get("chart:lru", {}) == {}

    def test_load_only_touches_lru_score(self) -> None:
        chart = _chart()
        self.repo.save(chart, NOW)
        raw = self.client.strings[f"chart:{chart.fingerprint}"]
        self.repo.load(chart.fingerprint, NOW + timedelta(minutes=5))
        assert self.client.strings[f"chart:{chart.fingerprint}"] == raw
        assert self.client.zsets["chart:lru"][chart.fingerprint] == (
            NOW + timedelta(minutes=5)
        ).timestamp()


def test_in_memory_load_after_delete_returns_nothing() -> None:
    repo = InMemoryChartRepo(max_entries=MAX_ENTRIES)
    chart = _chart()
    repo.save(chart, NOW)
    stored = repo.get_entry(chart.fingerprint)
    repo.load(chart.fingerprint, NOW + timedelta(minutes=1))
    # L'entrée stockée n'est pas réécrite par la lecture.
    assert repo.get_entry(chart.fingerprint).model_copy(
        update={"last_accessed_at": NOW}
    ) == stored
    repo.delete(chart.fingerprint)
    assert repo.load(chart.fingerprint, NOW + timedelta(minutes=2)) is None
    assert repo.get_entry(chart.fingerprint) is None
    assert repo.count() == 0
