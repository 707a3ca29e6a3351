"""Unit tests for bsnbridge._cache: device cache and snapshots.

Test Techniques Used:
    - State-based Testing: Replace-by-id, eviction, clearing
    - Specification-based Testing: Snapshot filtering and isolation
    - Concurrency Testing: Readers never observe a partial page
"""

from __future__ import annotations

import threading

from bsnbridge._cache import DeviceCache
from bsnbridge._mapping import DeviceRecord
from bsnbridge._normalize import AggregatedSnapshot


def _record(device_id: str, name: str = "", status: str = "Normal") -> DeviceRecord:
    return DeviceRecord(
        device_id=device_id,
        model="XT1144",
        display_name=name or f"Player {device_id}",
        online=True,
        raw_properties={"DeviceStatus": status},
    )


class TestApplyPage:
    """Replace-by-id page application.

    Technique: State-based Testing.
    """

    def test_inserts_new_records(self) -> None:
        cache = DeviceCache()
        assert cache.apply_page([_record("1"), _record("2")]) == 2
        assert len(cache) == 2
        assert "1" in cache

    def test_overlapping_pages_second_wins(self) -> None:
        """Two pages sharing one id leave exactly one record, from page two."""
        cache = DeviceCache()
        cache.apply_page([_record("1", "old"), _record("2")])
        cache.apply_page([_record("1", "new"), _record("3")])

        assert len(cache) == 3
        record = cache.get("1")
        assert record is not None
        assert record.display_name == "new"

    def test_repeated_id_within_page_last_wins(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1", "first"), _record("1", "second")])
        assert len(cache) == 1
        assert cache.get("1").display_name == "second"  # type: ignore[union-attr]

    def test_previous_devices_kept_across_pages(self) -> None:
        """Pages accumulate onto the previous poll's contents."""
        cache = DeviceCache()
        cache.apply_page([_record("1")])
        cache.apply_page([_record("2")])
        assert {r.device_id for r in cache.records()} == {"1", "2"}


class TestEvictionAndClear:
    """Removal paths.

    Technique: State-based Testing.
    """

    def test_retain_only_evicts_unlisted(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1"), _record("2"), _record("3")])

        evicted = cache.retain_only({"2"})

        assert sorted(evicted) == ["1", "3"]
        assert [r.device_id for r in cache.records()] == ["2"]

    def test_clear_empties_cache(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1")])
        cache.clear()
        assert len(cache) == 0
        assert cache.get("1") is None


class TestSnapshot:
    """Point-in-time normalized copies.

    Technique: Specification-based Testing.
    """

    def test_snapshot_normalizes_every_record(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1"), _record("2", status="Error")])

        snapshots = {s.device_id: s for s in cache.snapshot()}

        assert snapshots["1"].normalized_properties["DeviceStatus"] == "Healthy"
        assert snapshots["2"].normalized_properties["DeviceStatus"] == "Inactive"

    def test_snapshot_filtered_by_ids(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1"), _record("2"), _record("3")])
        assert [s.device_id for s in cache.snapshot({"3", "99"})] == ["3"]

    def test_empty_cache_gives_empty_snapshot(self) -> None:
        assert DeviceCache().snapshot() == []

    def test_snapshot_is_not_affected_by_later_writes(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1", "before")])
        snapshot = cache.snapshot()

        cache.apply_page([_record("1", "after")])
        cache.clear()

        assert snapshot[0].display_name == "before"

    def test_records_returns_a_copy(self) -> None:
        cache = DeviceCache()
        cache.apply_page([_record("1")])
        cache.records().clear()
        assert len(cache) == 1

    def test_custom_builder_is_used(self) -> None:
        built: list[str] = []

        def builder(record: DeviceRecord) -> AggregatedSnapshot:
            built.append(record.device_id)
            return AggregatedSnapshot(record.device_id, "", "", False)

        cache = DeviceCache(builder=builder)
        cache.apply_page([_record("7")])
        cache.snapshot()
        assert built == ["7"]


class TestConcurrentReads:
    """Atomic page visibility.

    Technique: Concurrency Testing.
    """

    def test_reader_sees_whole_pages_only(self) -> None:
        """Every snapshot holds a multiple of the page size."""
        page_size = 20
        pages = 30
        cache = DeviceCache()
        sizes: list[int] = []
        done = threading.Event()

        def reader() -> None:
            while not done.is_set():
                sizes.append(len(cache.snapshot()))

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for page in range(pages):
                cache.apply_page(
                    _record(f"{page}-{n}") for n in range(page_size)
                )
        finally:
            done.set()
            thread.join()

        assert len(cache) == page_size * pages
        assert all(size % page_size == 0 for size in sizes)
