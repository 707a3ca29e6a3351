"""In-memory device cache with replace-by-id pages and copy-out reads.

The cache is a mapping keyed by device id.  The scheduler thread is
the only writer; caller threads only read, and every read returns
freshly built objects, never the internal mapping.

One :class:`threading.Lock` guards the mapping.  It is held for the
duration of one page application or one snapshot build, so a reader
observes either all of a page or none of it.  No network I/O ever
happens under the lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection, Iterable

from bsnbridge._mapping import DeviceRecord
from bsnbridge._normalize import AggregatedSnapshot, build_snapshot

logger = logging.getLogger(__name__)

SnapshotBuilder = Callable[[DeviceRecord], AggregatedSnapshot]


class DeviceCache:
    """Latest known inventory, keyed by device id."""

    def __init__(self, builder: SnapshotBuilder = build_snapshot) -> None:
        self._records: dict[str, DeviceRecord] = {}
        self._lock = threading.Lock()
        self._builder = builder

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._records

    # -- Writes (scheduler thread) ------------------------------------------

    def apply_page(self, records: Iterable[DeviceRecord]) -> int:
        """Insert each record, replacing any cached record with its id.

        Applied atomically with respect to :meth:`snapshot`.  Within a
        page, a later record with a repeated id wins.

        Returns:
            Number of records applied.
        """
        page = list(records)
        with self._lock:
            for record in page:
                self._records.pop(record.device_id, None)
                self._records[record.device_id] = record
        logger.debug("Applied page of %d device(s)", len(page))
        return len(page)

    def retain_only(self, device_ids: Collection[str]) -> list[str]:
        """Evict every record whose id is not in *device_ids*.

        Returns:
            The evicted ids.
        """
        keep = set(device_ids)
        with self._lock:
            evicted = [device_id for device_id in self._records if device_id not in keep]
            for device_id in evicted:
                del self._records[device_id]
        if evicted:
            logger.info("Evicted %d device(s) no longer listed upstream", len(evicted))
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    # -- Reads (caller threads) ---------------------------------------------

    def get(self, device_id: str) -> DeviceRecord | None:
        with self._lock:
            return self._records.get(device_id)

    def records(self) -> list[DeviceRecord]:
        """Point-in-time list of the cached records."""
        with self._lock:
            return list(self._records.values())

    def snapshot(
        self,
        device_ids: Collection[str] | None = None,
    ) -> list[AggregatedSnapshot]:
        """Build normalized snapshots of the cached devices.

        Args:
            device_ids: When given, only these devices are included.
        """
        with self._lock:
            return [
                self._builder(record)
                for record in self._records.values()
                if device_ids is None or record.device_id in device_ids
            ]
