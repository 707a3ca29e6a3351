"""Paginated inventory collection into the device cache.

Upstream filters are combined into a single expression::

    [Status].[Group].[ID] IS IN (1,2) AND [Model] IS IN ('XT1144','HD224')
    AND [Status].[Group].[Name] IS IN ('Lobby')

Failure policy for one poll:

- the first page (or the token request before it) fails: the
  inventory is unknown, so the cache is cleared;
- a later page fails: pages already applied are kept and pagination
  stops until the next poll.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bsnbridge._auth import TokenManager
from bsnbridge._cache import DeviceCache
from bsnbridge._errors import EndpointUnreachableError, RequestFailedError
from bsnbridge._mapping import DeviceRecord, FieldMapping, extract_records
from bsnbridge._settings import FilterSettings
from bsnbridge._transport import TransportPort

logger = logging.getLogger(__name__)

DEVICES_PATH = "2022/06/REST/Devices"
DEVICE_COUNT_PATH = "2022/06/REST/Devices/Count"

# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _split_csv(text: str) -> list[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


def quoted_csv(text: str) -> str:
    """``"a, b"`` -> ``"'a','b'"``."""
    return ",".join(f"'{item}'" for item in _split_csv(text))


def build_filter_expression(filters: FilterSettings) -> str:
    """Combine the configured filters with ``AND``; empty when unset.

    Group IDs are numeric and stay unquoted; names and models are
    single-quoted individually.
    """
    clauses: list[str] = []
    if _split_csv(filters.group_ids):
        ids = ",".join(_split_csv(filters.group_ids))
        clauses.append(f"[Status].[Group].[ID] IS IN ({ids})")
    if _split_csv(filters.models):
        clauses.append(f"[Model] IS IN ({quoted_csv(filters.models)})")
    if _split_csv(filters.group_names):
        clauses.append(f"[Status].[Group].[Name] IS IN ({quoted_csv(filters.group_names)})")
    return " AND ".join(clauses)


def filter_params(filters: FilterSettings) -> dict[str, str]:
    expression = build_filter_expression(filters)
    return {"filter": expression} if expression else {}


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PollResult:
    """Outcome of one inventory poll."""

    pages: int
    devices: int
    complete: bool
    error: str | None = None


class InventoryFetcher:
    """Fetch every inventory page and apply it to the cache."""

    def __init__(
        self,
        transport: TransportPort,
        auth: TokenManager,
        cache: DeviceCache,
        mapping: FieldMapping,
        *,
        filters: FilterSettings,
        page_size: int,
        evict_stale: bool = False,
    ) -> None:
        self._transport = transport
        self._auth = auth
        self._cache = cache
        self._mapping = mapping
        self._filters = filters
        self._page_size = page_size
        self._evict_stale = evict_stale
        self.next_marker = ""
        self.last_result: PollResult | None = None

    def reset(self) -> None:
        self.next_marker = ""
        self.last_result = None

    def fetch_device_count(self, token: str) -> int:
        """Number of devices matching the filters.

        An ``Unsupported value`` rejection (filter on a value the
        account has never seen) counts as zero devices.

        Raises:
            EndpointUnreachableError: On any other failure.
        """
        try:
            response = self._transport.get(
                DEVICE_COUNT_PATH,
                params=filter_params(self._filters),
                token=token,
            )
        except RequestFailedError as exc:
            if "Unsupported value" in exc.body:
                return 0
            msg = "Unable to retrieve the number of devices on the network"
            raise EndpointUnreachableError(msg) from exc
        try:
            return int(str(response).strip())
        except ValueError as exc:
            msg = f"Unexpected device count response: {response!r}"
            raise EndpointUnreachableError(msg) from exc

    def poll(self) -> PollResult:
        """Fetch all pages into the cache, following ``nextMarker``.

        Any error before the first page lands empties the cache; a
        later page failing keeps what earlier pages stored.
        """
        self.next_marker = ""
        try:
            token = self._auth.ensure_authenticated()
        except Exception as exc:
            return self._total_failure(exc)

        seen: set[str] = set()
        pages = 0
        marker = ""
        while True:
            try:
                records, next_marker = self._fetch_page(token, marker)
            except Exception as exc:
                if pages == 0:
                    return self._total_failure(exc)
                logger.warning(
                    "Inventory page %d failed; keeping %d device(s) from earlier pages: %s",
                    pages + 1,
                    len(seen),
                    exc,
                )
                return self._finish(PollResult(pages, len(seen), complete=False, error=str(exc)))

            self._cache.apply_page(records)
            seen.update(record.device_id for record in records)
            pages += 1

            if next_marker and next_marker == marker:
                logger.warning("Inventory marker %r repeated; stopping pagination", marker)
                return self._finish(PollResult(pages, len(seen), complete=False))
            marker = next_marker
            self.next_marker = marker
            if not marker:
                break

        if self._evict_stale:
            self._cache.retain_only(seen)
        logger.info("Polled %d device(s) in %d page(s)", len(seen), pages)
        return self._finish(PollResult(pages, len(seen), complete=True))

    def _fetch_page(self, token: str, marker: str) -> tuple[list[DeviceRecord], str]:
        params = dict(filter_params(self._filters))
        params["pageSize"] = str(self._page_size)
        if marker:
            params["marker"] = marker
        response = self._transport.get(DEVICES_PATH, params=params, token=token)

        if not isinstance(response, dict) or not isinstance(response.get("items"), list):
            msg = "Unexpected device listing response"
            raise EndpointUnreachableError(msg)

        truncated = str(response.get("isTruncated", "")).lower() == "true"
        next_marker = str(response.get("nextMarker") or "") if truncated else ""
        return extract_records(response["items"], self._mapping), next_marker

    def _total_failure(self, exc: Exception) -> PollResult:
        self._cache.clear()
        logger.error("Inventory poll failed; cleared device cache: %s", exc)
        return self._finish(PollResult(0, 0, complete=False, error=str(exc)))

    def _finish(self, result: PollResult) -> PollResult:
        self.last_result = result
        return result
