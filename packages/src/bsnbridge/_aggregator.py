"""Aggregator facade: the synchronous entry points the host calls.

:class:`BsnCloudAggregator` owns every stateful component and wires
them together:

- :meth:`~BsnCloudAggregator.get_statistics` authenticates, fetches
  network information and the device count;
- :meth:`~BsnCloudAggregator.notify_alive_and_get_inventory` records a
  keep-alive, starts background polling on demand and returns a
  snapshot of the cache;
- :meth:`~BsnCloudAggregator.dispatch_control` and
  :meth:`~BsnCloudAggregator.dispatch_controls` issue commands;
- :meth:`~BsnCloudAggregator.ping` measures latency.

All entry points are safe to call from several threads at once.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from bsnbridge._auth import TokenManager
from bsnbridge._cache import DeviceCache
from bsnbridge._clock import ClockPort, SystemClock
from bsnbridge._control import ControlDispatcher, ControlRequest
from bsnbridge._errors import EndpointUnreachableError, ErrorPayload, RequestFailedError
from bsnbridge._inventory import InventoryFetcher
from bsnbridge._mapping import FieldMapping, load_mapping, stringify
from bsnbridge._normalize import AggregatedSnapshot, normalize_network_info
from bsnbridge._ping import host_from_url, ping_host
from bsnbridge._scheduler import LivenessGate, PollingScheduler
from bsnbridge._settings import Settings
from bsnbridge._transport import HttpTransport, TransportPort

logger = logging.getLogger(__name__)

NETWORKS_PATH = "2022/06/REST/Self/Networks"
DEVICE_COUNT_KEY = "NumberOfDevices"


@dataclass(frozen=True, slots=True)
class AggregatorStatistics:
    """Aggregator-level statistics: network information and device count."""

    network_info: dict[str, str] = field(default_factory=dict)
    device_count: int = 0

    def as_dict(self) -> dict[str, str]:
        """Flat ``name -> value`` map, including ``NumberOfDevices``."""
        stats = dict(self.network_info)
        stats[DEVICE_COUNT_KEY] = str(self.device_count)
        return stats


class BsnCloudAggregator:
    """Cloud device-management aggregator.

    Args:
        settings: Root configuration.
        transport: HTTP collaborator.  When omitted an
            :class:`HttpTransport` is built from ``settings.cloud`` and
            closed by :meth:`close`.
        clock: Monotonic clock; defaults to :class:`SystemClock`.
        mapping: Field mapping; defaults to the packaged mapping file.

    Usage::

        with BsnCloudAggregator(Settings()) as aggregator:
            stats = aggregator.get_statistics()
            devices = aggregator.notify_alive_and_get_inventory()
    """

    def __init__(
        self,
        settings: Settings,
        transport: TransportPort | None = None,
        clock: ClockPort | None = None,
        mapping: FieldMapping | None = None,
    ) -> None:
        self._settings = settings
        self._owns_transport = transport is None
        self._transport: TransportPort = (
            transport if transport is not None else HttpTransport.from_settings(settings.cloud)
        )
        self._clock: ClockPort = clock if clock is not None else SystemClock()
        self._mapping = mapping if mapping is not None else load_mapping()

        cloud = settings.cloud
        password = cloud.password.get_secret_value() if cloud.password else ""
        self._auth = TokenManager(
            self._transport,
            self._clock,
            login=cloud.login,
            password=password,
            ttl=cloud.token_ttl,
        )
        self._cache = DeviceCache()
        self._fetcher = InventoryFetcher(
            self._transport,
            self._auth,
            self._cache,
            self._mapping,
            filters=settings.filter,
            page_size=cloud.page_size,
            evict_stale=settings.polling.evict_stale_devices,
        )
        self._gate = LivenessGate(self._clock, settings.polling.keep_alive_window)
        self._scheduler = PollingScheduler(
            self._fetcher.poll,
            self._gate,
            self._clock,
            cooldown=settings.polling.cooldown,
            tick=settings.polling.tick,
            cooldown_step=settings.polling.cooldown_step,
        )
        self._dispatcher = ControlDispatcher(
            self._transport,
            self._cache,
            self._auth,
            control_url=cloud.control_url,
        )

        self._stats_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._last_statistics: AggregatorStatistics | None = None

    # -- Introspection ------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> DeviceCache:
        return self._cache

    @property
    def auth(self) -> TokenManager:
        return self._auth

    @property
    def gate(self) -> LivenessGate:
        return self._gate

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    @property
    def fetcher(self) -> InventoryFetcher:
        return self._fetcher

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    @property
    def last_statistics(self) -> AggregatorStatistics | None:
        """Result of the last successful :meth:`get_statistics` call."""
        with self._stats_lock:
            return self._last_statistics

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Start background polling.  No-op while already running."""
        with self._lifecycle_lock:
            if self._scheduler.is_running:
                return
            self._scheduler.start()
        logger.info("Aggregator started")

    def stop(self) -> None:
        """Stop polling and drop every piece of cached state.

        A later :meth:`start` begins from a clean slate.
        """
        with self._lifecycle_lock:
            self._scheduler.stop()
            self._cache.clear()
            self._fetcher.reset()
            self._gate.reset()
            self._auth.invalidate()
            with self._stats_lock:
                self._last_statistics = None
        logger.info("Aggregator stopped")

    def close(self) -> None:
        """Stop, then release the transport if this instance created it."""
        self.stop()
        if self._owns_transport and isinstance(self._transport, HttpTransport):
            self._transport.close()

    def __enter__(self) -> BsnCloudAggregator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Entry points -------------------------------------------------------

    def get_statistics(self) -> AggregatorStatistics:
        """Authenticate if needed, then fetch network info and device count.

        Never triggers an inventory poll.

        Raises:
            CredentialsFormatError: Malformed credential strings.
            LoginFailedError: Credentials rejected upstream.
            EndpointUnreachableError: Any fetch failure.
        """
        with self._stats_lock:
            token = self._auth.ensure_authenticated()
            network_info = self._fetch_network_info(token)
            device_count = self._fetcher.fetch_device_count(token)
            statistics = AggregatorStatistics(network_info, device_count)
            self._last_statistics = statistics
        logger.debug("Statistics refreshed: %d device(s)", device_count)
        return statistics

    def notify_alive_and_get_inventory(
        self,
        device_ids: Collection[str] | None = None,
    ) -> list[AggregatedSnapshot]:
        """Record a keep-alive and return a snapshot of the cache.

        Starts background polling on first use.  The snapshot is empty
        until the first successful poll.

        Args:
            device_ids: When given, only these devices are returned.
        """
        self._gate.notify_alive()
        self.start()
        wanted = set(device_ids) if device_ids is not None else None
        return self._cache.snapshot(wanted)

    def dispatch_control(self, property: str, device_id: str, value: str = "") -> None:
        """Issue one control command; failures propagate."""
        request = ControlRequest(property=property, device_id=device_id, value=value)
        with self._stats_lock:
            self._dispatcher.dispatch(request)

    def dispatch_controls(self, requests: Sequence[ControlRequest]) -> list[ErrorPayload]:
        """Issue commands independently; return one payload per failure."""
        with self._stats_lock:
            return self._dispatcher.dispatch_many(requests)

    def ping(self) -> int:
        """Latency to the configured ping host, in milliseconds."""
        ping = self._settings.ping
        host = ping.host or host_from_url(self._settings.cloud.base_url)
        return ping_host(host, ping)

    # -- Internals ----------------------------------------------------------

    def _fetch_network_info(self, token: str) -> dict[str, str]:
        try:
            response = self._transport.get(NETWORKS_PATH, token=token)
        except RequestFailedError as exc:
            msg = "Unable to retrieve network information."
            raise EndpointUnreachableError(msg) from exc

        network_name = self._auth.network_name
        if network_name is None:
            logger.warning("Login has no 'network/' prefix; network information unavailable")
            return {}
        for item in _network_items(response):
            if stringify(item.get("name")) == network_name:
                return normalize_network_info(item)
        logger.warning("Network %r not found in the account's network list", network_name)
        return {}


def _network_items(response: Any) -> list[Mapping[str, Any]]:
    if isinstance(response, Mapping):
        response = response.get("items")
    if not isinstance(response, list):
        return []
    return [item for item in response if isinstance(item, Mapping)]
