"""bsnbridge.

Aggregator for a cloud digital-signage device-management API: polls the
device inventory while a host keeps asking for it, normalizes vendor
telemetry into flat statistics, and dispatches control commands.
"""

from importlib.metadata import PackageNotFoundError, version

from bsnbridge._aggregator import AggregatorStatistics, BsnCloudAggregator
from bsnbridge._auth import AuthSession, Credentials, TokenManager
from bsnbridge._cache import DeviceCache
from bsnbridge._clock import ClockPort, SystemClock
from bsnbridge._control import ControlDispatcher, ControlRequest
from bsnbridge._errors import (
    BsnBridgeError,
    CommandFailedError,
    CredentialsFormatError,
    DeviceNotFoundError,
    EndpointUnreachableError,
    ErrorPayload,
    LoginFailedError,
    RequestFailedError,
    build_error_payload,
)
from bsnbridge._inventory import InventoryFetcher, PollResult, build_filter_expression
from bsnbridge._logging import JsonFormatter, configure_logging
from bsnbridge._mapping import DeviceRecord, FieldMapping, extract_records, load_mapping
from bsnbridge._normalize import (
    PLACEHOLDER,
    AggregatedSnapshot,
    Control,
    normalize_network_info,
    normalize_properties,
)
from bsnbridge._scheduler import LivenessGate, PollingScheduler
from bsnbridge._settings import (
    CloudSettings,
    FilterSettings,
    LoggingSettings,
    PingSettings,
    PollingSettings,
    Settings,
)
from bsnbridge._transport import HttpTransport, TransportPort

try:
    # Prefer the generated version file (written at build time)
    from bsnbridge._version import __version__
except ImportError:
    try:
        # Fallback to installed package metadata
        __version__ = version("bsnbridge")
    except PackageNotFoundError:
        # Last resort fallback for source checkouts without metadata
        __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Aggregator
    "AggregatorStatistics",
    "BsnCloudAggregator",
    # Auth
    "AuthSession",
    "Credentials",
    "TokenManager",
    # Cache
    "DeviceCache",
    # Clock
    "ClockPort",
    "SystemClock",
    # Control
    "ControlDispatcher",
    "ControlRequest",
    # Errors
    "BsnBridgeError",
    "CommandFailedError",
    "CredentialsFormatError",
    "DeviceNotFoundError",
    "EndpointUnreachableError",
    "ErrorPayload",
    "LoginFailedError",
    "RequestFailedError",
    "build_error_payload",
    # Inventory
    "InventoryFetcher",
    "PollResult",
    "build_filter_expression",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # Mapping
    "DeviceRecord",
    "FieldMapping",
    "extract_records",
    "load_mapping",
    # Normalization
    "PLACEHOLDER",
    "AggregatedSnapshot",
    "Control",
    "normalize_network_info",
    "normalize_properties",
    # Scheduler
    "LivenessGate",
    "PollingScheduler",
    # Settings
    "CloudSettings",
    "FilterSettings",
    "LoggingSettings",
    "PingSettings",
    "PollingSettings",
    "Settings",
    # Transport
    "HttpTransport",
    "TransportPort",
]
