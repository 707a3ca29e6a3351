"""Property normalization pipeline.

Turns raw vendor properties (flat ``name -> string`` maps whose
values may hold nested JSON) into stable display statistics.

Each raw field belongs to exactly one :class:`FieldKind`; a table
maps field name to kind, and every kind has one transform:

==============  ===================================================
Kind            Transform
==============  ===================================================
``TEXT``        placeholder for blanks, first character capitalized
``STATUS``      lookup table (``Normal`` -> ``Healthy``); unknown
                codes pass through unchanged
``TIMESTAMP``   ``2024-06-20T08:05:00[.fff]Z`` ->
                ``Jun 20, 2024, 8:05 AM`` (GMT)
``DURATION``    ``[d.]hh:mm:ss`` -> ``N day(s) M hour(s) K minute(s)``
                with leading zero units dropped
``TOGGLE``      ``true``/``false`` -> ``Enabled``/``Disabled``
``BYTES``       byte count -> GiB, two decimals, half-up
``STORAGE``     JSON array -> ``Storage#`` / ``StorageN#`` groups,
                ``Tmp``/``Flash`` volumes excluded
``NETWORK``     JSON array -> ``NetworkInterface#`` groups; field
                names translated, unknown names dropped
==============  ===================================================

Every transform is total: malformed input yields :data:`PLACEHOLDER`
(or, for grouped kinds, no keys) and never raises.

Unknown status codes pass through while unknown network field names
are dropped.  The asymmetry is deliberate and covered by tests.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext
from enum import Enum
from typing import Any

from bsnbridge._mapping import DeviceRecord, stringify

logger = logging.getLogger(__name__)

PLACEHOLDER = "None"
"""Display value for absent, null, empty or unparsable data."""

ENABLED = "Enabled"
DISABLED = "Disabled"

REBOOT_PLAYER = "Reboot Player"
REBOOT_WITH_CRASH_REPORT = "Reboot With Crash Report"

# ---------------------------------------------------------------------------
# Field table
# ---------------------------------------------------------------------------


class FieldKind(Enum):
    """Transform family of a raw field."""

    TEXT = "text"
    STATUS = "status"
    TIMESTAMP = "timestamp"
    DURATION = "duration"
    TOGGLE = "toggle"
    BYTES = "bytes"
    STORAGE = "storage"
    NETWORK = "network"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """One raw field and how to display it.

    ``source`` is the raw property name (or dotted path for network
    info); it defaults to ``name``.
    """

    name: str
    kind: FieldKind = FieldKind.TEXT
    group: str = ""
    source: str = ""

    @property
    def key(self) -> str:
        """Display key: ``Name``, or ``Group#Name`` for grouped fields."""
        return f"{self.group}#{self.name}" if self.group else self.name

    @property
    def source_path(self) -> str:
        return self.source or self.name


DEVICE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("PlayerID"),
    FieldSpec("Description"),
    FieldSpec("Presentation"),
    FieldSpec("SetupType"),
    FieldSpec("Timezone"),
    FieldSpec("BrightSignOSVersion"),
    FieldSpec("DeviceUptime", FieldKind.DURATION),
    FieldSpec("DeviceStatus", FieldKind.STATUS),
    FieldSpec("LastConnected", FieldKind.TIMESTAMP),
    FieldSpec("ExternalIPAddress"),
    FieldSpec("GroupID"),
    FieldSpec("GroupName"),
    FieldSpec("NetworkInterface", FieldKind.NETWORK),
    FieldSpec("Storage", FieldKind.STORAGE),
    FieldSpec("Latitude", group="Location"),
    FieldSpec("Longitude", group="Location"),
    FieldSpec("Country", group="Location"),
    FieldSpec("Locality", group="Location"),
    FieldSpec("DiagnosticLog", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("EventLog", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("PlaybackLog", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("StateLog", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("VariableLog", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("UploadAtBoot", FieldKind.TOGGLE, group="Logging"),
    FieldSpec("UploadTime", group="Logging"),
)

NETWORK_INFO_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("Name", source="name"),
    FieldSpec("CreationDate", FieldKind.TIMESTAMP, source="creationDate"),
    FieldSpec("LastModifiedDate", FieldKind.TIMESTAMP, source="lastModifiedDate"),
    FieldSpec("LockoutDate", FieldKind.TIMESTAMP, source="lockoutDate"),
    FieldSpec("LockedOut", source="isLockedOut"),
    FieldSpec("LastLockoutDate", FieldKind.TIMESTAMP, source="lastLockoutDate"),
    FieldSpec("Level", group="Subscription", source="subscription.level"),
    FieldSpec(
        "CreationDate",
        FieldKind.TIMESTAMP,
        group="Subscription",
        source="subscription.creationDate",
    ),
    FieldSpec(
        "LastModifiedDate",
        FieldKind.TIMESTAMP,
        group="Subscription",
        source="subscription.lastModifiedDate",
    ),
    FieldSpec(
        "ExpireDate",
        FieldKind.TIMESTAMP,
        group="Subscription",
        source="subscription.expireDate",
    ),
)

STATUS_LABELS: dict[str, str] = {
    "normal": "Healthy",
    "warning": "Idle",
    "error": "Inactive",
}

NETWORK_FIELD_NAMES: dict[str, str] = {
    "ip": "LocalIP",
    "gateway": "Gateway",
    "proto": "Protocol",
    "name": "Name",
    "type": "Type",
}

STORAGE_TEXT_FIELDS: tuple[str, ...] = ("interface", "system", "access")
STORAGE_SIZE_FIELDS: tuple[str, ...] = ("sizeTotal", "sizeFree")
EXCLUDED_STORAGE_INTERFACES = frozenset({"tmp", "flash"})

_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip
_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?Z$")
_GIB = Decimal(2**30)
_CENTS = Decimal("0.01")

# ---------------------------------------------------------------------------
# Scalar transforms
# ---------------------------------------------------------------------------


def capitalize_first(value: str) -> str:
    return value[:1].upper() + value[1:]


def format_text(raw: str | None) -> str:
    """Placeholder for blank or ``null`` values, else capitalize."""
    if raw is None or not raw.strip() or raw.strip().lower() == "null":
        return PLACEHOLDER
    return capitalize_first(raw)


def format_status(raw: str | None) -> str:
    value = format_text(raw)
    return STATUS_LABELS.get(value.lower(), value)


def format_timestamp(raw: str | None) -> str:
    value = format_text(raw)
    if value == PLACEHOLDER:
        return value
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        logger.debug("Unparsable timestamp %r", value)
        return PLACEHOLDER
    try:
        moment = datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        logger.debug("Out-of-range timestamp %r", value)
        return PLACEHOLDER
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return (
        f"{_MONTHS[moment.month - 1]} {moment.day}, {moment.year}, "
        f"{hour}:{moment.minute:02d} {meridiem}"
    )


def format_duration(raw: str | None) -> str:
    """Render ``[d.]hh:mm:ss`` with leading zero units dropped.

    ``0:05:30`` -> ``5 minute(s)``;
    ``1.02:05:30`` -> ``1 day(s) 2 hour(s) 5 minute(s)``.
    """
    value = format_text(raw)
    if value == PLACEHOLDER:
        return value
    parts = value.strip().split(":")
    if len(parts) != 3:
        return PLACEHOLDER
    head = parts[0].split(".")
    if len(head) > 2:
        return PLACEHOLDER
    try:
        days = int(head[0]) if len(head) == 2 else 0
        hours = int(head[-1])
        minutes = int(parts[1])
        float(parts[2])
    except ValueError:
        return PLACEHOLDER
    if min(days, hours, minutes) < 0:
        return PLACEHOLDER

    if days:
        return f"{days} day(s) {hours} hour(s) {minutes} minute(s)"
    if hours:
        return f"{hours} hour(s) {minutes} minute(s)"
    return f"{minutes} minute(s)"


def format_toggle(raw: str | None) -> str:
    value = format_text(raw)
    if value.lower() == "true":
        return ENABLED
    if value.lower() == "false":
        return DISABLED
    return value


def format_gigabytes(raw: str | None) -> str:
    """Byte count -> GiB rounded half-up to two places (``"1.0"``)."""
    value = format_text(raw)
    if value == PLACEHOLDER:
        return value
    try:
        count = int(value.strip())
    except ValueError:
        logger.debug("Unparsable byte count %r", value)
        return PLACEHOLDER
    if count < 0:
        return PLACEHOLDER
    # Keep the default fractional depth however many integer digits there are.
    with localcontext(prec=len(str(count)) + 28):
        gigabytes = (Decimal(count) / _GIB).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return str(float(gigabytes))


# ---------------------------------------------------------------------------
# Grouped transforms
# ---------------------------------------------------------------------------


def _parse_array(raw: str | None, label: str) -> list[Any]:
    if raw is None or not raw.strip():
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("%s is not valid JSON; skipping", label)
        return []
    if not isinstance(decoded, list):
        logger.warning("%s is not a JSON array; skipping", label)
        return []
    return decoded


def _group_prefix(base: str, index: int, total: int) -> str:
    return f"{base}#" if total == 1 else f"{base}{index}#"


def expand_storage(raw: str | None) -> dict[str, str]:
    """One ``Storage[N]#`` group per volume, skipping ``Tmp`` and ``Flash``."""
    volumes = [
        volume
        for volume in _parse_array(raw, "Storage")
        if isinstance(volume, Mapping)
        and str(volume.get("interface", "")).lower() not in EXCLUDED_STORAGE_INTERFACES
    ]
    stats: dict[str, str] = {}
    for index, volume in enumerate(volumes, start=1):
        prefix = _group_prefix("Storage", index, len(volumes))
        for name in STORAGE_TEXT_FIELDS:
            if name in volume:
                stats[prefix + capitalize_first(name)] = format_text(
                    stringify(volume[name])
                )
        sizes = volume.get("stats")
        if isinstance(sizes, Mapping):
            for name in STORAGE_SIZE_FIELDS:
                if name in sizes:
                    stats[prefix + capitalize_first(name) + "(GB)"] = format_gigabytes(
                        stringify(sizes[name])
                    )
    return stats


def _network_value(key: str, value: Any) -> str | None:
    if isinstance(value, list):
        return ", ".join(stringify(item) or PLACEHOLDER for item in value)
    text = stringify(value)
    if text is None:
        return None
    if text.lower() == "true" and key.lower() != "enabled":
        return ENABLED
    if text.lower() == "false":
        return DISABLED
    return text


def expand_network_interfaces(raw: str | None) -> dict[str, str]:
    """One ``NetworkInterface[N]#`` group per interface.

    Field names go through :data:`NETWORK_FIELD_NAMES`; names not in
    the table are dropped, as are nested objects.
    """
    interfaces = _parse_array(raw, "NetworkInterface")
    stats: dict[str, str] = {}
    for index, interface in enumerate(interfaces, start=1):
        if not isinstance(interface, Mapping):
            continue
        prefix = _group_prefix("NetworkInterface", index, len(interfaces))
        for key, value in interface.items():
            display = NETWORK_FIELD_NAMES.get(str(key).lower())
            if display is None or isinstance(value, Mapping):
                continue
            stats[prefix + display] = format_text(_network_value(str(key), value))
    return stats


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

SCALAR_TRANSFORMS: dict[FieldKind, Callable[[str | None], str]] = {
    FieldKind.TEXT: format_text,
    FieldKind.STATUS: format_status,
    FieldKind.TIMESTAMP: format_timestamp,
    FieldKind.DURATION: format_duration,
    FieldKind.TOGGLE: format_toggle,
    FieldKind.BYTES: format_gigabytes,
}

GROUP_TRANSFORMS: dict[FieldKind, Callable[[str | None], dict[str, str]]] = {
    FieldKind.STORAGE: expand_storage,
    FieldKind.NETWORK: expand_network_interfaces,
}


def apply_field(spec: FieldSpec, raw: str | None, stats: dict[str, str]) -> None:
    """Write the display value(s) for one field into *stats*.

    Any unexpected error degrades to the placeholder for scalar
    fields and to no keys for grouped ones.
    """
    group_transform = GROUP_TRANSFORMS.get(spec.kind)
    try:
        if group_transform is not None:
            stats.update(group_transform(raw))
        else:
            stats[spec.key] = SCALAR_TRANSFORMS[spec.kind](raw)
    except Exception:
        logger.warning("Failed to normalize %s", spec.key, exc_info=True)
        if group_transform is None:
            stats[spec.key] = PLACEHOLDER


def normalize_properties(
    raw_properties: Mapping[str, str],
    fields: tuple[FieldSpec, ...] = DEVICE_FIELDS,
) -> dict[str, str]:
    """Normalize a device's raw properties into display statistics.

    Every scalar field in *fields* appears in the output, with the
    placeholder when the raw property is missing.
    """
    stats: dict[str, str] = {}
    for spec in fields:
        apply_field(spec, raw_properties.get(spec.source_path), stats)
    return stats


_MISSING = object()


def _lookup(node: Any, path: str) -> Any:
    for key in path.split("."):
        if not isinstance(node, Mapping) or key not in node:
            return _MISSING
        node = node[key]
    return node


def normalize_network_info(item: Mapping[str, Any]) -> dict[str, str]:
    """Normalize one entry of the account's network list.

    Fields absent from *item* are omitted; present-but-null fields get
    the placeholder.
    """
    stats: dict[str, str] = {}
    for spec in NETWORK_INFO_FIELDS:
        value = _lookup(item, spec.source_path)
        if value is _MISSING:
            continue
        apply_field(spec, stringify(value), stats)
    return stats


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Control:
    """An actionable command exposed on a device snapshot."""

    name: str
    label: str = "Apply"
    label_pressed: str = "Applying"
    grace_period: int = 0
    state: str = ""


DEVICE_CONTROLS: tuple[Control, ...] = (
    Control(REBOOT_PLAYER),
    Control(REBOOT_WITH_CRASH_REPORT),
)


@dataclass(frozen=True, slots=True)
class AggregatedSnapshot:
    """Externally visible, fully normalized copy of one device."""

    device_id: str
    model: str
    display_name: str
    online: bool
    normalized_properties: dict[str, str] = field(default_factory=dict)
    controls: tuple[Control, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "deviceId": self.device_id,
            "deviceModel": self.model,
            "deviceName": self.display_name,
            "deviceOnline": self.online,
            "properties": dict(self.normalized_properties),
            "controls": [
                {
                    "name": control.name,
                    "label": control.label,
                    "labelPressed": control.label_pressed,
                    "gracePeriod": control.grace_period,
                    "value": control.state,
                }
                for control in self.controls
            ],
        }


def build_snapshot(record: DeviceRecord) -> AggregatedSnapshot:
    """Build a fresh snapshot; shares no mutable state with *record*."""
    stats = normalize_properties(record.raw_properties)
    for control in DEVICE_CONTROLS:
        stats[control.name] = PLACEHOLDER
    return AggregatedSnapshot(
        device_id=record.device_id,
        model=record.model,
        display_name=record.display_name,
        online=record.online,
        normalized_properties=stats,
        controls=DEVICE_CONTROLS,
    )
