"""Declarative field mapping from raw device JSON to device records.

A mapping file (YAML) names where, inside one item of the upstream
device listing, each record attribute and raw property lives::

    player:
      deviceId: id
      deviceModel: model
      deviceName: settings.name
      deviceOnline:
        path: status.health
        values: [Normal, Warning]
      properties:
        PlayerID: serial
        Storage: status.storage

Paths are dot-separated keys.  The packaged default lives at
``bsnbridge/mapping/model-mapping.yml``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_ENTITY_KEY = "player"

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    """One managed endpoint as last reported upstream.

    ``raw_properties`` maps vendor property names to raw string
    values, before normalization.  Records are replaced wholesale on
    every poll, never edited.
    """

    device_id: str
    model: str
    display_name: str
    online: bool
    raw_properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """Parsed mapping rules for one entity type."""

    device_id: str
    model: str
    display_name: str
    online_path: str
    online_values: frozenset[str]
    properties: dict[str, str]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_mapping(path: str | Path | None = None) -> FieldMapping:
    """Load mapping rules from *path*, or the packaged default.

    Raises:
        ValueError: If the document does not have the expected shape.
    """
    if path is None:
        source = resources.files("bsnbridge").joinpath("mapping/model-mapping.yml")
        text = source.read_text(encoding="utf-8")
    else:
        text = Path(path).read_text(encoding="utf-8")
    return parse_mapping(yaml.safe_load(text))


def parse_mapping(document: Any) -> FieldMapping:
    """Validate a decoded mapping document and build a :class:`FieldMapping`."""
    if not isinstance(document, Mapping) or not isinstance(
        document.get(_ENTITY_KEY), Mapping
    ):
        msg = f"Mapping must contain a '{_ENTITY_KEY}' section"
        raise ValueError(msg)
    section = document[_ENTITY_KEY]

    for key in ("deviceId", "deviceModel", "deviceName"):
        if not isinstance(section.get(key), str) or not section[key]:
            msg = f"Mapping '{_ENTITY_KEY}.{key}' must be a non-empty path"
            raise ValueError(msg)

    online = section.get("deviceOnline") or {}
    if not isinstance(online, Mapping) or not isinstance(online.get("path", ""), str):
        msg = f"Mapping '{_ENTITY_KEY}.deviceOnline' must have a 'path'"
        raise ValueError(msg)

    properties = section.get("properties") or {}
    if not isinstance(properties, Mapping) or not all(
        isinstance(name, str) and isinstance(path, str)
        for name, path in properties.items()
    ):
        msg = f"Mapping '{_ENTITY_KEY}.properties' must map names to paths"
        raise ValueError(msg)

    return FieldMapping(
        device_id=section["deviceId"],
        model=section["deviceModel"],
        display_name=section["deviceName"],
        online_path=online.get("path", ""),
        online_values=frozenset(
            str(value).lower() for value in online.get("values") or ()
        ),
        properties=dict(properties),
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def resolve_path(node: Any, path: str) -> Any:
    """Follow a dotted *path* through nested mappings; ``None`` if absent."""
    for key in path.split("."):
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def stringify(value: Any) -> str | None:
    """Render a JSON value the way the normalizer expects to read it.

    ``null`` becomes ``None`` (absent), booleans become ``true`` /
    ``false``, containers become compact JSON text.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def extract_records(items: Iterable[Any], mapping: FieldMapping) -> list[DeviceRecord]:
    """Build one :class:`DeviceRecord` per item that carries an id.

    Items that are not objects, or whose id is missing, are skipped
    with a warning.
    """
    records: list[DeviceRecord] = []
    for item in items:
        device_id = stringify(resolve_path(item, mapping.device_id))
        if not device_id:
            logger.warning("Skipping device entry without '%s'", mapping.device_id)
            continue

        raw: dict[str, str] = {}
        for name, path in mapping.properties.items():
            value = stringify(resolve_path(item, path))
            if value is not None:
                raw[name] = value

        online_raw = stringify(resolve_path(item, mapping.online_path)) or ""
        records.append(
            DeviceRecord(
                device_id=device_id,
                model=stringify(resolve_path(item, mapping.model)) or "",
                display_name=stringify(resolve_path(item, mapping.display_name)) or "",
                online=online_raw.lower() in mapping.online_values,
                raw_properties=raw,
            )
        )
    return records
