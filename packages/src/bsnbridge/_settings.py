"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``BSNBRIDGE_`` prefix and nested
models use ``__`` as the delimiter, e.g.
``BSNBRIDGE_CLOUD__LOGIN="acme/ops@example.com my-client-id"``.

The schema covers five concerns:

* **Cloud**: API endpoints, credentials, token lifetime, paging.
* **Polling**: keep-alive window and collection cadence.
* **Filter**: inventory filters sent upstream.
* **Ping**: latency-measurement strategy.
* **Logging**: level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings, nested via composition)
# -------------------------------------------------------------------


class CloudSettings(BaseModel):
    """Device-management API connection and credentials.

    Both credential strings hold two space-separated parts::

        BSNBRIDGE_CLOUD__LOGIN="network/user client-id"
        BSNBRIDGE_CLOUD__PASSWORD="password client-secret"

    The network part of ``network/user`` selects which entry of the
    account's network list is reported in the aggregator statistics.
    """

    base_url: str = Field(
        default="https://api.bsn.cloud/",
        description="Base URL of the REST API (token, networks, devices).",
    )
    control_url: str = Field(
        default="https://ws.bsn.cloud/rest/v1/",
        description="Base URL of the remote-control web service.",
    )
    login: str = Field(
        default="",
        description="'network/user client-id', separated by a single space.",
    )
    password: SecretStr | None = Field(
        default=None,
        description="'password client-secret', separated by a single space.",
    )
    verify_tls: bool = Field(
        default=True,
        description="Verify the server TLS certificate.",
    )
    request_timeout: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description="Per-request timeout in seconds.",
    )
    token_ttl: Annotated[float, Field(gt=0)] = Field(
        default=1800.0,
        description=(
            "Seconds a bearer token is trusted after issuance.  The "
            "token is renewed on the first call past this deadline."
        ),
    )
    page_size: Annotated[int, Field(ge=1, le=1000)] = Field(
        default=100,
        description="Number of devices requested per inventory page.",
    )


class PollingSettings(BaseModel):
    """Background inventory collection cadence."""

    keep_alive_window: Annotated[float, Field(gt=0)] = Field(
        default=180.0,
        description=(
            "Seconds after the last inventory read during which "
            "background polling stays active."
        ),
    )
    cooldown: Annotated[float, Field(ge=0)] = Field(
        default=30.0,
        description="Minimum seconds between the start of two inventory polls.",
    )
    tick: Annotated[float, Field(gt=0)] = Field(
        default=0.5,
        description="Scheduler loop tick; bounds the stop-signal latency.",
    )
    cooldown_step: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description="Re-check interval while waiting out the cooldown.",
    )
    evict_stale_devices: bool = Field(
        default=False,
        description=(
            "Drop cached devices that were absent from a fully "
            "successful poll.  When false, such devices linger until "
            "a total poll failure clears the cache."
        ),
    )


class FilterSettings(BaseModel):
    """Upstream inventory filters (comma-separated, empty = no filter)."""

    group_ids: str = Field(
        default="",
        description="Group IDs, e.g. '1,2'.",
    )
    group_names: str = Field(
        default="",
        description="Group names, e.g. 'Lobby,Cafeteria'.",
    )
    models: str = Field(
        default="",
        description="Player models, e.g. 'XT1144,HD224'.",
    )


class PingSettings(BaseModel):
    """Latency measurement strategy.

    ``ICMP`` shells out to the system ``ping`` utility; ``TCP`` times a
    series of plain socket connects, which works where ICMP is blocked.
    """

    mode: Literal["ICMP", "TCP"] = Field(
        default="ICMP",
        description="Ping strategy.",
    )
    host: str | None = Field(
        default=None,
        description="Target host.  ``None`` means the host of ``cloud.base_url``.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=443,
        description="TCP port for the TCP strategy.",
    )
    attempts: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Number of TCP connects averaged into one result.",
    )
    timeout: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description="Per-attempt timeout in seconds.",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def _upper_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default): structured JSON lines for log
      aggregators.
    - ``"text"``: human-readable timestamped format for terminals.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for bsnbridge.

    Example ``.env``::

        BSNBRIDGE_CLOUD__LOGIN=acme/ops@example.com my-client-id
        BSNBRIDGE_CLOUD__PASSWORD=hunter2 my-client-secret
        BSNBRIDGE_FILTER__MODELS=XT1144,HD224
        BSNBRIDGE_PING__MODE=TCP
        BSNBRIDGE_LOGGING__LEVEL=DEBUG
        BSNBRIDGE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="BSNBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cloud: CloudSettings = Field(
        default_factory=CloudSettings,
        description="API connection and credentials.",
    )
    polling: PollingSettings = Field(
        default_factory=PollingSettings,
        description="Background polling cadence.",
    )
    filter: FilterSettings = Field(
        default_factory=FilterSettings,
        description="Upstream inventory filters.",
    )
    ping: PingSettings = Field(
        default_factory=PingSettings,
        description="Latency measurement.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
