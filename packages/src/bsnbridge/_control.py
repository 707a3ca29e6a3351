"""Control command dispatch.

A control arrives as a property name (optionally grouped,
``Controls#Reboot Player``) plus the target device id.  The device's
player serial is resolved from the cache, then the matching remote
command is issued:

=============================  ===========================================
Command                        Request body
=============================  ===========================================
``Reboot Player``              ``{}``
``Reboot With Crash Report``   ``{"data": {"crash_report": true}}``
=============================  ===========================================

Both use the reboot endpoint of the remote-control service.  Other
command names are logged and ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import quote

from bsnbridge._auth import TokenManager
from bsnbridge._cache import DeviceCache
from bsnbridge._errors import (
    CommandFailedError,
    DeviceNotFoundError,
    ErrorPayload,
    RequestFailedError,
    build_error_payload,
)
from bsnbridge._mapping import stringify
from bsnbridge._normalize import REBOOT_PLAYER, REBOOT_WITH_CRASH_REPORT
from bsnbridge._transport import TransportPort

logger = logging.getLogger(__name__)

SERIAL_PROPERTY = "PlayerID"
REBOOT_PATH = "control/reboot/?destinationType=player&destinationName={serial}"

COMMAND_BODIES: dict[str, dict[str, Any]] = {
    REBOOT_PLAYER: {},
    REBOOT_WITH_CRASH_REPORT: {"data": {"crash_report": True}},
}


@dataclass(frozen=True, slots=True)
class ControlRequest:
    """One control command addressed to one device."""

    property: str
    device_id: str
    value: str = ""

    @property
    def command(self) -> str:
        """Command name without its group prefix."""
        return self.property.split("#", 1)[1] if "#" in self.property else self.property


def is_successful(response: Any) -> bool:
    """True when ``data.result.success`` is ``"true"`` (any case)."""
    node = response
    for key in ("data", "result", "success"):
        if not isinstance(node, Mapping) or key not in node:
            return False
        node = node[key]
    return (stringify(node) or "").lower() == "true"


class ControlDispatcher:
    """Translate :class:`ControlRequest` objects into remote commands."""

    def __init__(
        self,
        transport: TransportPort,
        cache: DeviceCache,
        auth: TokenManager,
        *,
        control_url: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._auth = auth
        self._control_url = control_url.rstrip("/") + "/"
        self._clock = clock

    def resolve_serial(self, request: ControlRequest) -> str:
        """Player serial of the target device.

        Raises:
            DeviceNotFoundError: Unknown device, or blank serial.
        """
        record = self._cache.get(request.device_id)
        if record is None:
            msg = (
                f"Unable to control property: {request.property} "
                "as the device does not exist."
            )
            raise DeviceNotFoundError(msg)
        serial = record.raw_properties.get(SERIAL_PROPERTY, "").strip()
        if not serial:
            msg = (
                f"Unable to control property: {request.property} "
                "as the device serial not found."
            )
            raise DeviceNotFoundError(msg)
        return serial

    def dispatch(self, request: ControlRequest) -> None:
        """Issue one command.

        Raises:
            DeviceNotFoundError: Target cannot be resolved; no request
                is made.
            CommandFailedError: The command was not acknowledged.
            LoginFailedError, CredentialsFormatError,
            EndpointUnreachableError: A token could not be obtained.
        """
        serial = self.resolve_serial(request)
        body = COMMAND_BODIES.get(request.command)
        if body is None:
            logger.warning(
                "Unable to execute %s command on device %s: Not Supported",
                request.property,
                request.device_id,
            )
            return

        token = self._auth.ensure_authenticated()
        url = self._control_url + REBOOT_PATH.format(serial=quote(serial, safe=""))
        try:
            response = self._transport.put_json(url, body, token=token)
        except RequestFailedError as exc:
            msg = f"Unable to control property: {request.property}"
            raise CommandFailedError(msg) from exc
        if not is_successful(response):
            msg = f"Unable to control property: {request.property}"
            raise CommandFailedError(msg)
        logger.info("Executed %s on device %s", request.command, request.device_id)

    def dispatch_many(self, requests: Sequence[ControlRequest]) -> list[ErrorPayload]:
        """Issue each command independently.

        A failing command is logged and reported in the returned list;
        it does not stop the remaining commands.

        Raises:
            ValueError: If *requests* is empty.
        """
        if not requests:
            msg = "Control requests can not be null or empty"
            raise ValueError(msg)
        failures: list[ErrorPayload] = []
        for request in requests:
            try:
                self.dispatch(request)
            except Exception as exc:
                logger.error(
                    "Error when controlling property %s on device %s",
                    request.property,
                    request.device_id,
                    exc_info=True,
                )
                failures.append(
                    build_error_payload(
                        exc,
                        device=request.device_id,
                        details={"property": request.property},
                        clock=self._clock,
                    )
                )
        return failures
