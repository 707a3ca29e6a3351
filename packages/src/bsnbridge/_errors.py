"""Exception taxonomy and structured error payloads.

Every failure the bridge surfaces to its host derives from
:class:`BsnBridgeError`.  The host decides device reachability from
which of these it receives:

=============================  ==========================================
Exception                      Raised when
=============================  ==========================================
``CredentialsFormatError``     login/password strings are blank or do not
                               split into exactly two parts
``LoginFailedError``           the token endpoint rejects the grant
``EndpointUnreachableError``   any other auth or statistics fetch failure
``DeviceNotFoundError``        a control targets an unknown device or one
                               without a serial
``CommandFailedError``         a control response lacks the success flag
``RequestFailedError``         the transport received a non-2xx response
                               or could not reach the server
=============================  ==========================================

Batch control dispatch absorbs per-command failures; it reports them
as :class:`ErrorPayload` value objects built by
:func:`build_error_payload` so callers can forward them without
re-parsing logs.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BsnBridgeError(Exception):
    """Base class for all bsnbridge errors."""


class CredentialsFormatError(BsnBridgeError):
    """Login or password string is blank or malformed."""


class LoginFailedError(BsnBridgeError):
    """The upstream token endpoint rejected the credentials."""


class EndpointUnreachableError(BsnBridgeError):
    """An upstream endpoint could not be reached or answered unusably."""


class DeviceNotFoundError(BsnBridgeError):
    """A control command targets a device that cannot be resolved."""


class CommandFailedError(BsnBridgeError):
    """A control command was sent but not acknowledged as successful."""


class RequestFailedError(BsnBridgeError):
    """HTTP or transport failure, with response context.

    ``status_code`` is ``0`` when no HTTP response was received
    (connection refused, DNS failure, timeout).
    """

    def __init__(
        self,
        status_code: int,
        url: str,
        body: str = "",
        message: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        self.body = body
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"RequestFailedError(status={self.status_code}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    CredentialsFormatError: "credentials_format",
    LoginFailedError: "login_failed",
    EndpointUnreachableError: "endpoint_unreachable",
    DeviceNotFoundError: "device_not_found",
    CommandFailedError: "command_failed",
    RequestFailedError: "request_failed",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured description of one absorbed failure."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    The exception's class is looked up first, then its base classes in
    MRO order, so a subclass of a mapped error inherits its type.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.  Defaults to
            :data:`DEFAULT_ERROR_TYPES`; unmapped types fall back to
            ``"error"``.
        device: Optional device id to include in the payload.
        details: Optional additional context.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = DEFAULT_ERROR_TYPES if error_type_map is None else error_type_map
    error_type = next(
        (resolved_map[cls] for cls in type(error).__mro__ if cls in resolved_map),
        "error",
    )
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
    )
