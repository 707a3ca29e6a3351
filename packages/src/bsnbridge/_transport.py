"""HTTP transport port and httpx adapter.

Provides TransportPort (Protocol), :class:`HttpTransport`, the
production adapter backed by a shared ``httpx.Client``, and
:class:`MockTransport`, the routing test double re-exported from
:mod:`bsnbridge.testing`.

Design decisions:

- Paths are relative to ``base_url``; absolute ``http(s)://`` URLs
  (the remote-control service lives on a different host) pass through
  unchanged.
- The bearer token is supplied per call; the adapter holds no auth
  state, so token renewal never races an in-flight request.
- Bodies decode as JSON, falling back to raw text (the device-count
  endpoint answers with a bare number).  Empty bodies decode to
  ``None``.
- Non-2xx responses raise :class:`RequestFailedError` with the body;
  network failures raise it with ``status_code=0``.  No retries.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from bsnbridge._errors import RequestFailedError
from bsnbridge._settings import CloudSettings

logger = logging.getLogger(__name__)

_USER_AGENT = "bsnbridge/httpx"


@runtime_checkable
class TransportPort(Protocol):
    """Request/response execution against the device-management API."""

    def get(
        self,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        token: str | None = None,
    ) -> Any: ...

    def post_form(
        self,
        path: str,
        form: Mapping[str, str],
        *,
        token: str | None = None,
    ) -> Any: ...

    def put_json(
        self,
        path: str,
        body: Mapping[str, Any],
        *,
        token: str | None = None,
    ) -> Any: ...


def decode_body(text: str) -> Any:
    """Decode a response body: JSON when possible, else the raw text."""
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class HttpTransport:
    """Production :class:`TransportPort` adapter backed by ``httpx``.

    Usage::

        transport = HttpTransport.from_settings(settings.cloud)
        networks = transport.get("2022/06/REST/Self/Networks", token=token)
        transport.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        verify_tls: bool = True,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            msg = "base_url is required"
            raise ValueError(msg)
        self.base_url = base_url.rstrip("/") + "/"
        self._client = client or httpx.Client(
            verify=verify_tls,
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: CloudSettings) -> HttpTransport:
        return cls(
            settings.base_url,
            verify_tls=settings.verify_tls,
            timeout=settings.request_timeout,
        )

    # -- TransportPort methods ----------------------------------------------

    def get(
        self,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        token: str | None = None,
    ) -> Any:
        return self._request("GET", path, params=params, token=token)

    def post_form(
        self,
        path: str,
        form: Mapping[str, str],
        *,
        token: str | None = None,
    ) -> Any:
        return self._request("POST", path, data=dict(form), token=token)

    def put_json(
        self,
        path: str,
        body: Mapping[str, Any],
        *,
        token: str | None = None,
    ) -> Any:
        return self._request("PUT", path, json_body=dict(body), token=token)

    # -- Lifecycle ----------------------------------------------------------

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._client.close()

    # -- Internal -----------------------------------------------------------

    def full_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url + path.lstrip("/")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        data: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> Any:
        url = self.full_url(path)
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        start = time.monotonic()
        try:
            response = self._client.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RequestFailedError(status_code=0, url=url, message=str(exc)) from exc

        elapsed_ms = (time.monotonic() - start) * 1000
        if response.is_success:
            logger.debug(
                "%s %s -> %s in %.1fms",
                method,
                path,
                response.status_code,
                elapsed_ms,
            )
            return decode_body(response.text)

        logger.warning("%s %s -> %s", method, path, response.status_code)
        raise RequestFailedError(
            status_code=response.status_code,
            url=url,
            body=response.text,
            message=response.reason_phrase,
        )


# ---------------------------------------------------------------------------
# Test double
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransportCall:
    """One request recorded by :class:`MockTransport`."""

    method: str
    path: str
    params: dict[str, str] | None = None
    body: dict[str, Any] | None = None
    token: str | None = None


Reply = Any
"""A canned reply: a decoded body, an exception instance to raise, or a
callable receiving the :class:`TransportCall` and returning either."""


@dataclass
class MockTransport:
    """In-memory :class:`TransportPort` that routes requests to canned replies.

    Replies are registered per ``(method, path)``.  Several replies for
    one route are served in order and the last one repeats.  A route
    key containing a query string matches exactly; otherwise the query
    string of the request is ignored.  Unrouted requests raise
    :class:`RequestFailedError` with status 404.

    Usage::

        transport = MockTransport()
        transport.on_post("2022/06/REST/Token", {"access_token": "t"})
        transport.on_get("2022/06/REST/Devices", page_one, page_two)
    """

    calls: list[TransportCall] = field(default_factory=list)
    _routes: dict[tuple[str, str], list[Reply]] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _lock: threading.Lock = field(
        default_factory=threading.Lock,
        init=False,
        repr=False,
    )

    # -- Route registration -------------------------------------------------

    def on(self, method: str, path: str, *replies: Reply) -> None:
        """Register *replies* for ``method path``, replacing earlier ones."""
        if not replies:
            msg = "at least one reply is required"
            raise ValueError(msg)
        with self._lock:
            self._routes[(method.upper(), path)] = list(replies)

    def on_get(self, path: str, *replies: Reply) -> None:
        self.on("GET", path, *replies)

    def on_post(self, path: str, *replies: Reply) -> None:
        self.on("POST", path, *replies)

    def on_put(self, path: str, *replies: Reply) -> None:
        self.on("PUT", path, *replies)

    # -- TransportPort methods ----------------------------------------------

    def get(
        self,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        token: str | None = None,
    ) -> Any:
        params_copy = dict(params) if params is not None else None
        return self._dispatch(TransportCall("GET", path, params=params_copy, token=token))

    def post_form(
        self,
        path: str,
        form: Mapping[str, str],
        *,
        token: str | None = None,
    ) -> Any:
        return self._dispatch(TransportCall("POST", path, body=dict(form), token=token))

    def put_json(
        self,
        path: str,
        body: Mapping[str, Any],
        *,
        token: str | None = None,
    ) -> Any:
        return self._dispatch(TransportCall("PUT", path, body=dict(body), token=token))

    # -- Test helpers -------------------------------------------------------

    @property
    def call_count(self) -> int:
        """Number of recorded requests."""
        with self._lock:
            return len(self.calls)

    def calls_to(self, path: str, method: str | None = None) -> list[TransportCall]:
        """Recorded requests whose path (query string ignored) is *path*."""
        with self._lock:
            return [
                call
                for call in self.calls
                if _strip_query(call.path) == _strip_query(path)
                and (method is None or call.method == method.upper())
            ]

    def reset(self) -> None:
        """Clear recorded calls and routes."""
        with self._lock:
            self.calls.clear()
            self._routes.clear()

    def _dispatch(self, call: TransportCall) -> Any:
        with self._lock:
            self.calls.append(call)
            replies = self._routes.get((call.method, call.path))
            if replies is None:
                replies = self._routes.get((call.method, _strip_query(call.path)))
            if replies is None:
                raise RequestFailedError(404, call.path, message="no route registered")
            reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply):
            reply = reply(call)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def _strip_query(path: str) -> str:
    return path.split("?", 1)[0]
