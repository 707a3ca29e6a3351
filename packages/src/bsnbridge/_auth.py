"""Bearer-token lifecycle for the resource-owner password grant.

Credentials arrive as two strings, each holding two space-separated
parts::

    login    = "network/user client-id"
    password = "password client-secret"

:class:`TokenManager` derives the grant parameters from them, requests
a token, and renews it once :class:`AuthSession` reports it expired.
Any failure clears the session so the next call starts from scratch.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from bsnbridge._clock import ClockPort
from bsnbridge._errors import (
    CredentialsFormatError,
    EndpointUnreachableError,
    LoginFailedError,
    RequestFailedError,
)
from bsnbridge._transport import TransportPort, decode_body

logger = logging.getLogger(__name__)

TOKEN_PATH = "2022/06/REST/Token"

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Credentials:
    """Grant parameters split out of the login and password strings."""

    username: str
    password: str
    client_id: str
    client_secret: str

    @property
    def network_name(self) -> str | None:
        """Network part of ``network/user``, if present."""
        parts = self.username.split("/")
        return parts[0] if len(parts) == 2 else None

    @classmethod
    def parse(cls, login: str, password: str) -> Credentials:
        """Split *login* and *password* into grant parameters.

        Raises:
            CredentialsFormatError: If either string is blank or does not
                split into exactly two space-separated parts.
        """
        if not login or not login.strip() or not password or not password.strip():
            msg = "Username or Password field is empty. Please check device credentials"
            raise CredentialsFormatError(msg)
        login_parts = login.split(" ")
        if len(login_parts) != 2 or not all(login_parts):
            msg = "The format of Username field is incorrect. Please check again"
            raise CredentialsFormatError(msg)
        password_parts = password.split(" ")
        if len(password_parts) != 2 or not all(password_parts):
            msg = "The format of Password field is incorrect. Please check again"
            raise CredentialsFormatError(msg)
        return cls(
            username=login_parts[0],
            password=password_parts[0],
            client_id=login_parts[1],
            client_secret=password_parts[1],
        )

    def grant_form(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "password",
            "username": self.username,
            "password": self.password,
        }

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, client_id={self.client_id!r})"


@dataclass
class AuthSession:
    """Current bearer token and its issuance time.

    ``token`` and ``issued_at`` are set and cleared together.
    """

    ttl: float
    token: str | None = None
    issued_at: float | None = None

    def is_expired(self, now: float) -> bool:
        if self.token is None or self.issued_at is None:
            return True
        return now >= self.issued_at + self.ttl

    def store(self, token: str, issued_at: float) -> None:
        self.token = token
        self.issued_at = issued_at

    def clear(self) -> None:
        self.token = None
        self.issued_at = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TokenManager:
    """Obtain and renew the bearer token; safe under concurrent callers."""

    def __init__(
        self,
        transport: TransportPort,
        clock: ClockPort,
        *,
        login: str,
        password: str,
        ttl: float,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._login = login
        self._password = password
        self._session = AuthSession(ttl=ttl)
        self._credentials: Credentials | None = None
        self._lock = threading.Lock()

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._session.token

    @property
    def network_name(self) -> str | None:
        """Network name from the credentials last used for a token request."""
        with self._lock:
            return self._credentials.network_name if self._credentials else None

    def ensure_authenticated(self) -> str:
        """Return a valid token, requesting a new one if needed.

        Raises:
            CredentialsFormatError: Malformed credential strings; no
                request is made.
            LoginFailedError: The grant was rejected (``invalid_grant``).
            EndpointUnreachableError: Any other token request failure.
        """
        with self._lock:
            if self._session.token and not self._session.is_expired(self._clock.now()):
                return self._session.token
            self._credentials = Credentials.parse(self._login, self._password)
            return self._request_token(self._credentials)

    def invalidate(self) -> None:
        with self._lock:
            self._session.clear()

    def _request_token(self, credentials: Credentials) -> str:
        try:
            response = self._transport.post_form(TOKEN_PATH, credentials.grant_form())
        except RequestFailedError as exc:
            self._session.clear()
            if exc.status_code == 400 and _is_invalid_grant(exc.body):
                msg = "Unable to login. Please check device credentials"
                raise LoginFailedError(msg) from exc
            msg = "Unable to retrieve the authorization token, endpoint not reachable"
            raise EndpointUnreachableError(msg) from exc

        token = response.get("access_token") if isinstance(response, dict) else None
        if not token:
            self._session.clear()
            msg = "Unable to retrieve the authorization token, endpoint not reachable"
            raise EndpointUnreachableError(msg)

        token = str(token)
        self._session.store(token, self._clock.now())
        logger.info("Obtained access token for %s", credentials.username)
        return token


def _is_invalid_grant(body: str) -> bool:
    decoded = decode_body(body or "")
    return (
        isinstance(decoded, dict)
        and str(decoded.get("error", "")).lower() == "invalid_grant"
    )
