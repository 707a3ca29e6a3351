"""Round-trip latency to the management endpoint.

Two strategies, selected by :attr:`PingSettings.mode`:

- ``ICMP``: one echo request through the system ``ping`` utility,
  latency parsed from its ``time=<ms>`` output.
- ``TCP``: ``attempts`` plain socket connects to ``host:port``,
  averaged.  Useful where ICMP is filtered.

Results are whole milliseconds.
"""

from __future__ import annotations

import logging
import math
import re
import socket
import subprocess
import time
from urllib.parse import urlsplit

from bsnbridge._errors import EndpointUnreachableError
from bsnbridge._settings import PingSettings

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"time[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*ms")


def ping_host(host: str, settings: PingSettings) -> int:
    """Measure latency to *host* with the configured strategy."""
    if settings.mode == "TCP":
        return tcp_ping(host, settings.port, attempts=settings.attempts, timeout=settings.timeout)
    return icmp_ping(host, timeout=settings.timeout)


def host_from_url(url: str) -> str:
    """``https://api.bsn.cloud/`` -> ``api.bsn.cloud``."""
    return urlsplit(url).hostname or url


def _timeout_ms(timeout: float) -> int:
    return max(1, math.ceil(timeout * 1000))


def icmp_ping(host: str, *, timeout: float = 1.0) -> int:
    """One ICMP echo via the system ``ping`` utility.

    Returns the timeout (in ms) when the utility is missing, the host
    does not answer, or the output cannot be parsed.
    """
    try:
        result = subprocess.run(
            ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout))), host],
            capture_output=True,
            text=True,
            timeout=timeout + 5,
            check=False,
        )
    except FileNotFoundError:
        logger.warning("ping utility not available; reporting timeout")
        return _timeout_ms(timeout)
    except subprocess.TimeoutExpired:
        logger.debug("ping to %s did not finish in time", host)
        return _timeout_ms(timeout)

    match = _TIME_RE.search(result.stdout or "")
    if result.returncode != 0 or match is None:
        logger.debug("ping to %s failed (rc=%s)", host, result.returncode)
        return _timeout_ms(timeout)
    return max(1, round(float(match.group(1))))


def tcp_ping(host: str, port: int, *, attempts: int = 3, timeout: float = 1.0) -> int:
    """Mean connect time over *attempts* TCP connects, at least 1 ms.

    Raises:
        EndpointUnreachableError: A connect timed out or was refused.
    """
    total_ms = 0.0
    for attempt in range(1, attempts + 1):
        started = time.perf_counter()
        try:
            with socket.create_connection((host, port), timeout=timeout):
                elapsed_ms = (time.perf_counter() - started) * 1000
        except (TimeoutError, ConnectionRefusedError) as exc:
            logger.debug(
                "PING DISCONNECTED: connection to %s:%d failed within %.1fs",
                host,
                port,
                timeout,
            )
            msg = f"Connection to {host}:{port} did not succeed: {exc}"
            raise EndpointUnreachableError(msg) from exc
        except OSError as exc:
            logger.warning("PING TIMEOUT: connection to %s failed: %s", host, exc)
            return _timeout_ms(timeout)
        logger.debug(
            "PING OK: attempt #%d to %s:%d took %.1f ms", attempt, host, port, elapsed_ms
        )
        total_ms += elapsed_ms
    return max(1, int(total_ms / attempts))
