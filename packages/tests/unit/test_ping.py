"""Unit tests for bsnbridge._ping: ICMP and TCP latency strategies.

Test Techniques Used:
    - Stub Testing: subprocess and socket replaced via monkeypatch
    - Error Condition Testing: Missing utility, refused and timed-out connects
    - Boundary Value Analysis: Sub-millisecond results floor at 1 ms
"""

from __future__ import annotations

import contextlib
import subprocess
from collections.abc import Iterator
from types import SimpleNamespace
from typing import Any

import pytest

from bsnbridge._errors import EndpointUnreachableError
from bsnbridge._ping import host_from_url, icmp_ping, ping_host, tcp_ping
from bsnbridge._settings import PingSettings

PING_OUTPUT = (
    "PING api.example.com (203.0.113.7) 56(84) bytes of data.\n"
    "64 bytes from 203.0.113.7: icmp_seq=1 ttl=57 time=23.6 ms\n"
)


def _completed(stdout: str, returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["ping"], returncode=returncode, stdout=stdout)


def _fake_perf_counter(monkeypatch: pytest.MonkeyPatch, values: list[float]) -> None:
    ticks: Iterator[float] = iter(values)
    monkeypatch.setattr("bsnbridge._ping.time", SimpleNamespace(perf_counter=lambda: next(ticks)))


class TestHostFromUrl:
    """Host extraction.

    Technique: Equivalence Partitioning.
    """

    @pytest.mark.parametrize(
        ("url", "host"),
        [
            ("https://api.bsn.cloud/", "api.bsn.cloud"),
            ("https://api.bsn.cloud:8443/x", "api.bsn.cloud"),
            ("api.bsn.cloud", "api.bsn.cloud"),
        ],
    )
    def test_host(self, url: str, host: str) -> None:
        assert host_from_url(url) == host


class TestIcmpPing:
    """System ping utility.

    Technique: Stub Testing.
    """

    def test_parses_time(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[list[str]] = []

        def run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            seen.append(args)
            return _completed(PING_OUTPUT)

        monkeypatch.setattr("bsnbridge._ping.subprocess.run", run)

        assert icmp_ping("api.example.com", timeout=2.0) == 24
        assert seen == [["ping", "-c", "1", "-W", "2", "api.example.com"]]

    def test_sub_millisecond_floors_at_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "bsnbridge._ping.subprocess.run",
            lambda *a, **k: _completed("64 bytes: icmp_seq=1 time<1 ms\n"),
        )
        assert icmp_ping("localhost") == 1

    def test_nonzero_exit_reports_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "bsnbridge._ping.subprocess.run",
            lambda *a, **k: _completed("", returncode=1),
        )
        assert icmp_ping("10.255.255.1", timeout=1.5) == 1500

    def test_missing_utility_reports_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def run(*args: Any, **kwargs: Any) -> None:
            raise FileNotFoundError("ping")

        monkeypatch.setattr("bsnbridge._ping.subprocess.run", run)
        assert icmp_ping("api.example.com") == 1000

    def test_hung_utility_reports_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def run(*args: Any, **kwargs: Any) -> None:
            raise subprocess.TimeoutExpired(cmd="ping", timeout=6)

        monkeypatch.setattr("bsnbridge._ping.subprocess.run", run)
        assert icmp_ping("api.example.com") == 1000


class TestTcpPing:
    """Averaged socket connects.

    Technique: Stub Testing.
    """

    def test_mean_of_attempts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        targets: list[tuple[str, int]] = []

        def connect(address: tuple[str, int], timeout: float) -> contextlib.nullcontext[None]:
            targets.append(address)
            return contextlib.nullcontext()

        monkeypatch.setattr("bsnbridge._ping.socket.create_connection", connect)
        _fake_perf_counter(monkeypatch, [0.0, 0.015625, 1.0, 1.03125, 2.0, 2.046875])

        assert tcp_ping("api.example.com", 443, attempts=3) == 31
        assert targets == [("api.example.com", 443)] * 3

    def test_fast_connects_floor_at_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "bsnbridge._ping.socket.create_connection",
            lambda *a, **k: contextlib.nullcontext(),
        )
        _fake_perf_counter(monkeypatch, [0.0, 0.0001])
        assert tcp_ping("localhost", 80, attempts=1) == 1

    @pytest.mark.parametrize("error", [TimeoutError("timed out"), ConnectionRefusedError()])
    def test_unreachable_raises(
        self, monkeypatch: pytest.MonkeyPatch, error: OSError
    ) -> None:
        def connect(*args: Any, **kwargs: Any) -> None:
            raise error

        monkeypatch.setattr("bsnbridge._ping.socket.create_connection", connect)

        with pytest.raises(EndpointUnreachableError, match="api.example.com:443"):
            tcp_ping("api.example.com", 443)

    def test_other_socket_error_reports_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def connect(*args: Any, **kwargs: Any) -> None:
            raise OSError("Name or service not known")

        monkeypatch.setattr("bsnbridge._ping.socket.create_connection", connect)
        assert tcp_ping("nowhere.invalid", 443, timeout=2.0) == 2000


class TestPingHost:
    """Strategy selection.

    Technique: Decision Table Testing.
    """

    def test_tcp_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple[Any, ...]] = []
        monkeypatch.setattr(
            "bsnbridge._ping.tcp_ping",
            lambda host, port, **kw: calls.append((host, port, kw)) or 5,
        )

        settings = PingSettings(mode="tcp", port=8443, attempts=2, timeout=0.5)

        assert ping_host("h", settings) == 5
        assert calls == [("h", 8443, {"attempts": 2, "timeout": 0.5})]

    def test_icmp_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("bsnbridge._ping.icmp_ping", lambda host, **kw: 7)
        assert ping_host("h", PingSettings()) == 7
