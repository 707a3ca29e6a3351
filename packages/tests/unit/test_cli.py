"""Tests for bsnbridge._cli: Typer command-line front end.

Test Techniques Used:
    - Specification-based Testing: Global flags and command output
    - State-based Testing: Settings overrides reach the aggregator
    - Error Condition Testing: Invalid flags, config and login errors
    - Behavioural Testing: Exit codes
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from bsnbridge._aggregator import NETWORKS_PATH, BsnCloudAggregator
from bsnbridge._auth import TOKEN_PATH
from bsnbridge._cli import (
    EXIT_CONFIG_ERROR,
    EXIT_LOGIN_ERROR,
    EXIT_OK,
    EXIT_RUNTIME_ERROR,
    build_cli,
)
from bsnbridge._errors import RequestFailedError
from bsnbridge._inventory import DEVICE_COUNT_PATH, DEVICES_PATH
from bsnbridge._settings import CloudSettings, PollingSettings, Settings
from bsnbridge.testing import AggregatorHarness
from bsnbridge.testing._settings import _IsolatedSettings

REBOOT_URL = "https://ws.bsn.cloud/rest/v1/control/reboot/"
DEVICES = {
    "items": [
        {
            "id": 7,
            "model": "HD224",
            "serial": "SER7",
            "settings": {"name": "Lobby"},
            "status": {"health": "Warning"},
        }
    ],
    "isTruncated": "false",
}

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner() -> CliRunner:
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def configure_logging_mock() -> Iterator[MagicMock]:
    """Keep the CLI from replacing the root logger's handlers."""
    with patch("bsnbridge._cli.configure_logging") as mock:
        yield mock


@pytest.fixture
def harness() -> Iterator[AggregatorHarness]:
    harness = AggregatorHarness.create(polling=PollingSettings(tick=0.01))
    harness.grant_token()
    yield harness
    harness.aggregator.close()


class _Factory:
    """Aggregator factory that records the settings it was given."""

    def __init__(self, aggregator: BsnCloudAggregator) -> None:
        self.aggregator = aggregator
        self.settings: list[Settings] = []

    def __call__(self, settings: Settings) -> BsnCloudAggregator:
        self.settings.append(settings)
        return self.aggregator


def _cli(harness: AggregatorHarness, **kwargs: Any) -> tuple[Any, _Factory]:
    factory = _Factory(harness.aggregator)
    kwargs.setdefault("settings_class", _IsolatedSettings)
    kwargs.setdefault("version", "1.2.3")
    return build_cli(aggregator_factory=factory, **kwargs), factory


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


class TestGlobalOptions:
    """--version, --help and the logging overrides.

    Technique: Specification-based Testing.
    """

    def test_version(self, harness: AggregatorHarness, runner: CliRunner) -> None:
        cli, _ = _cli(harness)
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == EXIT_OK
        assert "bsnbridge v1.2.3" in result.output

    def test_version_wins_over_command(
        self, harness: AggregatorHarness, runner: CliRunner, configure_logging_mock: MagicMock
    ) -> None:
        cli, factory = _cli(harness)
        result = runner.invoke(cli, ["--version", "stats"])

        assert result.exit_code == EXIT_OK
        assert result.output.strip() == "bsnbridge v1.2.3"
        assert factory.settings == []
        configure_logging_mock.assert_not_called()

    def test_options_without_command_print_help(
        self, harness: AggregatorHarness, runner: CliRunner
    ) -> None:
        cli, factory = _cli(harness)
        result = runner.invoke(cli, ["--log-level", "DEBUG"])

        assert result.exit_code == EXIT_OK
        assert "stats" in result.output
        assert factory.settings == []

    def test_help_lists_commands(self, harness: AggregatorHarness, runner: CliRunner) -> None:
        cli, _ = _cli(harness)
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == EXIT_OK
        for command in ("stats", "devices", "control", "ping"):
            assert command in result.output

    def test_log_overrides_reach_settings(
        self,
        harness: AggregatorHarness,
        runner: CliRunner,
        configure_logging_mock: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("bsnbridge._aggregator.ping_host", lambda host, settings: 4)
        cli, factory = _cli(harness)

        result = runner.invoke(cli, ["--log-level", "debug", "--log-format", "TEXT", "ping"])

        assert result.exit_code == EXIT_OK
        [settings] = factory.settings
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "text"
        configure_logging_mock.assert_called_once_with(
            settings.logging, service="bsnbridge", version="1.2.3"
        )

    @pytest.mark.parametrize(
        "args",
        [["--log-level", "LOUD", "ping"], ["--log-format", "yaml", "ping"]],
        ids=["level", "format"],
    )
    def test_invalid_log_option(
        self, harness: AggregatorHarness, runner: CliRunner, args: list[str]
    ) -> None:
        cli, factory = _cli(harness)
        result = runner.invoke(cli, args)

        assert result.exit_code != EXIT_OK
        assert factory.settings == []


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    """Command output.

    Technique: Behavioural Testing.
    """

    def test_stats(self, harness: AggregatorHarness, runner: CliRunner) -> None:
        harness.transport.on_get(NETWORKS_PATH, [{"name": "acme"}])
        harness.transport.on_get(DEVICE_COUNT_PATH, 2)
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["stats"])

        assert result.exit_code == EXIT_OK
        assert json.loads(result.stdout) == {"Name": "Acme", "NumberOfDevices": "2"}

    def test_devices(self, harness: AggregatorHarness, runner: CliRunner) -> None:
        harness.transport.on_get(DEVICES_PATH, DEVICES)
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["devices", "--wait", "5"])

        assert result.exit_code == EXIT_OK
        [device] = json.loads(result.stdout)
        assert device["deviceId"] == "7"
        assert device["deviceName"] == "Lobby"
        assert device["properties"]["DeviceStatus"] == "Idle"

    def test_devices_filtered_by_id(
        self, harness: AggregatorHarness, runner: CliRunner
    ) -> None:
        harness.transport.on_get(DEVICES_PATH, DEVICES)
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["devices", "--wait", "5", "--id", "8"])

        assert result.exit_code == EXIT_OK
        assert json.loads(result.stdout) == []

    def test_control(self, harness: AggregatorHarness, runner: CliRunner) -> None:
        harness.transport.on_get(DEVICES_PATH, DEVICES)
        harness.transport.on_put(REBOOT_URL, {"data": {"result": {"success": "true"}}})
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["control", "7", "Controls#Reboot Player", "--wait", "5"])

        assert result.exit_code == EXIT_OK
        assert "Controls#Reboot Player: sent to 7" in result.stdout
        assert len(harness.transport.calls_to(REBOOT_URL, "PUT")) == 1

    def test_ping(
        self,
        harness: AggregatorHarness,
        runner: CliRunner,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("bsnbridge._aggregator.ping_host", lambda host, settings: 42)
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["ping"])

        assert result.exit_code == EXIT_OK
        assert result.stdout.strip() == "42"


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class TestExitCodes:
    """Exit code mapping.

    Technique: Error Condition Testing.
    """

    def test_exit_code_constants(self) -> None:
        assert (EXIT_OK, EXIT_CONFIG_ERROR, EXIT_LOGIN_ERROR, EXIT_RUNTIME_ERROR) == (0, 1, 2, 3)

    def test_config_error_exits_one(
        self, harness: AggregatorHarness, runner: CliRunner
    ) -> None:
        class BadSettings(_IsolatedSettings):
            required_field: str

        cli, _ = _cli(harness, settings_class=BadSettings)
        result = runner.invoke(cli, ["stats"])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_rejected_login_exits_two(self, runner: CliRunner) -> None:
        harness = AggregatorHarness.create()
        harness.transport.on_post(
            TOKEN_PATH, RequestFailedError(400, TOKEN_PATH, body='{"error":"invalid_grant"}')
        )
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["devices", "--wait", "0"])

        assert result.exit_code == EXIT_LOGIN_ERROR
        assert not harness.aggregator.is_running

    def test_malformed_credentials_exit_two(self, runner: CliRunner) -> None:
        harness = AggregatorHarness.create(cloud=CloudSettings(login="x", password="y"))
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["stats"])

        assert result.exit_code == EXIT_LOGIN_ERROR
        assert harness.transport.call_count == 0

    def test_runtime_error_exits_three(
        self, harness: AggregatorHarness, runner: CliRunner
    ) -> None:
        harness.transport.on_get(NETWORKS_PATH, RequestFailedError(503, NETWORKS_PATH))
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["stats"])

        assert result.exit_code == EXIT_RUNTIME_ERROR

    def test_unknown_device_exits_three(
        self, harness: AggregatorHarness, runner: CliRunner
    ) -> None:
        harness.transport.on_get(DEVICES_PATH, DEVICES)
        cli, _ = _cli(harness)

        result = runner.invoke(cli, ["control", "99", "Reboot Player", "--wait", "5"])

        assert result.exit_code == EXIT_RUNTIME_ERROR
