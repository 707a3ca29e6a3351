"""Command-line front end (Typer-based).

Provides :func:`build_cli`, which constructs a Typer app with global
options (``--version``, ``--log-level``, ``--log-format``,
``--env-file``) and one command per aggregator entry point::

    bsnbridge stats
    bsnbridge devices --wait 15 --id 123 --id 456
    bsnbridge control 123 "Controls#Reboot Player"
    bsnbridge ping

Results are printed to stdout as JSON; logs go to stderr.
"""

from __future__ import annotations

import contextlib
import json
import logging
import time
from collections.abc import Callable, Iterator
from typing import Annotated, get_args

import typer
from pydantic import ValidationError

from bsnbridge._aggregator import BsnCloudAggregator
from bsnbridge._errors import CredentialsFormatError, LoginFailedError
from bsnbridge._logging import configure_logging
from bsnbridge._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_LOGIN_ERROR = 2
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)

_POLL_CHECK_INTERVAL = 0.1

AggregatorFactory = Callable[[Settings], BsnCloudAggregator]


@contextlib.contextmanager
def _exit_on_error() -> Iterator[None]:
    """Translate domain failures into exit codes."""
    try:
        yield
    except (CredentialsFormatError, LoginFailedError) as exc:
        logger.error("Login error: %s", exc)
        raise SystemExit(EXIT_LOGIN_ERROR) from exc
    except Exception as exc:
        logger.error("Runtime error: %s", exc)
        raise SystemExit(EXIT_RUNTIME_ERROR) from exc


def _wait_for_first_poll(aggregator: BsnCloudAggregator, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while aggregator.fetcher.last_result is None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning("No inventory poll completed within %.1fs", timeout)
            return
        time.sleep(min(_POLL_CHECK_INTERVAL, remaining))


def _collect_inventory(aggregator: BsnCloudAggregator, wait: float) -> None:
    # Surface credential problems up front; the poller only logs them.
    aggregator.auth.ensure_authenticated()
    aggregator.notify_alive_and_get_inventory()
    with contextlib.suppress(KeyboardInterrupt):
        _wait_for_first_poll(aggregator, wait)


def build_cli(
    *,
    settings_class: type[Settings] = Settings,
    aggregator_factory: AggregatorFactory = BsnCloudAggregator,
    version: str | None = None,
) -> typer.Typer:
    """Construct the ``bsnbridge`` Typer app.

    Args:
        settings_class: Settings model instantiated from the env file.
        aggregator_factory: Builds the aggregator for each command.
        version: Version string for ``--version``; defaults to the
            installed package version.

    Returns:
        A configured :class:`typer.Typer` ready to invoke.
    """
    if version is None:
        from bsnbridge import __version__

        version = __version__

    cli = typer.Typer(
        help=f"bsnbridge v{version}: cloud device-management aggregator.",
        no_args_is_help=True,
    )

    # -- global options -----------------------------------------------------

    @cli.callback(invoke_without_command=True)
    def main(
        ctx: typer.Context,
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"bsnbridge v{version}")
            raise typer.Exit()
        if ctx.invoked_subcommand is None:
            typer.echo(ctx.get_help())
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        try:
            settings = settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )
        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )

        configure_logging(settings.logging, service="bsnbridge", version=version)
        ctx.obj = settings

    # -- commands -----------------------------------------------------------

    @cli.command()
    def stats(ctx: typer.Context) -> None:
        """Print network information and device count."""
        with _exit_on_error(), aggregator_factory(ctx.obj) as aggregator:
            statistics = aggregator.get_statistics()
        typer.echo(json.dumps(statistics.as_dict(), indent=2, sort_keys=True))

    @cli.command()
    def devices(
        ctx: typer.Context,
        wait: Annotated[
            float,
            typer.Option("--wait", min=0, help="Seconds to wait for the first poll."),
        ] = 10.0,
        ids: Annotated[
            list[str] | None,
            typer.Option("--id", help="Only report this device (repeatable)."),
        ] = None,
    ) -> None:
        """Poll the inventory once and print normalized devices."""
        with _exit_on_error(), aggregator_factory(ctx.obj) as aggregator:
            _collect_inventory(aggregator, wait)
            snapshots = aggregator.notify_alive_and_get_inventory(ids or None)
        typer.echo(json.dumps([snapshot.to_dict() for snapshot in snapshots], indent=2))

    @cli.command()
    def control(
        ctx: typer.Context,
        device_id: Annotated[str, typer.Argument(help="Target device id.")],
        property_name: Annotated[
            str,
            typer.Argument(metavar="PROPERTY", help="Control name, e.g. 'Reboot Player'."),
        ],
        wait: Annotated[
            float,
            typer.Option("--wait", min=0, help="Seconds to wait for the inventory."),
        ] = 10.0,
    ) -> None:
        """Send one control command to a device."""
        with _exit_on_error(), aggregator_factory(ctx.obj) as aggregator:
            _collect_inventory(aggregator, wait)
            aggregator.dispatch_control(property_name, device_id)
        typer.echo(f"{property_name}: sent to {device_id}")

    @cli.command()
    def ping(ctx: typer.Context) -> None:
        """Print the latency to the management endpoint in milliseconds."""
        with _exit_on_error(), aggregator_factory(ctx.obj) as aggregator:
            latency = aggregator.ping()
        typer.echo(str(latency))

    return cli


def main() -> None:
    """Console-script entry point."""
    build_cli()()
