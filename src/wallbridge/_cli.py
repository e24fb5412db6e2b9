"""Command-line entrypoint (Typer-based).

Parses ``--version``, ``--log-level``, ``--log-format``, ``--env-file``
plus the single-device shortcuts ``--ip`` and ``--poll-interval-ms``,
then hands off to :meth:`Bridge.run_async`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from wallbridge._settings import DeviceConfig, LoggingSettings

if TYPE_CHECKING:
    from wallbridge._app import Bridge
    from wallbridge._settings import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def _override_device(
    settings: Settings,
    *,
    ip: str | None,
    poll_interval_ms: int | None,
) -> None:
    """Apply ``--ip`` / ``--poll-interval-ms`` to the single configured device.

    Only explicitly set fields are carried over so that default
    substitution is still reported for the rest.
    """
    if ip is None and poll_interval_ms is None:
        return
    if len(settings.devices) != 1:
        msg = "--ip/--poll-interval-ms need exactly one configured device"
        raise ValueError(msg)
    raw = settings.devices[0].model_dump(exclude_unset=True)
    if ip is not None:
        raw["address"] = ip
    if poll_interval_ms is not None:
        raw["poll_interval_ms"] = poll_interval_ms
    settings.devices = [DeviceConfig.model_validate(raw)]


def build_cli(bridge: Bridge) -> typer.Typer:
    """Construct a Typer CLI for *bridge*."""
    cli = typer.Typer(help=f"{bridge.name} v{bridge.version}: {bridge.description}")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
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
        ip: Annotated[
            str | None,
            typer.Option("--ip", help="Wall connector address (single device)."),
        ] = None,
        poll_interval_ms: Annotated[
            int | None,
            typer.Option(
                "--poll-interval-ms",
                min=1,
                help="Poll interval in milliseconds (single device).",
            ),
        ] = None,
    ) -> None:
        if version_flag:
            typer.echo(f"{bridge.name} v{bridge.version}")
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
            settings: Settings = bridge.settings_class(  # type: ignore[call-arg]
                _env_file=env_file,
            )
            _override_device(settings, ip=ip, poll_interval_ms=poll_interval_ms)
        except (ValidationError, ValueError) as exc:
            logger.error("Configuration error: %s", exc)
            typer.echo(f"Configuration error: {exc}", err=True)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )
        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(bridge.run_async(settings=settings))
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """Console-script entrypoint."""
    from wallbridge import __version__
    from wallbridge._app import Bridge

    Bridge(version=__version__).cli()
