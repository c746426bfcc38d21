"""Command-line interface for shadowsync (Typer-based).

Three commands share one set of global options (``--version``,
``--log-level``, ``--log-format``, ``--env-file``)::

    shadowsync watch THING          # print every merged document
    shadowsync get THING            # print the current document once
    shadowsync update THING JSON    # submit one desired-state change

Each command connects to the broker configured in :class:`Settings`,
attaches a :class:`ShadowDevice` to an :class:`AwsShadowClient` and
runs until its work is done (``watch`` runs until interrupted).
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from collections.abc import AsyncIterator, Coroutine
from typing import Annotated, Any, get_args

import typer
from pydantic import ValidationError

from shadowsync._aws import AwsShadowClient
from shadowsync._connection import ShadowConnection
from shadowsync._device import DeviceInfo, ShadowDevice
from shadowsync._logging import configure_logging
from shadowsync._mqtt import MqttClient
from shadowsync._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "shadowsync"

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_UPDATE_NOT_APPLIED = 2
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

cli = typer.Typer(
    help="Keep a local view of AWS IoT device shadows in sync.",
    no_args_is_help=True,
)


def _version() -> str:
    from shadowsync import __version__  # noqa: PLC0415

    return __version__


# ---------------------------------------------------------------------------
# Connection wiring
# ---------------------------------------------------------------------------


@contextlib.asynccontextmanager
async def open_connection(settings: Settings) -> AsyncIterator[ShadowConnection]:
    """Start an MQTT client and yield a shadow connection on top of it."""
    mqtt = MqttClient(settings.mqtt)
    shadow = AwsShadowClient(
        mqtt,
        operation_timeout=settings.shadow.operation_timeout,
        qos=settings.shadow.qos,
    )
    await mqtt.start()
    try:
        yield shadow
    finally:
        await mqtt.stop()


@contextlib.asynccontextmanager
async def _open_device(settings: Settings, thing_name: str) -> AsyncIterator[ShadowDevice]:
    async with open_connection(settings) as connection:
        device = ShadowDevice(
            DeviceInfo(thing_name=thing_name, name=thing_name),
            connection,
            request_timeout=settings.shadow.request_timeout,
        )
        async with device:
            yield device


def _dump(document: Any) -> str:
    return json.dumps(document, indent=2, sort_keys=True)


# ---------------------------------------------------------------------------
# Command bodies
# ---------------------------------------------------------------------------


async def _watch(settings: Settings, thing_name: str) -> int:
    async with _open_device(settings, thing_name) as device:
        async for document in device.on_state.stream():
            typer.echo(_dump(document))
    return EXIT_OK


async def _get(settings: Settings, thing_name: str) -> int:
    async with _open_device(settings, thing_name) as device:
        try:
            document = await asyncio.wait_for(
                device.get_current_state(),
                settings.shadow.request_timeout,
            )
        except TimeoutError:
            logger.error(
                "No shadow snapshot for %s within %.1fs",
                thing_name,
                settings.shadow.request_timeout,
            )
            return EXIT_RUNTIME_ERROR
    typer.echo(_dump(document))
    return EXIT_OK


async def _update(settings: Settings, thing_name: str, changes: dict[str, Any]) -> int:
    async with _open_device(settings, thing_name) as device:
        result = await device.update(changes)
    typer.echo(
        _dump(
            {
                "outcome": result.outcome.value,
                "token": result.token,
                "reason": result.reason,
                "elapsed": round(result.elapsed, 3),
            },
        ),
    )
    return EXIT_OK if result.ok else EXIT_UPDATE_NOT_APPLIED


def _run(coro: Coroutine[Any, Any, int]) -> None:
    """Run one command body and translate its outcome into an exit code."""
    code = EXIT_OK
    try:
        with contextlib.suppress(KeyboardInterrupt):
            code = asyncio.run(coro)
    except Exception as exc:
        logger.error("Runtime error: %s", exc)
        sys.exit(EXIT_RUNTIME_ERROR)
    if code != EXIT_OK:
        raise typer.Exit(code)


def _settings(ctx: typer.Context) -> Settings:
    settings: Settings = ctx.obj
    return settings


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@cli.callback(invoke_without_command=True)
def main_callback(
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
    # -- version -------------------------------------------------------------
    if version_flag:
        typer.echo(f"{SERVICE_NAME} v{_version()}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    # -- validate enum-like options -----------------------------------------
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

    # -- build settings -----------------------------------------------------
    try:
        settings = Settings(_env_file=env_file)  # type: ignore[call-arg]
    except ValidationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc

    # -- apply CLI overrides ------------------------------------------------
    if log_level is not None:
        settings.logging = settings.logging.model_copy(
            update={"level": log_level.upper()},
        )

    if log_format is not None:
        settings.logging = settings.logging.model_copy(
            update={"format": log_format.lower()},
        )

    configure_logging(settings.logging, service=SERVICE_NAME, version=_version())
    ctx.obj = settings


@cli.command()
def watch(
    ctx: typer.Context,
    thing: Annotated[str, typer.Argument(help="Thing name of the shadow.")],
) -> None:
    """Print the merged shadow document every time it changes."""
    _run(_watch(_settings(ctx), thing))


@cli.command()
def get(
    ctx: typer.Context,
    thing: Annotated[str, typer.Argument(help="Thing name of the shadow.")],
) -> None:
    """Print the current merged shadow document."""
    _run(_get(_settings(ctx), thing))


@cli.command()
def update(
    ctx: typer.Context,
    thing: Annotated[str, typer.Argument(help="Thing name of the shadow.")],
    changes: Annotated[
        str,
        typer.Argument(help='Desired-state changes as a JSON object, e.g. \'{"a": 1}\'.'),
    ],
) -> None:
    """Submit one desired-state change and report its outcome."""
    try:
        parsed = json.loads(changes)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"not valid JSON: {exc}", param_hint="'CHANGES'") from exc
    if not isinstance(parsed, dict):
        raise typer.BadParameter("must be a JSON object", param_hint="'CHANGES'")
    _run(_update(_settings(ctx), thing, parsed))


def main() -> None:
    """Console-script entry point."""
    cli()
