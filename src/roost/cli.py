from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import NoReturn

import anyio
import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError, EngineSettings, load_settings
from .context import EngineContext
from .dispatcher import Dispatcher
from .events import SessionEvent
from .logging import get_logger, setup_logging
from .runtime import Outbox, read_jsonl_updates, run_engine

logger = get_logger(__name__)

_CONFIG_OPTION = typer.Option(
    None, "--config", help="Path to roost.toml (defaults to ROOST_CONFIG or ./roost.toml)."
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _exit_config_error(exc: ConfigError) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


def _settings_or_default(config: Path | None) -> EngineSettings:
    try:
        settings, _ = load_settings(config)
    except ConfigError as exc:
        if config is not None:
            _exit_config_error(exc)
        return EngineSettings()
    return settings


def load_setup(ref: str) -> Callable[[Dispatcher], object]:
    """Resolve ``module:attr`` to the callable that registers builders."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"expected module:attr, got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name!r}: {exc}") from exc
    target: object = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}") from None
    if not callable(target):
        raise typer.BadParameter(f"{ref!r} is not callable")
    return target


def _to_jsonable(value: object) -> object:
    if isinstance(value, SessionEvent):
        return value.to_dict()
    if isinstance(value, dict | list | str | int | float | bool) or value is None:
        return value
    return repr(value)


def check_config(config: Path | None = _CONFIG_OPTION) -> None:
    """Validate the config file and print the resolved settings."""
    try:
        settings, config_path = load_settings(config)
    except ConfigError as exc:
        _exit_config_error(exc)
    table = Table(title=str(config_path))
    table.add_column("setting")
    table.add_column("value")
    data = asdict(settings)
    flood = data.pop("flood")
    permissions = data.pop("permissions")
    for key, value in data.items():
        table.add_row(key, str(value))
    for key, value in flood.items():
        table.add_row(f"flood.{key}", str(value))
    for name, members in sorted(permissions.items()):
        table.add_row(f"permissions.{name}", ", ".join(str(m) for m in sorted(members)))
    Console().print(table)


def replay(
    updates: Path = typer.Argument(..., help="JSONL file with one update per line."),
    app: str = typer.Option(
        ..., "--app", help="module:attr of a setup(dispatcher) callable."
    ),
    config: Path | None = _CONFIG_OPTION,
    debug: bool = typer.Option(False, "--debug", help="Log debug output."),
) -> None:
    """Dispatch recorded updates and print what the sessions send out."""
    setup_logging(debug=debug)
    setup = load_setup(app)
    if not updates.is_file():
        typer.echo(f"error: {updates} is not a file", err=True)
        raise typer.Exit(code=1)
    settings = _settings_or_default(config)
    outbox = Outbox()
    dispatcher = Dispatcher(
        EngineContext(
            settings=settings,
            send_request=outbox.send_request,
            send_event=outbox.send_event,
        )
    )
    setup(dispatcher)

    async def _print_request(request: object) -> None:
        typer.echo(json.dumps({"type": "request", "request": _to_jsonable(request)}))

    async def _print_event(event: SessionEvent) -> None:
        typer.echo(json.dumps(event.to_dict(), default=str))

    async def _run() -> int:
        return await run_engine(
            dispatcher,
            read_jsonl_updates(updates),
            outbox=outbox,
            on_request=_print_request,
            on_event=_print_event,
        )

    count = anyio.run(_run)
    logger.info("replay.done", updates=count, sessions=len(dispatcher.sessions()))


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        help="Session and update-routing engine for chat bots.",
    )

    @app.callback()
    def _main(
        version: bool = typer.Option(
            False,
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ) -> None:
        pass

    app.command(name="check-config")(check_config)
    app.command(name="replay")(replay)
    return app


def main() -> None:
    app = create_app()
    app()
