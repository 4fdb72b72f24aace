"""CLI entry point for Alarm Engine."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from . import __version__
from .config import DEFAULT_CONFIG_PATH
from .exceptions import AlarmEngineError


# ── Helpers ──────────────────────────────────────────────


def _parse_params(pairs: tuple[str, ...]) -> dict[str, str]:
    """Turn ``key=value`` pairs into a dict."""
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="-p")
        params[key.strip()] = value
    return params


def _echo_json(value: object) -> None:
    click.echo(json.dumps(value, indent=2, default=str))


def _build_service(config_path: str | None, persist: bool):
    from .config import load_config
    from .service import AlarmService

    config = load_config(config_path)
    path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
    return AlarmService(config, config_path=path if persist else None)


# ── CLI Commands ─────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="alarm-engine")
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option("--log-level", default=None, help="Override log level (DEBUG, INFO, ...)")
@click.option("--log-file", default=None, help="Also log to this rotating file")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Alarm Engine — alarm lifecycle, history and live streams."""
    from .logging_setup import configure_logging

    configure_logging(log_level or "INFO", log_file)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@main.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the alarm service until interrupted."""
    service = _build_service(ctx.obj["config_path"], persist=True)
    if ctx.obj["log_level"]:
        service.config.log_level = ctx.obj["log_level"]

    async def _run() -> None:
        await service.start()
        click.echo(
            f"Alarm service running ({len(service.get_alarm_classes())} classes). "
            "Press Ctrl+C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            await service.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("\nStopped.")


@main.command("actions")
@click.pass_context
def list_actions(ctx: click.Context) -> None:
    """List the actions the service exposes."""
    service = _build_service(ctx.obj["config_path"], persist=False)

    async def _list() -> None:
        await service.start()
        try:
            for name in service.actions.names():
                spec = service.actions.get(name)
                params = ", ".join(
                    f"{p.name}:{p.type.value}{'*' if p.required else ''}"
                    for p in spec.parameters
                )
                click.echo(f"  {name} ({params}) -> {spec.result_type.value}")
        finally:
            await service.stop()

    asyncio.run(_list())


@main.command()
@click.argument("name")
@click.option("-p", "--param", "params", multiple=True, help="key=value parameter")
@click.option(
    "--follow", is_flag=True, help="Keep printing stream updates until Ctrl+C"
)
@click.pass_context
def invoke(ctx: click.Context, name: str, params: tuple[str, ...], follow: bool) -> None:
    """Start the service, run one action and print its result as JSON."""
    from .actions import ResultType

    service = _build_service(ctx.obj["config_path"], persist=False)
    config_path = Path(ctx.obj["config_path"] or DEFAULT_CONFIG_PATH).expanduser()
    values = _parse_params(params)

    async def _invoke() -> None:
        await service.start()
        try:
            spec = service.actions.get(name)
            if spec.result_type is ResultType.STREAM and not follow:
                values.setdefault("Stream Updates", "false")
            result = await service.actions.invoke(name, values)
            if spec.result_type is ResultType.STREAM:
                async for row in result:
                    _echo_json(row)
            elif spec.result_type is not ResultType.NONE:
                _echo_json(result)
            else:
                click.echo("OK")
            if not spec.read_only:
                service.save(config_path)
        finally:
            await service.stop()

    try:
        asyncio.run(_invoke())
    except AlarmEngineError as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        click.echo("\nStopped.")


@main.command("init-config")
@click.option("--force", is_flag=True, help="Overwrite an existing config")
@click.pass_context
def init_config(ctx: click.Context, force: bool) -> None:
    """Write a default config file."""
    from .config import AlarmClassConfig, AlarmServiceConfig, save_config

    path = Path(ctx.obj["config_path"] or DEFAULT_CONFIG_PATH).expanduser()
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    config = AlarmServiceConfig(alarm_classes=[AlarmClassConfig(name="Default")])
    saved = save_config(config, path)
    click.echo(f"Config written to {saved}")


if __name__ == "__main__":
    main()
