"""CLI for the Outlook calendar MCP server."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from outlook_mcp import __version__
from outlook_mcp.config import ConfigError, ServerConfig, load_config
from outlook_mcp.core.bridge import BridgeFailed, ProcessBridge
from outlook_mcp.core.logging import configure_logging
from outlook_mcp.modules.calendar import CalendarAction
from outlook_mcp.server import ensure_platform
from outlook_mcp.server import serve as run_server

logger = logging.getLogger(__name__)


def _load(ctx: click.Context) -> ServerConfig:
    """Load config from the group's ``--config`` option, exiting on error."""
    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)

    configure_logging(
        level=ctx.obj.get("log_level") or config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        server_name=config.name,
    )
    return config


def _parse_params(raw: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected Name=Value, got {item!r}", param_hint="--param")
        params[name.strip()] = value
    return params


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to outlook-mcp.toml (defaults to $OUTLOOK_MCP_CONFIG or ./outlook-mcp.toml)",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """Outlook calendar MCP server driven through PowerShell."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the MCP server on stdio."""
    config = _load(ctx)
    try:
        asyncio.run(run_server(config))
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


@cli.command()
@click.argument("action", type=click.Choice([a.value for a in CalendarAction]))
@click.option(
    "-p",
    "--param",
    "params",
    multiple=True,
    help="Script parameter as Name=Value (repeatable), e.g. -p EventId=0000ABC",
)
@click.pass_context
def invoke(ctx: click.Context, action: str, params: tuple[str, ...]) -> None:
    """Run one calendar script ACTION and print its JSON payload."""
    parameters = _parse_params(params)
    config = _load(ctx)
    bridge = ProcessBridge(config.bridge)

    try:
        result = asyncio.run(bridge.execute(action, parameters))
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--param") from exc

    if isinstance(result, BridgeFailed):
        click.echo(f"Error: {result.message}", err=True)
        sys.exit(1)
    click.echo(json.dumps(result.payload, indent=2))


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check that the interpreter and calendar script are available."""
    config = _load(ctx)
    problems = ProcessBridge(config.bridge).check_environment()
    try:
        ensure_platform(config)
    except ConfigError as exc:
        problems.append(str(exc))

    click.echo(f"Interpreter: {config.bridge.interpreter}")
    click.echo(f"Script:      {config.bridge.script_path}")
    if not problems:
        click.echo("OK")
        return
    for problem in problems:
        click.echo(f"  - {problem}")
    sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
