"""FastMCP server assembly and stdio entry point."""

from __future__ import annotations

import logging
import sys

from fastmcp import FastMCP

from outlook_mcp.config import ConfigError, ServerConfig
from outlook_mcp.core.bridge import ProcessBridge
from outlook_mcp.core.telemetry import init_telemetry
from outlook_mcp.modules.base import Module
from outlook_mcp.modules.calendar import CalendarModule, OutlookCalendarClient

logger = logging.getLogger(__name__)


def ensure_platform(config: ServerConfig, platform: str | None = None) -> None:
    """Refuse to run off Windows unless the config opts out.

    Raises
    ------
    ConfigError
        If ``require_windows`` is set and the platform is not ``win32``.
    """
    platform = platform or sys.platform
    if config.require_windows and platform != "win32":
        raise ConfigError(
            f"This server only works on Windows (platform is {platform!r}): it drives "
            "Outlook through COM automation. Set server.require_windows = false to run "
            "against another PowerShell host."
        )


def build_modules(config: ServerConfig) -> list[Module]:
    """Instantiate the server's modules from *config*."""
    bridge = ProcessBridge(config.bridge)
    return [CalendarModule(OutlookCalendarClient(bridge))]


async def create_server(
    config: ServerConfig, modules: list[Module] | None = None
) -> tuple[FastMCP, list[Module]]:
    """Create the FastMCP instance and register every module's tools."""
    mcp = FastMCP(config.name)
    modules = modules if modules is not None else build_modules(config)
    for module in modules:
        await module.register_tools(mcp)
        logger.debug("Registered tools for module %s", module.name)
    return mcp, modules


async def serve(config: ServerConfig) -> None:
    """Run the server over stdio until the client disconnects."""
    ensure_platform(config)
    init_telemetry(config.name)

    mcp, modules = await create_server(config)
    for module in modules:
        await module.on_startup(config)

    logger.info(
        "%s running on stdio (platform=%s, script=%s)",
        config.name,
        sys.platform,
        config.bridge.script_path,
    )
    try:
        await mcp.run_async(transport="stdio")
    finally:
        for module in reversed(modules):
            try:
                await module.on_shutdown()
            except Exception:
                logger.exception("Error shutting down module %s", module.name)
