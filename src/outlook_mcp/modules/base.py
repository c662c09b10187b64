"""Abstract base class for server modules."""

from __future__ import annotations

import abc
from typing import Any


class Module(abc.ABC):
    """Abstract base class for server modules.

    A module contributes a group of MCP tools to the server and owns
    whatever collaborators those tools need. It never touches the transport.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique module name (e.g., 'calendar')."""
        ...

    @abc.abstractmethod
    async def register_tools(self, mcp: Any) -> None:
        """Register MCP tools on the server's FastMCP instance."""
        ...

    @abc.abstractmethod
    async def on_startup(self, config: Any) -> None:
        """Called once tools are registered, before the transport starts.

        Parameters
        ----------
        config:
            The validated :class:`~outlook_mcp.config.ServerConfig`.
        """
        ...

    @abc.abstractmethod
    async def on_shutdown(self) -> None:
        """Called during server shutdown."""
        ...
