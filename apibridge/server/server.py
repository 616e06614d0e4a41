"""MCP server object returned by ``APIBridge.generate_mcp_server``."""

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core import events
from ..core.config import MCPOptions
from ..core.errors import ConfigurationError
from ..core.models import Tool
from .dispatch import HTTPDispatcher
from .fastmcp_export import register_with_fastmcp
from .protocol import MCPProtocolHandler
from .transports import TRANSPORTS, BaseTransport, HTTPTransport, SSETransport

if TYPE_CHECKING:
    from ..core.bridge import APIBridge

logger = logging.getLogger(__name__)


class MCPServer:
    """
    A generated tool set bound to one transport.

    The tool set is fixed at construction. ``start`` may be called once per
    stop; calling it while running raises ``ConfigurationError``.
    """

    def __init__(
        self,
        tools: Dict[str, Tool],
        options: MCPOptions,
        bridge: Optional["APIBridge"] = None,
        dispatcher: Optional[HTTPDispatcher] = None,
        transport: Optional[BaseTransport] = None,
    ):
        self.tools = tools
        self.options = options
        self.bridge = bridge
        self.dispatcher = dispatcher
        self.protocol = MCPProtocolHandler(
            tools,
            server_info={
                "name": options.name or "apibridge",
                "version": options.version or "1.0.0",
            },
            capabilities=options.capabilities.to_dict(),
            listeners=[self._on_protocol_event],
        )
        self.transport = transport or self._create_transport()
        self._start_time: Optional[float] = None

    def _create_transport(self) -> BaseTransport:
        transport_cls = TRANSPORTS.get(self.options.transport)
        if transport_cls is None:
            raise ConfigurationError(f"Unsupported transport: {self.options.transport}")
        if transport_cls in (HTTPTransport, SSETransport):
            return transport_cls(
                self.protocol,
                host=self.options.host,
                port=self.options.port,
                cors=self.options.cors,
            )
        return transport_cls(self.protocol)

    def _on_protocol_event(self, event: str, data: Any) -> None:
        if self.bridge is None:
            return
        event_type = {
            "request": events.MCP_REQUEST,
            "response": events.MCP_RESPONSE,
            "error": events.MCP_ERROR,
        }.get(event)
        if event_type:
            self.bridge.events.emit(event_type, data)

    async def start(self) -> None:
        """
        Start the transport.

        Raises:
            ConfigurationError: If the server is already running or the
                transport fails to start
        """
        if self.is_running():
            raise ConfigurationError("MCP server is already running")

        try:
            await self.transport.start()
        except Exception as e:
            logger.error(f"Failed to start MCP server: {e}")
            if self.bridge is not None:
                self.bridge.events.emit(events.MCP_ERROR, {"error": str(e)})
            raise

        self._start_time = time.time()
        if self.bridge is not None:
            await self.bridge.run_plugin_hook("on_start", self)
            self.bridge.events.emit(
                events.MCP_START,
                {"transport": self.options.transport, "address": self.get_address()},
            )
        logger.info(
            f"MCP server started with {len(self.tools)} tools "
            f"({self.options.transport} transport)"
        )

    async def stop(self) -> None:
        if not self.is_running():
            logger.warning("MCP server is not running")
            return
        await self.transport.stop()
        if self.dispatcher is not None:
            await self.dispatcher.aclose()
        self._start_time = None
        if self.bridge is not None:
            await self.bridge.run_plugin_hook("on_stop", self)
            self.bridge.events.emit(events.MCP_STOP, {"transport": self.options.transport})
        logger.info("MCP server stopped")

    def is_running(self) -> bool:
        return self.transport.is_running

    def get_address(self) -> Optional[str]:
        """``http://host:port`` for network transports, None for stdio."""
        return self.transport.address

    def get_tools(self) -> Dict[str, Tool]:
        return dict(self.tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_mcp() for tool in self.tools.values()]

    def register_with_fastmcp(self, fastmcp_server: Any) -> int:
        """Host the generated tools on an existing FastMCP server."""
        return register_with_fastmcp(fastmcp_server, self.tools)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None):
        """Call a tool directly, bypassing the transport."""
        return await self.protocol.handle_message(
            {
                "jsonrpc": "2.0",
                "id": f"direct-{name}",
                "method": "tools/call",
                "params": {"name": name, "arguments": arguments or {}},
            }
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tools": len(self.tools),
            "transport": self.options.transport,
            "running": self.is_running(),
            "address": self.get_address(),
            "uptime_seconds": time.time() - self._start_time if self._start_time else 0.0,
        }

    def __repr__(self) -> str:
        return (
            f"MCPServer(tools={len(self.tools)}, transport={self.options.transport!r}, "
            f"running={self.is_running()})"
        )
