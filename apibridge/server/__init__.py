"""Tool generation, dispatch, protocol handling and transports."""

from .dispatch import HTTPDispatcher
from .fastmcp_export import register_with_fastmcp
from .generator import ToolConflict, ToolGenerator, default_tool_name
from .protocol import JSONRPCMessage, MCPProtocolHandler
from .server import MCPServer
from .transports import HTTPTransport, SSETransport, StdioTransport

__all__ = [
    "HTTPDispatcher",
    "HTTPTransport",
    "JSONRPCMessage",
    "MCPProtocolHandler",
    "MCPServer",
    "SSETransport",
    "StdioTransport",
    "ToolConflict",
    "ToolGenerator",
    "default_tool_name",
    "register_with_fastmcp",
]
