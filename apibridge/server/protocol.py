"""
JSON-RPC 2.0 protocol handler for MCP.

Transport independent: transports hand in decoded messages (or raw text) and
write back whatever dictionary is returned. Notifications produce no response.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.errors import DispatchError, ProtocolError
from ..core.models import ResponseEnvelope, Tool

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass
class JSONRPCMessage:
    """A JSON-RPC 2.0 message."""

    jsonrpc: str = "2.0"
    id: Optional[Union[str, int]] = None
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            msg["id"] = self.id
        if self.method is not None:
            msg["method"] = self.method
        if self.params is not None:
            msg["params"] = self.params
        if self.error is not None:
            msg["error"] = self.error
        elif self.method is None:
            msg["result"] = self.result
        return msg

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JSONRPCMessage":
        return cls(
            jsonrpc=data.get("jsonrpc", "2.0"),
            id=data.get("id"),
            method=data.get("method"),
            params=data.get("params"),
            result=data.get("result"),
            error=data.get("error"),
        )

    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    def is_notification(self) -> bool:
        return self.method is not None and self.id is None


def error_response(
    request_id: Any, code: int, message: str, data: Any = None
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def format_result(result: Any) -> Dict[str, Any]:
    """Wrap a handler result into MCP text content."""
    if isinstance(result, ResponseEnvelope):
        result = result.to_dict()
    if isinstance(result, str):
        text = result
    else:
        text = json.dumps(result, indent=2, default=str)
    return {"content": [{"type": "text", "text": text}]}


class MCPProtocolHandler:
    """
    Serves ``tools/list`` and ``tools/call``.

    ``initialize`` and ``ping`` are answered so standard clients can complete
    their handshake.
    """

    def __init__(
        self,
        tools: Dict[str, Tool],
        server_info: Optional[Dict[str, Any]] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        listeners: Optional[List[Callable[[str, Any], None]]] = None,
    ):
        self.tools = tools
        self.server_info = server_info or {"name": "apibridge", "version": "1.0.0"}
        self.capabilities = capabilities if capabilities is not None else {"tools": {}}
        self._listeners = list(listeners or [])
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def add_listener(self, listener: Callable[[str, Any], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, event: str, data: Any) -> None:
        for listener in self._listeners:
            try:
                listener(event, data)
            except Exception as e:
                logger.error(f"Error in protocol listener: {e}")

    async def handle_raw(self, text: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        """Decode and handle one raw message."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Received malformed JSON: {e}")
            return error_response(None, PARSE_ERROR, "Parse error")
        return await self.handle_message(data)

    async def handle_message(self, data: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one decoded message.

        Returns:
            The response dictionary, or None for notifications
        """
        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            request_id = data.get("id") if isinstance(data, dict) else None
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        message = JSONRPCMessage.from_dict(data)
        if not isinstance(message.method, str):
            return error_response(message.id, INVALID_REQUEST, "Invalid Request")

        if message.is_notification():
            logger.debug(f"Received notification: {message.method}")
            return None

        handler = self._methods.get(message.method)
        if handler is None:
            return error_response(
                message.id, METHOD_NOT_FOUND, f"Method not found: {message.method}"
            )

        self._notify("request", {"id": message.id, "method": message.method})
        try:
            result = await handler(message.params or {})
        except ProtocolError as e:
            self._notify("error", {"id": message.id, "error": str(e)})
            return error_response(message.id, e.rpc_code, e.message, e.data)
        except Exception as e:
            logger.error(f"Unhandled error in {message.method}: {e}")
            self._notify("error", {"id": message.id, "error": str(e)})
            return error_response(message.id, INTERNAL_ERROR, f"Internal error: {e}")

        self._notify("response", {"id": message.id, "method": message.method})
        return JSONRPCMessage(id=message.id, result=result).to_dict()

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
        }

    async def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": [tool.to_mcp() for tool in self.tools.values()]}

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        tool = self.tools.get(name) if isinstance(name, str) else None
        if tool is None:
            raise ProtocolError(f"Tool not found: {name}", INVALID_PARAMS)

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ProtocolError("Tool arguments must be an object", INVALID_PARAMS)

        try:
            result = await tool.handler(arguments)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            data: Dict[str, Any] = {"tool": name}
            if isinstance(e, DispatchError):
                data["status"] = e.status
                data["body"] = e.data
            raise ProtocolError(f"Tool execution failed: {e}", INTERNAL_ERROR, data)
        return format_result(result)
