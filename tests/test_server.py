"""
Tests for the MCPServer lifecycle and FastMCP registration.
"""

import inspect
import io
import json
import socket
from typing import Optional
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from apibridge import BasePlugin
from apibridge.core import events
from apibridge.core.errors import ConfigurationError
from apibridge.server import register_with_fastmcp
from apibridge.server.fastmcp_export import build_signature
from apibridge.server.transports import StdioTransport


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def stdio_server(bridge, lines=()):
    server = await bridge.generate_mcp_server(transport="stdio", base_url="http://api.test")
    server.transport = StdioTransport(
        server.protocol,
        reader=io.StringIO("".join(line + "\n" for line in lines)),
        writer=io.StringIO(),
    )
    return server


class TestLifecycle:
    """Test start/stop and the lifecycle events."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, bridge):
        server = await stdio_server(bridge)
        seen = []
        bridge.events.on(events.MCP_START, lambda event: seen.append(event.type))
        bridge.events.on(events.MCP_STOP, lambda event: seen.append(event.type))

        assert server.is_running() is False
        await server.start()
        assert server.is_running() is True
        assert server.get_address() is None
        await server.stop()

        assert server.is_running() is False
        assert seen == [events.MCP_START, events.MCP_STOP]

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, bridge):
        server = await stdio_server(bridge)
        await server.start()
        try:
            with pytest.raises(ConfigurationError, match="already running"):
                await server.start()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, bridge):
        server = await stdio_server(bridge)
        await server.start()
        await server.stop()

        await server.start()
        assert server.is_running() is True
        await server.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, bridge):
        server = await stdio_server(bridge)

        await server.stop()

        assert server.is_running() is False

    @pytest.mark.asyncio
    async def test_plugin_hooks(self, bridge):
        calls = []

        class Recorder(BasePlugin):
            async def on_start(self, server, bridge):
                calls.append("start")

            async def on_stop(self, server, bridge):
                calls.append("stop")

        bridge.plugin("recorder", Recorder())
        server = await stdio_server(bridge)

        await server.start()
        await server.stop()

        assert calls == ["start", "stop"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stdio_session(self, bridge):
        respx.get("http://api.test/users/5").mock(
            return_value=httpx.Response(200, json={"id": 5})
        )
        requests = [
            json.dumps({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}),
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "tools/call",
                    "params": {"name": "get_user", "arguments": {"id": 5}},
                }
            ),
        ]
        server = await stdio_server(bridge, requests)
        seen = []
        bridge.events.on(events.MCP_REQUEST, lambda event: seen.append(event.data["method"]))

        await server.start()
        await server.transport.wait_closed()
        await server.stop()

        responses = {
            r["id"]: r for r in map(json.loads, server.transport.writer.getvalue().splitlines())
        }
        assert len(responses[1]["result"]["tools"]) == 2
        payload = json.loads(responses[2]["result"]["content"][0]["text"])
        assert payload["data"] == {"id": 5}
        assert sorted(seen) == ["tools/call", "tools/list"]


class TestHTTPServer:
    @pytest.mark.asyncio
    async def test_serves_on_address(self, bridge):
        port = free_port()
        server = await bridge.generate_mcp_server(
            transport="http", host="127.0.0.1", port=port, base_url="http://api.test"
        )

        await server.start()
        try:
            assert server.get_address() == f"http://127.0.0.1:{port}"
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.post(
                    f"{server.get_address()}/mcp",
                    json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
                )
        finally:
            await server.stop()

        assert response.status_code == 200
        names = [tool["name"] for tool in response.json()["result"]["tools"]]
        assert sorted(names) == ["get_user", "post_user"]
        assert server.is_running() is False

    @pytest.mark.asyncio
    async def test_port_in_use(self, bridge):
        errors = []
        bridge.events.on(events.MCP_ERROR, lambda event: errors.append(event.data))
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            port = busy.getsockname()[1]
            server = await bridge.generate_mcp_server(
                transport="http", host="127.0.0.1", port=port
            )

            with pytest.raises(ConfigurationError, match="Failed to start http transport"):
                await server.start()

        assert server.is_running() is False
        assert len(errors) == 1


class TestServerIntrospection:
    @pytest.mark.asyncio
    async def test_list_tools_and_stats(self, bridge):
        server = await stdio_server(bridge)

        listed = {tool["name"]: tool for tool in server.list_tools()}
        stats = server.get_stats()

        assert listed["get_user"]["inputSchema"]["required"] == ["id"]
        assert stats["tools"] == 2
        assert stats["transport"] == "stdio"
        assert stats["running"] is False

    @pytest.mark.asyncio
    async def test_call_unknown_tool(self, bridge):
        server = await stdio_server(bridge)

        response = await server.call_tool("nope")

        assert response["error"]["code"] == -32602


class TestFastMCPExport:
    """Test registration of generated tools on a FastMCP server."""

    def test_build_signature(self):
        signature = build_signature(
            {
                "type": "object",
                "properties": {
                    "limit": {"type": "integer"},
                    "id": {"type": "integer"},
                    "X-Trace": {"type": "string"},
                },
                "required": ["id"],
            }
        )

        params = list(signature.parameters.values())
        assert [p.name for p in params] == ["id", "limit"]
        assert all(p.kind == inspect.Parameter.KEYWORD_ONLY for p in params)
        assert params[0].default is inspect.Parameter.empty
        assert params[0].annotation is int
        assert params[1].default is None
        assert params[1].annotation == Optional[int]

    @pytest.mark.asyncio
    async def test_register_tools(self, bridge):
        server = await bridge.generate_mcp_server(transport="stdio")
        fastmcp_server = MagicMock()

        count = register_with_fastmcp(fastmcp_server, server.get_tools())

        assert count == 2
        registered = [call.args[0].name for call in fastmcp_server.add_tool.call_args_list]
        assert sorted(registered) == ["get_user", "post_user"]

    @pytest.mark.asyncio
    async def test_registration_failure_logged(self, bridge):
        server = await bridge.generate_mcp_server(transport="stdio")
        fastmcp_server = MagicMock()
        fastmcp_server.add_tool.side_effect = [RuntimeError("duplicate"), None]

        assert register_with_fastmcp(fastmcp_server, server.get_tools()) == 1

    @pytest.mark.asyncio
    async def test_server_registers_its_tools(self, bridge):
        server = await bridge.generate_mcp_server(transport="stdio")
        fastmcp_server = MagicMock()

        assert server.register_with_fastmcp(fastmcp_server) == 2
        assert fastmcp_server.add_tool.call_count == 2
