"""
Tests for the stdio, HTTP and SSE transports.
"""

import asyncio
import io
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from apibridge.core.errors import ConfigurationError
from apibridge.core.models import Endpoint, ResponseEnvelope, Tool
from apibridge.server.protocol import MCPProtocolHandler
from apibridge.server.transports import HTTPTransport, SSETransport, StdioTransport


def make_protocol():
    tool = Tool(
        name="get_user",
        description="Retrieve user",
        input_schema={"type": "object", "properties": {}, "required": []},
        handler=AsyncMock(return_value=ResponseEnvelope(status=200, data={"id": 1})),
        endpoint=Endpoint(method="GET", path="/users"),
    )
    return MCPProtocolHandler({"get_user": tool})


LIST_REQUEST = {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}


class TestStdioTransport:
    """Test newline-delimited JSON over text streams."""

    @pytest.mark.asyncio
    async def test_requests_answered_until_eof(self):
        lines = [
            json.dumps(LIST_REQUEST),
            "",
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "tools/call",
                    "params": {"name": "get_user", "arguments": {}},
                }
            ),
            json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
            "{not json",
        ]
        reader = io.StringIO("\n".join(lines) + "\n")
        writer = io.StringIO()
        transport = StdioTransport(make_protocol(), reader=reader, writer=writer)

        await transport.start()
        await asyncio.wait_for(transport.wait_closed(), timeout=5)
        await transport.stop()

        responses = [json.loads(line) for line in writer.getvalue().splitlines()]
        assert len(responses) == 3
        by_id = {r.get("id"): r for r in responses}
        assert by_id[1]["result"]["tools"][0]["name"] == "get_user"
        assert "content" in by_id[2]["result"]
        assert by_id[None]["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_double_start_rejected(self):
        transport = StdioTransport(make_protocol(), reader=io.StringIO(""), writer=io.StringIO())
        await transport.start()
        try:
            with pytest.raises(ConfigurationError):
                await transport.start()
        finally:
            await transport.stop()
        assert transport.is_running is False
        assert transport.address is None


class TestHTTPTransport:
    """Test the stateless POST /mcp endpoint."""

    def test_tools_list(self):
        client = TestClient(HTTPTransport(make_protocol()).app)

        response = client.post("/mcp", json=LIST_REQUEST)

        assert response.status_code == 200
        assert response.json()["result"]["tools"][0]["name"] == "get_user"

    def test_malformed_body_returns_400(self):
        client = TestClient(HTTPTransport(make_protocol()).app)

        response = client.post(
            "/mcp", content=b"{oops", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_notification_accepted(self):
        client = TestClient(HTTPTransport(make_protocol()).app)

        response = client.post(
            "/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response.status_code == 202

    def test_cors_preflight(self):
        client = TestClient(HTTPTransport(make_protocol(), cors=True).app)

        response = client.options(
            "/mcp",
            headers={
                "Origin": "http://example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_cors_disabled(self):
        client = TestClient(HTTPTransport(make_protocol(), cors=False).app)

        response = client.options(
            "/mcp",
            headers={"Origin": "http://example.com", "Access-Control-Request-Method": "POST"},
        )

        assert "access-control-allow-origin" not in response.headers

    def test_health(self):
        client = TestClient(HTTPTransport(make_protocol()).app)

        assert client.get("/health").json() == {"status": "ok", "transport": "http", "tools": 1}

    def test_address(self):
        transport = HTTPTransport(make_protocol(), host="127.0.0.1", port=8123)
        assert transport.address == "http://127.0.0.1:8123"
        assert transport.is_running is False


class TestSSETransport:
    """Test the SSE stream and its message side channel."""

    def test_post_without_session_returns_400(self):
        client = TestClient(SSETransport(make_protocol()).app)

        response = client.post("/sse/messages", json=LIST_REQUEST)

        assert response.status_code == 400
        assert response.json() == {"error": "No active SSE session"}

    @pytest.mark.asyncio
    async def test_post_with_unknown_session_returns_400(self):
        transport = SSETransport(make_protocol())
        await transport.open_session()
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=transport.app), base_url="http://test"
        ) as client:
            response = await client.post("/sse/messages?sessionId=bogus", json=LIST_REQUEST)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_session_round_trip(self):
        transport = SSETransport(make_protocol())
        session = await transport.open_session()
        stream = transport.event_stream(session)

        first = await stream.__anext__()
        assert first == f"event: endpoint\ndata: /sse/messages?sessionId={session.id}\n\n"

        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=transport.app), base_url="http://test"
        ) as client:
            response = await client.post(
                f"/sse/messages?sessionId={session.id}", json=LIST_REQUEST
            )
        assert response.status_code == 202

        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert frame.startswith("event: message\ndata: ")
        payload = json.loads(frame[len("event: message\ndata: "):].strip())
        assert payload["id"] == 1
        assert payload["result"]["tools"][0]["name"] == "get_user"
        await stream.aclose()
        assert transport.session is None

    @pytest.mark.asyncio
    async def test_new_stream_replaces_session(self):
        transport = SSETransport(make_protocol())
        old = await transport.open_session()
        old_stream = transport.event_stream(old)
        await old_stream.__anext__()

        new = await transport.open_session()

        with pytest.raises(StopAsyncIteration):
            await old_stream.__anext__()
        assert transport.session is new
        status, _ = await transport.post_message(old.id, json.dumps(LIST_REQUEST).encode())
        assert status == 400

    @pytest.mark.asyncio
    async def test_keepalive(self):
        transport = SSETransport(make_protocol(), keepalive_interval=0.01)
        session = await transport.open_session()
        stream = transport.event_stream(session)
        await stream.__anext__()

        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)

        assert frame == ": keepalive\n\n"
        await stream.aclose()
