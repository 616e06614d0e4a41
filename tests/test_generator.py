"""
Unit tests for the Tool Generator.

Covers naming, descriptions, input schemas and the generated handlers
(against a respx-mocked backing API).
"""

import json

import httpx
import pytest
import respx

from apibridge.core.config import MCPOptions
from apibridge.core.errors import MCPError
from apibridge.core.models import (
    Endpoint,
    MiddlewareConfig,
    Parameter,
    ParameterLocation,
    RequestBody,
    MediaType,
)
from apibridge.server.dispatch import HTTPDispatcher
from apibridge.server.generator import (
    ToolGenerator,
    build_input_schema,
    default_tool_description,
    default_tool_name,
)

BASE_URL = "http://api.test"


class TestDefaultToolName:
    """Test the default naming rule."""

    @pytest.mark.parametrize(
        "method,path,expected",
        [
            ("GET", "/products", "get_product"),
            ("GET", "/admin/stats", "get_stat"),
            ("GET", "/users/{id}", "get_user"),
            ("DELETE", "/users/{id}/posts/{postId}", "delete_post"),
            ("POST", "/", "post_endpoint"),
            ("GET", "/{id}", "get_endpoint"),
            ("PUT", "/user-profile", "put_user_profile"),
            ("GET", "/s", "get_s"),
        ],
    )
    def test_naming(self, method, path, expected):
        assert default_tool_name(Endpoint(method=method, path=path)) == expected

    def test_naming_is_deterministic(self):
        endpoint = Endpoint(method="PATCH", path="/orders/:id/items")
        assert default_tool_name(endpoint) == default_tool_name(endpoint) == "patch_item"


class TestDefaultToolDescription:
    def test_description_then_summary_then_generated(self):
        assert default_tool_description(
            Endpoint(method="GET", path="/a", description="D", summary="S")
        ) == "D"
        assert default_tool_description(Endpoint(method="GET", path="/a", summary="S")) == "S"
        assert default_tool_description(Endpoint(method="POST", path="/orders")) == "Create order"
        assert default_tool_description(Endpoint(method="PATCH", path="/")) == "Modify resource"
        assert (
            default_tool_description(Endpoint(method="OPTIONS", path="/items"))
            == "Get options for item"
        )


class TestInputSchema:
    """Test schema construction."""

    def test_path_and_query_parameters(self, user_endpoint):
        schema = build_input_schema(user_endpoint)

        assert schema["type"] == "object"
        assert schema["properties"]["id"]["type"] == "integer"
        assert schema["properties"]["expand"]["type"] == "boolean"
        assert schema["required"] == ["id"]

    def test_parameter_schema_is_merged(self):
        endpoint = Endpoint(
            method="GET",
            path="/items",
            parameters=[
                Parameter(
                    name="limit",
                    type="integer",
                    description="Page size",
                    schema={"type": "integer", "maximum": 100},
                )
            ],
        )
        prop = build_input_schema(endpoint)["properties"]["limit"]
        assert prop == {"type": "integer", "description": "Page size", "maximum": 100}

    def test_body_nested(self, create_user_endpoint):
        schema = build_input_schema(create_user_endpoint)

        body = schema["properties"]["body"]
        assert body["type"] == "object"
        assert body["description"] == "Request body"
        assert body["properties"]["name"]["type"] == "string"
        assert "body" in schema["required"]

    def test_body_schema_description_kept(self):
        endpoint = Endpoint(
            method="PUT",
            path="/users/{id}",
            request_body=RequestBody(
                content={
                    "application/json": MediaType(
                        schema={"type": "object", "description": "Full user record"}
                    )
                },
                description="Replacement user",
            ),
        )

        body = build_input_schema(endpoint)["properties"]["body"]

        assert body["description"] == "Full user record"

    def test_non_json_body_ignored(self):
        endpoint = Endpoint(
            method="POST",
            path="/upload",
            request_body=RequestBody(
                content={"multipart/form-data": MediaType(schema={"type": "object"})}
            ),
        )
        assert "body" not in build_input_schema(endpoint)["properties"]

    def test_headers_nested(self):
        endpoint = Endpoint(
            method="GET",
            path="/items",
            parameters=[
                Parameter(
                    name="X-Tenant",
                    location=ParameterLocation.HEADER,
                    required=True,
                    description="Tenant id",
                )
            ],
        )
        schema = build_input_schema(endpoint)

        headers = schema["properties"]["headers"]
        assert headers["type"] == "object"
        assert headers["properties"]["X-Tenant"]["description"] == "Tenant id"
        assert headers["required"] == ["X-Tenant"]
        assert "X-Tenant" not in schema["properties"]


class TestToolGenerator:
    """Test tool generation and the generated handlers."""

    def make_generator(self, middleware=None):
        return ToolGenerator(middleware or MiddlewareConfig(), HTTPDispatcher(BASE_URL))

    def test_generate_tools(self, user_endpoint, create_user_endpoint, mcp_options):
        tools = self.make_generator().generate_tools(
            [user_endpoint, create_user_endpoint], mcp_options
        )

        assert sorted(tools) == ["get_user", "post_user"]
        assert tools["post_user"].description == "Create a user"
        assert tools["get_user"].endpoint is user_endpoint

    def test_collision_last_write_wins(self, mcp_options):
        first = Endpoint(method="GET", path="/v1/users")
        second = Endpoint(method="GET", path="/v2/users")
        generator = self.make_generator()

        tools = generator.generate_tools([first, second], mcp_options)

        assert list(tools) == ["get_user"]
        assert tools["get_user"].endpoint is second
        conflicts = generator.get_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0].endpoint_ids == [first.id, second.id]
        assert conflicts[0].resolution == "last_write_wins"

    def test_custom_naming_and_description(self, user_endpoint):
        options = MCPOptions(
            tool_naming=lambda e: f"api_{e.id.lower()}",
            tool_description=lambda e: f"Calls {e}",
        )
        tools = self.make_generator().generate_tools([user_endpoint], options)

        tool = tools[f"api_{user_endpoint.id.lower()}"]
        assert tool.description == "Calls GET /users/{id}"

    def test_failing_endpoint_skipped(self, user_endpoint, create_user_endpoint):
        def naming(endpoint):
            if endpoint.method.value == "POST":
                raise RuntimeError("no name")
            return "fetch_user"

        generator = self.make_generator()
        tools = generator.generate_tools(
            [user_endpoint, create_user_endpoint], MCPOptions(tool_naming=naming)
        )

        assert list(tools) == ["fetch_user"]
        assert create_user_endpoint.id in generator.get_generation_stats()["failed"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_handler_dispatches_request(self, user_endpoint, mcp_options):
        route = respx.get(f"{BASE_URL}/users/42").mock(
            return_value=httpx.Response(200, json={"id": 42, "name": "Ada"})
        )
        tools = self.make_generator().generate_tools([user_endpoint], mcp_options)

        envelope = await tools["get_user"].handler({"id": 42, "expand": True})

        assert envelope.status == 200
        assert envelope.data == {"id": 42, "name": "Ada"}
        request = route.calls.last.request
        assert request.url.params["expand"] == "true"
        assert request.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    @respx.mock
    async def test_handler_sends_body_and_headers(self, create_user_endpoint, mcp_options):
        route = respx.post(f"{BASE_URL}/users").mock(
            return_value=httpx.Response(201, json={"id": 1})
        )
        tools = self.make_generator().generate_tools([create_user_endpoint], mcp_options)

        envelope = await tools["post_user"].handler(
            {"body": {"name": "Ada"}, "headers": {"X-Trace": "abc"}}
        )

        assert envelope.status == 201
        request = route.calls.last.request
        assert request.headers["x-trace"] == "abc"
        assert json.loads(request.content) == {"name": "Ada"}
        assert "body" not in request.url.params

    @pytest.mark.asyncio
    @respx.mock
    async def test_handler_context_metadata(self, user_endpoint, mcp_options):
        respx.get(f"{BASE_URL}/users/7").mock(return_value=httpx.Response(200, json={}))
        seen = {}
        middleware = MiddlewareConfig()
        middleware.add("pre", lambda ctx: seen.update(ctx.metadata))
        tools = self.make_generator(middleware).generate_tools([user_endpoint], mcp_options)

        await tools["get_user"].handler({"id": 7}, {"caller": "test"})

        assert seen["mcpTool"] is True
        assert seen["originalArgs"] == {"id": 7}
        assert seen["baseUrl"] == BASE_URL
        assert seen["caller"] == "test"

    @pytest.mark.asyncio
    async def test_handler_missing_path_parameter(self, user_endpoint, mcp_options):
        tools = self.make_generator().generate_tools([user_endpoint], mcp_options)

        with pytest.raises(MCPError, match="Missing required path parameter"):
            await tools["get_user"].handler({})

    @pytest.mark.asyncio
    async def test_missing_path_parameter_runs_error_handlers(
        self, user_endpoint, mcp_options
    ):
        seen = []
        middleware = MiddlewareConfig()
        middleware.add("error", lambda ctx, error: seen.append((ctx.metadata["toolName"], error)))
        tools = self.make_generator(middleware).generate_tools([user_endpoint], mcp_options)

        with pytest.raises(MCPError):
            await tools["get_user"].handler({"id": None})

        assert len(seen) == 1
        assert seen[0][0] == "get_user"
        assert isinstance(seen[0][1], MCPError)

    @pytest.mark.asyncio
    @respx.mock
    async def test_pre_handler_can_supply_path_parameter(self, user_endpoint, mcp_options):
        respx.get(f"{BASE_URL}/users/me").mock(return_value=httpx.Response(200, json={}))
        middleware = MiddlewareConfig()
        middleware.add("pre", lambda ctx: ctx.request.params.setdefault("id", "me"))
        tools = self.make_generator(middleware).generate_tools([user_endpoint], mcp_options)

        envelope = await tools["get_user"].handler({})

        assert envelope.status == 200

    @pytest.mark.asyncio
    @respx.mock
    async def test_none_arguments_not_sent_as_query(self, user_endpoint, mcp_options):
        route = respx.get(f"{BASE_URL}/users/3").mock(
            return_value=httpx.Response(200, json={})
        )
        tools = self.make_generator().generate_tools([user_endpoint], mcp_options)

        await tools["get_user"].handler({"id": 3, "expand": None, "q": "ada"})

        params = route.calls.last.request.url.params
        assert "expand" not in params
        assert params["q"] == "ada"
        assert "id" not in params

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_is_returned_not_raised(self, user_endpoint, mcp_options):
        respx.get(f"{BASE_URL}/users/404").mock(
            return_value=httpx.Response(404, json={"error": "not found"})
        )
        tools = self.make_generator().generate_tools([user_endpoint], mcp_options)

        envelope = await tools["get_user"].handler({"id": 404})

        assert envelope.status == 404
        assert envelope.status_text == "Not Found"
        assert envelope.data == {"error": "not found"}
