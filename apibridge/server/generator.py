"""
Tool Generator.

Derives one MCP tool per endpoint: a name, a description, a JSON input schema
and an async handler that runs the middleware pipeline around the HTTP
dispatch adapter.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.config import MCPOptions
from ..core.errors import MCPError
from ..core.models import (
    Endpoint,
    HTTPMethod,
    MiddlewareConfig,
    MiddlewareContext,
    ParameterLocation,
    RequestInfo,
    ResponseEnvelope,
    Tool,
)
from ..middleware.runner import MiddlewareRunner
from .dispatch import HTTPDispatcher

logger = logging.getLogger(__name__)

ACTIONS = {
    HTTPMethod.GET: "Retrieve",
    HTTPMethod.POST: "Create",
    HTTPMethod.PUT: "Update",
    HTTPMethod.PATCH: "Modify",
    HTTPMethod.DELETE: "Delete",
    HTTPMethod.HEAD: "Check",
    HTTPMethod.OPTIONS: "Get options for",
}

RESERVED_ARGUMENTS = ("body", "headers")


def _resource_segments(path: str) -> List[str]:
    return [s for s in path.split("/") if s and not s.startswith(("{", ":"))]


def _singular(segment: str) -> str:
    # Naive: "status" -> "statu"
    if len(segment) > 1 and segment.endswith("s"):
        return segment[:-1]
    return segment


def default_tool_name(endpoint: Endpoint) -> str:
    """``<method>_<last literal segment, singularized>``, e.g. ``get_product``."""
    segments = _resource_segments(endpoint.path)
    resource = _singular(segments[-1]) if segments else "endpoint"
    return re.sub(r"[^A-Za-z0-9_]", "_", f"{endpoint.method.value.lower()}_{resource}")


def default_tool_description(endpoint: Endpoint) -> str:
    if endpoint.description:
        return endpoint.description
    if endpoint.summary:
        return endpoint.summary
    segments = _resource_segments(endpoint.path)
    resource = _singular(segments[-1]) if segments else "resource"
    return f"{ACTIONS.get(endpoint.method, 'Interact with')} {resource}"


def build_input_schema(endpoint: Endpoint) -> Dict[str, Any]:
    """
    JSON schema for a tool's arguments.

    Path and query parameters are top-level properties, the JSON request body
    is nested under ``body`` and header parameters under ``headers``.
    """
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param in endpoint.parameters:
        if param.location not in (ParameterLocation.PATH, ParameterLocation.QUERY):
            continue
        prop: Dict[str, Any] = {"type": param.type}
        if param.description:
            prop["description"] = param.description
        prop.update(param.schema or {})
        properties[param.name] = prop
        if param.required:
            required.append(param.name)

    body = endpoint.request_body
    if body is not None:
        body_schema = body.json_schema()
        if body_schema:
            body_property = dict(body_schema)
            body_property.setdefault("description", body.description or "Request body")
            properties["body"] = body_property
            if body.required:
                required.append("body")

    header_params = endpoint.parameters_in(ParameterLocation.HEADER)
    if header_params:
        header_properties = {}
        header_required = []
        for param in header_params:
            prop = {"type": param.type}
            if param.description:
                prop["description"] = param.description
            header_properties[param.name] = prop
            if param.required:
                header_required.append(param.name)
        headers_schema: Dict[str, Any] = {
            "type": "object",
            "description": "HTTP headers",
            "properties": header_properties,
        }
        if header_required:
            headers_schema["required"] = header_required
        properties["headers"] = headers_schema

    return {"type": "object", "properties": properties, "required": required}


@dataclass
class ToolConflict:
    """Two or more endpoints mapped to the same tool name."""

    tool_name: str
    endpoint_ids: List[str]
    resolution: str = "last_write_wins"
    detected_at: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"ToolConflict({self.tool_name}: {', '.join(self.endpoint_ids)})"


class ToolGenerator:
    """
    Generates tools for a set of endpoints.

    Handlers share the given ``MiddlewareConfig`` by reference, so stage
    handlers registered later are still run.
    """

    def __init__(
        self,
        middleware: Optional[MiddlewareConfig] = None,
        dispatcher: Optional[HTTPDispatcher] = None,
    ):
        self.middleware = middleware if middleware is not None else MiddlewareConfig()
        self.runner = MiddlewareRunner(self.middleware)
        self.dispatcher = dispatcher or HTTPDispatcher()
        self._conflicts: List[ToolConflict] = []
        self._generated: Dict[str, Tool] = {}
        self._failed: Dict[str, str] = {}

    def generate_tool(self, endpoint: Endpoint, options: MCPOptions) -> Tool:
        naming = options.tool_naming or default_tool_name
        describe = options.tool_description or default_tool_description
        name = naming(endpoint)
        if not name:
            raise MCPError(f"Empty tool name for {endpoint}")
        return Tool(
            name=name,
            description=describe(endpoint),
            input_schema=build_input_schema(endpoint),
            handler=self.create_handler(endpoint, name, options.base_url),
            endpoint=endpoint,
        )

    def generate_tools(
        self, endpoints: List[Endpoint], options: MCPOptions
    ) -> Dict[str, Tool]:
        """
        Generate tools for all endpoints.

        Endpoints whose generation fails are logged and skipped. On a name
        collision the later endpoint wins and the conflict is recorded.

        Returns:
            Dictionary mapping tool names to tools, in endpoint order
        """
        tools: Dict[str, Tool] = {}
        self._conflicts = []
        self._failed = {}

        for endpoint in endpoints:
            try:
                tool = self.generate_tool(endpoint, options)
            except Exception as e:
                logger.error(f"Failed to generate tool for {endpoint}: {e}")
                self._failed[endpoint.id] = str(e)
                continue

            existing = tools.get(tool.name)
            if existing is not None:
                logger.warning(
                    f"Tool name collision for '{tool.name}': {existing.endpoint} "
                    f"replaced by {endpoint}"
                )
                conflict = next(
                    (c for c in self._conflicts if c.tool_name == tool.name), None
                )
                if conflict is None:
                    self._conflicts.append(
                        ToolConflict(tool.name, [existing.endpoint.id, endpoint.id])
                    )
                else:
                    conflict.endpoint_ids.append(endpoint.id)
                del tools[tool.name]
            tools[tool.name] = tool

        self._generated = dict(tools)
        logger.info(f"Generated {len(tools)} tools from {len(endpoints)} endpoints")
        return tools

    def create_handler(self, endpoint: Endpoint, tool_name: str, base_url: str):
        """Build the async handler bound to one endpoint."""
        placeholders = endpoint.placeholders()

        async def dispatch(context: MiddlewareContext) -> ResponseEnvelope:
            missing = [
                name for name in placeholders if context.request.params.get(name) is None
            ]
            if missing:
                raise MCPError(
                    f"Missing required path parameter(s): {', '.join(missing)}",
                    details={"tool": tool_name},
                )
            return await self.dispatcher.dispatch(context)

        async def handler(
            arguments: Optional[Dict[str, Any]] = None,
            extras: Optional[Dict[str, Any]] = None,
        ) -> ResponseEnvelope:
            args = dict(arguments or {})
            params = {
                name: args[name] for name in placeholders if args.get(name) is not None
            }
            query = {
                key: value
                for key, value in args.items()
                if key not in RESERVED_ARGUMENTS
                and key not in placeholders
                and value is not None
            }
            headers = {str(k): str(v) for k, v in (args.get("headers") or {}).items()}

            metadata: Dict[str, Any] = {
                "baseUrl": base_url,
                "mcpTool": True,
                "toolName": tool_name,
                "originalArgs": dict(args),
            }
            metadata.update(extras or {})

            context = MiddlewareContext(
                endpoint=endpoint,
                request=RequestInfo(
                    method=endpoint.method.value,
                    path=endpoint.path,
                    headers=headers,
                    params=params,
                    query=query,
                    body=args.get("body"),
                ),
                metadata=metadata,
            )
            # Path parameters are checked at dispatch, after pre handlers ran
            return await self.runner.execute(context, dispatch)

        handler.__name__ = tool_name
        return handler

    def get_conflicts(self) -> List[ToolConflict]:
        return list(self._conflicts)

    def get_generation_stats(self) -> Dict[str, Any]:
        return {
            "tools_generated": len(self._generated),
            "conflicts": len(self._conflicts),
            "failed": dict(self._failed),
            "tools": sorted(self._generated),
        }

    def __len__(self) -> int:
        return len(self._generated)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._generated

    def __repr__(self) -> str:
        return f"ToolGenerator(tools={len(self._generated)}, conflicts={len(self._conflicts)})"
