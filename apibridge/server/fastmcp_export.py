"""
Registration of generated tools on a FastMCP server.

Lets an application that already runs FastMCP host the generated tools next
to its own, instead of using the built-in transports.
"""

import inspect
import keyword
import logging
from typing import Any, Callable, Dict, Optional

from fastmcp import FastMCP
from fastmcp.tools import FunctionTool

from ..core.models import Tool

logger = logging.getLogger(__name__)

JSON_TYPES = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _python_type(schema: Dict[str, Any]) -> type:
    return JSON_TYPES.get(schema.get("type", "string"), str)


def build_signature(input_schema: Dict[str, Any]) -> inspect.Signature:
    """
    Keyword-only signature for a tool's input schema.

    Required arguments come first; optional ones default to None. Property
    names that are not valid identifiers are left out.
    """
    properties = input_schema.get("properties", {})
    required = set(input_schema.get("required", []))
    params = []

    for name, schema in properties.items():
        if name in required and name.isidentifier() and not keyword.iskeyword(name):
            params.append(
                inspect.Parameter(
                    name, inspect.Parameter.KEYWORD_ONLY, annotation=_python_type(schema)
                )
            )
    for name, schema in properties.items():
        if name in required:
            continue
        if not name.isidentifier() or keyword.iskeyword(name):
            logger.warning(f"Argument '{name}' cannot be exposed as a keyword")
            continue
        params.append(
            inspect.Parameter(
                name,
                inspect.Parameter.KEYWORD_ONLY,
                default=None,
                annotation=Optional[_python_type(schema)],
            )
        )
    return inspect.Signature(params)


def create_proxy_function(tool: Tool) -> Callable:
    """Wrap a tool handler in a function FastMCP can introspect."""

    async def proxy(**kwargs) -> Dict[str, Any]:
        arguments = {k: v for k, v in kwargs.items() if v is not None}
        envelope = await tool.handler(arguments)
        return envelope.to_dict()

    signature = build_signature(tool.input_schema)
    proxy.__name__ = tool.name
    proxy.__doc__ = tool.description
    proxy.__signature__ = signature
    # Pydantic v2 reads types from __annotations__, not the signature
    annotations: Dict[str, Any] = {
        name: param.annotation for name, param in signature.parameters.items()
    }
    annotations["return"] = Dict[str, Any]
    proxy.__annotations__ = annotations
    return proxy


def register_with_fastmcp(server: FastMCP, tools: Dict[str, Tool]) -> int:
    """
    Register every tool on a FastMCP server.

    Returns:
        Number of tools registered
    """
    registered = 0
    for name, tool in tools.items():
        try:
            function_tool = FunctionTool.from_function(
                create_proxy_function(tool), name=name, description=tool.description
            )
            server.add_tool(function_tool)
            registered += 1
            logger.debug(f"Registered tool on FastMCP: {name}")
        except Exception as e:
            logger.error(f"Failed to register tool {name} on FastMCP: {e}")
    logger.info(f"Registered {registered} of {len(tools)} tools on FastMCP")
    return registered
