"""
apibridge

Exposes the endpoints of an existing HTTP API as MCP tools, with a middleware
pipeline around every call and stdio, HTTP and SSE transports.
"""

from .version import __version__
from .core import (
    APIBridgeError,
    BridgeConfig,
    ConfigurationError,
    DiscoverOptions,
    DiscoveryError,
    DispatchError,
    Endpoint,
    HTTPMethod,
    MCPError,
    MCPOptions,
    MiddlewareContext,
    MiddlewareError,
    Parameter,
    ParameterLocation,
    RequestBody,
    ResponseEnvelope,
    Tool,
)
from .core.bridge import APIBridge
from .discovery import BaseDiscoverer
from .middleware import ApiKeyAuth, RateLimit
from .plugins import BasePlugin
from .server import MCPServer

__all__ = [
    "APIBridge",
    "APIBridgeError",
    "ApiKeyAuth",
    "BaseDiscoverer",
    "BasePlugin",
    "BridgeConfig",
    "ConfigurationError",
    "DiscoverOptions",
    "DiscoveryError",
    "DispatchError",
    "Endpoint",
    "HTTPMethod",
    "MCPError",
    "MCPOptions",
    "MCPServer",
    "MiddlewareContext",
    "MiddlewareError",
    "Parameter",
    "ParameterLocation",
    "RateLimit",
    "RequestBody",
    "ResponseEnvelope",
    "Tool",
    "__version__",
]
