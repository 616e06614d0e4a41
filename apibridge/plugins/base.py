"""
Plugin base class.

A plugin bundles middleware, endpoint transforms and lifecycle hooks. Any
object exposing the same attributes can be registered; subclassing is a
convenience.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from ..core.models import Endpoint, MiddlewareConfig

if TYPE_CHECKING:
    from ..core.bridge import APIBridge
    from ..server.server import MCPServer


class BasePlugin:
    name: str = "plugin"
    version: str = "1.0.0"
    description: str = ""

    def __init__(
        self,
        middleware: Union[MiddlewareConfig, Dict[str, List[Callable]], None] = None,
        transformers: Optional[List[Callable[[Endpoint], Endpoint]]] = None,
    ):
        if isinstance(middleware, dict):
            middleware = MiddlewareConfig.from_dict(middleware)
        self.middleware = middleware or MiddlewareConfig()
        self.transformers = list(transformers or [])

    async def on_discover(
        self, endpoints: List[Endpoint], bridge: "APIBridge"
    ) -> Optional[List[Endpoint]]:
        """Called after discovery. Returning a list replaces the endpoint set."""
        return None

    async def on_generate(self, options: Any, bridge: "APIBridge") -> None:
        """Called before tools are generated."""

    async def on_start(self, server: "MCPServer", bridge: "APIBridge") -> None:
        """Called when the server starts."""

    async def on_stop(self, server: "MCPServer", bridge: "APIBridge") -> None:
        """Called when the server stops."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, version={self.version!r})"
