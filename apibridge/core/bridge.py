"""
APIBridge - the registry and orchestrator.

Accumulates endpoints (manually defined or discovered), middleware stages,
endpoint transforms and plugins, and turns the result into an ``MCPServer``.
Instances are independent; nothing is shared between them.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ..discovery.base import BaseDiscoverer, filter_endpoints
from ..discovery.fastapi import FastAPIDiscoverer
from ..discovery.flask import FlaskDiscoverer
from ..discovery.openapi import OpenAPIDiscoverer
from ..discovery.url import URLDiscoverer
from ..server.dispatch import HTTPDispatcher
from ..server.generator import ToolConflict, ToolGenerator
from ..server.server import MCPServer
from . import events
from .config import BridgeConfig, DiscoverOptions, MCPOptions
from .errors import ConfigurationError, DiscoveryError, MCPError
from .events import EventEmitter
from .models import Endpoint, MiddlewareConfig

logger = logging.getLogger(__name__)

FRAMEWORK_DISCOVERERS = {
    "fastapi": "fastapi",
    "starlette": "fastapi",
    "flask": "flask",
}

STRATEGY_DISCOVERERS = {
    "openapi": "openapi",
    "crawl": "url",
}

Transform = Callable[[Endpoint], Endpoint]


def _default_discoverers() -> Dict[str, BaseDiscoverer]:
    discoverers: List[BaseDiscoverer] = [
        OpenAPIDiscoverer(),
        FastAPIDiscoverer(),
        FlaskDiscoverer(),
        URLDiscoverer(),
    ]
    return {d.name: d for d in discoverers}


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class APIBridge:
    """
    Registry of endpoints, middleware, transforms and plugins.

    Typical use::

        bridge = APIBridge({"name": "shop-api"})
        await bridge.discover(openapi="openapi.yaml")
        bridge.use("auth", ApiKeyAuth(check_key).middleware())
        server = await bridge.generate_mcp_server(transport="http", port=8080)
        await server.start()
    """

    def __init__(self, config: Union[BridgeConfig, Dict[str, Any], None] = None):
        if isinstance(config, dict):
            config = BridgeConfig(**config)
        self.config = config or BridgeConfig()
        self.events = EventEmitter()
        self._endpoints: Dict[str, Endpoint] = {}
        self._middleware = MiddlewareConfig()
        self._transforms: List[Transform] = []
        self._plugins: Dict[str, Any] = {}
        self._discoverers: Dict[str, BaseDiscoverer] = _default_discoverers()
        self._generator: Optional[ToolGenerator] = None

    # Endpoints

    def define_endpoint(self, endpoint: Union[Endpoint, Dict[str, Any]]) -> Endpoint:
        """
        Register an endpoint manually.

        Raises:
            ConfigurationError: If the definition is invalid or another
                endpoint already owns the same (method, path)
        """
        if isinstance(endpoint, dict):
            try:
                endpoint = Endpoint.from_dict(endpoint)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid endpoint definition: {e}")

        for existing in self._endpoints.values():
            if existing.key == endpoint.key and existing.id != endpoint.id:
                raise ConfigurationError(
                    f"Endpoint {endpoint} is already defined with id '{existing.id}'",
                    details={"existing": existing.id, "new": endpoint.id},
                )

        self._endpoints[endpoint.id] = endpoint
        self.events.emit(events.DISCOVERY_ENDPOINT, endpoint)
        logger.debug(f"Defined endpoint {endpoint} ({endpoint.id})")
        return endpoint

    def get_endpoints(self) -> List[Endpoint]:
        return list(self._endpoints.values())

    def get_endpoint(self, endpoint_id: str) -> Optional[Endpoint]:
        return self._endpoints.get(endpoint_id)

    # Discovery

    def register_discoverer(self, name: str, discoverer: BaseDiscoverer) -> "APIBridge":
        if not callable(getattr(discoverer, "discover", None)) or not callable(
            getattr(discoverer, "supports", None)
        ):
            raise ConfigurationError(
                f"Discoverer '{name}' must implement discover() and supports()"
            )
        self._discoverers[name] = discoverer
        logger.debug(f"Registered discoverer: {name}")
        return self

    def get_discoverers(self) -> Dict[str, BaseDiscoverer]:
        return dict(self._discoverers)

    def _select_discoverer(self, options: DiscoverOptions) -> BaseDiscoverer:
        strategy = options.strategy
        if strategy in self._discoverers:
            return self._discoverers[strategy]
        if strategy in STRATEGY_DISCOVERERS:
            return self._discoverers[STRATEGY_DISCOVERERS[strategy]]

        if options.framework:
            name = FRAMEWORK_DISCOVERERS.get(options.framework, options.framework)
            discoverer = self._discoverers.get(name)
            if discoverer is None:
                raise DiscoveryError(
                    f"Unsupported framework: {options.framework}",
                    details={"supported": sorted(FRAMEWORK_DISCOVERERS)},
                )
            return discoverer

        if strategy not in ("auto", "introspect"):
            raise DiscoveryError(f"Unknown discovery strategy: {strategy}")

        if options.openapi is not None and strategy == "auto":
            return self._discoverers["openapi"]

        for discoverer in self._discoverers.values():
            if strategy == "introspect" and options.app is None:
                break
            if discoverer.supports(options):
                return discoverer

        if options.app is not None:
            raise DiscoveryError(
                f"No discoverer supports application of type {type(options.app).__name__}"
            )
        raise DiscoveryError(
            "No discoverer found for the given options; provide an app, "
            "an OpenAPI document or a URL"
        )

    async def discover(
        self, options: Union[DiscoverOptions, Dict[str, Any], None] = None, **kwargs: Any
    ) -> List[Endpoint]:
        """
        Discover endpoints and merge them into the registry.

        Include/exclude filters and transforms are applied to the discovered
        endpoints, plugin ``on_discover`` hooks then see the merged set. The
        registry is only updated if every step succeeds.

        Returns:
            The discovered endpoints after filtering and transforms

        Raises:
            DiscoveryError: If discovery fails for any reason
        """
        if options is None:
            options = DiscoverOptions(**kwargs)
        elif isinstance(options, dict):
            options = DiscoverOptions(**options)

        self.events.emit(events.DISCOVERY_START, {"options": options})
        try:
            discoverer = self._select_discoverer(options)
            logger.info(f"Discovering endpoints with {discoverer.name} discoverer")

            discovered = await discoverer.discover(options)
            discovered = filter_endpoints(discovered, options.include, options.exclude)
            discovered = [await self._apply_transforms(e) for e in discovered]

            working: Dict[str, Endpoint] = dict(self._endpoints)
            for endpoint in discovered:
                for existing_id, existing in list(working.items()):
                    if existing.key == endpoint.key and existing_id != endpoint.id:
                        del working[existing_id]
                working[endpoint.id] = endpoint

            merged = list(working.values())
            for plugin in list(self._plugins.values()):
                hook = getattr(plugin, "on_discover", None)
                if callable(hook):
                    replacement = await _maybe_await(hook(merged, self))
                    if replacement is not None:
                        merged = list(replacement)
        except DiscoveryError as e:
            logger.error(f"Discovery failed: {e}")
            self.events.emit(events.DISCOVERY_ERROR, {"error": e})
            raise
        except Exception as e:
            logger.error(f"Discovery failed: {e}")
            self.events.emit(events.DISCOVERY_ERROR, {"error": e})
            raise DiscoveryError(f"Discovery failed: {e}") from e

        self._endpoints = {e.id: e for e in merged}
        for endpoint in discovered:
            self.events.emit(events.DISCOVERY_ENDPOINT, endpoint)
        self.events.emit(
            events.DISCOVERY_COMPLETE,
            {"endpoints": len(discovered), "total": len(self._endpoints)},
        )
        logger.info(
            f"Discovered {len(discovered)} endpoints ({len(self._endpoints)} registered)"
        )
        return discovered

    async def _apply_transforms(self, endpoint: Endpoint) -> Endpoint:
        for transform in self._transforms:
            result = await _maybe_await(transform(endpoint))
            if not isinstance(result, Endpoint):
                raise DiscoveryError(
                    f"Transform {getattr(transform, '__name__', transform)} "
                    f"did not return an Endpoint for {endpoint}"
                )
            endpoint = result
        return endpoint

    # Middleware, transforms and plugins

    def use(self, stage: str, handler: Callable) -> "APIBridge":
        """
        Append a handler to a pipeline stage.

        Raises:
            ConfigurationError: For unknown stages or non-callable handlers
        """
        try:
            self._middleware.add(stage, handler)
        except ValueError as e:
            raise ConfigurationError(str(e))
        return self

    def transform(self, transform: Transform) -> "APIBridge":
        if not callable(transform):
            raise ConfigurationError("Transform must be callable")
        self._transforms.append(transform)
        return self

    def plugin(self, name: str, plugin: Any) -> "APIBridge":
        """
        Register a plugin and merge its middleware and transforms.

        Raises:
            ConfigurationError: If a plugin with the same name exists
        """
        if name in self._plugins:
            raise ConfigurationError(f"Plugin already registered: {name}")

        bundle = getattr(plugin, "middleware", None)
        if isinstance(bundle, dict):
            bundle = MiddlewareConfig.from_dict(bundle)
        transforms = list(getattr(plugin, "transformers", None) or [])
        if any(not callable(t) for t in transforms):
            raise ConfigurationError(f"Plugin '{name}' has a non-callable transformer")

        if isinstance(bundle, MiddlewareConfig):
            self._middleware.extend(bundle)
        self._transforms.extend(transforms)
        self._plugins[name] = plugin
        logger.info(f"Registered plugin: {name}")
        return self

    def get_plugins(self) -> Dict[str, Any]:
        return dict(self._plugins)

    def get_middleware(self) -> MiddlewareConfig:
        return self._middleware.copy()

    async def run_plugin_hook(self, hook_name: str, *args: Any) -> None:
        """Run a lifecycle hook on every plugin; failures are logged."""
        for name, plugin in list(self._plugins.items()):
            hook = getattr(plugin, hook_name, None)
            if not callable(hook):
                continue
            try:
                await _maybe_await(hook(*args, self))
            except Exception as e:
                logger.error(f"Plugin '{name}' {hook_name} hook failed: {e}")

    # Generation

    async def generate_mcp_server(
        self, options: Union[MCPOptions, Dict[str, Any], None] = None, **kwargs: Any
    ) -> MCPServer:
        """
        Generate tools for every registered endpoint.

        Raises:
            MCPError: If no endpoints are registered or no tool can be generated
            ConfigurationError: If the options are invalid
        """
        if not self._endpoints:
            raise MCPError("No endpoints discovered. Run discover() first.")

        if options is None:
            options = MCPOptions(**kwargs)
        elif isinstance(options, dict):
            options = MCPOptions.from_dict(options)
        options.name = options.name or self.config.name
        options.version = options.version or self.config.version
        options.description = options.description or self.config.description

        for name, plugin in list(self._plugins.items()):
            hook = getattr(plugin, "on_generate", None)
            if callable(hook):
                await _maybe_await(hook(options, self))

        dispatcher = HTTPDispatcher(
            base_url=options.base_url,
            timeout=options.request_timeout,
            default_headers=options.default_headers,
        )
        self._generator = ToolGenerator(self._middleware, dispatcher)
        tools = self._generator.generate_tools(list(self._endpoints.values()), options)
        if not tools:
            raise MCPError("No tools could be generated from the registered endpoints")

        server = MCPServer(tools, options, bridge=self, dispatcher=dispatcher)
        logger.info(f"Generated MCP server '{options.name}' with {len(tools)} tools")
        return server

    def get_conflicts(self) -> List[ToolConflict]:
        """Tool name conflicts from the last generation."""
        return self._generator.get_conflicts() if self._generator else []

    # State

    def get_config(self) -> BridgeConfig:
        return self.config

    def get_stats(self) -> Dict[str, Any]:
        return {
            "endpoints": len(self._endpoints),
            "discoverers": len(self._discoverers),
            "plugins": len(self._plugins),
            "transforms": len(self._transforms),
            "middleware": self._middleware.counts(),
        }

    def reset(self) -> None:
        """
        Clear endpoints, middleware, transforms and plugins.

        Registered discoverers and event listeners are kept, so the same
        sources can be discovered again.
        """
        self._endpoints = {}
        self._middleware = MiddlewareConfig()
        self._transforms = []
        self._plugins = {}
        self._generator = None
        logger.info("APIBridge state reset")

    def __len__(self) -> int:
        return len(self._endpoints)

    def __repr__(self) -> str:
        return f"APIBridge(name={self.config.name!r}, endpoints={len(self._endpoints)})"
