"""
Configuration for apibridge.

Options objects are dataclasses validated on construction. A complete setup
(bridge identity, discovery options, server options and manually defined
endpoints) can also be loaded from a JSON file.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .errors import ConfigurationError
from .models import Endpoint

logger = logging.getLogger(__name__)

SUPPORTED_TRANSPORTS = ("stdio", "http", "sse")
DISCOVERY_STRATEGIES = ("auto", "openapi", "crawl", "introspect")


@dataclass
class BridgeConfig:
    """Identity of a bridge instance."""

    name: str = "apibridge"
    version: str = "1.0.0"
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Bridge name cannot be empty")


@dataclass
class CrawlOptions:
    max_depth: int = 3
    max_pages: int = 50
    timeout: float = 10.0
    user_agent: str = "apibridge-crawler/1.0"

    def __post_init__(self):
        if self.max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        if self.max_pages <= 0:
            raise ValueError("max_pages must be positive")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass
class DiscoverOptions:
    """
    Options for a single discovery run.

    ``strategy`` is one of auto, openapi, crawl or introspect, or the name of
    a registered discoverer.
    """

    app: Any = None
    framework: Optional[str] = None
    url: Optional[str] = None
    openapi: Union[str, Dict[str, Any], None] = None
    api_key: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    strategy: str = "auto"
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    crawl: CrawlOptions = field(default_factory=CrawlOptions)
    custom: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.strategy:
            raise ValueError("strategy cannot be empty")
        if isinstance(self.crawl, dict):
            self.crawl = CrawlOptions(**self.crawl)
        if self.framework:
            self.framework = self.framework.lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoverOptions":
        return cls(
            framework=data.get("framework"),
            url=data.get("url"),
            openapi=data.get("openapi"),
            api_key=data.get("api_key", data.get("apiKey")),
            headers=data.get("headers") or {},
            strategy=data.get("strategy", "auto"),
            include=data.get("include") or [],
            exclude=data.get("exclude") or [],
            crawl=CrawlOptions(**(data.get("crawl") or {})),
            custom=data.get("custom") or {},
        )


@dataclass
class Capabilities:
    tools: bool = True
    resources: bool = False
    prompts: bool = False
    logging: bool = False

    def to_dict(self) -> Dict[str, Any]:
        caps: Dict[str, Any] = {}
        if self.tools:
            caps["tools"] = {}
        if self.resources:
            caps["resources"] = {}
        if self.prompts:
            caps["prompts"] = {}
        if self.logging:
            caps["logging"] = {}
        return caps


@dataclass
class MCPOptions:
    """
    Options for generating and serving tools.

    Raises:
        ConfigurationError: If the transport is not supported or the port is
            out of range.
    """

    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    transport: str = "stdio"
    port: int = 3000
    host: str = "localhost"
    cors: bool = True
    base_url: str = "http://localhost:3000"
    tool_naming: Optional[Callable[[Endpoint], str]] = None
    tool_description: Optional[Callable[[Endpoint], str]] = None
    capabilities: Capabilities = field(default_factory=Capabilities)
    request_timeout: float = 30.0
    default_headers: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.transport = (self.transport or "").lower()
        if self.transport not in SUPPORTED_TRANSPORTS:
            raise ConfigurationError(
                f"Unsupported transport: {self.transport}",
                details={"supported": list(SUPPORTED_TRANSPORTS)},
            )
        if not 0 <= int(self.port) <= 65535:
            raise ConfigurationError(f"Invalid port: {self.port}")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if isinstance(self.capabilities, dict):
            self.capabilities = Capabilities(**self.capabilities)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MCPOptions":
        return cls(
            name=data.get("name"),
            version=data.get("version"),
            description=data.get("description"),
            transport=data.get("transport", "stdio"),
            port=int(data.get("port", 3000)),
            host=data.get("host", "localhost"),
            cors=bool(data.get("cors", True)),
            base_url=data.get("base_url", data.get("baseUrl", "http://localhost:3000")),
            capabilities=Capabilities(**(data.get("capabilities") or {})),
            request_timeout=float(data.get("request_timeout", 30.0)),
            default_headers=data.get("default_headers") or {},
            metadata=data.get("metadata") or {},
        )


def load_bridge_config(
    config_path: Union[str, Path],
) -> Tuple[BridgeConfig, Optional[DiscoverOptions], MCPOptions, List[Endpoint]]:
    """
    Load a bridge setup from a JSON file.

    Args:
        config_path: Path to the JSON configuration file

    Returns:
        Tuple of (bridge config, discover options or None, server options,
        manually defined endpoints)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not valid JSON or a section is invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info(f"Loading apibridge configuration from {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in configuration file: {e}")

    if not isinstance(data, dict):
        raise ValueError("Configuration root must be an object")

    try:
        bridge = BridgeConfig(**(data.get("bridge") or {}))
        discovery_data = data.get("discovery")
        discovery = DiscoverOptions.from_dict(discovery_data) if discovery_data else None
        server = MCPOptions.from_dict(data.get("server") or {})
    except (TypeError, ConfigurationError) as e:
        raise ValueError(f"Invalid configuration: {e}")

    endpoints = []
    for index, endpoint_data in enumerate(data.get("endpoints") or []):
        try:
            endpoints.append(Endpoint.from_dict(endpoint_data))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid endpoint definition at index {index}: {e}")

    logger.info(f"Loaded configuration with {len(endpoints)} manual endpoints")
    return bridge, discovery, server, endpoints
