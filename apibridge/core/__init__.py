"""Core model, configuration, errors and events.

``APIBridge`` lives in ``apibridge.core.bridge`` and is re-exported from the
top-level package.
"""

from .config import (
    BridgeConfig,
    Capabilities,
    CrawlOptions,
    DiscoverOptions,
    MCPOptions,
    load_bridge_config,
)
from .errors import (
    APIBridgeError,
    AuthorizationError,
    ConfigurationError,
    DiscoveryError,
    DispatchError,
    MCPError,
    MiddlewareError,
    ProtocolError,
)
from .events import BridgeEvent, EventEmitter
from .models import (
    Endpoint,
    HTTPMethod,
    MediaType,
    MiddlewareConfig,
    MiddlewareContext,
    Parameter,
    ParameterLocation,
    RequestBody,
    RequestInfo,
    Response,
    ResponseEnvelope,
    Tool,
)
