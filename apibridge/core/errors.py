"""
Error types raised by apibridge.

Every error carries a machine readable code and an optional details
dictionary so that transports can report failures without inspecting
exception classes.
"""

from typing import Any, Dict, Optional


class APIBridgeError(Exception):
    """Base class for all apibridge errors."""

    default_code = "APIBRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for transport payloads."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ConfigurationError(APIBridgeError):
    """Invalid options, conflicting registrations or misuse of the lifecycle."""

    default_code = "CONFIGURATION_ERROR"


class DiscoveryError(APIBridgeError):
    """Raised when an application or document cannot be turned into endpoints."""

    default_code = "DISCOVERY_ERROR"


class MiddlewareError(APIBridgeError):
    """Raised when a pipeline stage aborts a tool call."""

    default_code = "MIDDLEWARE_ERROR"

    def __init__(
        self,
        message: str,
        phase: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"[{self.phase}] {self.message}"
        return self.message


class AuthorizationError(MiddlewareError):
    """Raised when an authz handler rejects the call."""

    def __init__(self, message: str = "Access denied", details=None):
        super().__init__(message, phase="authz", details=details)


class DispatchError(APIBridgeError):
    """Network level failure while calling the backing API."""

    default_code = "DISPATCH_ERROR"

    def __init__(
        self,
        message: str,
        method: str = "",
        url: str = "",
        status: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(
            message,
            details={
                "status": status,
                "data": data,
                "config": {"method": method, "url": url},
            },
        )
        self.method = method
        self.url = url
        self.status = status
        self.data = data


class MCPError(APIBridgeError):
    """Tool generation or protocol level failure."""

    default_code = "MCP_ERROR"


class ProtocolError(MCPError):
    """A failure that maps onto a JSON-RPC error code."""

    def __init__(self, message: str, rpc_code: int, data: Any = None):
        super().__init__(message, details={"data": data} if data is not None else None)
        self.rpc_code = rpc_code
        self.data = data
