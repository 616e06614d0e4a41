"""
Canonical endpoint model.

These dataclasses are the framework independent description of an HTTP API
that every discovery adapter produces and every later stage consumes.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_ANGLE_PLACEHOLDER = re.compile(r"<(?:[^<>:]+:)?([A-Za-z_][A-Za-z0-9_]*)>")
_TYPED_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*):[^}]*\}")
_COLON_PLACEHOLDER = re.compile(r"(?<=/):([A-Za-z_][A-Za-z0-9_]*)")


class HTTPMethod(str, Enum):
    """HTTP methods an endpoint can be bound to."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: Any) -> "HTTPMethod":
        """Parse a method name in any case."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unsupported HTTP method: {value}")


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"


def canonical_path(path: str) -> str:
    """
    Normalize a route path into the canonical ``{name}`` placeholder form.

    Colon (``/:id``), angle (``<int:id>``) and typed brace (``{id:int}``)
    placeholders are rewritten, a leading slash is ensured and trailing
    slashes are removed (the root stays ``/``).
    """
    path = (path or "").strip()
    path = _ANGLE_PLACEHOLDER.sub(r"{\1}", path)
    path = _TYPED_PLACEHOLDER.sub(r"{\1}", path)
    path = _COLON_PLACEHOLDER.sub(r"{\1}", path)
    if not path.startswith("/"):
        path = "/" + path
    path = re.sub(r"/{2,}", "/", path)
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def path_placeholders(path: str) -> List[str]:
    """Return placeholder names in order of appearance, without duplicates."""
    names: List[str] = []
    for name in PLACEHOLDER_PATTERN.findall(path):
        if name not in names:
            names.append(name)
    return names


def endpoint_id(method: "HTTPMethod", path: str) -> str:
    """Deterministic endpoint id derived from method and path."""
    return f"{method.value}_{re.sub(r'[^A-Za-z0-9]', '_', path)}"


@dataclass
class Parameter:
    """A single request parameter."""

    name: str
    location: ParameterLocation = ParameterLocation.QUERY
    type: str = "string"
    required: bool = False
    description: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None
    example: Any = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Parameter name cannot be empty")
        self.location = ParameterLocation(self.location)
        if self.location == ParameterLocation.PATH:
            self.required = True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "in": self.location.value,
            "type": self.type,
            "required": self.required,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.schema is not None:
            data["schema"] = self.schema
        if self.example is not None:
            data["example"] = self.example
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Parameter":
        return cls(
            name=data.get("name", ""),
            location=data.get("in", data.get("location", "query")),
            type=data.get("type", "string"),
            required=bool(data.get("required", False)),
            description=data.get("description"),
            schema=data.get("schema"),
            example=data.get("example"),
        )


@dataclass
class MediaType:
    schema: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    example: Any = None


@dataclass
class RequestBody:
    """Request body keyed by content type."""

    content: Dict[str, MediaType] = field(default_factory=dict)
    description: Optional[str] = None
    required: bool = False

    def json_schema(self) -> Optional[Dict[str, Any]]:
        """Schema of the application/json entry, if any."""
        media = self.content.get("application/json")
        return media.schema if media else None

    def to_dict(self) -> Dict[str, Any]:
        content = {}
        for content_type, media in self.content.items():
            entry: Dict[str, Any] = {}
            if media.schema is not None:
                entry["schema"] = media.schema
            if media.description is not None:
                entry["description"] = media.description
            if media.example is not None:
                entry["example"] = media.example
            content[content_type] = entry
        data: Dict[str, Any] = {"content": content, "required": self.required}
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestBody":
        content = {
            content_type: MediaType(
                schema=(media or {}).get("schema"),
                description=(media or {}).get("description"),
                example=(media or {}).get("example"),
            )
            for content_type, media in (data.get("content") or {}).items()
        }
        return cls(
            content=content,
            description=data.get("description"),
            required=bool(data.get("required", False)),
        )


@dataclass
class Response:
    description: str = ""
    schema: Optional[Dict[str, Any]] = None
    headers: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"description": self.description}
        if self.schema is not None:
            data["schema"] = self.schema
        if self.headers:
            data["headers"] = self.headers
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        return cls(
            description=data.get("description", ""),
            schema=data.get("schema"),
            headers=data.get("headers") or {},
        )


@dataclass
class Endpoint:
    """
    One (method, path) pair of the wrapped API.

    Construction normalizes the path and enforces that every placeholder has
    exactly one required path parameter and that no path parameter lacks a
    placeholder. Missing path parameters are synthesized as strings.

    Raises:
        ValueError: On duplicate parameters or path parameters that do not
            appear in the path.
    """

    method: HTTPMethod
    path: str
    id: str = ""
    description: Optional[str] = None
    summary: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    parameters: List[Parameter] = field(default_factory=list)
    request_body: Optional[RequestBody] = None
    responses: Dict[str, Response] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.method = HTTPMethod.parse(self.method)
        self.path = canonical_path(self.path)
        self.tags = set(self.tags or ())
        self.parameters = list(self.parameters or [])

        seen: Set[Tuple[ParameterLocation, str]] = set()
        for param in self.parameters:
            key = (param.location, param.name)
            if key in seen:
                raise ValueError(
                    f"Duplicate {param.location.value} parameter '{param.name}' "
                    f"on {self.method.value} {self.path}"
                )
            seen.add(key)

        placeholders = self.placeholders()
        for param in self.path_parameters():
            if param.name not in placeholders:
                raise ValueError(
                    f"Path parameter '{param.name}' has no placeholder in {self.path}"
                )

        for name in placeholders:
            if (ParameterLocation.PATH, name) not in seen:
                self.parameters.append(
                    Parameter(
                        name=name,
                        location=ParameterLocation.PATH,
                        type="string",
                        required=True,
                        description=f"Path parameter: {name}",
                    )
                )

        if not self.id:
            self.id = endpoint_id(self.method, self.path)

    @property
    def key(self) -> Tuple[HTTPMethod, str]:
        return (self.method, self.path)

    def placeholders(self) -> List[str]:
        return path_placeholders(self.path)

    def parameters_in(self, location: ParameterLocation) -> List[Parameter]:
        location = ParameterLocation(location)
        return [p for p in self.parameters if p.location == location]

    def path_parameters(self) -> List[Parameter]:
        return self.parameters_in(ParameterLocation.PATH)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON compatible dictionary."""
        data: Dict[str, Any] = {
            "id": self.id,
            "method": self.method.value,
            "path": self.path,
            "tags": sorted(self.tags),
            "parameters": [p.to_dict() for p in self.parameters],
            "responses": {code: r.to_dict() for code, r in self.responses.items()},
            "metadata": self.metadata,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.summary is not None:
            data["summary"] = self.summary
        if self.request_body is not None:
            data["requestBody"] = self.request_body.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Endpoint":
        """Build an endpoint from its dictionary form (camelCase keys)."""
        if "method" not in data or "path" not in data:
            raise ValueError("Endpoint definitions require 'method' and 'path'")
        body = data.get("requestBody", data.get("request_body"))
        return cls(
            method=data["method"],
            path=data["path"],
            id=data.get("id", ""),
            description=data.get("description"),
            summary=data.get("summary"),
            tags=set(data.get("tags") or ()),
            parameters=[Parameter.from_dict(p) for p in data.get("parameters") or []],
            request_body=RequestBody.from_dict(body) if body else None,
            responses={
                str(code): Response.from_dict(r or {})
                for code, r in (data.get("responses") or {}).items()
            },
            metadata=dict(data.get("metadata") or {}),
        )

    def __str__(self) -> str:
        return f"{self.method.value} {self.path}"


@dataclass
class RequestInfo:
    """The inbound request a tool call is translated into."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)
    body: Any = None


@dataclass
class ResponseEnvelope:
    """Result of one backing API call."""

    status: int
    status_text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headers": self.headers,
            "data": self.data,
        }


@dataclass
class MiddlewareContext:
    """Per-call state shared by all pipeline stages."""

    endpoint: Endpoint
    request: RequestInfo
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    metadata: Dict[str, Any] = field(default_factory=dict)
    user: Any = None
    response: Optional[ResponseEnvelope] = None


ToolHandler = Callable[..., Awaitable[ResponseEnvelope]]


@dataclass(frozen=True)
class Tool:
    """A generated MCP tool bound to one endpoint."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler
    endpoint: Endpoint

    def to_mcp(self) -> Dict[str, Any]:
        """Tool descriptor as listed by ``tools/list``."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


STAGES = ("auth", "authz", "pre", "post", "error")


@dataclass
class MiddlewareConfig:
    """Ordered handler lists, one per pipeline stage."""

    auth: List[Callable] = field(default_factory=list)
    authz: List[Callable] = field(default_factory=list)
    pre: List[Callable] = field(default_factory=list)
    post: List[Callable] = field(default_factory=list)
    error: List[Callable] = field(default_factory=list)

    def add(self, stage: str, handler: Callable) -> None:
        if stage not in STAGES:
            raise ValueError(f"Unknown middleware stage: {stage}")
        if not callable(handler):
            raise ValueError(f"Middleware for stage '{stage}' must be callable")
        getattr(self, stage).append(handler)

    def extend(self, other: "MiddlewareConfig") -> None:
        for stage in STAGES:
            getattr(self, stage).extend(getattr(other, stage))

    def copy(self) -> "MiddlewareConfig":
        return MiddlewareConfig(**{stage: list(getattr(self, stage)) for stage in STAGES})

    def clear(self) -> None:
        for stage in STAGES:
            getattr(self, stage).clear()

    def counts(self) -> Dict[str, int]:
        return {stage: len(getattr(self, stage)) for stage in STAGES}

    @classmethod
    def from_dict(cls, data: Dict[str, List[Callable]]) -> "MiddlewareConfig":
        config = cls()
        for stage, handlers in (data or {}).items():
            for handler in handlers or []:
                config.add(stage, handler)
        return config
