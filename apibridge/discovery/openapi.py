"""
OpenAPI discovery adapter.

Reads OpenAPI 3.x (and the common subset of Swagger 2.0) documents given as a
dictionary, a JSON/YAML file path or a URL, and converts every operation into
a canonical endpoint.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import httpx
import yaml

from ..core.config import DiscoverOptions
from ..core.errors import DiscoveryError
from ..core.models import Endpoint, MediaType, Parameter, RequestBody, Response
from .base import BaseDiscoverer

logger = logging.getLogger(__name__)

OPERATION_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")

WELL_KNOWN_PATHS = (
    "/openapi.json",
    "/swagger.json",
    "/openapi.yaml",
    "/swagger.yaml",
    "/api-docs",
    "/docs/openapi.json",
    "/docs/swagger.json",
    "/v1/openapi.json",
    "/v1/swagger.json",
)

SCHEMA_KEYS = (
    "type",
    "description",
    "example",
    "enum",
    "format",
    "default",
    "minimum",
    "maximum",
    "minLength",
    "maxLength",
    "pattern",
    "nullable",
    "required",
)

RESPONSE_CONTENT_PREFERENCE = ("application/json", "application/xml", "text/plain")


def parse_document(text: str, source: str = "") -> Dict[str, Any]:
    """Parse JSON or YAML text into an OpenAPI document."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DiscoveryError(f"Could not parse OpenAPI document {source}: {e}")
    if not isinstance(document, dict):
        raise DiscoveryError(f"OpenAPI document {source} is not an object")
    return document


def is_openapi_document(document: Any) -> bool:
    return isinstance(document, dict) and (
        "openapi" in document or "swagger" in document
    ) and isinstance(document.get("paths", {}), dict)


class OpenAPIDiscoverer(BaseDiscoverer):
    """Discovers endpoints from an OpenAPI document."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        super().__init__("openapi", "1.0.0")
        self._client = client

    def supports(self, options: DiscoverOptions) -> bool:
        if options.openapi is not None:
            return True
        return options.strategy == "openapi" and bool(options.url)

    async def discover(self, options: DiscoverOptions) -> List[Endpoint]:
        self.validate_options(options)
        document = await self.load_document(options)
        if not is_openapi_document(document):
            raise DiscoveryError("Input is not an OpenAPI document")
        return self.convert_document(document)

    async def load_document(self, options: DiscoverOptions) -> Dict[str, Any]:
        """
        Resolve the document from the options.

        Raises:
            DiscoveryError: If no document source is given or it can't be read
        """
        source = options.openapi
        if isinstance(source, dict):
            return source
        if isinstance(source, str):
            if source.startswith(("http://", "https://")):
                return await self._fetch(source, options)
            return self._read_file(source)
        if options.url:
            return await self.find_document(options.url, options)
        raise DiscoveryError("No OpenAPI document, file or URL provided")

    def _read_file(self, file_path: str) -> Dict[str, Any]:
        path = Path(file_path)
        if not path.exists():
            raise DiscoveryError(f"OpenAPI file not found: {file_path}")
        logger.info(f"Loading OpenAPI document from {path}")
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        if path.suffix in (".yaml", ".yml"):
            try:
                document = yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise DiscoveryError(f"Invalid YAML in {file_path}: {e}")
            if not isinstance(document, dict):
                raise DiscoveryError(f"OpenAPI document {file_path} is not an object")
            return document
        return parse_document(text, file_path)

    def _request_headers(self, options: DiscoverOptions) -> Dict[str, str]:
        headers = {"Accept": "application/json, application/yaml, text/yaml"}
        headers.update(options.headers or {})
        if options.api_key:
            headers["Authorization"] = f"Bearer {options.api_key}"
        return headers

    async def _get(self, url: str, options: DiscoverOptions) -> httpx.Response:
        headers = self._request_headers(options)
        if self._client is not None:
            return await self._client.get(url, headers=headers)
        async with httpx.AsyncClient(
            timeout=options.crawl.timeout, follow_redirects=True
        ) as client:
            return await client.get(url, headers=headers)

    async def _fetch(self, url: str, options: DiscoverOptions) -> Dict[str, Any]:
        logger.info(f"Fetching OpenAPI document from {url}")
        try:
            response = await self._get(url, options)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DiscoveryError(
                f"Failed to fetch OpenAPI document from {url}: {e}",
                details={"url": url},
            )
        return parse_document(response.text, url)

    async def find_document(
        self, base_url: str, options: DiscoverOptions
    ) -> Dict[str, Any]:
        """Probe the well-known OpenAPI locations under a base URL."""
        base = base_url.rstrip("/")
        for well_known in WELL_KNOWN_PATHS:
            url = f"{base}{well_known}"
            try:
                response = await self._get(url, options)
            except httpx.HTTPError as e:
                logger.debug(f"Probe of {url} failed: {e}")
                continue
            if response.status_code != 200:
                continue
            try:
                document = parse_document(response.text, url)
            except DiscoveryError:
                continue
            if is_openapi_document(document):
                logger.info(f"Found OpenAPI document at {url}")
                return document
        raise DiscoveryError(
            f"No OpenAPI document found under {base_url}",
            details={"probed": list(WELL_KNOWN_PATHS)},
        )

    def convert_document(self, document: Dict[str, Any]) -> List[Endpoint]:
        """Convert every operation of a parsed document into endpoints."""
        endpoints: List[Endpoint] = []
        servers = document.get("servers") or []
        global_security = document.get("security")

        for path, path_item in (document.get("paths") or {}).items():
            if not isinstance(path_item, dict):
                continue
            path_item = self.resolve(document, path_item)
            shared_params = path_item.get("parameters") or []
            for method in OPERATION_METHODS:
                operation = path_item.get(method)
                if not isinstance(operation, dict):
                    continue
                try:
                    endpoints.append(
                        self._convert_operation(
                            document,
                            path,
                            method,
                            operation,
                            shared_params,
                            servers,
                            global_security,
                        )
                    )
                except (DiscoveryError, ValueError, TypeError) as e:
                    logger.warning(
                        f"Skipping operation {method.upper()} {path}: {e}"
                    )

        logger.info(f"Converted {len(endpoints)} operations from OpenAPI document")
        return endpoints

    def _convert_operation(
        self,
        document: Dict[str, Any],
        path: str,
        method: str,
        operation: Dict[str, Any],
        shared_params: List[Dict[str, Any]],
        servers: List[Any],
        global_security: Any,
    ) -> Endpoint:
        merged: Dict[Any, Dict[str, Any]] = {}
        for raw in list(shared_params) + list(operation.get("parameters") or []):
            param = self.resolve(document, raw)
            merged[(param.get("in"), param.get("name"))] = param

        parameters: List[Parameter] = []
        request_body: Optional[RequestBody] = None
        for param in merged.values():
            location = param.get("in")
            if location == "body":
                request_body = RequestBody(
                    content={
                        "application/json": MediaType(
                            schema=self.convert_schema(document, param.get("schema") or {})
                        )
                    },
                    description=param.get("description"),
                    required=bool(param.get("required", False)),
                )
                continue
            if location not in ("path", "query", "header", "cookie"):
                continue
            parameters.append(self._convert_parameter(document, param))

        if "requestBody" in operation:
            request_body = self._convert_request_body(
                document, self.resolve(document, operation["requestBody"])
            )

        metadata: Dict[str, Any] = {
            "operationId": operation.get("operationId"),
            "deprecated": bool(operation.get("deprecated", False)),
        }
        if servers:
            metadata["servers"] = servers
        security = operation.get("security", global_security)
        if security is not None:
            metadata["security"] = security

        return self.create_endpoint(
            method,
            path,
            summary=operation.get("summary"),
            description=operation.get("description"),
            tags=set(operation.get("tags") or ()),
            parameters=parameters,
            request_body=request_body,
            responses=self._convert_responses(document, operation.get("responses") or {}),
            metadata=metadata,
        )

    def _convert_parameter(
        self, document: Dict[str, Any], param: Dict[str, Any]
    ) -> Parameter:
        schema = self.convert_schema(document, param.get("schema") or {})
        if not schema and "type" in param:
            schema = {k: param[k] for k in SCHEMA_KEYS if k in param}
        return Parameter(
            name=param.get("name", ""),
            location=param.get("in"),
            type=schema.get("type", "string"),
            required=bool(param.get("required", False)),
            description=param.get("description"),
            schema=schema or None,
            example=param.get("example", schema.get("example")),
        )

    def _convert_request_body(
        self, document: Dict[str, Any], body: Dict[str, Any]
    ) -> RequestBody:
        content = {}
        for content_type, media in (body.get("content") or {}).items():
            media = media or {}
            content[content_type] = MediaType(
                schema=self.convert_schema(document, media.get("schema") or {}) or None,
                example=media.get("example"),
            )
        return RequestBody(
            content=content,
            description=body.get("description"),
            required=bool(body.get("required", False)),
        )

    def _convert_responses(
        self, document: Dict[str, Any], responses: Dict[str, Any]
    ) -> Dict[str, Response]:
        converted = {}
        for code, raw in responses.items():
            raw = self.resolve(document, raw or {})
            content = raw.get("content") or {}
            media = None
            for preferred in RESPONSE_CONTENT_PREFERENCE:
                if preferred in content:
                    media = content[preferred]
                    break
            if media is None and content:
                media = next(iter(content.values()))
            schema = None
            if media and media.get("schema"):
                schema = self.convert_schema(document, media["schema"])
            elif raw.get("schema"):
                schema = self.convert_schema(document, raw["schema"])
            converted[str(code)] = Response(
                description=raw.get("description", ""),
                schema=schema,
                headers=raw.get("headers") or {},
            )
        return converted

    def resolve(self, document: Dict[str, Any], node: Any) -> Any:
        """
        Follow a local ``$ref`` pointer.

        Raises:
            DiscoveryError: For external or dangling references
        """
        seen: Set[str] = set()
        while isinstance(node, dict) and "$ref" in node:
            ref = node["$ref"]
            if not isinstance(ref, str) or not ref.startswith("#/"):
                raise DiscoveryError(f"External references are not supported: {ref}")
            if ref in seen:
                raise DiscoveryError(f"Circular reference: {ref}")
            seen.add(ref)
            target: Any = document
            for part in ref[2:].split("/"):
                part = part.replace("~1", "/").replace("~0", "~")
                if not isinstance(target, dict) or part not in target:
                    raise DiscoveryError(f"Unresolved reference: {ref}")
                target = target[part]
            node = target
        return node

    def convert_schema(
        self,
        document: Dict[str, Any],
        schema: Any,
        _stack: Optional[Set[str]] = None,
    ) -> Dict[str, Any]:
        """Convert an OpenAPI schema into a plain JSON schema with refs inlined."""
        if not isinstance(schema, dict):
            return {}
        stack = set(_stack or ())
        ref = schema.get("$ref")
        if ref:
            if ref in stack:
                # Recursive schema, stop expanding
                return {"type": "object"}
            stack.add(ref)
            schema = self.resolve(document, schema)

        result = {k: schema[k] for k in SCHEMA_KEYS if k in schema}
        if "properties" in schema:
            result["properties"] = {
                name: self.convert_schema(document, prop, stack)
                for name, prop in (schema.get("properties") or {}).items()
            }
            result.setdefault("type", "object")
        if "items" in schema:
            result["items"] = self.convert_schema(document, schema["items"], stack)
            result.setdefault("type", "array")
        for combinator in ("allOf", "anyOf", "oneOf"):
            if combinator in schema:
                result[combinator] = [
                    self.convert_schema(document, s, stack) for s in schema[combinator]
                ]
        if isinstance(schema.get("additionalProperties"), dict):
            result["additionalProperties"] = self.convert_schema(
                document, schema["additionalProperties"], stack
            )
        return result
