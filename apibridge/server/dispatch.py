"""
HTTP dispatch adapter.

Turns a middleware context into a real HTTP request against the backing API
and maps the answer into a ``ResponseEnvelope``.
"""

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..core.errors import DispatchError
from ..core.models import Endpoint, HTTPMethod, MiddlewareContext, ResponseEnvelope
from ..version import __version__

logger = logging.getLogger(__name__)

BODY_METHODS = {HTTPMethod.POST, HTTPMethod.PUT, HTTPMethod.PATCH}


class HTTPDispatcher:
    """
    Sends tool calls to the backing API.

    Every HTTP status is returned as an envelope; only transport failures
    (timeouts, refused connections, DNS errors) raise ``DispatchError``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30.0,
        default_headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_headers = {
            "Content-Type": "application/json",
            "User-Agent": f"apibridge/{__version__}",
        }
        self.default_headers.update(default_headers or {})
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def build_url(
        self,
        endpoint: Endpoint,
        params: Dict[str, Any],
        base_url: Optional[str] = None,
    ) -> str:
        """Substitute path parameters (``{name}`` and ``:name``) and prefix the base URL."""
        path = endpoint.path
        for name, value in (params or {}).items():
            encoded = quote(str(value), safe="")
            path = path.replace(f"{{{name}}}", encoded)
            path = re.sub(rf"(?<=/):{re.escape(name)}(?=/|$)", encoded, path)
        return f"{(base_url or self.base_url).rstrip('/')}{path}"

    async def dispatch(self, context: MiddlewareContext) -> ResponseEnvelope:
        """
        Perform the HTTP request for a call.

        Raises:
            DispatchError: If the request cannot be completed
        """
        endpoint = context.endpoint
        request = context.request
        url = self.build_url(endpoint, request.params, context.metadata.get("baseUrl"))
        headers = dict(self.default_headers)
        headers.update(request.headers or {})
        method = endpoint.method.value

        kwargs: Dict[str, Any] = {"headers": headers}
        if request.query:
            kwargs["params"] = request.query
        if endpoint.method in BODY_METHODS and request.body is not None:
            kwargs["json"] = request.body

        logger.debug(f"Dispatching {method} {url} (request {context.request_id})")
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise DispatchError(
                f"HTTP request timed out: {method} {url}", method=method, url=url
            ) from e
        except httpx.RequestError as e:
            raise DispatchError(
                f"HTTP request failed: {e}", method=method, url=url
            ) from e

        envelope = ResponseEnvelope(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            data=self._decode(response),
        )
        logger.debug(f"{method} {url} -> {envelope.status}")
        return envelope

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
