"""
Live URL discovery.

Looks for an OpenAPI document at the well-known locations first. When none is
published, crawls JSON responses from the base URL, following same-origin
links found in response bodies.
"""

import logging
import re
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse

import httpx

from ..core.config import DiscoverOptions
from ..core.errors import DiscoveryError
from ..core.models import Endpoint, Response
from .base import BaseDiscoverer, dedupe_endpoints
from .openapi import OpenAPIDiscoverer

logger = logging.getLogger(__name__)

_NUMERIC_SEGMENT = re.compile(r"^\d+$")
_UUID_SEGMENT = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def generalize_path(path: str) -> str:
    """Replace id-like segments with ``{id}`` placeholders (``{id2}`` etc. when repeated)."""
    segments = []
    count = 0
    for segment in path.split("/"):
        if _NUMERIC_SEGMENT.match(segment) or _UUID_SEGMENT.match(segment):
            count += 1
            segments.append("{id}" if count == 1 else f"{{id{count}}}")
        else:
            segments.append(segment)
    return "/".join(segments)


def extract_links(data: Any) -> Iterable[str]:
    """Yield string values that look like URLs or absolute paths."""
    if isinstance(data, dict):
        for value in data.values():
            yield from extract_links(value)
    elif isinstance(data, list):
        for value in data:
            yield from extract_links(value)
    elif isinstance(data, str):
        if data.startswith(("http://", "https://")) or (
            data.startswith("/") and not data.startswith("//") and " " not in data
        ):
            yield data


class URLDiscoverer(BaseDiscoverer):
    """Discovers endpoints from a running server."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        super().__init__("url", "1.0.0")
        self._client = client
        self._openapi = OpenAPIDiscoverer(client=client)

    def supports(self, options: DiscoverOptions) -> bool:
        return bool(options.url) and options.app is None

    async def discover(self, options: DiscoverOptions) -> List[Endpoint]:
        self.validate_options(options)
        if not options.url:
            raise DiscoveryError("A base URL is required for URL discovery")

        if options.strategy != "crawl":
            try:
                document = await self._openapi.find_document(options.url, options)
                return self._openapi.convert_document(document)
            except DiscoveryError:
                logger.info(f"No OpenAPI document under {options.url}, crawling")

        if self._client is not None:
            return await self.crawl(self._client, options)
        async with httpx.AsyncClient(
            timeout=options.crawl.timeout, follow_redirects=True
        ) as client:
            return await self.crawl(client, options)

    async def crawl(
        self, client: httpx.AsyncClient, options: DiscoverOptions
    ) -> List[Endpoint]:
        """
        Breadth-first crawl bounded by depth and page count.

        Only GET requests are issued. Each URL answering 2xx becomes a GET
        endpoint with id-like segments generalized into placeholders.
        """
        base = urlparse(options.url)
        origin = f"{base.scheme}://{base.netloc}"
        headers = {"Accept": "application/json", "User-Agent": options.crawl.user_agent}
        headers.update(options.headers or {})
        if options.api_key:
            headers["Authorization"] = f"Bearer {options.api_key}"

        queue: deque = deque([(options.url, 0)])
        visited: Set[str] = set()
        found: Dict[str, Tuple[str, Dict[str, Any]]] = {}

        while queue and len(visited) < options.crawl.max_pages:
            url, depth = queue.popleft()
            if url in visited:
                continue
            visited.add(url)

            try:
                response = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                logger.debug(f"Crawl request to {url} failed: {e}")
                continue
            if not 200 <= response.status_code < 300:
                continue

            parsed = urlparse(url)
            path = generalize_path(parsed.path or "/")
            found.setdefault(path, (url, {"contentType": response.headers.get("content-type", "")}))

            if depth >= options.crawl.max_depth:
                continue
            try:
                body = response.json()
            except ValueError:
                continue
            for link in extract_links(body):
                absolute = urljoin(origin + "/", link)
                target = urlparse(absolute)
                if f"{target.scheme}://{target.netloc}" != origin:
                    continue
                absolute = f"{origin}{target.path}"
                if absolute not in visited:
                    queue.append((absolute, depth + 1))

        if not found:
            raise DiscoveryError(
                f"No endpoints found while crawling {options.url}",
                details={"visited": len(visited)},
            )

        endpoints = []
        for path, (sample_url, info) in found.items():
            endpoints.append(
                self.create_endpoint(
                    "GET",
                    path,
                    responses={"200": Response(description="Successful response")},
                    metadata={"sampleUrl": sample_url, **info},
                )
            )
        logger.info(f"Crawled {len(visited)} pages, found {len(endpoints)} endpoints")
        return dedupe_endpoints(endpoints)
