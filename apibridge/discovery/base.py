"""
Discovery contract shared by all adapters.

A discoverer inspects one kind of input (a framework application, an
OpenAPI document or a live base URL) and returns canonical endpoints.
"""

import fnmatch
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from ..core.config import DiscoverOptions
from ..core.errors import DiscoveryError
from ..core.models import Endpoint, HTTPMethod, Response, canonical_path

logger = logging.getLogger(__name__)


class BaseDiscoverer(ABC):
    """
    Base class for discovery adapters.

    Subclasses implement ``supports`` to claim a set of options during
    auto-detection and ``discover`` to produce endpoints.
    """

    def __init__(self, name: str, version: str = "1.0.0"):
        self.name = name
        self.version = version

    @abstractmethod
    def supports(self, options: DiscoverOptions) -> bool:
        """Return True if this discoverer can handle the options."""

    @abstractmethod
    async def discover(self, options: DiscoverOptions) -> List[Endpoint]:
        """
        Discover endpoints.

        Raises:
            DiscoveryError: If the input is invalid or unreadable
        """

    def validate_options(self, options: DiscoverOptions) -> None:
        if options is None:
            raise DiscoveryError(
                f"Discovery options are required for {self.name} discoverer"
            )

    def normalize_path(self, path: str) -> str:
        return canonical_path(path)

    def create_endpoint(self, method: Any, path: str, **fields: Any) -> Endpoint:
        """
        Build an endpoint stamped with discoverer metadata.

        Endpoints without responses get a default ``200`` response.
        """
        metadata = dict(fields.pop("metadata", None) or {})
        metadata.setdefault("discoverer", self.name)
        metadata.setdefault("discoveredAt", datetime.now(timezone.utc).isoformat())
        responses = fields.pop("responses", None) or {
            "200": Response(description="Successful response")
        }
        return Endpoint(
            method=HTTPMethod.parse(method),
            path=path,
            responses=responses,
            metadata=metadata,
            **fields,
        )

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name} v{self.version})"


def _matches(endpoint: Endpoint, pattern: str) -> bool:
    return fnmatch.fnmatchcase(endpoint.path, pattern) or fnmatch.fnmatchcase(
        f"{endpoint.method.value} {endpoint.path}", pattern
    )


def filter_endpoints(
    endpoints: Iterable[Endpoint],
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> List[Endpoint]:
    """
    Apply include/exclude glob patterns.

    A pattern matches either the path (``/admin/*``) or the method and path
    (``DELETE /users/*``). With no include patterns everything is included.
    """
    include = list(include or [])
    exclude = list(exclude or [])
    result = []
    for endpoint in endpoints:
        if include and not any(_matches(endpoint, p) for p in include):
            continue
        if any(_matches(endpoint, p) for p in exclude):
            continue
        result.append(endpoint)
    return result


def dedupe_endpoints(endpoints: Iterable[Endpoint]) -> List[Endpoint]:
    """Keep one endpoint per (method, path); the last one wins, first position kept."""
    merged: Dict[Any, Endpoint] = {}
    for endpoint in endpoints:
        merged[endpoint.key] = endpoint
    return list(merged.values())


def merge_endpoints(base: List[Endpoint], override: List[Endpoint]) -> List[Endpoint]:
    """
    Merge two endpoint lists.

    Endpoints in ``override`` replace endpoints in ``base`` that share the same
    id or the same (method, path).
    """
    by_key = {e.key: e for e in override}
    by_id = {e.id: e for e in override}
    result = [e for e in base if e.key not in by_key and e.id not in by_id]
    result.extend(dedupe_endpoints(override))
    return result
