"""Discovery adapters that turn applications and documents into endpoints."""

from .base import BaseDiscoverer, dedupe_endpoints, filter_endpoints, merge_endpoints
from .openapi import OpenAPIDiscoverer
from .url import URLDiscoverer

__all__ = [
    "BaseDiscoverer",
    "OpenAPIDiscoverer",
    "URLDiscoverer",
    "dedupe_endpoints",
    "filter_endpoints",
    "merge_endpoints",
]
