"""
FastAPI and Starlette introspection.

FastAPI applications already describe themselves through their generated
OpenAPI schema, so shapes come from ``app.openapi()``. Route dependencies and
the application's middleware stack are read from the route table and copied
into endpoint metadata. Plain Starlette applications are read from their
route table directly.
"""

import logging
from typing import Any, Dict, List

from fastapi.routing import APIRoute
from starlette.routing import Route

from ..core.config import DiscoverOptions
from ..core.errors import DiscoveryError
from ..core.models import (
    Endpoint,
    HTTPMethod,
    Parameter,
    ParameterLocation,
    canonical_path,
)
from .base import BaseDiscoverer
from .openapi import OpenAPIDiscoverer

logger = logging.getLogger(__name__)

CONVERTOR_TYPES = {
    "IntegerConvertor": "integer",
    "FloatConvertor": "number",
}

IMPLICIT_METHODS = {"HEAD", "OPTIONS"}


def _callable_name(obj: Any) -> str:
    return getattr(obj, "__name__", None) or obj.__class__.__name__


class FastAPIDiscoverer(BaseDiscoverer):
    """Discovers endpoints from a FastAPI or Starlette application object."""

    def __init__(self):
        super().__init__("fastapi", "1.0.0")
        self._openapi = OpenAPIDiscoverer()

    def supports(self, options: DiscoverOptions) -> bool:
        if options.framework in ("fastapi", "starlette"):
            return True
        app = options.app
        return app is not None and hasattr(app, "routes") and hasattr(app, "user_middleware")

    async def discover(self, options: DiscoverOptions) -> List[Endpoint]:
        self.validate_options(options)
        app = options.app
        if app is None or not hasattr(app, "routes"):
            raise DiscoveryError(
                "A FastAPI or Starlette application instance is required",
                details={"framework": options.framework},
            )

        app_middleware = [
            _callable_name(m.cls) for m in getattr(app, "user_middleware", [])
        ]

        if callable(getattr(app, "openapi", None)):
            endpoints = self._from_openapi(app)
        else:
            endpoints = self._from_routes(app)

        route_dependencies = self._route_dependencies(app)
        for endpoint in endpoints:
            endpoint.metadata["discoverer"] = self.name
            endpoint.metadata["middleware"] = {
                "app": list(app_middleware),
                "route": route_dependencies.get(endpoint.key, []),
            }

        logger.info(f"Discovered {len(endpoints)} endpoints from application routes")
        return endpoints

    def _from_openapi(self, app: Any) -> List[Endpoint]:
        try:
            document = app.openapi()
        except Exception as e:
            raise DiscoveryError(f"Failed to generate OpenAPI schema from app: {e}")
        return self._openapi.convert_document(document or {})

    def _from_routes(self, app: Any) -> List[Endpoint]:
        endpoints = []
        for route in app.routes:
            if not isinstance(route, Route) or not route.methods:
                continue
            if not getattr(route, "include_in_schema", True):
                continue
            parameters = []
            for name, convertor in (route.param_convertors or {}).items():
                parameters.append(
                    Parameter(
                        name=name,
                        location=ParameterLocation.PATH,
                        type=CONVERTOR_TYPES.get(type(convertor).__name__, "string"),
                        required=True,
                        description=f"Path parameter: {name}",
                    )
                )
            description = (route.endpoint.__doc__ or "").strip() or None
            for method in sorted(set(route.methods) - IMPLICIT_METHODS):
                try:
                    endpoints.append(
                        self.create_endpoint(
                            method,
                            route.path,
                            description=description,
                            parameters=[Parameter(**vars(p)) for p in parameters],
                            metadata={"handler": _callable_name(route.endpoint)},
                        )
                    )
                except ValueError as e:
                    logger.warning(f"Skipping route {method} {route.path}: {e}")
        return endpoints

    def _route_dependencies(self, app: Any) -> Dict[Any, List[str]]:
        result: Dict[Any, List[str]] = {}
        for route in app.routes:
            if not isinstance(route, APIRoute):
                continue
            names = [
                _callable_name(dep.dependency)
                for dep in route.dependencies
                if dep.dependency is not None
            ]
            path = canonical_path(route.path)
            for method in route.methods or ():
                result[(HTTPMethod.parse(method), path)] = names
        return result
