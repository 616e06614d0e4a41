"""Flask route introspection."""

import logging
import re
from typing import Any, Dict, List

from ..core.config import DiscoverOptions
from ..core.errors import DiscoveryError
from ..core.models import Endpoint, Parameter, ParameterLocation
from .base import BaseDiscoverer

logger = logging.getLogger(__name__)

_RULE_ARGUMENT = re.compile(r"<(?:([A-Za-z_]+)(?:\([^)]*\))?:)?([A-Za-z_][A-Za-z0-9_]*)>")

CONVERTER_TYPES = {
    "int": "integer",
    "float": "number",
    "string": "string",
    "path": "string",
    "uuid": "string",
    "any": "string",
}

IMPLICIT_METHODS = {"HEAD", "OPTIONS"}


class FlaskDiscoverer(BaseDiscoverer):
    """
    Discovers endpoints from a Flask application's URL map.

    Implicit HEAD/OPTIONS methods and the static file route are skipped.
    View docstrings become descriptions and ``before_request`` hooks are
    recorded in ``metadata["middleware"]``.
    """

    def __init__(self):
        super().__init__("flask", "1.0.0")

    def supports(self, options: DiscoverOptions) -> bool:
        if options.framework == "flask":
            return True
        app = options.app
        return app is not None and hasattr(app, "url_map") and hasattr(app, "view_functions")

    async def discover(self, options: DiscoverOptions) -> List[Endpoint]:
        self.validate_options(options)
        app = options.app
        if app is None or not hasattr(app, "url_map"):
            raise DiscoveryError("A Flask application instance is required")

        endpoints = []
        for rule in app.url_map.iter_rules():
            if rule.endpoint == "static" or rule.endpoint.endswith(".static"):
                continue
            view = app.view_functions.get(rule.endpoint)
            description = (getattr(view, "__doc__", None) or "").strip() or None
            parameters = self._rule_parameters(rule.rule)
            hooks = self._before_request_hooks(app, rule.endpoint)

            for method in sorted(set(rule.methods or ()) - IMPLICIT_METHODS):
                try:
                    endpoints.append(
                        self.create_endpoint(
                            method,
                            rule.rule,
                            description=description,
                            parameters=[Parameter(**vars(p)) for p in parameters],
                            metadata={
                                "handler": rule.endpoint,
                                "middleware": list(hooks),
                            },
                        )
                    )
                except ValueError as e:
                    logger.warning(f"Skipping rule {method} {rule.rule}: {e}")

        logger.info(f"Discovered {len(endpoints)} endpoints from Flask url_map")
        return endpoints

    def _rule_parameters(self, rule: str) -> List[Parameter]:
        parameters = []
        for converter, name in _RULE_ARGUMENT.findall(rule):
            parameters.append(
                Parameter(
                    name=name,
                    location=ParameterLocation.PATH,
                    type=CONVERTER_TYPES.get(converter or "string", "string"),
                    required=True,
                    description=f"Path parameter: {name}",
                )
            )
        return parameters

    def _before_request_hooks(self, app: Any, endpoint_name: str) -> List[str]:
        funcs: Dict[Any, List[Any]] = getattr(app, "before_request_funcs", {}) or {}
        hooks = list(funcs.get(None, []))
        if "." in endpoint_name:
            blueprint = endpoint_name.rsplit(".", 1)[0]
            hooks.extend(funcs.get(blueprint, []))
        return [getattr(f, "__name__", repr(f)) for f in hooks]
