"""API key authentication middleware."""

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from ..core.models import MiddlewareContext

logger = logging.getLogger(__name__)


class ApiKeyAuth:
    """
    Authenticates tool calls by API key.

    The key is read from a request header (case-insensitive) and, when
    ``query`` is set, from a query parameter. The validator receives the key
    and returns a principal (any truthy value) or a falsy value to reject it.
    """

    def __init__(
        self,
        validator: Callable[[str], Any],
        header: str = "x-api-key",
        query: Optional[str] = None,
        required: bool = True,
    ):
        if not callable(validator):
            raise ValueError("validator must be callable")
        self.validator = validator
        self.header = header.lower()
        self.query = query
        self.required = required

    def extract_key(self, context: MiddlewareContext) -> Optional[str]:
        headers: Dict[str, str] = {
            str(k).lower(): v for k, v in (context.request.headers or {}).items()
        }
        key = headers.get(self.header)
        if not key and self.query:
            key = (context.request.query or {}).get(self.query)
        return key or None

    async def authenticate(self, context: MiddlewareContext) -> Any:
        """
        Resolve the caller principal.

        Returns:
            The principal, or None when no key is present and keys are optional

        Raises:
            PermissionError: If the key is missing (and required) or invalid
        """
        key = self.extract_key(context)
        if key is None:
            if self.required:
                raise PermissionError("API key is required")
            return None

        try:
            principal = self.validator(key)
            if inspect.isawaitable(principal):
                principal = await principal
        except Exception as e:
            raise PermissionError(f"API key validation failed: {e}") from e

        if not principal:
            logger.info(f"Rejected API key for request {context.request_id}")
            raise PermissionError("Invalid API key")
        if principal is True:
            principal = {"apiKey": key}
        return principal

    def middleware(self) -> Callable[[MiddlewareContext], Any]:
        """Return a handler suitable for the ``auth`` stage."""

        async def api_key_auth(context: MiddlewareContext) -> Any:
            return await self.authenticate(context)

        return api_key_auth
