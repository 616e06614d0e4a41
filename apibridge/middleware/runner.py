"""
Middleware pipeline runner.

Every tool call runs ``auth -> authz -> pre -> dispatch -> post``. When any of
those fails, every ``error`` handler is notified and the original failure is
re-raised. Handlers may be plain functions or coroutines.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable

from ..core.errors import APIBridgeError, AuthorizationError, MiddlewareError
from ..core.models import MiddlewareConfig, MiddlewareContext, ResponseEnvelope

logger = logging.getLogger(__name__)

Dispatch = Callable[[MiddlewareContext], Awaitable[ResponseEnvelope]]


async def _invoke(handler: Callable, *args: Any) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", handler.__class__.__name__)


class MiddlewareRunner:
    """
    Runs the pipeline stages over a shared stage registry.

    The runner keeps a reference to the registry's ``MiddlewareConfig`` rather
    than a copy, so handlers registered after tool generation are still run.
    """

    def __init__(self, middleware: MiddlewareConfig):
        self.middleware = middleware

    async def run_auth(self, context: MiddlewareContext) -> Any:
        """
        Run auth handlers until one returns a principal.

        Returns:
            The principal, or None if no handler produced one

        Raises:
            MiddlewareError: If a handler raises
        """
        for handler in list(self.middleware.auth):
            try:
                principal = await _invoke(handler, context)
            except Exception as e:
                raise MiddlewareError(
                    f"Authentication failed: {e}",
                    phase="auth",
                    details={"handler": _handler_name(handler)},
                ) from e
            if principal is not None:
                context.user = principal
                return principal
        return None

    async def run_authz(self, context: MiddlewareContext) -> None:
        """
        Run authz handlers in order; all must allow the call.

        Raises:
            AuthorizationError: If a handler returns a falsy value or raises
        """
        for handler in list(self.middleware.authz):
            try:
                allowed = await _invoke(handler, context)
            except Exception as e:
                raise AuthorizationError(
                    f"Authorization failed: {e}",
                    details={"handler": _handler_name(handler)},
                ) from e
            if not allowed:
                raise AuthorizationError(
                    "Access denied", details={"handler": _handler_name(handler)}
                )

    async def run_pre(self, context: MiddlewareContext) -> None:
        for handler in list(self.middleware.pre):
            try:
                await _invoke(handler, context)
            except Exception as e:
                raise MiddlewareError(
                    f"Pre-middleware failed: {e}",
                    phase="pre",
                    details={"handler": _handler_name(handler)},
                ) from e

    async def run_post(
        self, context: MiddlewareContext, response: ResponseEnvelope
    ) -> ResponseEnvelope:
        """
        Chain post handlers over the envelope.

        A handler returning None leaves the envelope unchanged.
        """
        for handler in list(self.middleware.post):
            try:
                result = await _invoke(handler, context, response)
            except Exception as e:
                raise MiddlewareError(
                    f"Post-middleware failed: {e}",
                    phase="post",
                    details={"handler": _handler_name(handler)},
                ) from e
            if result is not None:
                response = result
        context.response = response
        return response

    async def run_error(self, context: MiddlewareContext, error: Exception) -> None:
        """Notify every error handler. Never raises."""
        for handler in list(self.middleware.error):
            try:
                await _invoke(handler, context, error)
            except Exception as e:
                logger.error(
                    f"Error handler {_handler_name(handler)} failed "
                    f"for request {context.request_id}: {e}"
                )

    async def execute(
        self, context: MiddlewareContext, dispatch: Dispatch
    ) -> ResponseEnvelope:
        """
        Run the full pipeline for one call.

        Raises:
            APIBridgeError: The original stage or dispatch failure, after the
                error handlers have run
        """
        try:
            await self.run_auth(context)
            await self.run_authz(context)
            await self.run_pre(context)
            response = await dispatch(context)
            context.response = response
            return await self.run_post(context, response)
        except Exception as e:
            if isinstance(e, APIBridgeError):
                logger.warning(
                    f"Call to {context.endpoint} failed ({e.code}): {e}"
                )
            else:
                logger.error(f"Call to {context.endpoint} failed: {e}")
            await self.run_error(context, e)
            raise
