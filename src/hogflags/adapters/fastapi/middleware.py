"""FastAPI adapter – PostHogRequestScopeMiddleware."""
from __future__ import annotations

from typing import TYPE_CHECKING

from hogflags.adapters.fastapi._compat import _require_fastapi
from hogflags.adapters.fastapi.context import RequestScopeAccessor

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


class PostHogRequestScopeMiddleware:
    """Make the current request visible to :class:`RequestScopeAccessor`.

    Pure ASGI, so the context variable is set in the same task that runs
    the endpoint and its dependencies.
    """

    def __init__(self, app: "ASGIApp", accessor: RequestScopeAccessor | None = None) -> None:
        _require_fastapi()
        self.app = app
        self._accessor = accessor or RequestScopeAccessor()

    async def __call__(self, scope: "Scope", receive: "Receive", send: "Send") -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        from starlette.requests import Request

        token = self._accessor.set(Request(scope, receive))
        try:
            await self.app(scope, receive, send)
        finally:
            self._accessor.reset(token)


__all__ = ["PostHogRequestScopeMiddleware"]
