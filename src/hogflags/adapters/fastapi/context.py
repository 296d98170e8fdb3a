"""FastAPI adapter – RequestScopeAccessor, the request of the current task."""
from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from starlette.requests import Request

_current_request: ContextVar["Request | None"] = ContextVar("posthog_current_request", default=None)


class RequestScopeAccessor:
    """Expose the in-flight Starlette ``Request`` outside of endpoints.

    :class:`~hogflags.adapters.fastapi.middleware.PostHogRequestScopeMiddleware`
    sets it for every HTTP request; outside a request it is ``None``.
    """

    @property
    def request(self) -> "Request | None":
        return _current_request.get()

    def set(self, request: "Request") -> Token["Request | None"]:
        return _current_request.set(request)

    def reset(self, token: Token["Request | None"]) -> None:
        _current_request.reset(token)


__all__ = ["RequestScopeAccessor"]
