"""Application-layer errors – misuse of the client or rejected credentials."""

from __future__ import annotations

from hogflags.kernel.errors.base import BaseError


class ApplicationError(BaseError):
    """Cross-cutting application-layer concern."""

    default_code = "application_error"


class UnauthorizedError(ApplicationError):
    """The PostHog API rejected the project or personal API key."""

    default_code = "unauthorized"


__all__ = ["ApplicationError", "UnauthorizedError"]
