"""Infrastructure errors – transport failures and PostHog API responses."""

from __future__ import annotations

from typing import Any

from hogflags.kernel.errors.base import BaseError


class InfrastructureError(BaseError):
    """Infrastructure / I/O failure that is not a usage error."""

    default_code = "infrastructure_error"


class ConnectionError(InfrastructureError):  # noqa: A001
    """Failed to reach the PostHog host."""

    default_code = "connection_error"

    def __init__(
        self,
        resource: str,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or f"Could not connect to '{resource}'", **kwargs)
        self.resource = resource

    @property
    def transient(self) -> bool:
        return True

    def context(self) -> dict[str, Any]:
        return {"resource": self.resource}


class TimeoutError(InfrastructureError):  # noqa: A001
    """A request to the PostHog host exceeded its deadline."""

    default_code = "timeout"

    @property
    def transient(self) -> bool:
        return True


class ExternalServiceError(InfrastructureError):
    """The PostHog API returned an unexpected response."""

    default_code = "external_service_error"

    def __init__(
        self,
        service: str,
        message: str | None = None,
        *,
        status_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or f"External service '{service}' error", **kwargs)
        self.service = service
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Rate limiting (429) and server errors (5xx) are worth retrying."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500

    def context(self) -> dict[str, Any]:
        return {"service": self.service, "status_code": self.status_code}


class ApiError(ExternalServiceError):
    """Structured error body returned by the PostHog API.

    The API answers failures with ``{"type": ..., "code": ..., "detail": ...,
    "attr": ...}``; the fields are kept so callers can react to specific
    codes such as ``quota_limited``.
    """

    default_code = "api_error"

    def __init__(
        self,
        service: str,
        message: str | None = None,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
        attr: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(service, message, status_code=status_code, **kwargs)
        self.error_type = error_type
        self.attr = attr

    def context(self) -> dict[str, Any]:
        return {**super().context(), "error_type": self.error_type, "attr": self.attr}

    @property
    def is_quota_limited(self) -> bool:
        return self.code == "quota_limited"


__all__ = [
    "ApiError",
    "ConnectionError",
    "ExternalServiceError",
    "InfrastructureError",
    "TimeoutError",
]
