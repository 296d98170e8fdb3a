"""Root error class for the hogflags error hierarchy."""

from __future__ import annotations

import json
from typing import Any


class BaseError(Exception):
    """Root of the error hierarchy.

    Args:
        message: Human-readable description.
        code: Machine-readable slug (defaults to ``default_code``).
        detail: Arbitrary extra context (serialisable dict).
        cause: Original exception that triggered this error.

    Subclasses describing a remote failure extend :meth:`context` with the
    fields that identify it (service, status code, API error type...).
    Those fields end up in :meth:`to_dict` and in :meth:`log_fields`, so
    every log event about a failed PostHog call carries them::

        except BaseError as exc:
            log.error("feature_flags_poll_failed", **exc.log_fields())
    """

    default_code: str = "base_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        detail: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.detail: dict[str, Any] = detail or {}
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def transient(self) -> bool:
        """Whether repeating the same request may succeed."""
        return False

    def context(self) -> dict[str, Any]:
        """Identifying fields of the failure; empty unless a subclass adds some."""
        return {}

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.context())
        payload["detail"] = self.detail
        if self.cause is not None:
            payload["cause"] = repr(self.cause)
        return payload

    def log_fields(self) -> dict[str, Any]:
        """Keyword arguments for a structlog event describing this error."""
        fields: dict[str, Any] = {"error": self.message, "code": self.code}
        fields.update({k: v for k, v in self.context().items() if v is not None})
        return fields


__all__ = ["BaseError"]
