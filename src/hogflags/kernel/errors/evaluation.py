"""Local flag evaluation errors.

These never escape the client: they tell the caller that a flag cannot be
decided from the downloaded definitions and must be asked of the server.
"""

from __future__ import annotations

from hogflags.kernel.errors.base import BaseError


class InconclusiveMatchError(BaseError):
    """Local definitions are not enough to decide the flag."""

    default_code = "inconclusive_match"


class RequiresServerEvaluationError(InconclusiveMatchError):
    """The flag references data only the server has (e.g. static cohorts)."""

    default_code = "requires_server_evaluation"


__all__ = ["InconclusiveMatchError", "RequiresServerEvaluationError"]
