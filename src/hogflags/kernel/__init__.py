"""Kernel – framework-agnostic building blocks (errors, time)."""

from hogflags.kernel.errors import (
    ApiError,
    ApplicationError,
    BaseError,
    ExternalServiceError,
    InconclusiveMatchError,
    InfrastructureError,
    RequiresServerEvaluationError,
    UnauthorizedError,
)

__all__ = [
    "ApiError",
    "ApplicationError",
    "BaseError",
    "ExternalServiceError",
    "InconclusiveMatchError",
    "InfrastructureError",
    "RequiresServerEvaluationError",
    "UnauthorizedError",
]
