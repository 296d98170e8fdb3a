"""Kernel error hierarchy – public re-export surface.

Hierarchy::

    BaseError
    ├── ApplicationError        (application.py)
    │   └── UnauthorizedError
    ├── InfrastructureError     (infrastructure.py)
    │   ├── ConnectionError
    │   ├── TimeoutError
    │   └── ExternalServiceError
    │       └── ApiError
    └── InconclusiveMatchError  (evaluation.py)
        └── RequiresServerEvaluationError
"""

from hogflags.kernel.errors.application import ApplicationError, UnauthorizedError
from hogflags.kernel.errors.base import BaseError
from hogflags.kernel.errors.evaluation import (
    InconclusiveMatchError,
    RequiresServerEvaluationError,
)
from hogflags.kernel.errors.infrastructure import (
    ApiError,
    ConnectionError,
    ExternalServiceError,
    InfrastructureError,
    TimeoutError,
)

__all__ = [
    "ApiError",
    "ApplicationError",
    "BaseError",
    "ConnectionError",
    "ExternalServiceError",
    "InconclusiveMatchError",
    "InfrastructureError",
    "RequiresServerEvaluationError",
    "TimeoutError",
    "UnauthorizedError",
]
