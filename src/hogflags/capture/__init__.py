"""Capture – event batching and exception events."""
from hogflags.capture.batch import AsyncBatchHandler, BatchItem, Resolver
from hogflags.capture.exceptions import build_exception_properties, exception_type_name

__all__ = [
    "AsyncBatchHandler",
    "BatchItem",
    "Resolver",
    "build_exception_properties",
    "exception_type_name",
]
