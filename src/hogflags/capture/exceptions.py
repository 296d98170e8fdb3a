"""Capture – properties for ``$exception`` events."""
from __future__ import annotations

import itertools
import linecache
import os
import platform
import traceback
from typing import Any, Mapping

MAX_LINE_LENGTH = 1024
CONTEXT_LINES = 5
MAX_EXCEPTION_DEPTH = 4
MAX_STACK_FRAMES = 50
MAX_EXCEPTIONS = 50


def exception_type_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ in ("builtins", "__main__"):
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def build_exception_properties(
    exception: BaseException,
    properties: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Describe *exception* the way PostHog error tracking expects.

    ``$exception_list`` holds the exception first, then its causes, and the
    members of an exception group, up to :data:`MAX_EXCEPTION_DEPTH` levels
    deep. Each entry carries raw stack frames, oldest call first, with a few
    lines of source around each one when the file can be read.
    Caller *properties* win over the generated ones.
    """
    result: dict[str, Any] = {
        "$exception_type": exception_type_name(exception),
        "$exception_message": str(exception),
        "$exception_level": "error",
        "$exception_list": _exception_list(exception),
        "$os": platform.system(),
        "$os_version": platform.release(),
        "$python_version": platform.python_version(),
    }
    result.update(properties or {})
    return result


def _exception_list(exception: BaseException) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    seen: set[int] = set()
    stack: list[tuple[BaseException, int]] = [(exception, 0)]

    while stack and len(entries) < MAX_EXCEPTIONS:
        exc, depth = stack.pop()
        if id(exc) in seen:
            continue
        seen.add(id(exc))
        entries.append({
            "type": exception_type_name(exc),
            "value": str(exc),
            "mechanism": {"type": "generic", "handled": True, "source": "", "synthetic": False},
            "stacktrace": {"frames": _frames(exc), "type": "raw"},
        })

        if depth >= MAX_EXCEPTION_DEPTH:
            continue
        if isinstance(exc, BaseExceptionGroup):
            for inner in reversed(exc.exceptions):
                stack.append((inner, depth + 1))
        elif exc.__cause__ is not None:
            stack.append((exc.__cause__, depth + 1))
        elif exc.__context__ is not None and not exc.__suppress_context__:
            stack.append((exc.__context__, depth + 1))
    return entries


def _frames(exc: BaseException) -> list[dict[str, Any]]:
    frames: list[dict[str, Any]] = []
    for frame, lineno in itertools.islice(traceback.walk_tb(exc.__traceback__), MAX_STACK_FRAMES):
        path = frame.f_code.co_filename
        details: dict[str, Any] = {
            "platform": "custom",
            "lang": "python",
            "filename": os.path.basename(path),
            "abs_path": path,
            "function": frame.f_code.co_name,
            "module": frame.f_globals.get("__name__", ""),
            "lineno": lineno or 0,
        }
        details.update(_source_context(path, lineno or 0))
        frames.append(details)
    return frames


def _source_context(path: str, lineno: int) -> dict[str, Any]:
    lines = linecache.getlines(path)
    if not lines or lineno <= 0:
        return {}
    lines = [line.rstrip("\r\n")[:MAX_LINE_LENGTH] for line in lines]
    index = lineno - 1
    start = max(0, index - CONTEXT_LINES)
    return {
        "pre_context": lines[start:index],
        "context_line": lines[index] if index < len(lines) else "",
        "post_context": lines[index + 1:index + 1 + CONTEXT_LINES],
    }


__all__ = ["build_exception_properties", "exception_type_name"]
