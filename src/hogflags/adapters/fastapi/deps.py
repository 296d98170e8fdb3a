"""FastAPI adapter – dependency functions."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from hogflags.client import PostHogClient
from hogflags.config.validation import ConfigError


def get_posthog_client(request: Request) -> PostHogClient:
    """Return the client registered by :func:`add_posthog`."""
    client = getattr(request.app.state, "posthog", None)
    if not isinstance(client, PostHogClient):
        raise ConfigError("PostHog is not registered on this application; call add_posthog(app)")
    return client


PostHogClientDep = Annotated[PostHogClient, Depends(get_posthog_client)]


__all__ = ["PostHogClientDep", "get_posthog_client"]
