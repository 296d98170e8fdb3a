"""Example FastAPI service wired to PostHog.

Run with::

    pip install "hogflags[fastapi]" uvicorn
    POSTHOG_PROJECT_API_KEY=phc_... uvicorn docs.examples.fastapi_app:app

``/checkout`` captures an event with the caller's feature flags attached;
``/beta`` answers 404 unless the ``beta-dashboard`` flag is on for the
distinct id in the ``X-Distinct-ID`` header.
"""
from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Header

from hogflags.adapters.fastapi import PostHogClientDep, add_posthog, require_feature_flag
from hogflags.observability.logging import JsonLoggerFactory

JsonLoggerFactory.configure(level=logging.INFO)

app = FastAPI()
add_posthog(app, lambda builder: builder.use_env().use_request_scope())


@app.post("/checkout")
async def checkout(posthog: PostHogClientDep, x_distinct_id: str = Header()) -> dict[str, bool]:
    queued = posthog.capture(x_distinct_id, "checkout_completed", {"cart_size": 3}, send_feature_flags=True)
    return {"queued": queued}


@app.get("/beta", dependencies=[Depends(require_feature_flag("beta-dashboard"))])
async def beta() -> dict[str, str]:
    return {"dashboard": "beta"}
