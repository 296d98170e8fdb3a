"""
hogflags – PostHog analytics and feature-flag client.

Import path convention::

    from hogflags import PostHogClient, PostHogOptions
    from hogflags.features import FeatureFlag, Group
    from hogflags.adapters.fastapi import add_posthog, PostHogClientDep
"""

from hogflags._version import __version__
from hogflags.client import PostHogClient
from hogflags.config.options import PostHogOptions

__all__ = ["PostHogClient", "PostHogOptions", "__version__"]
