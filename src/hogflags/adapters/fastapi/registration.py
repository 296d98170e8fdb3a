"""FastAPI adapter – PostHogConfigurationBuilder and add_posthog."""
from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Mapping

from hogflags.adapters.fastapi.cache import RequestStateFeatureFlagCache
from hogflags.adapters.fastapi.context import RequestScopeAccessor
from hogflags.adapters.fastapi.middleware import PostHogRequestScopeMiddleware
from hogflags.client import PostHogClient
from hogflags.config.options import DEFAULT_SECTION, PostHogOptions
from hogflags.config.settings import (
    DotenvSettingsLoader,
    EnvSettingsLoader,
    MappingSettingsLoader,
    SettingsFactory,
    SettingsLoader,
)
from hogflags.features.cache import FeatureFlagCache
from hogflags.observability.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI

log = get_logger(__name__)

PostConfigure = Callable[[PostHogOptions], None]


class PostHogConfigurationBuilder:
    """Collect configuration sources and services for a :class:`PostHogClient`.

    Sources are applied in registration order, later ones winning; with no
    source registered, ``POSTHOG_*`` environment variables are used.
    Every method returns the builder so calls can be chained::

        add_posthog(app, lambda b: b
            .use_configuration_section(settings)
            .post_configure(lambda o: setattr(o, "flush_at", 1))
            .use_request_scope())
    """

    def __init__(self) -> None:
        self._loaders: list[SettingsLoader] = []
        self._post_configure: list[PostConfigure] = []
        self._http_kwargs: dict[str, Any] = {}
        self._feature_flag_cache: FeatureFlagCache | None = None
        self._accessor: RequestScopeAccessor | None = None

    @property
    def accessor(self) -> RequestScopeAccessor | None:
        """Set once :meth:`use_request_scope` has been called."""
        return self._accessor

    def use_configuration_section(
        self,
        mapping: Mapping[str, Any],
        section: str | None = DEFAULT_SECTION,
    ) -> "PostHogConfigurationBuilder":
        self._loaders.append(MappingSettingsLoader(mapping, section))
        return self

    def use_env(self, prefix: str | None = None) -> "PostHogConfigurationBuilder":
        self._loaders.append(EnvSettingsLoader(prefix))
        return self

    def use_dotenv(self, env_file: str = ".env", prefix: str | None = None) -> "PostHogConfigurationBuilder":
        self._loaders.append(DotenvSettingsLoader(env_file, prefix=prefix))
        return self

    def post_configure(self, configure: PostConfigure) -> "PostHogConfigurationBuilder":
        """Adjust the bound options in place after every source is applied."""
        self._post_configure.append(configure)
        return self

    def configure_http_client(self, **httpx_kwargs: Any) -> "PostHogConfigurationBuilder":
        """Extra ``httpx.AsyncClient`` arguments, e.g. ``transport`` or ``proxy``."""
        self._http_kwargs.update(httpx_kwargs)
        return self

    def use_feature_flag_cache(self, cache: FeatureFlagCache) -> "PostHogConfigurationBuilder":
        self._feature_flag_cache = cache
        return self

    def use_request_scope(self, accessor: RequestScopeAccessor | None = None) -> "PostHogConfigurationBuilder":
        """Cache ``/flags`` results per request in ``request.state``."""
        self._accessor = accessor or RequestScopeAccessor()
        self._feature_flag_cache = RequestStateFeatureFlagCache(self._accessor)
        return self

    def build_options(self) -> PostHogOptions:
        options = SettingsFactory.create(PostHogOptions, self._loaders or [EnvSettingsLoader()])
        for configure in self._post_configure:
            configure(options)
        if self._post_configure:
            options._validate()
        return options

    def build(self) -> PostHogClient:
        return PostHogClient(
            self.build_options(),
            feature_flag_cache=self._feature_flag_cache,
            **self._http_kwargs,
        )


def add_posthog(
    app: "FastAPI",
    configure: Callable[[PostHogConfigurationBuilder], Any] | None = None,
) -> PostHogClient:
    """Register a single :class:`PostHogClient` on *app*.

    The client is stored on ``app.state.posthog`` and closed, flushing
    queued events, when the application shuts down.
    """
    builder = PostHogConfigurationBuilder()
    if configure is not None:
        configure(builder)
    client = builder.build()
    app.state.posthog = client

    if builder.accessor is not None:
        app.add_middleware(PostHogRequestScopeMiddleware, accessor=builder.accessor)

    inner_lifespan = app.router.lifespan_context

    @contextlib.asynccontextmanager
    async def lifespan(lifespan_app: Any) -> AsyncIterator[Any]:
        async with inner_lifespan(lifespan_app) as state:
            try:
                yield state
            finally:
                log.debug("posthog_client_closing")
                await client.aclose()

    app.router.lifespan_context = lifespan
    log.info("posthog_registered", request_scope=builder.accessor is not None)
    return client


__all__ = ["PostHogConfigurationBuilder", "add_posthog"]
