"""PostHogClient – capture events and evaluate feature flags."""
from __future__ import annotations

import datetime
import functools
from typing import Any, Iterable, Mapping, Sequence

from hogflags._version import __version__
from hogflags.api.client import PostHogApiClient
from hogflags.api.models import ApiResult, CapturedEvent
from hogflags.capture.batch import AsyncBatchHandler
from hogflags.capture.exceptions import build_exception_properties
from hogflags.config.options import PostHogOptions
from hogflags.config.settings import EnvSettingsLoader, SettingsFactory
from hogflags.config.validation import ConfigError
from hogflags.features.cache import FeatureFlagCache, MemoryStore, NullFeatureFlagCache
from hogflags.features.errors import FeatureFlagError
from hogflags.features.feature_flag import FeatureFlag, FlagsResult
from hogflags.features.groups import Group, GroupCollection
from hogflags.features.loader import LocalFeatureFlagsLoader
from hogflags.features.options import (
    AllFeatureFlagsOptions,
    FeatureFlagOptions,
    SendFeatureFlagsOptions,
)
from hogflags.kernel.errors import (
    BaseError,
    ConnectionError,
    ExternalServiceError,
    InconclusiveMatchError,
    TimeoutError,
)
from hogflags.kernel.time import Clock, SystemClock
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

FEATURE_FLAG_CALLED = "$feature_flag_called"
PAGE_VIEW = "$pageview"
SCREEN_VIEW = "$screen"
EXCEPTION = "$exception"
SURVEY_SENT = "survey sent"
SURVEY_SHOWN = "survey shown"
SURVEY_DISMISSED = "survey dismissed"
QUOTA_LIMITED_RESOURCE = "feature_flags"

GroupsArg = GroupCollection | Iterable[Group] | None


class PostHogClient:
    """Client for PostHog analytics and feature flags.

    Events passed to :meth:`capture` are queued and sent in batches; flag
    lookups are evaluated locally when a personal API key is configured and
    fall back to the ``/flags`` endpoint otherwise. Remote flag failures
    are logged, never raised.

    Use as an async context manager, or call :meth:`aclose` on shutdown so
    queued events are flushed::

        async with PostHogClient(PostHogOptions(project_api_key="phc_...")) as posthog:
            posthog.capture("user-1", "signed_up")
            if await posthog.is_feature_enabled("new-onboarding", "user-1"):
                ...

    Without *options* the client reads ``POSTHOG_*`` environment variables.
    """

    def __init__(
        self,
        options: PostHogOptions | None = None,
        *,
        feature_flag_cache: FeatureFlagCache | None = None,
        clock: Clock | None = None,
        **httpx_kwargs: Any,
    ) -> None:
        self._options = options or SettingsFactory.create(PostHogOptions, [EnvSettingsLoader()])
        self._clock = clock or SystemClock()
        self._api = PostHogApiClient(self._options, self._clock, **httpx_kwargs)
        self._feature_flag_cache = feature_flag_cache or NullFeatureFlagCache()
        self._batch: AsyncBatchHandler[CapturedEvent] = AsyncBatchHandler(self._api.capture_batch, self._options)
        self._loader = LocalFeatureFlagsLoader(self._api, self._options, self._clock)
        self._feature_flag_sent = MemoryStore(
            self._options.feature_flag_sent_cache_size_limit,
            self._options.feature_flag_sent_cache_compaction_percentage,
            self._clock,
        )
        log.info(
            "posthog_client_created",
            host_url=self._options.host_url,
            max_batch_size=self._options.max_batch_size,
            flush_interval=self._options.flush_interval,
            flush_at=self._options.flush_at,
        )

    async def __aenter__(self) -> "PostHogClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def options(self) -> PostHogOptions:
        return self._options

    @property
    def version(self) -> str:
        return __version__

    @property
    def api(self) -> PostHogApiClient:
        return self._api

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    async def alias(self, previous_id: str, new_id: str) -> ApiResult:
        """Link *new_id* to the person known as *previous_id*."""
        return await self._api.alias(previous_id, new_id)

    async def identify(
        self,
        distinct_id: str,
        person_properties_to_set: Mapping[str, Any] | None = None,
        person_properties_to_set_once: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        """Set person properties (``$set``) and write-once ones (``$set_once``)."""
        return await self._api.identify(distinct_id, person_properties_to_set, person_properties_to_set_once)

    async def group_identify(
        self,
        group_type: str,
        group_key: str,
        name: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        """Set properties on a group; *name* is stored as the ``name`` property."""
        group_properties = dict(properties or {})
        if name is not None:
            group_properties["name"] = name
        return await self._api.group_identify(group_type, group_key, group_properties)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(
        self,
        distinct_id: str,
        event: str,
        properties: Mapping[str, Any] | None = None,
        groups: GroupsArg = None,
        send_feature_flags: bool | SendFeatureFlagsOptions = False,
        *,
        person_properties_to_set: Mapping[str, Any] | None = None,
        person_properties_to_set_once: Mapping[str, Any] | None = None,
        timestamp: datetime.datetime | None = None,
    ) -> bool:
        """Queue an event; ``False`` if the client is closed.

        With *send_feature_flags* the event carries ``$feature/<key>`` and
        ``$active_feature_flags`` resolved when the batch is sent. Otherwise
        locally evaluated flags are attached whenever definitions are loaded.
        Person properties go out as ``$set`` and ``$set_once``.
        """
        group_collection = GroupCollection.coerce(groups)
        event_properties = dict(properties or {})
        if person_properties_to_set is not None:
            event_properties["$set"] = dict(person_properties_to_set)
        if person_properties_to_set_once is not None:
            event_properties["$set_once"] = dict(person_properties_to_set_once)
        if group_collection:
            event_properties["$groups"] = group_collection.keys_by_type()
        for key, value in self._options.super_properties.items():
            event_properties.setdefault(key, value)
        event_properties.setdefault("$geoip_disable", self._options.geoip_disable)

        captured = CapturedEvent(event, distinct_id, event_properties, timestamp=timestamp or self._clock.now())

        item: Any = captured
        if send_feature_flags:
            send_options = (
                send_feature_flags
                if isinstance(send_feature_flags, SendFeatureFlagsOptions)
                else SendFeatureFlagsOptions()
            )
            item = functools.partial(self._add_feature_flags, captured, group_collection, send_options)
        elif self._loader.is_loaded and event != FEATURE_FLAG_CALLED:
            item = functools.partial(
                self._add_feature_flags,
                captured,
                group_collection,
                SendFeatureFlagsOptions(only_evaluate_locally=True),
            )

        if self._batch.enqueue(item):
            log.debug("capture_queued", event_name=event, queued=len(self._batch))
            return True
        log.warning("capture_failed", event_name=event, queued=len(self._batch))
        return False

    async def _add_feature_flags(
        self,
        captured: CapturedEvent,
        groups: GroupCollection,
        send_options: SendFeatureFlagsOptions,
    ) -> CapturedEvent:
        options = AllFeatureFlagsOptions(
            person_properties=send_options.person_properties,
            groups=_with_group_properties(groups, send_options.group_properties),
            only_evaluate_locally=send_options.only_evaluate_locally,
        )
        flags = await self.get_all_feature_flags(captured.distinct_id, options)
        for key, flag in flags.items():
            captured.properties[f"$feature/{key}"] = flag.value
        captured.properties["$active_feature_flags"] = sorted(k for k, f in flags.items() if f)
        return captured

    def capture_page_view(
        self,
        distinct_id: str,
        page_path: str,
        properties: Mapping[str, Any] | None = None,
        send_feature_flags: bool | SendFeatureFlagsOptions = False,
    ) -> bool:
        """Capture a ``$pageview`` for *page_path* (``$current_url``)."""
        return self._capture_special_event(
            distinct_id, PAGE_VIEW, "$current_url", page_path, properties, send_feature_flags
        )

    def capture_screen_view(
        self,
        distinct_id: str,
        screen_name: str,
        properties: Mapping[str, Any] | None = None,
        send_feature_flags: bool | SendFeatureFlagsOptions = False,
    ) -> bool:
        """Capture a ``$screen`` for *screen_name* (``$screen_name``)."""
        return self._capture_special_event(
            distinct_id, SCREEN_VIEW, "$screen_name", screen_name, properties, send_feature_flags
        )

    def capture_survey_response(
        self,
        distinct_id: str,
        survey_id: str,
        survey_response: str,
        properties: Mapping[str, Any] | None = None,
    ) -> bool:
        return self.capture_survey_responses(distinct_id, survey_id, [survey_response], properties)

    def capture_survey_responses(
        self,
        distinct_id: str,
        survey_id: str,
        survey_responses: Sequence[str],
        properties: Mapping[str, Any] | None = None,
    ) -> bool:
        """Capture ``survey sent``.

        The first answer is ``$survey_response``, later ones
        ``survey_response_1``, ``survey_response_2``...
        """
        event_properties = dict(properties or {})
        event_properties["$survey_id"] = survey_id
        for index, response in enumerate(survey_responses):
            event_properties["$survey_response" if index == 0 else f"survey_response_{index}"] = response
        return self.capture(distinct_id, SURVEY_SENT, event_properties)

    def capture_survey_shown(
        self,
        distinct_id: str,
        survey_id: str,
        properties: Mapping[str, Any] | None = None,
    ) -> bool:
        return self._capture_special_event(distinct_id, SURVEY_SHOWN, "$survey_id", survey_id, properties)

    def capture_survey_dismissed(
        self,
        distinct_id: str,
        survey_id: str,
        properties: Mapping[str, Any] | None = None,
    ) -> bool:
        return self._capture_special_event(distinct_id, SURVEY_DISMISSED, "$survey_id", survey_id, properties)

    def capture_exception(
        self,
        exception: BaseException,
        distinct_id: str,
        properties: Mapping[str, Any] | None = None,
        groups: GroupsArg = None,
        send_feature_flags: bool | SendFeatureFlagsOptions = False,
        timestamp: datetime.datetime | None = None,
    ) -> bool:
        """Capture an ``$exception`` event for error tracking.

        Example::

            try:
                checkout(cart)
            except CheckoutError as exc:
                posthog.capture_exception(exc, "user-1", {"cart_id": cart.id})
                raise
        """
        exception_properties = build_exception_properties(exception, properties)
        exception_properties.setdefault(
            "$exception_personURL",
            f"{self._options.host_url}/project/{self._options.project_api_key}/person/{distinct_id}",
        )
        log.debug("capture_exception", exception_type=exception_properties["$exception_type"])
        return self.capture(
            distinct_id,
            EXCEPTION,
            exception_properties,
            groups,
            send_feature_flags,
            timestamp=timestamp,
        )

    def _capture_special_event(
        self,
        distinct_id: str,
        event: str,
        property_name: str,
        property_value: str,
        properties: Mapping[str, Any] | None,
        send_feature_flags: bool | SendFeatureFlagsOptions = False,
    ) -> bool:
        event_properties = dict(properties or {})
        event_properties[property_name] = property_value
        return self.capture(distinct_id, event, event_properties, send_feature_flags=send_feature_flags)

    # ------------------------------------------------------------------
    # Feature flags
    # ------------------------------------------------------------------

    async def is_feature_enabled(
        self,
        key: str,
        distinct_id: str,
        options: FeatureFlagOptions | None = None,
    ) -> bool | None:
        """``None`` when the flag could not be evaluated."""
        flag = await self.get_feature_flag(key, distinct_id, options)
        return flag.is_enabled if flag is not None else None

    async def get_feature_flag(
        self,
        key: str,
        distinct_id: str,
        options: FeatureFlagOptions | None = None,
    ) -> FeatureFlag | None:
        """Evaluate one flag, locally when possible, remotely otherwise.

        An unknown flag evaluates to a disabled :class:`FeatureFlag`; ``None``
        means neither local nor remote evaluation produced an answer.
        Unless ``send_feature_flag_events`` is off, a ``$feature_flag_called``
        event is captured once per distinct id, flag and response.
        """
        options = options or FeatureFlagOptions()
        groups = options.group_collection
        response: FeatureFlag | None = None
        locally_evaluated = False
        request_id: str | None = None
        errors: list[str] = []

        evaluator = await self._loader.get_local_evaluator()
        local_flag = evaluator.get_flag(key) if evaluator is not None else None
        if evaluator is not None and local_flag is not None:
            try:
                value = evaluator.compute_flag_locally(local_flag, distinct_id, groups, options.person_properties)
            except InconclusiveMatchError as exc:
                log.debug("feature_flag_local_evaluation_inconclusive", key=key, reason=exc.message)
            else:
                response = FeatureFlag.from_local_evaluation(key, value, local_flag.filters.payloads)
                locally_evaluated = True
                log.debug("feature_flag_computed_locally", key=key, result=str(response))

        if response is None and not options.only_evaluate_locally:
            try:
                result = await self._fetch_flags(distinct_id, options)
            except BaseError as exc:
                errors.append(_error_type(exc))
                log.error("feature_flag_remote_evaluation_failed", key=key, **exc.log_fields())
            else:
                request_id = result.request_id
                if result.errors_while_computing_flags:
                    errors.append(FeatureFlagError.ERRORS_WHILE_COMPUTING)
                if QUOTA_LIMITED_RESOURCE in result.quota_limited:
                    errors.append(FeatureFlagError.QUOTA_LIMITED)
                    log.warning("feature_flags_quota_limited", key=key)
                else:
                    response = result.flags.get(key)
                    if response is None:
                        errors.append(FeatureFlagError.FLAG_MISSING)
                        response = FeatureFlag.disabled(key)
                    log.debug("feature_flag_computed_remotely", key=key, result=str(response))

        if options.send_feature_flag_events:
            self._capture_feature_flag_called(
                distinct_id, key, response, locally_evaluated, groups, request_id, errors
            )
        return response

    async def get_all_feature_flags(
        self,
        distinct_id: str,
        options: AllFeatureFlagsOptions | None = None,
    ) -> dict[str, FeatureFlag]:
        """Evaluate every flag for *distinct_id*; ``{}`` when that fails."""
        options = options or AllFeatureFlagsOptions()
        local_results: dict[str, FeatureFlag] = {}

        evaluator = await self._loader.get_local_evaluator()
        if evaluator is not None:
            local_results, fallback_to_remote = evaluator.evaluate_all_flags(
                distinct_id,
                options.group_collection,
                options.person_properties,
                warn_on_unknown_groups=False,
            )
            if not fallback_to_remote:
                return local_results
        if options.only_evaluate_locally:
            return local_results

        try:
            result = await self._fetch_flags(distinct_id, options)
        except BaseError as exc:
            log.error("feature_flags_remote_evaluation_failed", **exc.log_fields())
            return {}
        if QUOTA_LIMITED_RESOURCE in result.quota_limited:
            log.warning("feature_flags_quota_limited")
            return {}
        return dict(result.flags)

    async def get_remote_config_payload(self, key: str) -> Any:
        """Decrypted payload of a remote config flag; needs a personal API key."""
        if not self._options.personal_api_key:
            log.warning("personal_api_key_required_for_remote_config", key=key)
            return None
        try:
            return await self._api.get_remote_config_payload(key)
        except ConfigError:
            raise
        except BaseError as exc:
            log.error("remote_config_payload_failed", key=key, **exc.log_fields())
            return None

    def clear_local_flags_cache(self) -> None:
        """Forget downloaded flag definitions; they reload on next use."""
        self._loader.clear()

    async def _fetch_flags(self, distinct_id: str, options: AllFeatureFlagsOptions) -> FlagsResult:
        groups = options.group_collection

        async def fetch() -> FlagsResult:
            return await self._api.get_flags(
                distinct_id,
                options.person_properties,
                groups,
                options.flag_keys_to_evaluate,
            )

        return await self._feature_flag_cache.get_and_cache_flags(
            distinct_id, options.person_properties, groups, fetch
        )

    def _capture_feature_flag_called(
        self,
        distinct_id: str,
        key: str,
        flag: FeatureFlag | None,
        locally_evaluated: bool,
        groups: GroupCollection,
        request_id: str | None,
        errors: list[str],
    ) -> None:
        cache_key = (distinct_id, key, str(flag) if flag is not None else "")
        if self._feature_flag_sent.get(cache_key) is not None:
            return
        self._feature_flag_sent.set(
            cache_key,
            True,
            ttl=self._options.feature_flag_sent_cache_sliding_expiration,
            sliding=True,
        )

        response = flag.value if flag is not None else None
        properties: dict[str, Any] = {
            "$feature_flag": key,
            "$feature_flag_response": response,
            "locally_evaluated": locally_evaluated,
            f"$feature/{key}": response,
        }
        if request_id is not None:
            properties["$feature_flag_request_id"] = request_id
        if flag is not None:
            if flag.id is not None:
                properties["$feature_flag_id"] = flag.id
            if flag.version is not None:
                properties["$feature_flag_version"] = flag.version
            if flag.reason is not None:
                properties["$feature_flag_reason"] = flag.reason
        if errors:
            properties["$feature_flag_error"] = ",".join(errors)

        self.capture(distinct_id, FEATURE_FLAG_CALLED, properties, groups)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Send every queued event now."""
        await self._batch.flush()

    async def aclose(self) -> None:
        """Flush queued events and release the HTTP connection pool."""
        await self._batch.aclose()
        await self._loader.aclose()
        await self._api.aclose()


def _with_group_properties(
    groups: GroupCollection,
    group_properties: Mapping[str, Mapping[str, Any]] | None,
) -> GroupCollection:
    if not group_properties:
        return groups
    merged = GroupCollection()
    for group in groups:
        extra = group_properties.get(group.group_type) or {}
        merged.add(Group(group.group_type, group.group_key, {**group.properties, **extra}))
    return merged


def _error_type(exc: BaseError) -> str:
    if isinstance(exc, TimeoutError):
        return FeatureFlagError.TIMEOUT
    if isinstance(exc, ConnectionError):
        return FeatureFlagError.CONNECTION_ERROR
    if isinstance(exc, ExternalServiceError) and exc.status_code is not None:
        return FeatureFlagError.api_error(exc.status_code)
    return FeatureFlagError.UNKNOWN_ERROR


__all__ = [
    "EXCEPTION",
    "FEATURE_FLAG_CALLED",
    "PAGE_VIEW",
    "SCREEN_VIEW",
    "SURVEY_DISMISSED",
    "SURVEY_SENT",
    "SURVEY_SHOWN",
    "PostHogClient",
]
