"""API – PostHogApiClient, the httpx transport for every PostHog endpoint."""
from __future__ import annotations

import platform
from typing import Any, Mapping, Sequence

import httpx

from hogflags._version import LIBRARY_NAME, __version__
from hogflags.api.models import (
    ApiResult,
    CapturedEvent,
    LocalEvaluationApiResult,
    LocalEvaluationResponse,
    jsonable,
)
from hogflags.api.retry import TenacityRetryPolicy
from hogflags.config.options import PostHogOptions
from hogflags.config.validation import ConfigError
from hogflags.features.feature_flag import FlagsResult, parse_payload
from hogflags.features.groups import GroupCollection
from hogflags.kernel.errors import (
    ApiError,
    BaseError,
    ConnectionError,
    ExternalServiceError,
    TimeoutError,
    UnauthorizedError,
)
from hogflags.kernel.time import Clock, SystemClock
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

SERVICE_NAME = "posthog"


def user_agent() -> str:
    return (
        f"{LIBRARY_NAME}/{__version__} "
        f"(python {platform.python_version()}; {platform.system()}; {platform.machine()})"
    )


class PostHogApiClient:
    """Thin async httpx wrapper around the PostHog HTTP API.

    Transport failures are mapped onto the kernel error hierarchy:

    * ``401`` → :class:`UnauthorizedError`
    * ``404`` → :class:`ExternalServiceError`
    * other non-2xx → :class:`ApiError` built from the JSON error body
    * timeouts → :class:`TimeoutError`, other transport errors →
      :class:`ConnectionError`
    """

    def __init__(
        self,
        options: PostHogOptions,
        clock: Clock | None = None,
        retry_policy: TenacityRetryPolicy | None = None,
        **httpx_kwargs: Any,
    ) -> None:
        if not options.project_api_key:
            raise ConfigError("project_api_key is required to talk to PostHog")
        self._options = options
        self._clock = clock or SystemClock()
        self._retry = retry_policy or TenacityRetryPolicy(max_attempts=options.max_retries)
        headers = {"User-Agent": user_agent(), **httpx_kwargs.pop("headers", {})}
        httpx_kwargs.setdefault("timeout", options.request_timeout)
        self._client = httpx.AsyncClient(base_url=options.host_url, headers=headers, **httpx_kwargs)

    async def __aenter__(self) -> "PostHogApiClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture_batch(self, events: Sequence[CapturedEvent]) -> ApiResult:
        """Send a batch of events, retrying transient failures."""
        body = {
            "api_key": self._options.project_api_key,
            "historical_migration": False,
            "batch": [event.to_dict() for event in events],
        }

        async def send() -> ApiResult:
            response = await self._request("POST", "/batch/", json=body)
            return ApiResult.from_dict(_json(response))

        return await self._retry.execute_async(send)

    def prepare_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Add the api key, library context and super properties in place."""
        payload["api_key"] = self._options.project_api_key
        properties: dict[str, Any] = payload.setdefault("properties", {})
        properties["$lib"] = LIBRARY_NAME
        properties["$lib_version"] = __version__
        properties["$os"] = platform.system()
        properties["$python_version"] = platform.python_version()
        properties["$arch"] = platform.machine()
        properties.setdefault("$geoip_disable", self._options.geoip_disable)
        for key, value in self._options.super_properties.items():
            properties.setdefault(key, value)
        if "timestamp" not in payload and "timestamp" not in properties:
            payload["timestamp"] = self._clock.now().isoformat()
        return payload

    async def send_event(self, payload: dict[str, Any]) -> ApiResult:
        response = await self._request("POST", "/capture/", json=jsonable(self.prepare_payload(payload)))
        return ApiResult.from_dict(_json(response))

    async def alias(self, previous_id: str, new_id: str) -> ApiResult:
        return await self.send_event({
            "event": "$create_alias",
            "distinct_id": previous_id,
            "properties": {"distinct_id": previous_id, "alias": new_id},
        })

    async def identify(
        self,
        distinct_id: str,
        person_properties_to_set: Mapping[str, Any] | None = None,
        person_properties_to_set_once: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        properties: dict[str, Any] = {}
        if person_properties_to_set:
            properties["$set"] = dict(person_properties_to_set)
        if person_properties_to_set_once:
            properties["$set_once"] = dict(person_properties_to_set_once)
        return await self.send_event({
            "event": "$identify",
            "distinct_id": distinct_id,
            "properties": properties,
        })

    async def group_identify(
        self,
        group_type: str,
        group_key: str,
        properties: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        return await self.send_event({
            "event": "$groupidentify",
            "distinct_id": f"${group_type}_{group_key}",
            "properties": {
                "$group_type": group_type,
                "$group_key": group_key,
                "$group_set": dict(properties or {}),
            },
        })

    # ------------------------------------------------------------------
    # Feature flags
    # ------------------------------------------------------------------

    async def get_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None = None,
        groups: GroupCollection | None = None,
        flag_keys_to_evaluate: Sequence[str] | None = None,
    ) -> FlagsResult:
        """Ask the server to evaluate flags for *distinct_id*."""
        body: dict[str, Any] = {
            "api_key": self._options.project_api_key,
            "distinct_id": distinct_id,
            "geoip_disable": self._options.geoip_disable,
        }
        if person_properties:
            body["person_properties"] = dict(person_properties)
        if groups:
            groups.add_to_payload(body)
        if flag_keys_to_evaluate:
            body["flag_keys_to_evaluate"] = list(flag_keys_to_evaluate)

        response = await self._request("POST", "/flags/", params={"v": "2"}, json=body)
        return FlagsResult.from_api(_json(response))

    async def get_feature_flags_for_local_evaluation(self, etag: str | None = None) -> LocalEvaluationResponse:
        """Download flag definitions.

        A ``304`` keeps the caller's *etag*. ``quota_limited`` errors are
        re-raised so the caller can drop its definitions; every other
        failure is logged and reported as a failed response.
        """
        headers = self._personal_auth_headers()
        if etag:
            headers["If-None-Match"] = etag
        try:
            response = await self._request(
                "GET",
                "/api/feature_flag/local_evaluation",
                params={"token": self._options.project_api_key, "send_cohorts": ""},
                headers=headers,
                allow_not_modified=True,
            )
        except ApiError as exc:
            if exc.is_quota_limited:
                raise
            log.error("local_evaluation_request_failed", status_code=exc.status_code, error=exc.message)
            return LocalEvaluationResponse.failure()
        except BaseError as exc:
            log.error("local_evaluation_request_failed", **exc.log_fields())
            return LocalEvaluationResponse.failure()

        if response.status_code == 304:
            log.debug("local_evaluation_not_modified", etag=etag)
            return LocalEvaluationResponse.not_modified(response.headers.get("ETag") or etag)

        result = LocalEvaluationApiResult.from_dict(_json(response))
        return LocalEvaluationResponse.success(result, response.headers.get("ETag"))

    async def get_remote_config_payload(self, key: str) -> Any:
        """Return the decrypted remote config payload for flag *key*."""
        response = await self._request(
            "GET",
            f"/api/projects/@current/feature_flags/{key}/remote_config",
            params={"token": self._options.project_api_key},
            headers=self._personal_auth_headers(),
        )
        return parse_payload(_json(response))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _personal_auth_headers(self) -> dict[str, str]:
        if not self._options.personal_api_key:
            raise ConfigError("personal_api_key is required for this operation")
        return {"Authorization": f"Bearer {self._options.personal_api_key}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_not_modified: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"HTTP request timed out: {method} {path}", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise ConnectionError(self._options.host_url, str(exc), cause=exc) from exc

        status = response.status_code
        if status == 304 and allow_not_modified:
            return response
        if status == 401:
            raise UnauthorizedError(f"PostHog rejected the API key: {method} {path}")
        if status == 404:
            raise ExternalServiceError(
                service=SERVICE_NAME,
                message=f"HTTP 404 from {method} {path}",
                status_code=status,
            )
        if response.is_error:
            raise _api_error(method, path, response)
        return response


def _json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise ExternalServiceError(
            service=SERVICE_NAME,
            message=f"Invalid JSON from {response.request.method} {response.request.url.path}",
            status_code=response.status_code,
            cause=exc,
        ) from exc


def _api_error(method: str, path: str, response: httpx.Response) -> ApiError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, Mapping):
        body = {}
    return ApiError(
        SERVICE_NAME,
        body.get("detail") or f"HTTP {response.status_code} from {method} {path}",
        status_code=response.status_code,
        code=body.get("code"),
        error_type=body.get("type"),
        attr=body.get("attr"),
    )


__all__ = ["PostHogApiClient", "user_agent"]
