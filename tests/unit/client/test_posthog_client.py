"""Unit tests – PostHogClient end to end over a mocked PostHog API."""
from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import respx
import structlog
import structlog.testing

from hogflags import PostHogClient, PostHogOptions
from hogflags.config import ConfigError
from hogflags.features import (
    AllFeatureFlagsOptions,
    FeatureFlagOptions,
    Group,
    MemoryFeatureFlagCache,
    SendFeatureFlagsOptions,
)
from hogflags.kernel.time import FrozenClock

HOST = "https://us.i.posthog.com"
FLAGS_URL = f"{HOST}/flags/"
BATCH_URL = f"{HOST}/batch/"
CAPTURE_URL = f"{HOST}/capture/"
LOCAL_URL = f"{HOST}/api/feature_flag/local_evaluation"

LOCAL_DEFINITIONS = {
    "flags": [
        {
            "key": "beta",
            "active": True,
            "filters": {
                "groups": [{"properties": [], "rollout_percentage": 100}],
                "payloads": {"true": '"on"'},
            },
        },
        {
            "key": "needs-email",
            "active": True,
            "filters": {
                "groups": [
                    {
                        "properties": [{"key": "email", "value": "a@b.c", "operator": "exact", "type": "person"}],
                        "rollout_percentage": 100,
                    }
                ]
            },
        },
    ],
    "group_type_mapping": {},
    "cohorts": {},
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_client(**overrides: Any) -> PostHogClient:
    cache = overrides.pop("feature_flag_cache", None)
    values: dict[str, Any] = {
        "project_api_key": "phc_test",
        "flush_at": 1000,
        "flush_interval": 3600,
        "feature_flag_poll_interval": 3600,
    }
    values.update(overrides)
    return PostHogClient(
        PostHogOptions(**values),
        feature_flag_cache=cache,
        clock=FrozenClock(datetime(2024, 1, 1, tzinfo=UTC)),
    )


def flags_response(**flags: Any) -> httpx.Response:
    body: dict[str, Any] = {"flags": {}, "errorsWhileComputingFlags": False, "requestId": "req-1"}
    for key, value in flags.items():
        detail: dict[str, Any] = {"key": key, "enabled": bool(value), "variant": value if isinstance(value, str) else None}
        detail["metadata"] = {"id": 7, "version": 3}
        detail["reason"] = {"description": "Matched condition set 1"}
        body["flags"][key] = detail
    return httpx.Response(200, json=body)


def mock_batch() -> respx.Route:
    return respx.post(BATCH_URL).mock(return_value=httpx.Response(200, json={"status": 1}))


def sent_events(route: respx.Route) -> list[dict[str, Any]]:
    return [event for call in route.calls for event in json.loads(call.request.content)["batch"]]


def flag_called_events(route: respx.Route) -> list[dict[str, Any]]:
    return [e for e in sent_events(route) if e["event"] == "$feature_flag_called"]


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_requires_project_api_key(self) -> None:
        with pytest.raises(ConfigError):
            PostHogClient(PostHogOptions())

    def test_reads_environment_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POSTHOG_PROJECT_API_KEY", "phc_env")
        monkeypatch.setenv("POSTHOG_HOST_URL", "https://eu.i.posthog.com/")
        client = PostHogClient()
        assert client.options.project_api_key == "phc_env"
        assert client.options.host_url == "https://eu.i.posthog.com"
        asyncio.run(client.aclose())

    def test_version(self) -> None:
        client = make_client()
        assert client.version == "0.1.0"
        asyncio.run(client.aclose())


# ---------------------------------------------------------------------------
# Identification
# ---------------------------------------------------------------------------

class TestIdentification:
    @respx.mock
    def test_group_identify_adds_name(self) -> None:
        route = respx.post(CAPTURE_URL).mock(return_value=httpx.Response(200, json={"status": 1}))

        async def run() -> None:
            async with make_client() as client:
                result = await client.group_identify("company", "acme", "Acme Inc", {"size": 10})
                assert result.status == 1

        asyncio.run(run())
        body = json.loads(route.calls.last.request.content)
        assert body["properties"]["$group_set"] == {"size": 10, "name": "Acme Inc"}

    @respx.mock
    def test_identify_and_alias(self) -> None:
        route = respx.post(CAPTURE_URL).mock(return_value=httpx.Response(200, json={"status": 1}))

        async def run() -> None:
            async with make_client() as client:
                await client.identify("u1", {"email": "a@b.c"})
                await client.alias("u1", "u1-new")

        asyncio.run(run())
        events = [json.loads(call.request.content)["event"] for call in route.calls]
        assert events == ["$identify", "$create_alias"]


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class TestCapture:
    @respx.mock
    def test_capture_is_batched(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client(super_properties={"app": "web"}) as client:
                assert client.capture("u1", "signed_up", {"plan": "pro"}, groups=[Group("company", "acme")])
                assert client.capture("u2", "logged_in")
                assert route.call_count == 0
                await client.flush()
                assert route.call_count == 1

        asyncio.run(run())
        first, second = sent_events(route)
        assert first["event"] == "signed_up"
        assert first["distinct_id"] == "u1"
        assert first["timestamp"] == "2024-01-01T00:00:00+00:00"
        props = first["properties"]
        assert props["plan"] == "pro"
        assert props["$groups"] == {"company": "acme"}
        assert props["app"] == "web"
        assert props["$lib"] == "hogflags"
        assert props["$geoip_disable"] is True
        assert second["event"] == "logged_in"

    @respx.mock
    def test_capture_logs_queued_event(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client() as client:
                with structlog.testing.capture_logs() as logs:
                    assert client.capture("u1", "signed_up") is True
            assert {"event": "capture_queued", "event_name": "signed_up", "queued": 1, "log_level": "debug"} in logs

        asyncio.run(run())
        assert route.call_count == 1

    @respx.mock
    def test_python_values_in_properties_are_sent(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client(flush_at=2) as client:
                client.capture("u1", "cart_viewed")
                client.capture("u1", "order_placed", {"placed_at": datetime(2024, 1, 1, tzinfo=UTC)})
                await asyncio.sleep(0.05)
                assert route.call_count == 1

        asyncio.run(run())
        viewed, placed = sent_events(route)
        assert viewed["event"] == "cart_viewed"
        assert placed["properties"]["placed_at"] == "2024-01-01T00:00:00+00:00"

    @respx.mock
    def test_person_properties_and_timestamp(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client() as client:
                client.capture(
                    "u1",
                    "signed_up",
                    person_properties_to_set={"email": "a@b.c"},
                    person_properties_to_set_once={"first_plan": "free"},
                    timestamp=datetime(2023, 6, 1, tzinfo=UTC),
                )

        asyncio.run(run())
        [event] = sent_events(route)
        assert event["properties"]["$set"] == {"email": "a@b.c"}
        assert event["properties"]["$set_once"] == {"first_plan": "free"}
        assert event["timestamp"] == "2023-06-01T00:00:00+00:00"

    @respx.mock
    def test_close_flushes_and_later_capture_fails(self) -> None:
        route = mock_batch()

        async def run() -> None:
            client = make_client()
            client.capture("u1", "signed_up")
            await client.aclose()
            assert client.capture("u1", "too_late") is False

        asyncio.run(run())
        assert [e["event"] for e in sent_events(route)] == ["signed_up"]

    @respx.mock
    def test_send_feature_flags_resolves_at_flush(self) -> None:
        batch = mock_batch()
        flags = respx.post(FLAGS_URL).mock(return_value=flags_response(beta=True, exp="test", off=False))

        async def run() -> None:
            async with make_client() as client:
                client.capture("u1", "purchase", send_feature_flags=True)
                assert flags.call_count == 0
                await client.flush()

        asyncio.run(run())
        [event] = sent_events(batch)
        props = event["properties"]
        assert props["$feature/beta"] is True
        assert props["$feature/exp"] == "test"
        assert props["$feature/off"] is False
        assert props["$active_feature_flags"] == ["beta", "exp"]

    @respx.mock
    def test_send_feature_flags_options_add_group_properties(self) -> None:
        mock_batch()
        flags = respx.post(FLAGS_URL).mock(return_value=flags_response(beta=True))

        async def run() -> None:
            async with make_client() as client:
                client.capture(
                    "u1",
                    "purchase",
                    groups=[Group("company", "acme")],
                    send_feature_flags=SendFeatureFlagsOptions(
                        person_properties={"email": "a@b.c"},
                        group_properties={"company": {"plan": "pro"}},
                    ),
                )
                await client.flush()

        asyncio.run(run())
        body = json.loads(flags.calls.last.request.content)
        assert body["person_properties"] == {"email": "a@b.c"}
        assert body["groups"] == {"company": "acme"}
        assert body["group_properties"] == {"company": {"plan": "pro"}}

    @respx.mock
    def test_loaded_local_flags_are_attached(self) -> None:
        batch = mock_batch()
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                await client.get_all_feature_flags("u1", AllFeatureFlagsOptions(only_evaluate_locally=True))
                client.capture("u1", "page_view")
                await client.flush()

        asyncio.run(run())
        [event] = sent_events(batch)
        assert event["properties"]["$feature/beta"] is True
        assert event["properties"]["$active_feature_flags"] == ["beta"]
        assert "$feature/needs-email" not in event["properties"]


# ---------------------------------------------------------------------------
# Capture helpers
# ---------------------------------------------------------------------------

def fail_checkout() -> None:
    raise ValueError("card declined")


class TestCaptureHelpers:
    @respx.mock
    def test_page_and_screen_views(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client() as client:
                assert client.capture_page_view("u1", "/pricing", {"referrer": "ad"})
                assert client.capture_screen_view("u1", "Settings")

        asyncio.run(run())
        page, screen = sent_events(route)
        assert page["event"] == "$pageview"
        assert page["properties"]["$current_url"] == "/pricing"
        assert page["properties"]["referrer"] == "ad"
        assert screen["event"] == "$screen"
        assert screen["properties"]["$screen_name"] == "Settings"

    @respx.mock
    def test_page_view_can_send_feature_flags(self) -> None:
        route = mock_batch()
        respx.post(FLAGS_URL).mock(return_value=flags_response(beta=True))

        async def run() -> None:
            async with make_client() as client:
                client.capture_page_view("u1", "/pricing", send_feature_flags=True)

        asyncio.run(run())
        [event] = sent_events(route)
        assert event["properties"]["$feature/beta"] is True

    @respx.mock
    def test_survey_events(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client() as client:
                client.capture_survey_shown("u1", "survey-1")
                client.capture_survey_responses("u1", "survey-1", ["yes", "blue", "often"])
                client.capture_survey_response("u2", "survey-1", "no")
                client.capture_survey_dismissed("u3", "survey-1", {"step": 2})

        asyncio.run(run())
        shown, sent, single, dismissed = sent_events(route)
        assert shown["event"] == "survey shown"
        assert shown["properties"]["$survey_id"] == "survey-1"
        assert sent["event"] == "survey sent"
        assert sent["properties"]["$survey_response"] == "yes"
        assert sent["properties"]["survey_response_1"] == "blue"
        assert sent["properties"]["survey_response_2"] == "often"
        assert single["properties"]["$survey_response"] == "no"
        assert "survey_response_1" not in single["properties"]
        assert dismissed["event"] == "survey dismissed"
        assert dismissed["properties"]["step"] == 2

    @respx.mock
    def test_capture_exception(self) -> None:
        route = mock_batch()

        async def run() -> None:
            async with make_client() as client:
                try:
                    fail_checkout()
                except ValueError as exc:
                    assert client.capture_exception(exc, "u1", {"cart_id": "c1"}, groups=[Group("company", "acme")])

        asyncio.run(run())
        [event] = sent_events(route)
        assert event["event"] == "$exception"
        props = event["properties"]
        assert props["$exception_type"] == "ValueError"
        assert props["$exception_message"] == "card declined"
        assert props["$exception_personURL"] == f"{HOST}/project/phc_test/person/u1"
        assert props["cart_id"] == "c1"
        assert props["$groups"] == {"company": "acme"}
        [entry] = props["$exception_list"]
        assert entry["stacktrace"]["frames"][-1]["function"] == "fail_checkout"


# ---------------------------------------------------------------------------
# get_feature_flag – remote
# ---------------------------------------------------------------------------

class TestRemoteFeatureFlag:
    @respx.mock
    def test_remote_flag_and_called_event(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(return_value=flags_response(exp="test"))

        async def run() -> None:
            async with make_client() as client:
                flag = await client.get_feature_flag("exp", "u1")
                assert flag is not None
                assert flag.variant_key == "test"

        asyncio.run(run())
        [event] = flag_called_events(batch)
        props = event["properties"]
        assert props["$feature_flag"] == "exp"
        assert props["$feature_flag_response"] == "test"
        assert props["$feature/exp"] == "test"
        assert props["locally_evaluated"] is False
        assert props["$feature_flag_request_id"] == "req-1"
        assert props["$feature_flag_id"] == 7
        assert props["$feature_flag_version"] == 3
        assert props["$feature_flag_reason"] == "Matched condition set 1"
        assert "$feature_flag_error" not in props

    @respx.mock
    def test_called_event_sent_once_per_response(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(
            side_effect=[flags_response(beta=True), flags_response(beta=True), flags_response(beta=False)]
        )

        async def run() -> None:
            async with make_client() as client:
                await client.get_feature_flag("beta", "u1")
                await client.get_feature_flag("beta", "u1")
                await client.get_feature_flag("beta", "u1")

        asyncio.run(run())
        responses = [e["properties"]["$feature_flag_response"] for e in flag_called_events(batch)]
        assert responses == [True, False]

    @respx.mock
    def test_called_event_can_be_disabled(self) -> None:
        respx.post(FLAGS_URL).mock(return_value=flags_response(beta=True))

        async def run() -> None:
            async with make_client() as client:
                options = FeatureFlagOptions(send_feature_flag_events=False)
                assert await client.is_feature_enabled("beta", "u1", options) is True

        asyncio.run(run())

    @respx.mock
    def test_missing_flag_is_disabled(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(return_value=flags_response(other=True))

        async def run() -> None:
            async with make_client() as client:
                flag = await client.get_feature_flag("beta", "u1")
                assert flag is not None
                assert not flag.is_enabled

        asyncio.run(run())
        [event] = flag_called_events(batch)
        assert event["properties"]["$feature_flag_error"] == "flag_missing"
        assert event["properties"]["$feature_flag_response"] is False

    @respx.mock
    def test_api_failure_returns_none(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(return_value=httpx.Response(500))

        async def run() -> None:
            async with make_client() as client:
                assert await client.get_feature_flag("beta", "u1") is None
                assert await client.is_feature_enabled("beta", "u2") is None

        asyncio.run(run())
        errors = [e["properties"]["$feature_flag_error"] for e in flag_called_events(batch)]
        assert errors == ["api_error_500", "api_error_500"]

    @respx.mock
    def test_timeout_is_reported(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(side_effect=httpx.ConnectTimeout("slow"))

        async def run() -> None:
            async with make_client() as client:
                assert await client.get_feature_flag("beta", "u1") is None

        asyncio.run(run())
        [event] = flag_called_events(batch)
        assert event["properties"]["$feature_flag_error"] == "timeout"

    @respx.mock
    def test_quota_limited(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(
            return_value=httpx.Response(200, json={"flags": {}, "quotaLimited": ["feature_flags"]})
        )

        async def run() -> None:
            async with make_client() as client:
                assert await client.get_feature_flag("beta", "u1") is None

        asyncio.run(run())
        [event] = flag_called_events(batch)
        assert event["properties"]["$feature_flag_error"] == "quota_limited"

    @respx.mock
    def test_errors_while_computing_are_reported(self) -> None:
        batch = mock_batch()
        respx.post(FLAGS_URL).mock(
            return_value=httpx.Response(200, json={"flags": {}, "errorsWhileComputingFlags": True})
        )

        async def run() -> None:
            async with make_client() as client:
                await client.get_feature_flag("beta", "u1")

        asyncio.run(run())
        [event] = flag_called_events(batch)
        assert event["properties"]["$feature_flag_error"] == "errors_while_computing_flags,flag_missing"

    @respx.mock
    def test_feature_flag_cache_reused(self) -> None:
        mock_batch()
        flags = respx.post(FLAGS_URL).mock(return_value=flags_response(a=True, b=False))

        async def run() -> None:
            async with make_client(feature_flag_cache=MemoryFeatureFlagCache()) as client:
                assert await client.is_feature_enabled("a", "u1") is True
                assert await client.is_feature_enabled("b", "u1") is False

        asyncio.run(run())
        assert flags.call_count == 1


# ---------------------------------------------------------------------------
# get_feature_flag – local
# ---------------------------------------------------------------------------

class TestLocalFeatureFlag:
    @respx.mock
    def test_evaluated_locally_without_flags_call(self) -> None:
        batch = mock_batch()
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                flag = await client.get_feature_flag("beta", "u1")
                assert flag is not None
                assert flag.is_enabled
                assert flag.payload == "on"

        asyncio.run(run())
        [event] = flag_called_events(batch)
        assert event["properties"]["locally_evaluated"] is True

    @respx.mock
    def test_inconclusive_falls_back_to_remote(self) -> None:
        batch = mock_batch()
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))
        flags = respx.post(FLAGS_URL).mock(return_value=flags_response(**{"needs-email": True}))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                assert await client.is_feature_enabled("needs-email", "u1") is True
                options = FeatureFlagOptions(person_properties={"email": "a@b.c"})
                assert await client.is_feature_enabled("needs-email", "u2", options) is True

        asyncio.run(run())
        assert flags.call_count == 1
        locally = [e["properties"]["locally_evaluated"] for e in flag_called_events(batch)]
        assert locally == [False, True]

    @respx.mock
    def test_only_evaluate_locally_skips_remote(self) -> None:
        batch = mock_batch()
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                options = FeatureFlagOptions(only_evaluate_locally=True)
                assert await client.get_feature_flag("needs-email", "u1", options) is None

        asyncio.run(run())
        assert len(flag_called_events(batch)) == 1

    @respx.mock
    def test_clear_local_flags_cache_reloads(self) -> None:
        local = respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                options = AllFeatureFlagsOptions(only_evaluate_locally=True)
                await client.get_all_feature_flags("u1", options)
                client.clear_local_flags_cache()
                await client.get_all_feature_flags("u1", options)

        asyncio.run(run())
        assert local.call_count == 2


# ---------------------------------------------------------------------------
# get_all_feature_flags
# ---------------------------------------------------------------------------

class TestAllFeatureFlags:
    @respx.mock
    def test_remote(self) -> None:
        respx.post(FLAGS_URL).mock(return_value=flags_response(a=True, b="v"))

        async def run() -> None:
            async with make_client() as client:
                flags = await client.get_all_feature_flags("u1")
                assert flags["a"].is_enabled
                assert flags["b"].variant_key == "v"

        asyncio.run(run())

    @respx.mock
    def test_remote_failure_is_empty(self) -> None:
        respx.post(FLAGS_URL).mock(side_effect=httpx.ConnectError("refused"))

        async def run() -> None:
            async with make_client() as client:
                assert await client.get_all_feature_flags("u1") == {}

        asyncio.run(run())

    @respx.mock
    def test_quota_limited_is_empty(self) -> None:
        respx.post(FLAGS_URL).mock(
            return_value=httpx.Response(200, json={"flags": {"a": {"key": "a", "enabled": True}}, "quotaLimited": ["feature_flags"]})
        )

        async def run() -> None:
            async with make_client() as client:
                assert await client.get_all_feature_flags("u1") == {}

        asyncio.run(run())

    @respx.mock
    def test_local_results_when_conclusive(self) -> None:
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                options = AllFeatureFlagsOptions(person_properties={"email": "a@b.c"})
                flags = await client.get_all_feature_flags("u1", options)
                assert set(flags) == {"beta", "needs-email"}

        asyncio.run(run())

    @respx.mock
    def test_inconclusive_falls_back_to_remote(self) -> None:
        respx.get(LOCAL_URL).mock(return_value=httpx.Response(200, json=LOCAL_DEFINITIONS))
        flags_route = respx.post(FLAGS_URL).mock(return_value=flags_response(beta=True, **{"needs-email": False}))

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                flags = await client.get_all_feature_flags("u1")
                assert flags["needs-email"].is_enabled is False

        asyncio.run(run())
        assert flags_route.call_count == 1


# ---------------------------------------------------------------------------
# Remote config
# ---------------------------------------------------------------------------

class TestRemoteConfig:
    def test_requires_personal_api_key(self) -> None:
        async def run() -> None:
            async with make_client() as client:
                assert await client.get_remote_config_payload("cfg") is None

        asyncio.run(run())

    @respx.mock
    def test_payload(self) -> None:
        respx.get(f"{HOST}/api/projects/@current/feature_flags/cfg/remote_config").mock(
            return_value=httpx.Response(200, json='{"theme": "dark"}')
        )

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                assert await client.get_remote_config_payload("cfg") == {"theme": "dark"}

        asyncio.run(run())

    @respx.mock
    def test_failure_is_none(self) -> None:
        respx.get(f"{HOST}/api/projects/@current/feature_flags/cfg/remote_config").mock(
            return_value=httpx.Response(401)
        )

        async def run() -> None:
            async with make_client(personal_api_key="phx_test") as client:
                assert await client.get_remote_config_payload("cfg") is None

        asyncio.run(run())
