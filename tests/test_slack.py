import json

import httpx
import pytest

from slacknote.core.errors import SlackAPIError
from slacknote.slack.client import SlackClient
from slacknote.slack.events import EventDeduplicator, SlackEventRouter
from slacknote.slack.signature import compute_signature, verify_signature

SECRET = "8f742231b10e8888abcd99yyyzzz85a5"


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def test_signature_roundtrip_accepts_fresh_request() -> None:
    body = b"token=x&team_id=T1"
    sig = compute_signature(SECRET, "1531420618", body)
    assert sig.startswith("v0=")
    assert verify_signature(SECRET, "1531420618", sig, body, now=1531420618 + 10)


def test_signature_rejects_stale_forged_or_missing() -> None:
    body = b"{}"
    sig = compute_signature(SECRET, "1000", body)
    assert not verify_signature(SECRET, "1000", sig, body, now=1000 + 301)
    assert not verify_signature(SECRET, "1000", sig, b'{"x":1}', now=1000)
    assert not verify_signature("other-secret", "1000", sig, body, now=1000)
    assert not verify_signature(SECRET, None, sig, body, now=1000)
    assert not verify_signature(SECRET, "not-a-number", sig, body, now=1000)
    assert not verify_signature("", "1000", sig, body, now=1000)


# ---------------------------------------------------------------------------
# Web API client
# ---------------------------------------------------------------------------


def _slack(handler) -> SlackClient:
    return SlackClient("xoxb-test", http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_fetch_message_falls_back_to_thread_replies() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        calls.append(method)
        if method == "conversations.history":
            return httpx.Response(200, json={"ok": True, "messages": [{"ts": "9.0", "text": "older"}]})
        return httpx.Response(
            200,
            json={
                "ok": True,
                "messages": [
                    {"ts": "5.0", "text": "root"},
                    {"ts": "10.0", "text": "reply", "thread_ts": "5.0", "user": "U1"},
                ],
            },
        )

    client = _slack(handler)
    message = await client.fetch_message("C1", "10.0")
    await client.aclose()

    assert calls == ["conversations.history", "conversations.replies"]
    assert message is not None
    assert message.thread_root == "5.0"
    assert message.user == "U1"


async def test_add_reaction_treats_already_reacted_as_success() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        assert json.loads(request.content) == {"channel": "C1", "timestamp": "1.0", "name": "eyes"}
        return httpx.Response(200, json={"ok": False, "error": "already_reacted"})

    client = _slack(handler)
    await client.add_reaction("C1", "1.0", "eyes")
    await client.aclose()


async def test_api_errors_raise_slack_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "chat.postMessage" in request.url.path:
            return httpx.Response(200, json={"ok": False, "error": "not_in_channel"})
        return httpx.Response(429, headers={"Retry-After": "3"})

    client = _slack(handler)
    with pytest.raises(SlackAPIError) as excinfo:
        await client.post_message("C1", "hi", thread_ts="1.0")
    assert excinfo.value.error_code == "not_in_channel"
    with pytest.raises(SlackAPIError) as excinfo:
        await client.fetch_history("C1", "0")
    assert excinfo.value.error_code == "ratelimited"
    await client.aclose()


async def test_user_names_are_cached_and_fall_back_to_id() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        user = request.url.params.get("user")
        calls.append(user)
        if user == "U1":
            return httpx.Response(
                200, json={"ok": True, "user": {"id": "U1", "real_name": "Tanaka", "profile": {"display_name": "tnk"}}}
            )
        return httpx.Response(200, json={"ok": False, "error": "user_not_found"})

    client = _slack(handler)
    assert await client.resolve_user_display_name("U1") == "tnk"
    assert await client.resolve_user_display_name("U1") == "tnk"
    assert await client.resolve_user_display_name("U404") == "U404"
    await client.aclose()
    assert calls == ["U1", "U404"]


async def test_history_pagination_cursor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        assert params["oldest"] == "100.000000"
        assert "latest" not in params
        if params.get("cursor") is None:
            return httpx.Response(
                200,
                json={"ok": True, "messages": [{"ts": "101.0"}], "response_metadata": {"next_cursor": "abc"}},
            )
        return httpx.Response(200, json={"ok": True, "messages": [{"ts": "102.0"}], "response_metadata": {"next_cursor": ""}})

    client = _slack(handler)
    first, cursor = await client.fetch_history("C1", "100.000000")
    second, done = await client.fetch_history("C1", "100.000000", cursor=cursor)
    await client.aclose()
    assert [m.ts for m in first + second] == ["101.0", "102.0"]
    assert cursor == "abc"
    assert done is None


def test_permalink_format() -> None:
    client = SlackClient("t")
    assert client.permalink("C1", "1700000000.123456") == "https://app.slack.com/archives/C1/p1700000000123456"
    assert (
        client.permalink("C1", "1700000001.000001", "1700000000.123456")
        == "https://app.slack.com/archives/C1/p1700000001000001?thread_ts=1700000000.123456&cid=C1"
    )
    assert client.permalink("C1", "5.0", "5.0") == "https://app.slack.com/archives/C1/p50"


# ---------------------------------------------------------------------------
# Event routing
# ---------------------------------------------------------------------------


def test_deduplicator_rejects_repeats() -> None:
    dedup = EventDeduplicator(ttl_seconds=60)
    assert dedup.seen("Ev1") is False
    assert dedup.seen("Ev1") is True
    assert dedup.seen("Ev2") is False
    assert dedup.seen(None) is False
    assert dedup.seen(None) is False


class RecordingAggregation:
    def __init__(self) -> None:
        self.reactions: list[tuple[str, str, str]] = []

    def handles(self, reaction: str) -> bool:
        return reaction in {"bookmark", "notion"}

    async def handle_reaction(self, channel: str, ts: str, reaction: str) -> None:
        if channel == "BOOM":
            raise RuntimeError("boom")
        self.reactions.append((channel, ts, reaction))


class RecordingReports:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def watches(self, channel: str) -> bool:
        return channel == "C-report"

    async def handle_message(self, channel, message):
        self.messages.append((channel, message.text))


def _reaction(event_id: str, reaction: str, item_type: str = "message", channel: str = "C1") -> dict:
    return {
        "type": "event_callback",
        "event_id": event_id,
        "event": {"type": "reaction_added", "reaction": reaction, "item": {"type": item_type, "channel": channel, "ts": "1.0"}},
    }


async def test_router_dispatches_reactions_and_messages() -> None:
    aggregation = RecordingAggregation()
    reports = RecordingReports()
    router = SlackEventRouter(aggregation=aggregation, reports=reports)

    await router.dispatch(_reaction("Ev1", "bookmark"))
    await router.dispatch(_reaction("Ev1", "bookmark"))  # redelivery
    await router.dispatch(_reaction("Ev2", "tada"))
    await router.dispatch(_reaction("Ev3", "notion", item_type="file"))
    await router.dispatch({"event_id": "Ev4", "event": {"type": "message", "channel": "C-report", "ts": "2.0", "text": "r"}})
    await router.dispatch({"event_id": "Ev5", "event": {"type": "message", "channel": "C-other", "ts": "3.0", "text": "x"}})

    assert aggregation.reactions == [("C1", "1.0", "bookmark")]
    assert reports.messages == [("C-report", "r")]


async def test_router_logs_handler_errors_without_raising() -> None:
    router = SlackEventRouter(aggregation=RecordingAggregation())
    await router.dispatch(_reaction("Ev1", "bookmark", channel="BOOM"))
