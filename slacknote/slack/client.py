"""Slack Web API client over httpx."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from slacknote.core.errors import SlackAPIError
from slacknote.core.models import ChatMessage


class SlackClient:
    """Minimal async Slack Web API client implementing :class:`ChatPort`.

    No retries: a ``429`` surfaces as ``SlackAPIError("ratelimited")`` and
    batch callers pace themselves instead.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = "https://slack.com/api",
        permalink_base: str = "https://app.slack.com",
        timeout_seconds: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._permalink_base = permalink_base.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self._user_names: dict[str, str] = {}

    async def __aenter__(self) -> SlackClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Transport ────────────────────────────────────────────────────

    async def _call(self, method: str, *, params: dict[str, Any] | None = None, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._api_base}/{method}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            if json is not None:
                headers["Content-Type"] = "application/json; charset=utf-8"
                response = await self._http.post(url, headers=headers, json=json)
            else:
                query = {k: v for k, v in (params or {}).items() if v is not None}
                response = await self._http.get(url, headers=headers, params=query)
        except httpx.HTTPError as exc:
            raise SlackAPIError(method, f"transport_error: {exc}") from exc

        if response.status_code == 429:
            raise SlackAPIError(method, "ratelimited")
        if response.status_code >= 400:
            raise SlackAPIError(method, f"http_{response.status_code}")
        data = response.json()
        if not data.get("ok"):
            raise SlackAPIError(method, str(data.get("error") or "unknown_error"))
        return data

    # ── Reads ────────────────────────────────────────────────────────

    async def fetch_message(self, channel: str, ts: str) -> ChatMessage | None:
        """Fetch a top-level message or thread reply by its timestamp."""
        data = await self._call(
            "conversations.history",
            params={"channel": channel, "latest": ts, "inclusive": "true", "limit": 1},
        )
        messages = data.get("messages") or []
        if messages and messages[0].get("ts") == ts:
            return ChatMessage.from_api(messages[0])

        # Not top-level: look the timestamp up as a thread reply.
        data = await self._call(
            "conversations.replies",
            params={"channel": channel, "ts": ts, "oldest": ts, "latest": ts, "inclusive": "true", "limit": 10},
        )
        for payload in data.get("messages") or []:
            if payload.get("ts") == ts:
                return ChatMessage.from_api(payload)
        return None

    async def fetch_history(
        self,
        channel: str,
        oldest: str,
        latest: str | None = None,
        cursor: str | None = None,
        limit: int = 200,
    ) -> tuple[list[ChatMessage], str | None]:
        data = await self._call(
            "conversations.history",
            params={
                "channel": channel,
                "oldest": oldest,
                "latest": latest,
                "inclusive": "true",
                "limit": limit,
                "cursor": cursor or None,
            },
        )
        return _page(data)

    async def fetch_thread_replies(
        self,
        channel: str,
        root_ts: str,
        cursor: str | None = None,
        limit: int = 200,
    ) -> tuple[list[ChatMessage], str | None]:
        data = await self._call(
            "conversations.replies",
            params={"channel": channel, "ts": root_ts, "limit": limit, "cursor": cursor or None},
        )
        return _page(data)

    async def fetch_users(self, cursor: str | None = None, limit: int = 200) -> tuple[dict[str, str], str | None]:
        """One page of ``users.list`` as ``{user_id: display_name}``; primes the name cache."""
        data = await self._call("users.list", params={"limit": limit, "cursor": cursor or None})
        names: dict[str, str] = {}
        for member in data.get("members") or []:
            user_id = str(member.get("id") or "")
            if user_id:
                names[user_id] = _display_name(member) or user_id
        self._user_names.update(names)
        return names, _next_cursor(data)

    async def resolve_user_display_name(self, user_id: str) -> str:
        if not user_id:
            return "unknown"
        cached = self._user_names.get(user_id)
        if cached is not None:
            return cached
        try:
            data = await self._call("users.info", params={"user": user_id})
            name = _display_name(data.get("user") or {}) or user_id
        except SlackAPIError as exc:
            logger.debug("users.info failed for {}: {}", user_id, exc.error_code)
            name = user_id
        self._user_names[user_id] = name
        return name

    # ── Writes ───────────────────────────────────────────────────────

    async def post_message(self, channel: str, text: str, *, thread_ts: str | None = None) -> None:
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        await self._call("chat.postMessage", json=payload)

    async def add_reaction(self, channel: str, ts: str, name: str) -> None:
        try:
            await self._call("reactions.add", json={"channel": channel, "timestamp": ts, "name": name})
        except SlackAPIError as exc:
            if exc.error_code != "already_reacted":
                raise

    # ── Links ────────────────────────────────────────────────────────

    def permalink(self, channel: str, ts: str, thread_ts: str | None = None) -> str:
        url = f"{self._permalink_base}/archives/{channel}/p{str(ts).replace('.', '')}"
        if thread_ts and thread_ts != ts:
            url += f"?thread_ts={thread_ts}&cid={channel}"
        return url


def _page(data: dict[str, Any]) -> tuple[list[ChatMessage], str | None]:
    messages = [ChatMessage.from_api(m) for m in data.get("messages") or [] if isinstance(m, dict)]
    return messages, _next_cursor(data)


def _next_cursor(data: dict[str, Any]) -> str | None:
    meta = data.get("response_metadata") or {}
    return str(meta.get("next_cursor") or "") or None


def _display_name(user: dict[str, Any]) -> str:
    profile = user.get("profile") or {}
    return str(profile.get("display_name") or user.get("real_name") or user.get("name") or "")
