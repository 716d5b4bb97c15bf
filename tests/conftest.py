from __future__ import annotations

from typing import Any

import pytest

from slacknote.core.models import ArtifactRef, ChatMessage, ReportItem


class FakeChat:
    """In-memory chat platform with Slack-shaped pagination."""

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.messages: dict[tuple[str, str], ChatMessage] = {}
        self.history: dict[str, list[ChatMessage]] = {}
        self.replies: dict[tuple[str, str], list[ChatMessage]] = {}
        self.names: dict[str, str] = {}
        self.posted: list[tuple[str, str, str | None]] = []
        self.reactions: list[tuple[str, str, str]] = []
        self.history_calls: list[dict[str, Any]] = []
        self.fail_post = False

    def add(self, channel: str, message: ChatMessage) -> ChatMessage:
        self.messages[(channel, message.ts)] = message
        if message.thread_ts and message.thread_ts != message.ts:
            self.replies.setdefault((channel, message.thread_ts), []).append(message)
        else:
            self.history.setdefault(channel, []).append(message)
        return message

    async def fetch_message(self, channel: str, ts: str) -> ChatMessage | None:
        return self.messages.get((channel, ts))

    async def fetch_history(self, channel, oldest, latest=None, cursor=None, limit=200):
        self.history_calls.append({"oldest": oldest, "latest": latest, "cursor": cursor})
        rows = [
            m
            for m in self.history.get(channel, [])
            if m.ts_value >= float(oldest) and (latest is None or m.ts_value <= float(latest))
        ]
        # Slack returns newest first.
        rows.sort(key=lambda m: m.ts_value, reverse=True)
        start = int(cursor or 0)
        page = rows[start : start + self.page_size]
        nxt = start + self.page_size
        return page, (str(nxt) if nxt < len(rows) else None)

    async def fetch_thread_replies(self, channel, root_ts, cursor=None, limit=200):
        root = self.messages.get((channel, root_ts))
        rows = ([root] if root else []) + sorted(self.replies.get((channel, root_ts), []), key=lambda m: m.ts_value)
        start = int(cursor or 0)
        page = rows[start : start + self.page_size]
        nxt = start + self.page_size
        return page, (str(nxt) if nxt < len(rows) else None)

    async def fetch_users(self, cursor=None, limit=200):
        return dict(self.names), None

    async def post_message(self, channel: str, text: str, *, thread_ts: str | None = None) -> None:
        if self.fail_post:
            raise RuntimeError("not_in_channel")
        self.posted.append((channel, text, thread_ts))

    async def add_reaction(self, channel: str, ts: str, name: str) -> None:
        self.reactions.append((channel, ts, name))

    async def resolve_user_display_name(self, user_id: str) -> str:
        return self.names.get(user_id, user_id)

    def permalink(self, channel: str, ts: str, thread_ts: str | None = None) -> str:
        url = f"https://app.slack.com/archives/{channel}/p{ts.replace('.', '')}"
        if thread_ts and thread_ts != ts:
            url += f"?thread_ts={thread_ts}&cid={channel}"
        return url


class FakeStore:
    """Document store recording every call."""

    def __init__(self) -> None:
        self.documents: dict[str, list[str]] = {}
        self.titles: dict[str, str] = {}
        self.create_calls = 0
        self.append_calls = 0
        self.entries: dict[str, list[tuple[ReportItem, str, str]]] = {}
        self.queries: list[tuple[str, str]] = []
        self.fail_writes = False
        self.fail_entry_products: set[str] = set()
        self.accessible = True

    async def create_document(self, title: str, markdown: str) -> ArtifactRef:
        self.create_calls += 1
        if self.fail_writes:
            raise RuntimeError("notion unavailable")
        page_id = f"page-{self.create_calls}"
        self.documents[page_id] = [markdown]
        self.titles[page_id] = title
        return ArtifactRef(external_id=page_id, url=f"https://notion.so/{page_id}")

    async def append_to_document(self, external_id: str, markdown: str) -> None:
        self.append_calls += 1
        if self.fail_writes:
            raise RuntimeError("notion unavailable")
        self.documents[external_id].append(markdown)

    async def query_existing_by_source_url(self, source_url: str, target: str) -> bool:
        self.queries.append((source_url, target))
        return any(url == source_url for _, url, _ in self.entries.get(target, []))

    async def create_log_entry(self, item: ReportItem, source_url: str, date: str, target: str) -> str:
        if item.product in self.fail_entry_products:
            raise RuntimeError("validation_error")
        rows = self.entries.setdefault(target, [])
        rows.append((item, source_url, date))
        return f"row-{len(rows)}"

    async def describe_target_schema(self, target: str) -> dict[str, str]:
        return {"名前": "title", "Slack URL": "url"}

    async def check_target_access(self, target: str) -> tuple[bool, str]:
        return (True, "ok") if self.accessible else (False, "object_not_found")


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
