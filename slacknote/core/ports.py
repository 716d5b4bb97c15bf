"""Port interfaces for the external collaborators."""

from __future__ import annotations

from typing import Protocol

from slacknote.core.models import ArtifactRef, BufferedMessage, ChatMessage, ReportItem


class ChatPort(Protocol):
    """Chat platform (Slack) operations used by the pipelines."""

    async def fetch_message(self, channel: str, ts: str) -> ChatMessage | None:
        """Fetch one message (top-level or thread reply) by timestamp."""

    async def fetch_history(
        self,
        channel: str,
        oldest: str,
        latest: str | None = None,
        cursor: str | None = None,
        limit: int = 200,
    ) -> tuple[list[ChatMessage], str | None]:
        """Fetch one page of channel history with inclusive bounds."""

    async def fetch_thread_replies(
        self,
        channel: str,
        root_ts: str,
        cursor: str | None = None,
        limit: int = 200,
    ) -> tuple[list[ChatMessage], str | None]:
        """Fetch one page of a thread (the root message comes first)."""

    async def post_message(self, channel: str, text: str, *, thread_ts: str | None = None) -> None:
        """Post a message to a channel or thread."""

    async def add_reaction(self, channel: str, ts: str, name: str) -> None:
        """Add a reaction; an existing identical reaction counts as success."""

    async def resolve_user_display_name(self, user_id: str) -> str:
        """Best-effort display name, falling back to the raw id."""

    def permalink(self, channel: str, ts: str, thread_ts: str | None = None) -> str:
        """Stable message URL used as the report dedup key."""


class SummarizerPort(Protocol):
    """Free-text summarization of a labeled transcript."""

    async def summarize(self, fragments: list[BufferedMessage], label_guide: list[str]) -> str:
        """Return Markdown for chronologically ordered fragments."""


class ReportExtractorPort(Protocol):
    async def extract(self, text: str, reporter: str) -> list[ReportItem]:
        """Return zero or more report items; never raises on model failure."""


class DocumentStorePort(Protocol):
    """Document store (Notion) operations."""

    async def create_document(self, title: str, markdown: str) -> ArtifactRef:
        """Create a page in the digest database."""

    async def append_to_document(self, external_id: str, markdown: str) -> None:
        """Append Markdown blocks to an existing page."""

    async def query_existing_by_source_url(self, source_url: str, target: str) -> bool:
        """True when a log entry for *source_url* already exists in *target*."""

    async def create_log_entry(self, item: ReportItem, source_url: str, date: str, target: str) -> str:
        """Create one report-log row and return its id."""

    async def describe_target_schema(self, target: str) -> dict[str, str]:
        """Return ``{property_name: property_type}`` of a log database."""

    async def check_target_access(self, target: str) -> tuple[bool, str]:
        """Verify the integration can read *target*; return ``(ok, message)``."""
