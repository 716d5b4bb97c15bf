"""Event intake: route Slack Events API callbacks to the pipelines."""

from __future__ import annotations

import time
from typing import Any

from loguru import logger

from slacknote.aggregation.pipeline import AggregationPipeline
from slacknote.core.models import ChatMessage
from slacknote.reports.pipeline import ReportPipeline


class EventDeduplicator:
    """Reject ``event_id`` values seen within a TTL window."""

    def __init__(self, *, ttl_seconds: int = 20 * 60) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._recent: dict[str, float] = {}
        self._next_cleanup_at = 0.0

    def seen(self, event_id: str | None) -> bool:
        """Return True for a repeat delivery; records first sightings."""
        if not event_id:
            return False
        now = time.monotonic()
        self._maybe_cleanup(now)
        if event_id in self._recent:
            return True
        self._recent[event_id] = now + float(self._ttl_seconds)
        return False

    def _maybe_cleanup(self, now: float) -> None:
        if now < self._next_cleanup_at:
            return
        expired = [k for k, exp in self._recent.items() if exp <= now]
        for k in expired:
            self._recent.pop(k, None)
        self._next_cleanup_at = now + 30.0


class SlackEventRouter:
    """Dispatch ``reaction_added`` to digests and ``message`` to report detection."""

    def __init__(
        self,
        *,
        aggregation: AggregationPipeline,
        reports: ReportPipeline | None = None,
        dedup: EventDeduplicator | None = None,
    ) -> None:
        self._aggregation = aggregation
        self._reports = reports
        self._dedup = dedup or EventDeduplicator()

    async def dispatch(self, envelope: dict[str, Any]) -> None:
        """Handle one ``event_callback`` envelope. Errors are logged, never raised."""
        if self._dedup.seen(envelope.get("event_id")):
            logger.debug("duplicate event delivery ignored: {}", envelope.get("event_id"))
            return
        event = envelope.get("event") or {}
        event_type = event.get("type")
        try:
            if event_type == "reaction_added":
                await self._on_reaction(event)
            elif event_type == "message":
                await self._on_message(event)
        except Exception:
            logger.exception(f"unhandled error in {event_type} handler")

    async def _on_reaction(self, event: dict[str, Any]) -> None:
        item = event.get("item") or {}
        # Reactions on files and file comments are out of scope.
        if item.get("type") != "message":
            return
        reaction = str(event.get("reaction") or "")
        if not self._aggregation.handles(reaction):
            return
        await self._aggregation.handle_reaction(str(item.get("channel") or ""), str(item.get("ts") or ""), reaction)

    async def _on_message(self, event: dict[str, Any]) -> None:
        if self._reports is None:
            return
        channel = str(event.get("channel") or "")
        if not self._reports.watches(channel):
            return
        await self._reports.handle_message(channel, ChatMessage.from_api(event))
