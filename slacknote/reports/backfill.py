"""Offline replay of report detection over channel history."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date

from loguru import logger

from slacknote.config.schema import PacingConfig
from slacknote.core.errors import ConfigurationError
from slacknote.core.models import BackfillStats, ChatMessage
from slacknote.core.ports import ChatPort, DocumentStorePort
from slacknote.reports.pipeline import ReportPipeline
from slacknote.utils.helpers import day_end_ts, day_start_ts

Sleep = Callable[[float], Awaitable[None]]


class BackfillPipeline:
    """Paginate history, sort it once, and run each message through :class:`ReportPipeline`.

    Fixed pacing delays sit between history pages and after each message that
    produced writes; the chat and document APIs throttle aggressively and
    unpaced bursts fail partially without clear errors.
    """

    def __init__(
        self,
        *,
        chat: ChatPort,
        store: DocumentStorePort,
        reports: ReportPipeline,
        pacing: PacingConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._chat = chat
        self._store = store
        self._reports = reports
        self._pacing = pacing
        self._sleep = sleep

    async def prepare_target(self, channel: str) -> str:
        """Resolve and verify the report-log target; fatal when unusable."""
        target = self._reports.resolve_target(channel)
        ok, message = await self._store.check_target_access(target)
        if not ok:
            raise ConfigurationError(f"report-log database {target} is not accessible: {message}")
        return target

    async def fetch_messages(
        self,
        channel: str,
        since: date,
        until: date | None = None,
        max_items: int | None = None,
    ) -> list[ChatMessage]:
        """Fetch history between ``since 00:00:00Z`` and ``until 23:59:59Z`` inclusive."""
        oldest = f"{day_start_ts(since):.6f}"
        latest = f"{day_end_ts(until):.6f}" if until else None
        out: list[ChatMessage] = []
        cursor: str | None = None
        while True:
            page, cursor = await self._chat.fetch_history(
                channel, oldest, latest, cursor, limit=self._pacing.page_size
            )
            for message in page:
                out.append(message)
                if max_items and len(out) >= max_items:
                    return out
            if not cursor:
                return out
            await self._sleep(self._pacing.page_delay_seconds)

    async def run(
        self,
        channel: str,
        since: date,
        until: date | None = None,
        *,
        max_items: int | None = None,
        dry_run: bool = False,
    ) -> BackfillStats:
        target = await self.prepare_target(channel)
        logger.info(
            "backfill start channel={} since={} until={} target={} dry_run={}",
            channel,
            since.isoformat(),
            until.isoformat() if until else "latest",
            target,
            dry_run,
        )

        messages = await self.fetch_messages(channel, since, until, max_items)
        messages.sort(key=lambda m: m.ts_value)
        logger.info("fetched {} messages", len(messages))

        stats = BackfillStats()
        for message in messages:
            stats.scanned += 1
            outcome = await self._reports.process(channel, message, dry_run=dry_run, target=target)
            stats.record(outcome)
            if outcome.written or outcome.failed or outcome.planned:
                await self._sleep(self._pacing.write_delay_seconds)

        logger.info("backfill done {}", stats.as_dict())
        return stats
