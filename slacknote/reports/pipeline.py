"""Classify -> route -> dedup -> extract -> write, for one chat message.

Shared by the live event path and the backfill command so both apply the
same rules. Every stage logs its own failures and the result is folded into
a :class:`ReportOutcome`.
"""

from __future__ import annotations

from collections.abc import Mapping

from loguru import logger

from slacknote.config.schema import ReportsConfig
from slacknote.core.errors import RoutingUnconfiguredError
from slacknote.core.models import ChatMessage, ReportOutcome
from slacknote.core.ports import ChatPort, DocumentStorePort, ReportExtractorPort
from slacknote.reports.classifier import classify_report
from slacknote.reports.routing import resolve_route
from slacknote.utils.helpers import ts_to_date


class ReportPipeline:
    """Detect incident reports in chat messages and log them once each."""

    def __init__(
        self,
        *,
        chat: ChatPort,
        extractor: ReportExtractorPort,
        store: DocumentStorePort,
        reports: ReportsConfig,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._chat = chat
        self._extractor = extractor
        self._store = store
        self._reports = reports
        self._environ = environ

    def watches(self, channel: str) -> bool:
        return self._reports.watches(channel)

    def resolve_target(self, channel: str) -> str:
        """Resolve the log database for *channel*; raises when unconfigured."""
        return resolve_route(self._reports.tool_key, channel, self._reports.routing, self._environ)

    async def handle_message(self, channel: str, message: ChatMessage) -> ReportOutcome | None:
        """Live path for ``message`` events in watched channels."""
        if not self.watches(channel):
            return None
        outcome = await self.process(channel, message, acknowledge=True)
        if outcome.status in ("written", "failed"):
            logger.info(
                "[{}] report {} written={} failed={} {}",
                channel,
                outcome.status,
                outcome.written,
                outcome.failed,
                outcome.source_url,
            )
        return outcome

    async def process(
        self,
        channel: str,
        message: ChatMessage,
        *,
        dry_run: bool = False,
        target: str | None = None,
        acknowledge: bool = False,
    ) -> ReportOutcome:
        if message.is_automated or message.is_edited:
            return ReportOutcome(status="automated")

        verdict = classify_report(message.text)
        if not verdict.accepted:
            return ReportOutcome(status="not_report", reason=verdict.reason)

        if target is None:
            try:
                target = self.resolve_target(channel)
            except RoutingUnconfiguredError as exc:
                logger.error(f"[{channel}] report not logged: {exc}")
                return ReportOutcome(status="unrouted", reason=str(exc))

        source_url = self._chat.permalink(channel, message.ts, message.thread_ts)
        try:
            exists = await self._store.query_existing_by_source_url(source_url, target)
        except Exception as exc:
            logger.error(f"[{channel}] existence check failed for {source_url}: {exc}")
            return ReportOutcome(status="failed", source_url=source_url, reason="existence_check")
        if exists:
            logger.debug("[{}] already logged: {}", channel, source_url)
            return ReportOutcome(status="duplicate", source_url=source_url)

        reporter = (
            await self._chat.resolve_user_display_name(message.user) if message.user else "unknown"
        )
        items = tuple(await self._extractor.extract(message.text, reporter))
        if not items:
            return ReportOutcome(status="no_items", source_url=source_url)

        if dry_run:
            for item in items:
                logger.info("[dry-run] {} [{}] {}", item.title, item.kind.value, item.detail)
            return ReportOutcome(status="dry_run", source_url=source_url, items=items, planned=len(items))

        date = ts_to_date(message.ts)
        written = 0
        failed = 0
        for item in items:
            try:
                await self._store.create_log_entry(item, source_url, date, target)
                written += 1
            except Exception as exc:
                failed += 1
                logger.error(f"[{channel}] log entry failed ({item.title}): {exc}")

        if acknowledge and written and self._reports.ack_reaction:
            try:
                await self._chat.add_reaction(channel, message.ts, self._reports.ack_reaction)
            except Exception as exc:
                logger.warning(f"[{channel}] acknowledgement reaction failed: {exc}")

        return ReportOutcome(
            status="written" if written else "failed",
            source_url=source_url,
            items=items,
            written=written,
            failed=failed,
        )
