"""Channel history export to CSV, thread replies expanded inline."""

from __future__ import annotations

import asyncio
import csv
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from loguru import logger

from slacknote.config.schema import PacingConfig
from slacknote.core.models import ChatMessage
from slacknote.slack.client import SlackClient
from slacknote.utils.helpers import day_start_ts, ts_to_datetime

CSV_COLUMNS = ("datetime", "user_name", "message_text", "thread_id", "message_url")


@dataclass(slots=True)
class ExportRow:
    ts: str
    thread_ts: str
    user: str
    text: str


class ChannelExporter:
    """Dump a channel (parents plus replies) in chronological order.

    Output is UTF-8 with a BOM so spreadsheet tools detect the encoding.
    """

    def __init__(
        self,
        slack: SlackClient,
        pacing: PacingConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._slack = slack
        self._pacing = pacing
        self._sleep = sleep

    async def load_user_names(self) -> dict[str, str]:
        names: dict[str, str] = {}
        cursor: str | None = None
        while True:
            page, cursor = await self._slack.fetch_users(cursor)
            names.update(page)
            if not cursor:
                return names

    async def fetch_rows(self, channel: str, since: date) -> list[ExportRow]:
        oldest = f"{day_start_ts(since):.6f}"
        rows: list[ExportRow] = []
        threads = 0
        cursor: str | None = None
        while True:
            page, cursor = await self._slack.fetch_history(
                channel, oldest, None, cursor, limit=self._pacing.page_size
            )
            for message in page:
                rows.append(_row(message))
                if message.reply_count > 0:
                    threads += 1
                    replies = await self._fetch_replies(channel, message.ts)
                    # The first reply is the parent itself.
                    rows.extend(_row(reply) for reply in replies[1:])
                    await self._sleep(self._pacing.page_delay_seconds)
            logger.info("{} rows fetched ({} threads expanded)", len(rows), threads)
            if not cursor:
                break
        rows.sort(key=lambda r: float(r.ts or 0))
        return rows

    async def _fetch_replies(self, channel: str, root_ts: str) -> list[ChatMessage]:
        out: list[ChatMessage] = []
        cursor: str | None = None
        while True:
            page, cursor = await self._slack.fetch_thread_replies(
                channel, root_ts, cursor, limit=self._pacing.page_size
            )
            out.extend(page)
            if not cursor:
                return out
            await self._sleep(self._pacing.page_delay_seconds)

    def write_csv(self, channel: str, rows: list[ExportRow], names: dict[str, str], output: Path) -> None:
        with open(output, "w", encoding="utf-8-sig", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for row in rows:
                writer.writerow(
                    [
                        format_ts(row.ts),
                        names.get(row.user, row.user),
                        row.text,
                        row.thread_ts,
                        self._slack.permalink(channel, row.ts, row.thread_ts or None),
                    ]
                )

    async def export(self, channel: str, since: date, output: Path | None = None) -> tuple[Path, int]:
        """Write the CSV and return ``(path, row_count)``."""
        output = output or Path(f"export-{channel}-{since.isoformat()}.csv")
        names = await self.load_user_names()
        logger.info("{} users loaded", len(names))
        rows = await self.fetch_rows(channel, since)
        if rows:
            await asyncio.to_thread(self.write_csv, channel, rows, names, output)
        return output, len(rows)


def _row(message: ChatMessage) -> ExportRow:
    return ExportRow(
        ts=message.ts,
        thread_ts=message.thread_ts or "",
        user=message.user or message.bot_id or "",
        text=message.text,
    )


def format_ts(ts: str) -> str:
    """``YYYY-MM-DD HH:MM:SS.mmm`` in UTC."""
    return ts_to_datetime(ts).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
