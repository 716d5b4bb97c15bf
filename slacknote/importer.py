"""Bulk import of enriched mismatch CSVs into a new Notion database."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from slacknote.config.schema import PacingConfig
from slacknote.core.errors import NotionAPIError
from slacknote.core.models import ReportKind
from slacknote.enrich import UNKNOWN, parse_when, read_csv_rows
from slacknote.notion.blocks import rich_text
from slacknote.notion.client import NotionClient

DEFAULT_DATABASE_TITLE = "OCRミス作業者レポート"

# Rows repeated across overlapping exports collapse on these columns.
DEDUP_FIELDS = ("起票日", "ミス種別", "グループ/店舗名", "食べ物名", "商品ID", "OCR作業者")

_RICH_TEXT_COLUMNS = ("法人名", "グループ/店舗名", "食べ物名", "食べ物名（CSV詳細）", "確定者", "商品ID")

_KIND_COLORS = {
    ReportKind.BRACKET_MISSING: "yellow",
    ReportKind.ALLERGEN_LEAK: "red",
    ReportKind.TAG_ERROR: "orange",
    ReportKind.STATUS_CHANGE: "blue",
    ReportKind.QUESTION: "purple",
    ReportKind.INFO: "gray",
}

_STATUS_OPTIONS = (
    ("判定済", "green"),
    ("未確定", "gray"),
    ("要確認", "yellow"),
    ("問い合わせ依頼", "orange"),
)


def database_properties() -> dict[str, Any]:
    """Column definitions of the import database."""
    props: dict[str, Any] = {"名前": {"title": {}}}
    for column in _RICH_TEXT_COLUMNS:
        props[column] = {"rich_text": {}}
    props["OCR作業者"] = {"rich_text": {}}
    props["ミス種別"] = {
        "select": {"options": [{"name": k.display_name, "color": c} for k, c in _KIND_COLORS.items()]}
    }
    props["最終ステータス"] = {"select": {"options": [{"name": n, "color": c} for n, c in _STATUS_OPTIONS]}}
    props["OCR作業日"] = {"date": {}}
    props["起票日"] = {"date": {}}
    props["候補件数"] = {"number": {}}
    return props


def row_properties(row: dict[str, str]) -> dict[str, Any]:
    """Page properties for one enriched CSV row."""
    props: dict[str, Any] = {
        "名前": {"title": rich_text(f"{row.get('グループ/店舗名', '')} / {row.get('食べ物名', '')}")},
        "OCR作業者": {"rich_text": rich_text(row.get("OCR作業者") or UNKNOWN)},
    }
    for column in _RICH_TEXT_COLUMNS:
        props[column] = {"rich_text": rich_text(row.get(column, ""))}

    if row.get("ミス種別"):
        props["ミス種別"] = {"select": {"name": row["ミス種別"]}}
    if row.get("最終ステータス"):
        props["最終ステータス"] = {"select": {"name": row["最終ステータス"]}}
    if row.get("起票日"):
        props["起票日"] = {"date": {"start": row["起票日"]}}
    worked_at = parse_when(row.get("OCR作業日時", ""))
    if worked_at is not None:
        props["OCR作業日"] = {"date": {"start": worked_at.isoformat()}}
    count = (row.get("候補件数") or "").strip()
    if count.isdigit():
        props["候補件数"] = {"number": int(count)}
    return props


def dedupe_rows(rows: list[dict[str, str]], fields: tuple[str, ...] = DEDUP_FIELDS) -> list[dict[str, str]]:
    seen: set[tuple[str, ...]] = set()
    out: list[dict[str, str]] = []
    for row in rows:
        key = tuple(row.get(f, "") for f in fields)
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


@dataclass(slots=True)
class ImportStats:
    total: int = 0
    duplicates: int = 0
    written: int = 0
    failed: int = 0
    database_id: str = ""
    preview: list[dict[str, str]] = field(default_factory=list)


class MismatchImporter:
    """Create a database under a parent page and insert every CSV row."""

    def __init__(
        self,
        notion: NotionClient | None,
        pacing: PacingConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._notion = notion
        self._pacing = pacing
        self._sleep = sleep

    @staticmethod
    def load(paths: list[Path]) -> tuple[list[dict[str, str]], int]:
        """Concatenate and dedupe *paths*; returns ``(rows, duplicates)``."""
        rows: list[dict[str, str]] = []
        for path in paths:
            part = read_csv_rows(path)
            logger.info("{}: {} rows", path, len(part))
            rows.extend(part)
        unique = dedupe_rows(rows)
        return unique, len(rows) - len(unique)

    async def run(
        self,
        paths: list[Path],
        *,
        parent_page_id: str = "",
        title: str = DEFAULT_DATABASE_TITLE,
        dry_run: bool = False,
    ) -> ImportStats:
        rows, duplicates = await asyncio.to_thread(self.load, paths)
        stats = ImportStats(total=len(rows), duplicates=duplicates, preview=rows[:3])
        if dry_run:
            logger.info("dry run: {} rows would be imported", len(rows))
            return stats
        if self._notion is None:
            raise ValueError("a Notion client is required unless dry_run is set")

        stats.database_id = await self._notion.create_database(parent_page_id, title, database_properties())
        logger.info(f"created database {title!r} ({stats.database_id})")

        for i, row in enumerate(rows, 1):
            try:
                await self._notion.create_page(stats.database_id, row_properties(row))
            except NotionAPIError as exc:
                stats.failed += 1
                logger.error(f"import failed for {row.get('グループ/店舗名')} / {row.get('食べ物名')}: {exc}")
                continue
            stats.written += 1
            if stats.written % 10 == 0:
                logger.info("{}/{} rows imported", stats.written, len(rows))
            if i < len(rows):
                await self._sleep(self._pacing.write_delay_seconds)
        return stats
