"""Report-log enrichment against a work-log CSV.

Rows of the report log name a customer group and a product in their title
(``"<group> / <product>"``). The work log exported from the labeling tool
records who did the OCR check and who confirmed each product. Matching the
two attributes every logged mistake to the OCR worker that let it through.

Matching is fuzzy because both sides are typed by hand: names are compared
after removing whitespace and folding a few full-width characters, exact
matches score higher than containment, and ties go to the work row closest
in time to the log date.
"""

from __future__ import annotations

import asyncio
import csv
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from slacknote.notion.client import NotionClient
from slacknote.notion.schema import PropertyRole, TargetSchema, property_text

UNKNOWN = "不明"

OCR_WORK = "OCR確認作業"
CONFIRM_WORK = "確定作業"

# Work-log CSV columns.
WORK_TYPE = "作業種別"
WORK_GROUP = "グループ名"
WORK_PRODUCT = "加工品名/生鮮品名"
WORK_WORKER = "作業者名"
WORK_AT = "作業日時"
WORK_COMPANY = "会社名"
WORK_STATUS = "変更後ステータス"
WORK_PRODUCT_ID = "商品ID"

# Minimum score: group match plus a partial product match, or an exact product.
MIN_MATCH_SCORE = 8

ENRICHED_COLUMNS = (
    "起票日",
    "法人名",
    "グループ/店舗名",
    "食べ物名",
    "食べ物名（CSV詳細）",
    "ミス種別",
    "OCR作業者",
    "OCR作業日時",
    "確定者",
    "最終ステータス",
    "候補件数",
    "商品ID",
)

_FOLD = str.maketrans({"＆": "&", "･": "・"})


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One report-log row as needed for matching."""

    group: str
    product: str
    date: str
    kind: str
    reporter: str
    page_id: str = ""


@dataclass(slots=True)
class EnrichedRecord:
    log_date: str
    kind: str
    company: str
    group: str
    product: str
    product_in_work_log: str
    confirmer: str
    ocr_worker: str | None
    ocr_worked_at: str
    final_status: str
    product_id: str
    candidate_count: str = ""
    matched_confirm: bool = False

    def as_row(self) -> list[str]:
        return [
            self.log_date,
            self.company,
            self.group,
            self.product,
            self.product_in_work_log,
            self.kind,
            self.ocr_worker or UNKNOWN,
            self.ocr_worked_at,
            self.confirmer,
            self.final_status,
            self.candidate_count,
            self.product_id,
        ]


@dataclass(slots=True)
class EnrichmentStats:
    total: int = 0
    unmatched: int = 0
    matched_confirm: int = 0
    by_kind: Counter[str] = field(default_factory=Counter)
    by_ocr_worker: Counter[str] = field(default_factory=Counter)
    by_confirmer: Counter[str] = field(default_factory=Counter)
    by_group: Counter[str] = field(default_factory=Counter)
    by_final_status: Counter[str] = field(default_factory=Counter)


# ── Matching ──────────────────────────────────────────────────────────


def normalize_name(value: str | None) -> str:
    """Whitespace-free, case-folded form used for name comparison."""
    return "".join((value or "").translate(_FOLD).split()).lower()


def match_score(log_group: str, log_product: str, work_group: str, work_product: str) -> int:
    """Similarity of a log row and a work row; higher is closer.

    Group: exact 10, containment 5. Product: exact 10, containment 4, or 2
    when the first four characters of a longer logged name appear.
    """
    lg, lp = normalize_name(log_group), normalize_name(log_product)
    wg, wp = normalize_name(work_group), normalize_name(work_product)

    score = 0
    if lg and lg == wg:
        score += 10
    elif lg and wg and (lg in wg or wg in lg):
        score += 5

    if lp and lp == wp:
        score += 10
    elif lp and wp and (lp in wp or wp in lp):
        score += 4
    elif len(lp) > 4 and lp[:4] in wp:
        score += 2
    return score


def parse_when(value: str) -> datetime | None:
    text = (value or "").strip().replace("/", "-")
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def find_best_work_row(entry: LogEntry, rows: list[dict[str, str]], work_type: str) -> dict[str, str] | None:
    """Highest-scoring work row of *work_type*; ties go to the nearest date."""
    scored: list[tuple[int, dict[str, str]]] = []
    for row in rows:
        if row.get(WORK_TYPE) != work_type:
            continue
        score = match_score(entry.group, entry.product, row.get(WORK_GROUP, ""), row.get(WORK_PRODUCT, ""))
        if score >= MIN_MATCH_SCORE:
            scored.append((score, row))
    if not scored:
        return None

    target = parse_when(entry.date)

    def distance(row: dict[str, str]) -> float:
        if target is None:
            return 0.0
        worked = parse_when(row.get(WORK_AT, ""))
        if worked is None:
            return float("inf")
        return abs((worked - target).total_seconds())

    scored.sort(key=lambda pair: (-pair[0], distance(pair[1])))
    return scored[0][1]


def log_entry_from_page(page: dict[str, Any], schema: TargetSchema) -> LogEntry:
    """Read a report-log page through the resolved property roles."""
    props = page.get("properties") or {}

    def role_text(role: PropertyRole) -> str:
        name = schema.resolve_property_role(role)
        return property_text(props.get(name)) if name else ""

    title = role_text(PropertyRole.TITLE).strip()
    group, sep, product = title.partition(" / ")
    if not sep:
        group, product = title, ""
    return LogEntry(
        group=group.strip(),
        product=product.strip(),
        date=role_text(PropertyRole.DATE),
        kind=role_text(PropertyRole.KIND),
        reporter=role_text(PropertyRole.REPORTER),
        page_id=str(page.get("id") or ""),
    )


def enrich_entries(entries: list[LogEntry], work_rows: list[dict[str, str]]) -> list[EnrichedRecord]:
    """Attach the OCR worker and confirmation outcome to every log entry."""
    ocr_rows = [r for r in work_rows if r.get(WORK_TYPE) == OCR_WORK]
    confirm_rows = [r for r in work_rows if r.get(WORK_TYPE) == CONFIRM_WORK]

    records: list[EnrichedRecord] = []
    for entry in entries:
        ocr = find_best_work_row(entry, ocr_rows, OCR_WORK) or {}
        confirm = find_best_work_row(entry, confirm_rows, CONFIRM_WORK) or {}
        records.append(
            EnrichedRecord(
                log_date=entry.date,
                kind=entry.kind,
                company=ocr.get(WORK_COMPANY) or confirm.get(WORK_COMPANY) or "",
                group=entry.group,
                product=entry.product,
                product_in_work_log=ocr.get(WORK_PRODUCT) or confirm.get(WORK_PRODUCT) or "",
                confirmer=entry.reporter,
                ocr_worker=ocr.get(WORK_WORKER) or None,
                ocr_worked_at=ocr.get(WORK_AT) or "",
                final_status=confirm.get(WORK_STATUS) or ocr.get(WORK_STATUS) or "",
                product_id=ocr.get(WORK_PRODUCT_ID) or confirm.get(WORK_PRODUCT_ID) or "",
                matched_confirm=bool(confirm),
            )
        )
    return records


def build_stats(records: list[EnrichedRecord]) -> EnrichmentStats:
    stats = EnrichmentStats(total=len(records))
    for r in records:
        stats.by_kind[r.kind] += 1
        stats.by_ocr_worker[r.ocr_worker or UNKNOWN] += 1
        stats.by_confirmer[r.confirmer] += 1
        stats.by_group[r.group] += 1
        stats.by_final_status[r.final_status or UNKNOWN] += 1
        if r.ocr_worker is None:
            stats.unmatched += 1
        if r.matched_confirm:
            stats.matched_confirm += 1
    return stats


# ── CSV ───────────────────────────────────────────────────────────────


def read_csv_rows(path: Path) -> list[dict[str, str]]:
    """Rows of a header CSV with stripped values; a BOM is tolerated."""
    with open(path, encoding="utf-8-sig", newline="") as f:
        rows: list[dict[str, str]] = []
        for raw in csv.DictReader(f):
            # Overflow cells land under the None key; they have no header.
            row = {k.strip(): (v or "").strip() for k, v in raw.items() if k is not None}
            if any(row.values()):
                rows.append(row)
        return rows


def write_enriched_csv(records: list[EnrichedRecord], output: Path) -> None:
    with open(output, "w", encoding="utf-8-sig", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(ENRICHED_COLUMNS)
        for record in records:
            writer.writerow(record.as_row())


# ── Runner ────────────────────────────────────────────────────────────


@dataclass(slots=True)
class EnrichmentResult:
    output: Path
    records: list[EnrichedRecord]
    stats: EnrichmentStats
    work_rows: int


class ReportLogEnricher:
    """Query a report log since a date and write the enriched CSV."""

    def __init__(self, notion: NotionClient) -> None:
        self._notion = notion

    async def fetch_entries(self, target: str, since: date) -> list[LogEntry]:
        pages = await self._notion.query_log_pages_since(target, since.isoformat())
        schema = await self._notion.schemas.schema_for(target)
        return [log_entry_from_page(page, schema) for page in pages]

    async def run(
        self,
        target: str,
        since: date,
        work_csv: Path,
        output: Path | None = None,
    ) -> EnrichmentResult:
        output = output or Path(f"mismatch-enriched-{since:%Y-%m}.csv")
        entries = await self.fetch_entries(target, since)
        logger.info("{} report-log rows since {}", len(entries), since)

        work_rows = await asyncio.to_thread(read_csv_rows, work_csv)
        logger.info("{} work-log rows read from {}", len(work_rows), work_csv)

        records = enrich_entries(entries, work_rows)
        stats = build_stats(records)

        await asyncio.to_thread(write_enriched_csv, records, output)
        logger.info(f"enriched CSV written: {output} ({len(records)} rows, {stats.unmatched} without OCR worker)")
        return EnrichmentResult(output=output, records=records, stats=stats, work_rows=len(work_rows))
