"""Domain models shared by the digest and report pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, TypeAlias

from slacknote.utils.helpers import ts_to_float

CHANNEL_WIDE_ROOT = "*"


@dataclass(frozen=True, slots=True)
class AggregationKey:
    """Identity of one buffered conversation: ``(channel, thread_root)``."""

    channel: str
    thread_root: str

    @classmethod
    def for_message(cls, channel: str, ts: str, thread_ts: str | None = None) -> AggregationKey:
        return cls(channel=channel, thread_root=thread_ts or ts)

    @classmethod
    def channel_wide(cls, channel: str) -> AggregationKey:
        return cls(channel=channel, thread_root=CHANNEL_WIDE_ROOT)

    @property
    def is_channel_wide(self) -> bool:
        return self.thread_root == CHANNEL_WIDE_ROOT

    def __str__(self) -> str:
        return f"{self.channel}:{self.thread_root}"


@dataclass(frozen=True, slots=True)
class BufferedMessage:
    """One labeled fragment captured by a reaction."""

    label: str
    text: str
    ts: str
    author: str

    @property
    def ts_value(self) -> float:
        return ts_to_float(self.ts)


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Downstream document created by a flush."""

    external_id: str
    url: str


class ReportKind(StrEnum):
    BRACKET_MISSING = "bracket_missing"
    TAG_ERROR = "tag_error"
    ALLERGEN_LEAK = "allergen_leak"
    STATUS_CHANGE = "status_change"
    QUESTION = "question"
    INFO = "info"

    @classmethod
    def parse(cls, value: object) -> ReportKind:
        raw = str(value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            return cls.INFO

    @property
    def display_name(self) -> str:
        return _KIND_DISPLAY_NAMES[self]


_KIND_DISPLAY_NAMES: dict[ReportKind, str] = {
    ReportKind.BRACKET_MISSING: "【】漏れ",
    ReportKind.TAG_ERROR: "タグ誤認識",
    ReportKind.ALLERGEN_LEAK: "アレルゲン漏れ",
    ReportKind.STATUS_CHANGE: "ステータス変更",
    ReportKind.QUESTION: "質問・相談",
    ReportKind.INFO: "情報共有",
}


@dataclass(frozen=True, slots=True, kw_only=True)
class ReportItem:
    """One structured incident record extracted from a free-text message."""

    customer: str
    product: str
    kind: ReportKind
    detail: str
    allergen: str | None
    reporter: str

    @property
    def title(self) -> str:
        return f"{self.customer} / {self.product}"


@dataclass(frozen=True, slots=True, kw_only=True)
class ChatMessage:
    """Normalized chat platform message."""

    ts: str
    text: str = ""
    user: str | None = None
    thread_ts: str | None = None
    subtype: str | None = None
    bot_id: str | None = None
    edited: bool = False
    reply_count: int = 0

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ChatMessage:
        return cls(
            ts=str(payload.get("ts") or ""),
            text=str(payload.get("text") or ""),
            user=payload.get("user") or None,
            thread_ts=payload.get("thread_ts") or None,
            subtype=payload.get("subtype") or None,
            bot_id=payload.get("bot_id") or None,
            edited=bool(payload.get("edited")),
            reply_count=int(payload.get("reply_count") or 0),
        )

    @property
    def thread_root(self) -> str:
        return self.thread_ts or self.ts

    @property
    def is_automated(self) -> bool:
        """Bot posts and system subtypes (joins, topic changes, ...)."""
        return bool(self.subtype or self.bot_id)

    @property
    def is_edited(self) -> bool:
        return self.edited or self.subtype == "message_changed"

    @property
    def ts_value(self) -> float:
        return ts_to_float(self.ts)


# ── Stage results ────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    accepted: bool
    reason: str


FlushStatus: TypeAlias = Literal["created", "appended", "busy", "empty", "failed"]


@dataclass(frozen=True, slots=True, kw_only=True)
class FlushResult:
    key: AggregationKey
    status: FlushStatus
    fragment_count: int = 0
    artifact: ArtifactRef | None = None
    error: str | None = None


ReportStatus: TypeAlias = Literal[
    "automated",
    "not_report",
    "unrouted",
    "duplicate",
    "no_items",
    "written",
    "dry_run",
    "failed",
]


@dataclass(frozen=True, slots=True, kw_only=True)
class ReportOutcome:
    """Folded result of running one message through the report stages."""

    status: ReportStatus
    source_url: str | None = None
    items: tuple[ReportItem, ...] = ()
    written: int = 0
    failed: int = 0
    planned: int = 0
    reason: str | None = None


@dataclass(slots=True)
class BackfillStats:
    scanned: int = 0
    report_like: int = 0
    parsed_reports: int = 0
    skipped_existing: int = 0
    written: int = 0
    failed: int = 0
    planned: int = 0
    per_status: dict[str, int] = field(default_factory=dict)

    def record(self, outcome: ReportOutcome) -> None:
        self.per_status[outcome.status] = self.per_status.get(outcome.status, 0) + 1
        if outcome.status not in ("automated", "not_report"):
            self.report_like += 1
        if outcome.status == "duplicate":
            self.skipped_existing += 1
        if outcome.items:
            self.parsed_reports += 1
        self.written += outcome.written
        self.failed += outcome.failed
        self.planned += outcome.planned

    def as_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "report_like": self.report_like,
            "parsed_reports": self.parsed_reports,
            "skipped_existing": self.skipped_existing,
            "written": self.written,
            "failed": self.failed,
            "planned": self.planned,
        }
