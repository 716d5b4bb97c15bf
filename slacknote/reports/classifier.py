"""Cheap local pre-filter for incident reports.

Runs before the extraction model so that ordinary channel chatter never
costs a model call. Exclusion patterns are checked before inclusion
patterns: a question that happens to mention 【】 is still a question.
"""

from __future__ import annotations

import re

from slacknote.core.models import ClassificationResult

MIN_REPORT_LENGTH = 12

# Questions, opinions and shift-swap requests.
_EXCLUDE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("question", re.compile(r"質問です")),
    ("question", re.compile(r"教えていただけ")),
    ("opinion", re.compile(r"みなさんどう思")),
    ("question", re.compile(r"ご存知の方")),
    ("feedback", re.compile(r"感想.*意見")),
    ("feedback", re.compile(r"フィードバック")),
    ("shift_swap", re.compile(r"代行.*お願い")),
    ("shift_swap", re.compile(r"代行でき")),
)

# Structural markers of a report.
_INCLUDE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("bracket_issue", re.compile(r"【.*?】.*(?:追記|記載|漏れ|なし|抜け)")),
    ("missing_label", re.compile(r"記載[漏もな]れ")),
    ("bracket_issue", re.compile(r"【】(?:追記|記載|漏れ|なし|未記入|未入力)")),
    ("tag_mismatch", re.compile(r"タグ.*(?:付き|付か|なし|ない)")),
    ("check_change", re.compile(r"チェック.*(?:外|入|は[ず])")),
    ("allergen_omission", re.compile(r"アレルギー.*(?:漏れ|抜け|なし|外)")),
    ("completion_report", re.compile(r"確定作業.*(?:完了|報告)")),
    ("daily_report", re.compile(r"本日.*報告")),
    ("report_intro", re.compile(r"以下.*報告")),
    ("status_return", re.compile(r"要確認.*(?:返却|で返)")),
    ("inquiry", re.compile(r"問い合わせ.*(?:依頼|対象|先)")),
    ("judgement", re.compile(r"判定(?:済|根拠|保留)")),
    ("spec_sheet", re.compile(r"規格書.*(?:【|漏|抜|追)")),
    ("customer_marker", re.compile(r"[＜■〇].*様")),
    ("unconfirmed", re.compile(r"未確定")),
    ("confirmed", re.compile(r"確定しました")),
)


def classify_report(text: str | None) -> ClassificationResult:
    """Decide whether *text* is worth sending to the extraction model."""
    if not isinstance(text, str):
        return ClassificationResult(accepted=False, reason="empty")
    stripped = text.strip()
    if not stripped:
        return ClassificationResult(accepted=False, reason="empty")
    if len(stripped) < MIN_REPORT_LENGTH:
        return ClassificationResult(accepted=False, reason="too_short")

    for reason, pattern in _EXCLUDE_PATTERNS:
        if pattern.search(stripped):
            return ClassificationResult(accepted=False, reason=f"excluded:{reason}")

    for reason, pattern in _INCLUDE_PATTERNS:
        if pattern.search(stripped):
            return ClassificationResult(accepted=True, reason=reason)

    return ClassificationResult(accepted=False, reason="no_marker")


def looks_like_report(text: str | None) -> bool:
    return classify_report(text).accepted
