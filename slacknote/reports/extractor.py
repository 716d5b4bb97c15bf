"""LLM-backed extraction of structured report items."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from loguru import logger

from slacknote.core.models import ReportItem, ReportKind
from slacknote.providers.base import LLMProvider

if TYPE_CHECKING:
    from slacknote.config.schema import ModelProfile

ROUTE_KEY = "reports.extract"
UNKNOWN = "不明"

# Mandatory and recommended allergens under the Japanese food labeling act.
ALLERGENS: frozenset[str] = frozenset(
    {
        "卵", "乳", "小麦", "えび", "かに", "落花生", "そば", "くるみ",
        "アーモンド", "あわび", "いか", "いくら", "オレンジ", "カシューナッツ",
        "キウイフルーツ", "牛肉", "ごま", "さけ", "さば", "大豆", "鶏肉",
        "バナナ", "豚肉", "マカダミアナッツ", "もも", "やまいも", "りんご", "ゼラチン",
    }
)

_ALLERGEN_ALIASES: dict[str, str] = {
    "乳成分": "乳",
    "牛乳": "乳",
    "たまご": "卵",
    "玉子": "卵",
    "鶏卵": "卵",
    "ピーナッツ": "落花生",
    "海老": "えび",
    "エビ": "えび",
    "蟹": "かに",
    "カニ": "かに",
    "蕎麦": "そば",
    "胡桃": "くるみ",
    "鮭": "さけ",
    "サケ": "さけ",
    "鯖": "さば",
    "サバ": "さば",
    "胡麻": "ごま",
    "ゴマ": "ごま",
    "鶏": "鶏肉",
    "鳥肉": "鶏肉",
    "豚": "豚肉",
    "牛": "牛肉",
    "キウイ": "キウイフルーツ",
    "山芋": "やまいも",
    "リンゴ": "りんご",
    "林檎": "りんご",
    "桃": "もも",
    "イカ": "いか",
    "烏賊": "いか",
    "鮑": "あわび",
    "アワビ": "あわび",
    "イクラ": "いくら",
}

_SYSTEM_PROMPT = """\
あなたはSlackの確定作業チャンネルの投稿を構造化するアシスタントです。
食品アレルギー判定の確定作業における報告メッセージを解析し、個別の報告アイテムに分解してください。

## 報告の種別（type）
- bracket_missing: 【】（親切表示/アレルギー別記）の記載漏れ・追記
- tag_error: AIタグの誤認識（間違ったアレルゲンが付く、タグが付かない等）
- allergen_leak: アレルゲンの漏れ（【】以外の理由でアレルゲンが抜けている）
- status_change: ステータス変更（要確認で返却、問い合わせ依頼等）
- question: 質問・相談
- info: 情報共有・その他

## 出力形式
{ "items": [ { "customer": "顧客名", "product": "商品名", "type": "種別", "detail": "1文の説明", "allergen": "アレルゲン名またはnull" } ] }

## ルール
- 1つのメッセージに複数の報告が含まれる場合、それぞれ別のアイテムにする
- 「作業完了しました」「報告です」等の挨拶部分はスキップ
- 顧客名が省略されている商品は、直前に登場した顧客名を引き継ぐ
- 顧客名が最後まで不明な場合のみ"不明"とする
- allergenは食品表示法の義務・推奨アレルゲン品目（卵・乳・小麦・えび・かに・落花生・そば・くるみ・いくら・キウイフルーツ・牛肉・豚肉・鶏肉・さけ・大豆・ごま等）のみ。きのこ・野菜カテゴリ等はnull
- 雑談・挨拶のみ・知識を問う質問・フィードバック意見・シフト代行依頼は items=[] で返す\
"""

_MAX_INPUT_CHARS = 6000


class ReportExtractor:
    """Turn one qualifying message into zero or more :class:`ReportItem`."""

    def __init__(self, *, provider: LLMProvider, profile: "ModelProfile") -> None:
        self._provider = provider
        self._model = (profile.model or provider.get_default_model()).strip()
        self._max_tokens = int(profile.max_tokens or 1500)
        self._temperature = float(profile.temperature if profile.temperature is not None else 0.0)
        self._json_mode = bool(profile.json_mode)
        self._timeout = (profile.timeout_ms / 1000.0) if profile.timeout_ms else None

    async def extract(self, text: str, reporter: str) -> list[ReportItem]:
        """Extract report items; any model or parse failure yields ``[]``."""
        body = (text or "").strip()
        if not body:
            return []

        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": body[:_MAX_INPUT_CHARS]},
        ]
        try:
            response = await self._provider.chat(
                messages=messages,
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                json_mode=self._json_mode,
                timeout=self._timeout,
            )
        except Exception as exc:
            logger.warning("report extractor request failed: {}", exc)
            return []

        content = (response.content or "").strip()
        if not content:
            return []
        payload = _extract_json_payload(content)
        if payload is None:
            logger.debug("report extractor returned non-JSON: {}", content[:200])
            return []
        return parse_items(payload, reporter)


def parse_items(payload: object, reporter: str) -> list[ReportItem]:
    """Normalize a decoded model payload into report items."""
    if isinstance(payload, dict):
        rows = payload.get("items")
        if rows is None:
            rows = payload.get("reports")
    else:
        rows = payload
    if not isinstance(rows, list):
        return []

    out: list[ReportItem] = []
    last_customer: str | None = None
    for row in rows:
        if not isinstance(row, dict):
            continue
        customer = _clean(row.get("customer"))
        if customer is None:
            customer = last_customer
        else:
            last_customer = customer
        out.append(
            ReportItem(
                customer=customer or UNKNOWN,
                product=_clean(row.get("product")) or UNKNOWN,
                kind=ReportKind.parse(row.get("type") or row.get("kind")),
                detail=_clean(row.get("detail")) or "",
                allergen=normalize_allergen(row.get("allergen")),
                reporter=reporter,
            )
        )
    return out


def normalize_allergen(value: object) -> str | None:
    """Map *value* onto the regulated allergen vocabulary, else ``None``."""
    raw = _clean(value)
    if raw is None:
        return None
    if raw in ALLERGENS:
        return raw
    return _ALLERGEN_ALIASES.get(raw)


def _clean(value: object) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split()).strip()
    if not text or text.lower() in {"null", "none"} or text == UNKNOWN:
        return None
    return text


def _extract_json_payload(text: str) -> dict[str, Any] | list[object] | None:
    for candidate in _json_candidates(text.strip()):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, (dict, list)):
            return parsed
    return None


def _json_candidates(text: str) -> list[str]:
    candidates: list[str] = [text]
    fenced = re.findall(r"```(?:json)?\s*(.*?)```", text, flags=re.IGNORECASE | re.DOTALL)
    candidates.extend(chunk.strip() for chunk in fenced if chunk.strip())

    first_obj = text.find("{")
    last_obj = text.rfind("}")
    if 0 <= first_obj < last_obj:
        candidates.append(text[first_obj : last_obj + 1])
    first_arr = text.find("[")
    last_arr = text.rfind("]")
    if 0 <= first_arr < last_arr:
        candidates.append(text[first_arr : last_arr + 1])
    return candidates
