import json
from datetime import date

import pytest

from slacknote.config.schema import ModelProfile, PacingConfig, ReportLogRoutingConfig, ReportsConfig
from slacknote.core.errors import ConfigurationError, RoutingUnconfiguredError
from slacknote.core.models import ChatMessage, ReportItem, ReportKind
from slacknote.providers.base import LLMProvider, LLMResponse
from slacknote.reports import classify_report, looks_like_report, resolve_route
from slacknote.reports.backfill import BackfillPipeline
from slacknote.reports.extractor import ReportExtractor, normalize_allergen, parse_items
from slacknote.reports.pipeline import ReportPipeline


class ScriptedProvider(LLMProvider):
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        super().__init__()
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def chat(self, messages, model=None, max_tokens=4096, temperature=0.7, json_mode=False, timeout=None):
        self.calls.append({"messages": messages, "model": model, "json_mode": json_mode})
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content)

    def get_default_model(self) -> str:
        return "test-model"


class StaticExtractor:
    def __init__(self, items_per_call: list[ReportItem] | None = None) -> None:
        self.items = items_per_call or []
        self.calls: list[tuple[str, str]] = []

    async def extract(self, text: str, reporter: str) -> list[ReportItem]:
        self.calls.append((text, reporter))
        return [
            ReportItem(
                customer=i.customer,
                product=i.product,
                kind=i.kind,
                detail=i.detail,
                allergen=i.allergen,
                reporter=reporter,
            )
            for i in self.items
        ]


def _item(product: str = "唐揚げ", customer: str = "A社") -> ReportItem:
    return ReportItem(
        customer=customer,
        product=product,
        kind=ReportKind.BRACKET_MISSING,
        detail="【小麦】の記載漏れ",
        allergen="小麦",
        reporter="",
    )


REPORT_TEXT = "＜A社様＞唐揚げ【小麦】記載漏れがありました。確定しました"


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def test_classifier_rejects_questions() -> None:
    result = classify_report("質問です、教えていただけますか")
    assert result.accepted is False
    assert result.reason.startswith("excluded:")


def test_classifier_rejects_short_text() -> None:
    text = "未確定の報告です了解"
    assert len(text) == 10
    assert classify_report(text).reason == "too_short"


def test_classifier_accepts_confirmed_bracket_report() -> None:
    assert looks_like_report("【大豆】を追加して確定しました")


@pytest.mark.parametrize(
    "text",
    [
        "A社様の唐揚げ、タグが付かないので確認お願いします",
        "本日の確定作業を報告します。問題ありませんでした",
        "アレルギー表記から卵が漏れていたので修正済み",
    ],
)
def test_classifier_accepts_report_markers(text: str) -> None:
    assert classify_report(text).accepted


@pytest.mark.parametrize("text", [None, "", "   ", "今日のランチどこ行きます？おすすめあります？"])
def test_classifier_is_total(text) -> None:
    assert classify_report(text).accepted is False


def test_exclusion_checked_before_inclusion() -> None:
    assert not looks_like_report("質問です。【】記載漏れの扱いはどうすればいいですか")


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


async def test_extractor_carries_customer_forward() -> None:
    payload = {
        "items": [
            {"customer": "A社", "product": "唐揚げ", "type": "bracket_missing", "detail": "x", "allergen": "小麦"},
            {"customer": None, "product": "コロッケ", "type": "tag_error", "detail": "y", "allergen": "乳成分"},
            {"customer": "B社", "product": "サラダ", "type": "weird", "detail": "z", "allergen": "しいたけ"},
        ]
    }
    provider = ScriptedProvider(json.dumps(payload, ensure_ascii=False))
    extractor = ReportExtractor(provider=provider, profile=ModelProfile(model="m", json_mode=True))

    items = await extractor.extract(REPORT_TEXT, "tanaka")

    assert [(i.customer, i.product) for i in items] == [("A社", "唐揚げ"), ("A社", "コロッケ"), ("B社", "サラダ")]
    assert [i.kind for i in items] == [ReportKind.BRACKET_MISSING, ReportKind.TAG_ERROR, ReportKind.INFO]
    assert [i.allergen for i in items] == ["小麦", "乳", None]
    assert {i.reporter for i in items} == {"tanaka"}
    assert provider.calls[0]["json_mode"] is True
    assert provider.calls[0]["model"] == "m"


async def test_extractor_reads_fenced_json() -> None:
    content = '結果です\n```json\n{"items": [{"product": "パン", "type": "info", "detail": "d"}]}\n```'
    extractor = ReportExtractor(provider=ScriptedProvider(content), profile=ModelProfile(model="m"))
    items = await extractor.extract(REPORT_TEXT, "r")
    assert len(items) == 1
    assert items[0].customer == "不明"
    assert items[0].title == "不明 / パン"


@pytest.mark.parametrize("content", ["not json at all", "", '{"items": "nope"}', '{"items": [1, 2'])
async def test_extractor_degrades_to_empty_on_bad_output(content: str) -> None:
    extractor = ReportExtractor(provider=ScriptedProvider(content), profile=ModelProfile(model="m"))
    assert await extractor.extract(REPORT_TEXT, "r") == []


async def test_extractor_degrades_to_empty_on_provider_error() -> None:
    provider = ScriptedProvider(error=TimeoutError("slow"))
    extractor = ReportExtractor(provider=provider, profile=ModelProfile(model="m"))
    assert await extractor.extract(REPORT_TEXT, "r") == []


def test_parse_items_accepts_bare_list_and_greetings() -> None:
    assert parse_items({"items": []}, "r") == []
    items = parse_items([{"customer": "C社", "product": "煮物"}], "r")
    assert items[0].kind is ReportKind.INFO
    assert items[0].detail == ""


def test_normalize_allergen_vocabulary() -> None:
    assert normalize_allergen("えび") == "えび"
    assert normalize_allergen("エビ") == "えび"
    assert normalize_allergen("きのこ") is None
    assert normalize_allergen("null") is None
    assert normalize_allergen(None) is None


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def test_route_precedence() -> None:
    env = {"NOTION_REPORT_LOG_DB_ID": "E"}
    routing = ReportLogRoutingConfig(tools={"tool": "T"}, channels={"C1": "C"}, default="D")
    assert resolve_route("tool", "C1", routing, env) == "T"

    routing.tools = {}
    assert resolve_route("tool", "C1", routing, env) == "C"

    routing.channels = {}
    assert resolve_route("tool", "C1", routing, env) == "D"

    routing.default = ""
    assert resolve_route("tool", "C1", routing, env) == "E"

    with pytest.raises(RoutingUnconfiguredError):
        resolve_route("tool", "C1", routing, {})


def test_route_skips_blank_values() -> None:
    routing = ReportLogRoutingConfig(tools={"tool": "  "}, channels={"C1": ""}, default="D")
    assert resolve_route("tool", "C1", routing, {}) == "D"


def test_route_overrides_are_scoped_to_their_key() -> None:
    routing = ReportLogRoutingConfig(tools={"other": "T"}, channels={"C2": "C"})
    assert resolve_route("tool", "C1", routing, {"NOTION_REPORT_LOG_DB_ID": "E"}) == "E"


# ---------------------------------------------------------------------------
# Report pipeline
# ---------------------------------------------------------------------------


def _reports(**overrides) -> ReportsConfig:
    data = {"channels": ["C1"], "routing": {"default": "db-1"}, "ack_reaction": "eyes"}
    data.update(overrides)
    return ReportsConfig.model_validate(data)


async def test_live_report_is_written_once_and_acknowledged(chat, store) -> None:
    chat.names["U1"] = "tanaka"
    pipeline = ReportPipeline(chat=chat, extractor=StaticExtractor([_item()]), store=store, reports=_reports(), environ={})
    message = ChatMessage(ts="1735700000.000100", text=REPORT_TEXT, user="U1")

    first = await pipeline.handle_message("C1", message)
    second = await pipeline.handle_message("C1", message)

    assert first.status == "written"
    assert first.written == 1
    assert second.status == "duplicate"
    item, url, day = store.entries["db-1"][0]
    assert item.reporter == "tanaka"
    assert url == "https://app.slack.com/archives/C1/p1735700000000100"
    assert day == "2025-01-01"
    assert chat.reactions == [("C1", "1735700000.000100", "eyes")]


async def test_unwatched_channel_is_ignored(chat, store) -> None:
    extractor = StaticExtractor([_item()])
    pipeline = ReportPipeline(chat=chat, extractor=extractor, store=store, reports=_reports(), environ={})
    assert await pipeline.handle_message("C9", ChatMessage(ts="1.0", text=REPORT_TEXT, user="U1")) is None
    assert extractor.calls == []


@pytest.mark.parametrize(
    ("message", "status"),
    [
        (ChatMessage(ts="1.0", text=REPORT_TEXT, bot_id="B1"), "automated"),
        (ChatMessage(ts="1.0", text=REPORT_TEXT, user="U1", edited=True), "automated"),
        (ChatMessage(ts="1.0", text="お疲れさまです、今日もよろしくお願いします", user="U1"), "not_report"),
    ],
)
async def test_skipped_messages_never_reach_the_model(chat, store, message, status) -> None:
    extractor = StaticExtractor([_item()])
    pipeline = ReportPipeline(chat=chat, extractor=extractor, store=store, reports=_reports(), environ={})
    outcome = await pipeline.process("C1", message)
    assert outcome.status == status
    assert extractor.calls == []
    assert store.queries == []


async def test_unrouted_report_is_not_written(chat, store) -> None:
    pipeline = ReportPipeline(
        chat=chat,
        extractor=StaticExtractor([_item()]),
        store=store,
        reports=_reports(routing={}),
        environ={},
    )
    outcome = await pipeline.process("C1", ChatMessage(ts="1.0", text=REPORT_TEXT, user="U1"))
    assert outcome.status == "unrouted"
    assert store.entries == {}


async def test_partial_write_failure_is_counted(chat, store) -> None:
    store.fail_entry_products.add("コロッケ")
    extractor = StaticExtractor([_item("唐揚げ"), _item("コロッケ"), _item("サラダ")])
    pipeline = ReportPipeline(chat=chat, extractor=extractor, store=store, reports=_reports(), environ={})

    outcome = await pipeline.process("C1", ChatMessage(ts="1.0", text=REPORT_TEXT, user="U1"))

    assert outcome.status == "written"
    assert (outcome.written, outcome.failed) == (2, 1)
    assert [i.product for i, _, _ in store.entries["db-1"]] == ["唐揚げ", "サラダ"]


async def test_no_items_outcome(chat, store) -> None:
    pipeline = ReportPipeline(chat=chat, extractor=StaticExtractor([]), store=store, reports=_reports(), environ={})
    outcome = await pipeline.process("C1", ChatMessage(ts="1.0", text=REPORT_TEXT, user="U1"))
    assert outcome.status == "no_items"


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------


def _seed_history(chat) -> None:
    chat.add("C1", ChatMessage(ts="1735689600.000000", text=REPORT_TEXT, user="U1"))  # 2025-01-01 00:00:00Z
    chat.add("C1", ChatMessage(ts="1735700000.000001", text="了解です、ありがとうございます！", user="U2"))
    chat.add("C1", ChatMessage(ts="1735750000.000002", text=REPORT_TEXT + "。追加分", user="U1"))
    chat.add("C1", ChatMessage(ts="1735775999.000000", text=REPORT_TEXT + "。最後", user="U1"))  # 23:59:59Z
    chat.add("C1", ChatMessage(ts="1735776000.000000", text=REPORT_TEXT + "。翌日", user="U1"))  # 2025-01-02
    chat.add("C1", ChatMessage(ts="1735760000.000003", text=REPORT_TEXT, bot_id="B1"))


def _backfill(chat, store, extractor=None):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    reports = ReportPipeline(
        chat=chat, extractor=extractor or StaticExtractor([_item()]), store=store, reports=_reports(), environ={}
    )
    pacing = PacingConfig(page_size=2, page_delay_seconds=0.2, write_delay_seconds=0.15)
    return BackfillPipeline(chat=chat, store=store, reports=reports, pacing=pacing, sleep=fake_sleep), sleeps


async def test_backfill_is_idempotent(chat, store) -> None:
    _seed_history(chat)
    backfill, _ = _backfill(chat, store)

    first = await backfill.run("C1", date(2025, 1, 1), date(2025, 1, 1))
    second = await backfill.run("C1", date(2025, 1, 1), date(2025, 1, 1))

    assert first.written == 3
    assert second.written == 0
    assert second.skipped_existing == 3
    assert len(store.entries["db-1"]) == 3


async def test_backfill_window_bounds_are_inclusive(chat, store) -> None:
    _seed_history(chat)
    backfill, _ = _backfill(chat, store)

    stats = await backfill.run("C1", date(2025, 1, 1), date(2025, 1, 1))

    assert stats.scanned == 5
    assert chat.history_calls[0]["oldest"] == "1735689600.000000"
    assert chat.history_calls[0]["latest"] == "1735775999.000000"
    urls = [url for _, url, _ in store.entries["db-1"]]
    # Chronological write order after the full fetch.
    assert urls == sorted(urls)


async def test_backfill_dry_run_writes_nothing(chat, store) -> None:
    _seed_history(chat)
    backfill, _ = _backfill(chat, store)

    stats = await backfill.run("C1", date(2025, 1, 1), date(2025, 1, 1), dry_run=True)

    assert stats.planned == 3
    assert stats.written == 0
    assert store.entries == {}
    assert chat.reactions == []


async def test_backfill_max_items_stops_pagination(chat, store) -> None:
    _seed_history(chat)
    backfill, _ = _backfill(chat, store)

    stats = await backfill.run("C1", date(2025, 1, 1), None, max_items=3)

    assert stats.scanned == 3
    assert len(chat.history_calls) == 2


async def test_backfill_paces_pages_and_writes(chat, store) -> None:
    _seed_history(chat)
    backfill, sleeps = _backfill(chat, store)

    await backfill.run("C1", date(2025, 1, 1), date(2025, 1, 1))

    # 5 in-window messages over pages of 2: two page delays, then one delay per write.
    assert sleeps == [0.2, 0.2, 0.15, 0.15, 0.15]


async def test_backfill_rejects_inaccessible_target(chat, store) -> None:
    store.accessible = False
    backfill, _ = _backfill(chat, store)
    with pytest.raises(ConfigurationError):
        await backfill.run("C1", date(2025, 1, 1))
    assert chat.history_calls == []
