import csv
from datetime import date
from pathlib import Path

from slacknote.config.schema import PacingConfig
from slacknote.core.models import ChatMessage
from slacknote.export import CSV_COLUMNS, ChannelExporter, format_ts


async def _no_sleep(seconds: float) -> None:
    return None


def test_format_ts_is_utc_with_millis() -> None:
    assert format_ts("1735689600.123456") == "2025-01-01 00:00:00.123"


async def test_export_expands_threads_in_chronological_order(chat, tmp_path: Path) -> None:
    chat.names = {"U1": "tanaka", "U2": "suzuki"}
    chat.add("C1", ChatMessage(ts="1735689700.000000", text="later root", user="U2"))
    chat.add("C1", ChatMessage(ts="1735689600.000000", text="root, with \"quotes\"", user="U1", reply_count=1))
    chat.add("C1", ChatMessage(ts="1735689650.000000", text="reply", user="U2", thread_ts="1735689600.000000"))
    chat.add("C1", ChatMessage(ts="1735600000.000000", text="before window", user="U1"))

    exporter = ChannelExporter(chat, PacingConfig(page_size=2), sleep=_no_sleep)
    out = tmp_path / "out.csv"
    path, count = await exporter.export("C1", date(2025, 1, 1), out)

    assert path == out
    assert count == 3
    raw = out.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    with open(out, encoding="utf-8-sig", newline="") as f:
        rows = list(csv.reader(f))
    assert tuple(rows[0]) == CSV_COLUMNS
    assert [r[2] for r in rows[1:]] == ['root, with "quotes"', "reply", "later root"]
    assert [r[1] for r in rows[1:]] == ["tanaka", "suzuki", "suzuki"]
    assert rows[2][3] == "1735689600.000000"
    assert rows[2][4] == (
        "https://app.slack.com/archives/C1/p1735689650000000?thread_ts=1735689600.000000&cid=C1"
    )


async def test_export_skips_file_when_empty(chat, tmp_path: Path) -> None:
    exporter = ChannelExporter(chat, PacingConfig(), sleep=_no_sleep)
    out = tmp_path / "empty.csv"
    _, count = await exporter.export("C1", date(2025, 1, 1), out)
    assert count == 0
    assert not out.exists()


async def test_export_writes_file_off_the_event_loop_thread(chat, tmp_path: Path, monkeypatch) -> None:
    import threading

    chat.add("C1", ChatMessage(ts="1735689600.000000", text="hello", user="U1"))
    exporter = ChannelExporter(chat, PacingConfig(), sleep=_no_sleep)
    loop_thread = threading.get_ident()
    writer_threads: list[int] = []
    original = exporter.write_csv

    def recording_write(*args):
        writer_threads.append(threading.get_ident())
        original(*args)

    monkeypatch.setattr(exporter, "write_csv", recording_write)
    out = tmp_path / "out.csv"
    _, count = await exporter.export("C1", date(2025, 1, 1), out)

    assert count == 1
    assert out.exists()
    assert writer_threads and writer_threads[0] != loop_thread
