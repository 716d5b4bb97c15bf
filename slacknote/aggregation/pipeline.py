"""Reaction-driven digest pipeline.

Label reactions buffer the reacted message under its thread key; a thread
collection reaction buffers a whole thread; a trigger reaction flushes the
buffered conversation into a Notion page. The first flush of a key creates
the page, later flushes of the same key append to it.

Per key the states are ``idle -> buffering -> flushing -> (artifact | idle)``;
the state is implicit in the buffer, the guard and the registry.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from loguru import logger

from slacknote.aggregation.buffer import MessageBuffer
from slacknote.aggregation.guard import ArtifactRegistry, FlushGuard
from slacknote.config.schema import DigestConfig
from slacknote.core.models import AggregationKey, ArtifactRef, BufferedMessage, FlushResult
from slacknote.core.ports import ChatPort, DocumentStorePort, SummarizerPort
from slacknote.utils.helpers import truncate_string

_SOURCE_TEXT_MAX_CHARS = 80


class AggregationPipeline:
    """Owns the buffer, guard and registry of one process."""

    def __init__(
        self,
        *,
        chat: ChatPort,
        summarizer: SummarizerPort,
        store: DocumentStorePort,
        digest: DigestConfig,
        buffer: MessageBuffer | None = None,
        guard: FlushGuard | None = None,
        registry: ArtifactRegistry | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._chat = chat
        self._summarizer = summarizer
        self._store = store
        self._digest = digest
        self.buffer = buffer or MessageBuffer()
        self.guard = guard or FlushGuard()
        self.registry = registry or ArtifactRegistry()
        self._today = today

    # ── Event entry point ────────────────────────────────────────────

    def handles(self, reaction: str) -> bool:
        d = self._digest
        return reaction in d.reactions or reaction in {
            r for r in (d.trigger_reaction, d.channel_trigger_reaction, d.thread_collect_reaction) if r
        }

    async def handle_reaction(self, channel: str, ts: str, reaction: str) -> None:
        """Dispatch one ``reaction_added`` on a message. Trigger roles win over labels."""
        d = self._digest
        if d.trigger_reaction and reaction == d.trigger_reaction:
            key = await self._key_for(channel, ts)
            if key is not None:
                await self.flush(key, trigger_ts=ts)
        elif d.channel_trigger_reaction and reaction == d.channel_trigger_reaction:
            await self.flush(AggregationKey.channel_wide(channel), trigger_ts=ts)
        elif d.thread_collect_reaction and reaction == d.thread_collect_reaction:
            await self.collect_thread(channel, ts)
        elif reaction in d.reactions:
            await self.capture(channel, ts, d.reactions[reaction])

    # ── Buffering ────────────────────────────────────────────────────

    async def capture(self, channel: str, ts: str, label: str) -> AggregationKey | None:
        """Buffer the message at *ts* under its thread key."""
        try:
            message = await self._chat.fetch_message(channel, ts)
        except Exception as exc:
            logger.error(f"[{channel}] failed to fetch message ts={ts}: {exc}")
            return None
        if message is None:
            logger.warning(f"[{channel}] message not found (ts={ts})")
            return None

        key = AggregationKey.for_message(channel, message.ts, message.thread_ts)
        fragment = BufferedMessage(
            label=label,
            text=message.text,
            ts=message.ts,
            author=message.user or "unknown",
        )
        if self.buffer.add(key, fragment):
            logger.info("[{}] buffered [{}] {}", key, label, truncate_string(message.text))
        else:
            logger.debug("[{}] duplicate fragment ignored ts={} label={}", key, message.ts, label)
        return key

    async def collect_thread(self, channel: str, ts: str) -> int:
        """Buffer every human reply of the thread containing *ts*."""
        try:
            message = await self._chat.fetch_message(channel, ts)
        except Exception as exc:
            logger.error(f"[{channel}] failed to fetch message ts={ts}: {exc}")
            return 0
        if message is None:
            logger.warning(f"[{channel}] message not found (ts={ts})")
            return 0

        key = AggregationKey(channel=channel, thread_root=message.thread_root)
        label = self._digest.thread_collect_label
        added = 0
        cursor: str | None = None
        try:
            while True:
                replies, cursor = await self._chat.fetch_thread_replies(channel, key.thread_root, cursor)
                for reply in replies:
                    if reply.is_automated or not reply.text.strip():
                        continue
                    fragment = BufferedMessage(
                        label=label,
                        text=reply.text,
                        ts=reply.ts,
                        author=reply.user or "unknown",
                    )
                    if self.buffer.add(key, fragment):
                        added += 1
                if not cursor:
                    break
        except Exception as exc:
            logger.error(f"[{key}] thread collection stopped after {added} replies: {exc}")
            return added

        logger.info("[{}] collected {} thread replies as [{}]", key, added, label)
        return added

    # ── Flushing ─────────────────────────────────────────────────────

    async def flush(self, key: AggregationKey, *, trigger_ts: str | None = None) -> FlushResult:
        """Summarize the conversation under *key* and write it to the document store."""
        if not self.guard.try_acquire(key):
            logger.info("[{}] flush already in progress; trigger dropped", key)
            return FlushResult(key=key, status="busy")
        try:
            fragments = (
                self.buffer.list_by_channel(key.channel) if key.is_channel_wide else self.buffer.list(key)
            )
            if not fragments:
                logger.info("[{}] trigger fired but buffer is empty", key)
                return FlushResult(key=key, status="empty")
            return await self._flush_fragments(key, fragments, trigger_ts)
        finally:
            self.guard.release(key)

    async def flush_channel(self, channel: str, *, trigger_ts: str | None = None) -> FlushResult:
        return await self.flush(AggregationKey.channel_wide(channel), trigger_ts=trigger_ts)

    async def _flush_fragments(
        self,
        key: AggregationKey,
        fragments: list[BufferedMessage],
        trigger_ts: str | None,
    ) -> FlushResult:
        ordered = sorted(fragments, key=lambda m: m.ts_value)
        count = len(ordered)
        logger.info("[{}] flush start: {} fragments", key, count)

        try:
            summary = await self._summarizer.summarize(ordered, self._digest.label_guide())
        except Exception as exc:
            logger.error(f"[{key}] summarization failed, buffer kept: {exc}")
            return FlushResult(key=key, status="failed", fragment_count=count, error=str(exc))

        # Only the summarized snapshot is dropped; a failed write loses it.
        if key.is_channel_wide:
            self.buffer.discard_by_channel(key.channel, ordered)
        else:
            self.buffer.discard(key, ordered)

        try:
            body = f"{summary.rstrip()}\n\n{await self._render_sources(key, ordered)}"
            ref = self.registry.lookup(key)
            if ref is not None:
                stamp = datetime.now().strftime("%Y/%m/%d %H:%M")
                await self._store.append_to_document(ref.external_id, f"## 追記 {stamp}\n\n{body}")
                status = "appended"
            else:
                ref = await self._store.create_document(self._title(), body)
                self.registry.record(key, ref)
                status = "created"
        except Exception as exc:
            logger.error(f"[{key}] document write failed: {exc}")
            return FlushResult(key=key, status="failed", fragment_count=count, error=str(exc))

        logger.info("[{}] digest {}: {}", key, status, ref.url)
        await self._notify(key, ref, status, trigger_ts)
        return FlushResult(key=key, status=status, fragment_count=count, artifact=ref)

    def _title(self) -> str:
        prefix = self._digest.title_prefix or "Slackまとめ"
        return f"{prefix} {self._today():%Y/%m/%d}"

    async def _render_sources(self, key: AggregationKey, ordered: list[BufferedMessage]) -> str:
        names: dict[str, str] = {}
        lines = ["## 元メッセージ"]
        for m in ordered:
            if m.author not in names:
                names[m.author] = await self._chat.resolve_user_display_name(m.author)
            thread_ts = None if key.is_channel_wide or m.ts == key.thread_root else key.thread_root
            url = self._chat.permalink(key.channel, m.ts, thread_ts)
            text = truncate_string(" ".join(m.text.split()), _SOURCE_TEXT_MAX_CHARS)
            lines.append(f"- [{m.label}] {names[m.author]}: [{text or '(本文なし)'}]({url})")
        return "\n".join(lines)

    async def _notify(self, key: AggregationKey, ref: ArtifactRef, status: str, trigger_ts: str | None) -> None:
        if self._digest.notify:
            verb = "追記" if status == "appended" else "保存"
            thread_ts = None if key.is_channel_wide else key.thread_root
            try:
                await self._chat.post_message(
                    key.channel,
                    f"まとめをNotionに{verb}しました :white_check_mark:\n{ref.url}",
                    thread_ts=thread_ts,
                )
            except Exception as exc:
                logger.warning(f"[{key}] completion notice failed (check chat:write scope): {exc}")
        if self._digest.done_reaction and trigger_ts:
            try:
                await self._chat.add_reaction(key.channel, trigger_ts, self._digest.done_reaction)
            except Exception as exc:
                logger.warning(f"[{key}] done reaction failed: {exc}")

    async def _key_for(self, channel: str, ts: str) -> AggregationKey | None:
        try:
            message = await self._chat.fetch_message(channel, ts)
        except Exception as exc:
            logger.error(f"[{channel}] failed to resolve thread for ts={ts}: {exc}")
            return None
        if message is None:
            logger.warning(f"[{channel}] trigger message not found (ts={ts})")
            return None
        return AggregationKey.for_message(channel, message.ts, message.thread_ts)

    # ── Diagnostics ──────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        return {
            "buffer": self.buffer.status(),
            "artifacts": [
                {"key": str(key), "id": ref.external_id, "url": ref.url}
                for key, ref in self.registry.items()
            ],
            "in_flight": self.guard.in_flight(),
        }
