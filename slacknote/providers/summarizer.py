"""LLM summarizer that turns a labeled transcript into a Markdown digest."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from slacknote.core.models import BufferedMessage
from slacknote.providers.base import LLMProvider

if TYPE_CHECKING:
    from slacknote.config.schema import ModelProfile

ROUTE_KEY = "digest.summarize"

_SYSTEM_PROMPT = """\
あなたはSlackの会話を整理・要約するアシスタントです。
各メッセージには以下の意味を持つラベルが付いています：
{label_guide}

以下のルールに従って整理してください：
- ラベルごとにセクションを分けて Markdown 形式でまとめる
- 重複する内容は統合する
- 箇条書きを活用して読みやすくする
- 全体のサマリーを最初に1〜2文で記載する
- 出力は日本語で行う\
"""


class EmptySummaryError(RuntimeError):
    """The model returned no content."""


def render_transcript(fragments: list[BufferedMessage]) -> str:
    """One ``[label] text`` line per fragment, in the order given."""
    return "\n".join(f"[{m.label}] {m.text}" for m in fragments)


class LLMSummarizer:
    """Summarize chronologically ordered fragments with a routed chat model."""

    def __init__(self, *, provider: LLMProvider, profile: "ModelProfile") -> None:
        self._provider = provider
        self._model = (profile.model or provider.get_default_model()).strip()
        self._max_tokens = int(profile.max_tokens or 2000)
        self._temperature = float(profile.temperature if profile.temperature is not None else 0.3)
        self._timeout = (profile.timeout_ms / 1000.0) if profile.timeout_ms else None

    async def summarize(self, fragments: list[BufferedMessage], label_guide: list[str]) -> str:
        guide = "\n".join(f"- {label}" for label in label_guide)
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT.format(label_guide=guide)},
            {
                "role": "user",
                "content": f"以下のSlackメッセージを整理・要約してください：\n\n{render_transcript(fragments)}",
            },
        ]
        response = await self._provider.chat(
            messages=messages,
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            timeout=self._timeout,
        )
        content = (response.content or "").strip()
        if not content:
            raise EmptySummaryError(f"summarizer returned no content (finish_reason={response.finish_reason})")
        logger.debug("summary ready: {} fragments -> {} chars", len(fragments), len(content))
        return content
