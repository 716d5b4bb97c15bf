from types import SimpleNamespace

import pytest

from slacknote.config.schema import ModelProfile
from slacknote.core.models import BufferedMessage
from slacknote.providers.base import LLMProvider, LLMResponse
from slacknote.providers.litellm_provider import LiteLLMProvider
from slacknote.providers.summarizer import EmptySummaryError, LLMSummarizer, render_transcript


class CaptureProvider(LLMProvider):
    def __init__(self, content: str | None) -> None:
        super().__init__()
        self.content = content
        self.kwargs: dict = {}

    async def chat(self, messages, model=None, max_tokens=4096, temperature=0.7, json_mode=False, timeout=None):
        self.kwargs = {
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": timeout,
        }
        return LLMResponse(content=self.content, finish_reason="stop")

    def get_default_model(self) -> str:
        return "fallback-model"


FRAGMENTS = [
    BufferedMessage("主題", "新メニューの件", "1", "U1"),
    BufferedMessage("検討", "来週試食", "2", "U2"),
]


def test_render_transcript_keeps_given_order() -> None:
    assert render_transcript(FRAGMENTS) == "[主題] 新メニューの件\n[検討] 来週試食"


async def test_summarizer_sends_label_guide_and_profile_settings() -> None:
    provider = CaptureProvider("  ## まとめ  \n")
    summarizer = LLMSummarizer(
        provider=provider,
        profile=ModelProfile(model="openai/gpt-4o-mini", max_tokens=900, temperature=0.2, timeout_ms=15000),
    )

    summary = await summarizer.summarize(FRAGMENTS, ["主題", "検討"])

    assert summary == "## まとめ"
    system, user = provider.kwargs["messages"]
    assert "- 主題\n- 検討" in system["content"]
    assert user["content"].endswith("[主題] 新メニューの件\n[検討] 来週試食")
    assert provider.kwargs["model"] == "openai/gpt-4o-mini"
    assert provider.kwargs["max_tokens"] == 900
    assert provider.kwargs["temperature"] == 0.2
    assert provider.kwargs["timeout"] == 15.0


async def test_summarizer_empty_output_is_an_error() -> None:
    summarizer = LLMSummarizer(provider=CaptureProvider(""), profile=ModelProfile())
    with pytest.raises(EmptySummaryError):
        await summarizer.summarize(FRAGMENTS, [])


async def test_litellm_provider_builds_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(
            model=kwargs["model"],
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"items": []}'), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=3, total_tokens=13),
        )

    monkeypatch.setattr("slacknote.providers.litellm_provider.acompletion", fake_acompletion)
    provider = LiteLLMProvider(api_key="sk-test", api_base="https://llm.local/v1", default_model="openai/gpt-4o-mini")

    response = await provider.chat([{"role": "user", "content": "hi"}], json_mode=True, timeout=5.0)

    assert response.content == '{"items": []}'
    assert response.usage["total_tokens"] == 13
    assert captured["model"] == "openai/gpt-4o-mini"
    assert captured["api_key"] == "sk-test"
    assert captured["api_base"] == "https://llm.local/v1"
    assert captured["response_format"] == {"type": "json_object"}
    assert captured["timeout"] == 5.0
