from types import SimpleNamespace

import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from app import llm_client as llm_mod
from app.gemini_client import GeminiClient
from app.llm_client import (
    GeminiAdapter,
    LLMEngine,
    LLMError,
    LLMOptions,
    LLMResponse,
    LLMResponseParseError,
    LLMUnavailableError,
    LLMUsage,
    OpenAIAdapter,
    build_messages,
    create_default_adapter,
)


def _fake_openai(calls, content="Generated text", error=None):
    def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        return SimpleNamespace(
            model="gpt-4o-2024-08-06",
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=11, completion_tokens=7, total_tokens=18),
        )

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class FakeAdapter:
    def __init__(self, content="{}", available=True):
        self.content = content
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    def generate_completion(self, prompt, options=None):
        self.calls.append((prompt, options))
        return LLMResponse(content=self.content, model="fake-model", usage=LLMUsage(1, 2, 3))


def test_build_messages_system_then_single_user():
    assert build_messages("hi") == [{"role": "user", "content": "hi"}]
    assert build_messages("hi", LLMOptions(system_message="be brief")) == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]


def test_openai_adapter_without_key_is_unavailable(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    adapter = OpenAIAdapter()

    assert adapter.is_available() is False
    with pytest.raises(LLMUnavailableError):
        adapter.generate_completion("hello")


def test_openai_adapter_normalizes_response():
    calls = []
    adapter = OpenAIAdapter(client=_fake_openai(calls))

    response = adapter.generate_completion("hello", LLMOptions(system_message="sys", max_tokens=50))

    assert response.content == "Generated text"
    assert response.model == "gpt-4o-2024-08-06"
    assert response.usage == LLMUsage(prompt_tokens=11, completion_tokens=7, total_tokens=18)
    assert calls[0]["temperature"] == 0.7
    assert calls[0]["max_tokens"] == 50
    assert calls[0]["model"] == llm_mod.OPENAI_MODEL
    assert [m["role"] for m in calls[0]["messages"]] == ["system", "user"]


def test_openai_adapter_empty_completion_is_an_error():
    adapter = OpenAIAdapter(client=_fake_openai([], content=""))
    with pytest.raises(LLMError, match="No completion received from OpenAI"):
        adapter.generate_completion("hello")


def test_openai_api_error_is_wrapped_with_code():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    api_error = openai.APIError("Rate limit reached", request, body={"code": "rate_limit_exceeded"})
    adapter = OpenAIAdapter(client=_fake_openai([], error=api_error))

    with pytest.raises(LLMError) as excinfo:
        adapter.generate_completion("hello")

    assert excinfo.value.message == "Rate limit reached"
    assert excinfo.value.code == "rate_limit_exceeded"
    assert excinfo.value.__cause__ is api_error


def test_openai_unexpected_error_keeps_message():
    adapter = OpenAIAdapter(client=_fake_openai([], error=ConnectionError("socket closed")))
    with pytest.raises(LLMError, match="socket closed"):
        adapter.generate_completion("hello")


def _fake_genai(calls, error=None):
    def generate_content(model, contents, config):
        calls.append({"model": model, "contents": contents, "config": config})
        if error is not None:
            raise error
        return SimpleNamespace(
            text="Gemini says hi",
            candidates=[],
            model_version="gemini-2.0-flash-001",
            usage_metadata=SimpleNamespace(prompt_token_count=4, candidates_token_count=6, total_token_count=10),
        )

    return SimpleNamespace(models=SimpleNamespace(generate_content=generate_content))


def test_gemini_adapter_maps_system_message_and_usage():
    calls = []
    adapter = GeminiAdapter(client=GeminiClient(client=_fake_genai(calls)))

    response = adapter.generate_completion("hello", LLMOptions(system_message="sys", temperature=0.2))

    assert response.content == "Gemini says hi"
    assert response.model == "gemini-2.0-flash-001"
    assert response.usage == LLMUsage(prompt_tokens=4, completion_tokens=6, total_tokens=10)
    assert calls[0]["contents"] == "hello"
    assert calls[0]["config"].system_instruction == "sys"
    assert calls[0]["config"].temperature == 0.2


def test_gemini_adapter_wraps_api_error():
    api_error = genai_errors.ClientError(
        429,
        {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}},
    )
    adapter = GeminiAdapter(client=GeminiClient(client=_fake_genai([], error=api_error)))

    with pytest.raises(LLMError) as excinfo:
        adapter.generate_completion("hello")
    assert excinfo.value.status == 429


def test_gemini_adapter_without_key_is_unavailable():
    adapter = GeminiAdapter(client=GeminiClient(api_key=""))
    assert adapter.is_available() is False
    with pytest.raises(LLMUnavailableError):
        adapter.generate_completion("hello")


def test_create_default_adapter_by_name(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert isinstance(create_default_adapter("openai"), OpenAIAdapter)
    assert isinstance(create_default_adapter("Gemini", gemini_client=GeminiClient(api_key="")), GeminiAdapter)
    with pytest.raises(ValueError):
        create_default_adapter("anthropic")


def test_generate_json_forces_temperature_and_appends_instruction():
    adapter = FakeAdapter(content='{"ok": true, "items": [1, 2]}')
    engine = LLMEngine(adapter)

    out = engine.generate_json("List things", LLMOptions(temperature=1.5, system_message="sys"))

    assert out == {"ok": True, "items": [1, 2]}
    prompt, options = adapter.calls[0]
    assert prompt.endswith("\n\nRespond with valid JSON only.")
    assert options.temperature == 0
    assert options.system_message == "sys"


def test_generate_json_parse_failure():
    engine = LLMEngine(FakeAdapter(content="not json"))
    with pytest.raises(LLMResponseParseError, match="Failed to parse JSON response from LLM"):
        engine.generate_json("anything")


def test_engine_availability_follows_adapter():
    assert LLMEngine(FakeAdapter(available=False)).is_available() is False
    assert LLMEngine(FakeAdapter()).is_available() is True


def test_response_to_dict_uses_wire_names():
    response = LLMResponse(content="c", model="m", usage=LLMUsage(1, 2, 3))
    assert response.to_dict() == {
        "content": "c",
        "model": "m",
        "usage": {"promptTokens": 1, "completionTokens": 2, "totalTokens": 3},
    }
    assert "usage" not in LLMResponse(content="c", model="m").to_dict()
