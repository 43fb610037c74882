import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from deepstory.services.errors import ConfigurationError
from deepstory.services.providers import (
    NO_CONTENT_SENTINEL,
    ClaudeAdapter,
    DeepSeekAdapter,
    GeminiAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderConfig,
    is_empty_result,
    select_adapter,
)


def _config(**overrides):
    values = {
        "provider_kind": "",
        "base_url": "https://example.invalid",
        "api_key": "sk-test-123456",
        "model_name": "demo-model",
    }
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("google", GeminiAdapter),
        ("gemini", GeminiAdapter),
        ("claude", ClaudeAdapter),
        ("deepseek", DeepSeekAdapter),
        ("openai", OpenAIAdapter),
    ],
)
def test_explicit_provider_id_wins_over_url(kind, expected):
    adapter = select_adapter(_config(provider_kind=kind, base_url="https://api.deepseek.com"))
    assert type(adapter) is expected


def test_url_fragment_selects_adapter_when_no_provider_given():
    assert isinstance(select_adapter(_config(base_url="https://api.anthropic.com")), ClaudeAdapter)
    assert isinstance(
        select_adapter(_config(base_url="https://generativelanguage.googleapis.com")), GeminiAdapter
    )
    assert isinstance(select_adapter(_config(base_url="https://api.deepseek.com/v1")), DeepSeekAdapter)


def test_unknown_endpoint_falls_back_to_generic_adapter():
    adapter = select_adapter(_config(provider_kind="qwen", base_url="https://dashscope.aliyuncs.com/compatible-mode"))
    assert type(adapter) is ProviderAdapter
    assert type(select_adapter(_config(base_url="http://localhost:8000"))) is ProviderAdapter


def test_gemini_url_is_idempotent_for_known_suffixes():
    adapter = GeminiAdapter()
    expected = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent?key=k"

    assert adapter.build_url("https://generativelanguage.googleapis.com/", "gemini-2.5-flash", "k") == expected
    assert adapter.build_url("https://generativelanguage.googleapis.com/v1beta", "gemini-2.5-flash", "k") == expected
    assert adapter.build_url("https://generativelanguage.googleapis.com/v1beta/models/", "gemini-2.5-flash", "k") == expected
    assert (
        adapter.build_url("https://g.example.com/v1beta/models", "m", "k")
        == "https://g.example.com/v1beta/models/m:generateContent?key=k"
    )
    assert adapter.build_url(expected.split("?")[0] + "/", "gemini-2.5-flash", "k") == expected
    assert adapter.build_headers("k") == {"Content-Type": "application/json"}


def test_claude_and_openai_urls_accept_existing_suffixes():
    claude = ClaudeAdapter()
    assert claude.build_url("https://api.anthropic.com", "m", "k") == "https://api.anthropic.com/v1/messages"
    assert claude.build_url("https://api.anthropic.com/v1/", "m", "k") == "https://api.anthropic.com/v1/messages"
    assert claude.build_url("https://api.anthropic.com/v1/messages", "m", "k") == "https://api.anthropic.com/v1/messages"

    generic = ProviderAdapter()
    assert generic.build_url("https://api.openai.com", "m", "k") == "https://api.openai.com/v1/chat/completions"
    assert generic.build_url("https://api.openai.com/v1//", "m", "k") == "https://api.openai.com/v1/chat/completions"
    assert (
        generic.build_url("https://proxy.local/api/chat/completions", "m", "k")
        == "https://proxy.local/api/chat/completions"
    )


def test_claude_envelope_uses_top_level_system_prompt():
    adapter = ClaudeAdapter()
    headers = adapter.build_headers("secret")
    body = adapter.build_body("系统", "用户", "claude-sonnet", 100000, 0.5)

    assert headers["x-api-key"] == "secret"
    assert headers["anthropic-version"] == "2023-06-01"
    assert headers["Authorization"] == "Bearer secret"
    assert body["system"] == "系统"
    assert body["messages"] == [{"role": "user", "content": "用户"}]
    assert body["max_tokens"] == 32768


def test_gemini_body_carries_generation_config():
    body = GeminiAdapter().build_body("系统", "用户", "gemini", 4000, 0.7)

    assert body["contents"][0]["parts"][0]["text"] == "用户"
    assert body["systemInstruction"]["parts"][0]["text"] == "系统"
    assert body["generationConfig"] == {"maxOutputTokens": 4000, "temperature": 0.7}


def test_deepseek_clamps_budget_to_its_ceiling():
    body = DeepSeekAdapter().build_body("s", "u", "deepseek-chat", 20000, 0.7)
    assert body["max_tokens"] == 8192
    assert DeepSeekAdapter.timeout_seconds == 120.0
    assert ClaudeAdapter.timeout_seconds == 90.0
    assert OpenAIAdapter.timeout_seconds == 60.0


def test_response_parsing_returns_sentinel_when_empty():
    assert ProviderAdapter().parse_response({"choices": [{"message": {"content": "你好"}}]}) == "你好"
    assert ProviderAdapter().parse_response({"choices": []}) == NO_CONTENT_SENTINEL
    assert ClaudeAdapter().parse_response({"content": [{"type": "text", "text": "甲"}, {"type": "text", "text": "乙"}]}) == "甲乙"
    assert GeminiAdapter().parse_response({"candidates": [{"content": {"parts": [{"text": "  "}]}}]}) == NO_CONTENT_SENTINEL
    assert GeminiAdapter().parse_response({"error": "nope"}) == NO_CONTENT_SENTINEL
    assert is_empty_result(NO_CONTENT_SENTINEL)
    assert not is_empty_result("正文")


def test_custom_model_sentinel_requires_override():
    config = _config(model_name="custom")
    with pytest.raises(ConfigurationError):
        config.resolved_model()

    assert _config(model_name="custom", fallback_model_name="my-model").resolved_model() == "my-model"


def test_validate_rejects_missing_fields():
    with pytest.raises(ConfigurationError):
        _config(api_key="").validate()
    with pytest.raises(ConfigurationError):
        _config(base_url=" ").validate()
    with pytest.raises(ConfigurationError):
        _config(model_name="").validate()


def test_from_mapping_fills_gaps_from_defaults():
    defaults = _config(provider_kind="deepseek", model_name="deepseek-chat")
    config = ProviderConfig.from_mapping({"apiKey": "other-key", "textModel": ""}, defaults=defaults)

    assert config.api_key == "other-key"
    assert config.model_name == "deepseek-chat"
    assert config.provider_kind == "deepseek"
