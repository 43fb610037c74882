"""Provider adapters that normalise request and response envelopes.

Each supported backend is a small :class:`ProviderAdapter` subclass exposing
the same four capabilities (``build_url``, ``build_headers``, ``build_body``
and ``parse_response``).  :func:`select_adapter` picks one per configuration:

- an explicit provider id wins (``google``/``gemini``, ``claude``,
  ``deepseek``, ``openai``, ``qwen``);
- otherwise a known host fragment in the base URL decides;
- anything else is treated as a generic OpenAI-compatible endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError

NO_CONTENT_SENTINEL = "No content generated."
CUSTOM_MODEL_SENTINEL = "custom"
DEFAULT_TOKEN_CEILING = 32768
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class ProviderConfig:
    provider_kind: str = ""
    base_url: str = ""
    api_key: str = ""
    model_name: str = ""
    fallback_model_name: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]], *, defaults: Optional["ProviderConfig"] = None) -> "ProviderConfig":
        """Build a config from a JSON-style mapping, filling gaps from ``defaults``."""

        data = data if isinstance(data, dict) else {}
        base = defaults or cls()

        def pick(*keys: str, fallback: Optional[str]) -> Optional[str]:
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return fallback

        return cls(
            provider_kind=pick("provider", "providerKind", "provider_kind", fallback=base.provider_kind) or "",
            base_url=pick("baseUrl", "base_url", fallback=base.base_url) or "",
            api_key=pick("apiKey", "api_key", fallback=base.api_key) or "",
            model_name=pick("textModel", "modelName", "model_name", fallback=base.model_name) or "",
            fallback_model_name=pick(
                "customTextModel", "fallbackModelName", "fallback_model_name", fallback=base.fallback_model_name
            ),
        )

    def resolved_model(self) -> str:
        model = (self.model_name or "").strip()
        if model == CUSTOM_MODEL_SENTINEL:
            override = (self.fallback_model_name or "").strip()
            if not override:
                raise ConfigurationError("A custom model was selected but no custom model name was provided.")
            return override
        return model

    def validate(self) -> None:
        if not (self.api_key or "").strip():
            raise ConfigurationError("The API key is empty; check the provider configuration.")
        if not (self.base_url or "").strip():
            raise ConfigurationError("The base URL is empty; check the provider configuration.")
        if not self.resolved_model():
            raise ConfigurationError("The model name is empty; check the provider configuration.")


class ProviderAdapter:
    """Generic OpenAI-compatible chat completions shape."""

    name = "custom"
    display_name = "The selected model"
    max_tokens = DEFAULT_TOKEN_CEILING
    timeout_seconds = 60.0

    # ---------------- request ----------------
    def build_url(self, base_url: str, model: str, api_key: str) -> str:
        clean_base = _strip_trailing_slashes(base_url)
        if clean_base.endswith("/chat/completions"):
            return clean_base
        if clean_base.endswith("/v1"):
            return f"{clean_base}/chat/completions"
        return f"{clean_base}/v1/chat/completions"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def build_body(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "max_tokens": self.clamp_tokens(max_tokens),
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

    # ---------------- response ----------------
    def parse_response(self, data: Any) -> str:
        choices = _get(data, "choices") or []
        if not isinstance(choices, list) or not choices:
            return NO_CONTENT_SENTINEL
        first = choices[0]
        message = _get(first, "message")
        content = _get(message, "content")
        if isinstance(content, list):
            parts: List[str] = []
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text":
                    parts.append(str(part.get("text") or ""))
            content = "\n".join(p for p in parts if p)
        text = str(content or _get(first, "text") or "")
        return text if text.strip() else NO_CONTENT_SENTINEL

    # ---------------- helpers ----------------
    def clamp_tokens(self, requested: Optional[int]) -> int:
        if requested is None:
            return self.max_tokens
        return max(1, min(int(requested), self.max_tokens))


class OpenAIAdapter(ProviderAdapter):
    name = "openai"


class DeepSeekAdapter(ProviderAdapter):
    name = "deepseek"
    display_name = "DeepSeek"
    max_tokens = 8192
    timeout_seconds = 120.0


class ClaudeAdapter(ProviderAdapter):
    name = "claude"
    display_name = "Claude"
    timeout_seconds = 90.0
    api_version = "2023-06-01"

    def build_url(self, base_url: str, model: str, api_key: str) -> str:
        clean_base = _strip_trailing_slashes(base_url)
        if clean_base.endswith("/v1/messages"):
            return clean_base
        if clean_base.endswith("/v1"):
            return f"{clean_base}/messages"
        return f"{clean_base}/v1/messages"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "x-api-key": api_key,
            "anthropic-version": self.api_version,
        }

    def build_body(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model,
            "max_tokens": self.clamp_tokens(max_tokens),
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    def parse_response(self, data: Any) -> str:
        blocks = _get(data, "content") or []
        if not isinstance(blocks, list):
            return NO_CONTENT_SENTINEL
        texts = [
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        text = "".join(texts)
        return text if text.strip() else NO_CONTENT_SENTINEL


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    display_name = "Gemini"

    def build_url(self, base_url: str, model: str, api_key: str) -> str:
        clean_base = _strip_trailing_slashes(base_url)
        suffix = f"/models/{model}:generateContent"
        if clean_base.endswith(suffix):
            return f"{clean_base}?key={api_key}"
        if clean_base.endswith("/v1beta/models"):
            return f"{clean_base}/{model}:generateContent?key={api_key}"
        if clean_base.endswith("/v1beta"):
            return f"{clean_base}{suffix}?key={api_key}"
        return f"{clean_base}/v1beta{suffix}?key={api_key}"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        # The key travels in the query string.
        return {"Content-Type": "application/json"}

    def build_body(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "maxOutputTokens": self.clamp_tokens(max_tokens),
                "temperature": temperature,
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    def parse_response(self, data: Any) -> str:
        candidates = _get(data, "candidates") or []
        if not isinstance(candidates, list) or not candidates:
            return NO_CONTENT_SENTINEL
        parts = _get(_get(candidates[0], "content"), "parts") or []
        if not isinstance(parts, list):
            return NO_CONTENT_SENTINEL
        text = "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))
        return text if text.strip() else NO_CONTENT_SENTINEL


_ADAPTERS_BY_ID = {
    "google": GeminiAdapter,
    "gemini": GeminiAdapter,
    "claude": ClaudeAdapter,
    "anthropic": ClaudeAdapter,
    "deepseek": DeepSeekAdapter,
    "openai": OpenAIAdapter,
    "qwen": ProviderAdapter,
    "custom": ProviderAdapter,
}

_HOST_FRAGMENTS = (
    ("generativelanguage.googleapis.com", GeminiAdapter),
    ("gemini", GeminiAdapter),
    ("anthropic.com", ClaudeAdapter),
    ("deepseek.com", DeepSeekAdapter),
    ("openai.com", OpenAIAdapter),
    ("dashscope.aliyuncs.com", ProviderAdapter),
)


def select_adapter(config: ProviderConfig) -> ProviderAdapter:
    """Return the adapter matching ``config``; never raises."""

    kind = (config.provider_kind or "").strip().lower()
    if kind in _ADAPTERS_BY_ID and kind != "custom":
        return _ADAPTERS_BY_ID[kind]()

    base_url = (config.base_url or "").lower()
    for fragment, adapter_cls in _HOST_FRAGMENTS:
        if fragment in base_url:
            return adapter_cls()
    return ProviderAdapter()


def is_empty_result(text: Optional[str]) -> bool:
    """True when ``text`` carries no usable content (including the sentinel)."""

    if text is None:
        return True
    stripped = text.strip()
    return not stripped or stripped == NO_CONTENT_SENTINEL


def _strip_trailing_slashes(url: str) -> str:
    return (url or "").strip().rstrip("/")


def _get(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    return None


__all__ = [
    "ClaudeAdapter",
    "CUSTOM_MODEL_SENTINEL",
    "DeepSeekAdapter",
    "GeminiAdapter",
    "NO_CONTENT_SENTINEL",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderConfig",
    "is_empty_result",
    "select_adapter",
]
