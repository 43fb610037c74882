"""Resilient invocation client wrapping the provider adapters.

This is the only module that talks to the network.  A call goes through
three layers:

* the configuration is validated and an adapter selected;
* the output token budget is derived from the target word count;
* the HTTP request is sent under a :class:`RetryPolicy` that classifies each
  failure and only retries the transient ones.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Optional, Tuple

import requests

from .errors import (
    ClientError,
    NetworkFailure,
    ServerFailure,
    TimeoutFailure,
    TransientError,
)
from .providers import (
    DEFAULT_TEMPERATURE,
    ProviderAdapter,
    ProviderConfig,
    is_empty_result,
    select_adapter,
)

LOGGER = logging.getLogger(__name__)

FAILURE_SERVER = "server"
FAILURE_TIMEOUT = "timeout"
FAILURE_NETWORK = "network"
FAILURE_CLIENT = "client"

TOKENS_PER_WORD = 5.0
MIN_TOKENS_PER_WORD = 1.2
MAX_BACKOFF_SECONDS = 10.0
CONNECTION_TEST_TIMEOUT = 10.0

_BASE_DELAYS = {
    FAILURE_SERVER: 1.0,
    FAILURE_TIMEOUT: 2.0,
    FAILURE_NETWORK: 2.5,
}


class ProviderHTTPError(Exception):
    """A provider answered with a non-success status code."""

    def __init__(self, status_code: int, reason: str = "", body: str = "") -> None:
        super().__init__(f"API Error: {status_code} {reason} - {_shorten_debug(body, 500)}".strip())
        self.status_code = status_code
        self.reason = reason
        self.body = body


class MalformedResponseError(ValueError):
    """A provider answered 2xx with a body that is not JSON."""


def classify_failure(exc: BaseException) -> str:
    """Map an exception raised while calling a provider to a failure class."""

    if isinstance(exc, ProviderHTTPError):
        if 500 <= exc.status_code < 600:
            return FAILURE_SERVER
        return FAILURE_CLIENT
    # requests raises a JSONDecodeError that is also a RequestException.
    if isinstance(exc, (ValueError, requests.exceptions.InvalidJSONError)):
        return FAILURE_CLIENT
    if isinstance(exc, requests.Timeout):
        return FAILURE_TIMEOUT
    if isinstance(exc, (requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
        return FAILURE_NETWORK
    if isinstance(exc, requests.RequestException):
        return FAILURE_NETWORK
    return FAILURE_CLIENT


def linear_backoff(failure_class: str, attempt: int, *, jitter: Callable[[], float] = random.random) -> float:
    """Linear delay per attempt plus up to half a second of jitter, capped."""

    base = _BASE_DELAYS.get(failure_class, 1.5)
    return min(base * attempt + jitter() * 0.5, MAX_BACKOFF_SECONDS)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    classify: Callable[[BaseException], str] = classify_failure
    backoff: Callable[[str, int], float] = linear_backoff
    retryable: FrozenSet[str] = field(
        default_factory=lambda: frozenset({FAILURE_SERVER, FAILURE_TIMEOUT, FAILURE_NETWORK})
    )

    def is_retryable(self, failure_class: str) -> bool:
        return failure_class in self.retryable


def compute_token_budget(adapter: ProviderAdapter, word_count: Optional[int] = None) -> int:
    """Output-token budget for a target word count, clamped to the provider ceiling."""

    ceiling = adapter.max_tokens
    if not word_count or word_count <= 0:
        return ceiling
    estimated = min(round(word_count * TOKENS_PER_WORD), ceiling)
    floor = round(word_count * MIN_TOKENS_PER_WORD)
    return min(max(estimated, floor), ceiling)


class InvocationClient:
    """Single network entry point used by every generation operation.

    ``session`` only needs a ``post(url, headers=..., json=..., timeout=...)``
    method; the :mod:`requests` module itself is used by default so no
    connection state is shared between calls.
    """

    def __init__(
        self,
        *,
        policy: Optional[RetryPolicy] = None,
        session: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._session = session if session is not None else requests
        self._sleep = sleep
        self.temperature = temperature

    def generate(
        self,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        *,
        word_count: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Return the provider's text for the prompt pair.

        Raises :class:`ConfigurationError` before any network call when the
        configuration is incomplete, :class:`ClientError` for non-transient
        rejections and a :class:`TransientError` subclass once retries are
        exhausted.
        """

        config.validate()
        adapter = select_adapter(config)
        model = config.resolved_model()
        max_tokens = compute_token_budget(adapter, word_count)

        url = adapter.build_url(config.base_url, model, config.api_key)
        headers = adapter.build_headers(config.api_key)
        body = adapter.build_body(
            system_prompt,
            user_prompt,
            model,
            max_tokens,
            self.temperature if temperature is None else temperature,
        )

        attempt = 0
        while True:
            attempt += 1
            started = time.perf_counter()
            try:
                text = self._send(adapter, url, headers, body, adapter.timeout_seconds)
            except (ProviderHTTPError, requests.RequestException, ValueError) as exc:
                failure_class = self.policy.classify(exc)
                if not self.policy.is_retryable(failure_class):
                    LOGGER.error(
                        "Request to %s (%s) failed without retry: %s",
                        adapter.name,
                        model,
                        exc,
                    )
                    raise _client_error(exc) from exc

                LOGGER.warning(
                    "Attempt %s/%s to %s failed (%s): %s",
                    attempt,
                    self.policy.max_attempts,
                    adapter.name,
                    failure_class,
                    exc,
                )
                if attempt >= self.policy.max_attempts:
                    raise _exhausted_error(failure_class, adapter, attempt, exc) from exc
                self._sleep(self.policy.backoff(failure_class, attempt))
                continue

            LOGGER.info(
                "Request to %s (%s) completed in %.0fms after %s attempt(s).",
                adapter.name,
                model,
                (time.perf_counter() - started) * 1000,
                attempt,
            )
            return text

    def test_connection(self, config: ProviderConfig) -> Tuple[bool, str]:
        """Send a tiny prompt once; report the outcome instead of raising."""

        try:
            config.validate()
            adapter = select_adapter(config)
            model = config.resolved_model()
            url = adapter.build_url(config.base_url, model, config.api_key)
            headers = adapter.build_headers(config.api_key)
            body = adapter.build_body(
                "You are a helpful assistant. Please respond with 'OK' if you can understand this message.",
                "Test connection",
                model,
                10,
                0.0,
            )
            text = self._send(adapter, url, headers, body, CONNECTION_TEST_TIMEOUT)
        except Exception as exc:
            return False, f"Connection failed: {exc}"

        if is_empty_result(text):
            return True, "Connected. The API returned a valid response."
        return True, f"Connected. Model replied: {text.strip()}"

    def _send(
        self,
        adapter: ProviderAdapter,
        url: str,
        headers: dict,
        body: dict,
        timeout: float,
    ) -> str:
        response = self._session.post(url, headers=headers, json=body, timeout=timeout)
        status_code = int(getattr(response, "status_code", 0) or 0)
        if status_code >= 400 or status_code == 0:
            raise ProviderHTTPError(
                status_code,
                str(getattr(response, "reason", "") or ""),
                str(getattr(response, "text", "") or ""),
            )
        try:
            data = response.json()
        except ValueError as exc:
            body_text = str(getattr(response, "text", "") or "")
            raise MalformedResponseError(
                f"The provider returned a response that is not JSON: {_shorten_debug(body_text, 200)}"
            ) from exc
        return adapter.parse_response(data)


def _client_error(exc: BaseException) -> ClientError:
    if isinstance(exc, ProviderHTTPError):
        if exc.status_code in (401, 403) or "api key" in exc.body.lower():
            return ClientError(
                "Invalid API key: check that the API key is configured correctly.",
                status_code=exc.status_code,
            )
        if exc.status_code == 404:
            return ClientError(
                "Model not found: check that the model name is correct.",
                status_code=exc.status_code,
            )
        return ClientError(str(exc), status_code=exc.status_code)
    if isinstance(exc, MalformedResponseError):
        return ClientError(str(exc))
    if isinstance(exc, ValueError):
        return ClientError(f"The provider returned an unreadable response: {exc}")
    return ClientError(str(exc))


def _exhausted_error(
    failure_class: str,
    adapter: ProviderAdapter,
    attempts: int,
    exc: BaseException,
) -> TransientError:
    if failure_class == FAILURE_TIMEOUT:
        return TimeoutFailure(
            f"Generation timed out: {adapter.display_name} needs a long time to produce this content. "
            "Try a faster model (such as Gemini 2.5 Flash or GPT-4o), or check your network and retry.",
            attempts=attempts,
        )
    if failure_class == FAILURE_NETWORK:
        return NetworkFailure(
            "Network error: unable to reach the API server. Check your network connection and retry.",
            attempts=attempts,
        )
    status = getattr(exc, "status_code", None)
    suffix = f" ({status})" if status else ""
    return ServerFailure(
        f"Service unavailable{suffix}: the API service is temporarily unavailable, please retry later.",
        attempts=attempts,
    )


def _shorten_debug(s: str, limit: int = 1200) -> str:
    s = (s or "").replace("\n", " ")
    return (s[:limit] + "…") if len(s) > limit else s


__all__ = [
    "FAILURE_CLIENT",
    "FAILURE_NETWORK",
    "FAILURE_SERVER",
    "FAILURE_TIMEOUT",
    "InvocationClient",
    "MalformedResponseError",
    "ProviderHTTPError",
    "RetryPolicy",
    "classify_failure",
    "compute_token_budget",
    "linear_backoff",
]
