"""OpenRouter LLM client for Podium.

httpx client for OpenRouter's OpenAI-compatible chat endpoint, shared by the
agent executor and the judge. Adds auth headers, retry/backoff on 429/5xx,
per-model cooldown and function-calling payloads.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from typing import Any, Optional

import httpx

from podium.core.config import LLMConfig
from podium.core.exceptions import (
    AuthenticationError,
    ConfigError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    ResponseParseError,
)

logger = logging.getLogger("podium.llm")


class LLMMessage:
    """A single message in a conversation."""

    def __init__(
        self,
        role: str,
        content: Optional[str],
        tool_calls: Optional[list[dict[str, Any]]] = None,
        tool_call_id: Optional[str] = None,
    ):
        self.role = role
        self.content = content
        self.tool_calls = tool_calls
        self.tool_call_id = tool_call_id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data


class LLMToolCall:
    """A function call requested by the model."""

    def __init__(self, id: str, name: str, arguments: str):
        self.id = id
        self.name = name
        self.arguments = arguments

    def parsed_arguments(self) -> dict[str, Any]:
        try:
            parsed = json.loads(self.arguments or "{}")
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class LLMResponse:
    """Parsed response from the LLM."""

    def __init__(
        self,
        content: str,
        model: str,
        tokens_used: int = 0,
        raw: Optional[dict] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        tool_calls: Optional[list[LLMToolCall]] = None,
    ):
        self.content = content
        self.model = model
        self.tokens_used = tokens_used
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.tool_calls = tool_calls or []
        self.raw = raw or {}


class OpenRouterClient:
    """HTTP client for OpenRouter's OpenAI-compatible API.

    Model IDs come from config/models.yaml; this client never hardcodes them.
    One instance is shared across agent threads, so failover bookkeeping is
    guarded by a lock.
    """

    def __init__(self, config: Optional[LLMConfig] = None, api_key: Optional[str] = None):
        self.config = config or LLMConfig()
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY", "")
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.Client] = None
        self._lock = threading.Lock()
        self._model_failure_counts: dict[str, int] = {}
        self._model_cooldown_until: dict[str, float] = {}

    @property
    def client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                )
            return self._client

    def require_api_key(self) -> None:
        """Raise ConfigError when no credential is configured."""
        if not self.api_key:
            raise ConfigError("OPENROUTER_API_KEY not set")

    def complete(
        self,
        messages: list[LLMMessage],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> LLMResponse:
        """Send a chat completion request to OpenRouter.

        Args:
            messages: Conversation messages.
            model: OpenRouter model ID (e.g., "openai/gpt-4o-mini").
            temperature: Sampling temperature (default from config).
            max_tokens: Max response tokens (default from config).
            response_format: Optional format constraint (e.g., {"type": "json_object"}).
            tools: Optional OpenAI-style function definitions.

        Returns:
            LLMResponse with content, tool calls, model, and token usage.
        """
        if not self.api_key:
            raise AuthenticationError("OPENROUTER_API_KEY not set")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "Podium",
        }

        return self._request_with_retry(
            payload,
            headers,
            max_retries=self.config.provider_retries + 1,
            backoff_base_seconds=self.config.provider_backoff_seconds,
        )

    def complete_with_fallback(
        self,
        messages: list[LLMMessage],
        models: list[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> LLMResponse:
        """Try a model chain in order, failing over when a model's retries are exhausted."""
        chain: list[str] = []
        for model in [*models, *self.config.fallback_models]:
            if model and model not in chain:
                chain.append(model)

        if not chain:
            raise LLMError("No models provided for completion")

        failures: list[str] = []
        cooldown_skips: list[str] = []
        for model in chain:
            remaining = self._cooldown_remaining_seconds(model)
            if remaining > 0:
                cooldown_skips.append(f"{model}: cooling down ({remaining:.1f}s)")
                logger.warning(
                    "Skipping model '%s' due to cooldown (%.1fs remaining)",
                    model,
                    remaining,
                )
                continue

            try:
                response = self.complete(
                    messages=messages,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format=response_format,
                    tools=tools,
                )
                self._record_model_success(model)
                return response
            except AuthenticationError:
                raise
            except LLMError as e:
                failures.append(f"{model}: {e}")
                self._record_model_failure(model, error=e)
                logger.warning("Model '%s' failed, trying next fallback", model)
                continue

        details = [*cooldown_skips, *failures]
        if not details:
            details = ["No available models (all filtered)"]
        raise LLMError("All models failed.\n" + "\n".join(details))

    def _request_with_retry(
        self,
        payload: dict,
        headers: dict,
        max_retries: int = 3,
        backoff_base_seconds: float = 2.0,
    ) -> LLMResponse:
        """Execute request with exponential backoff on retryable errors."""
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                resp = self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )

                if resp.status_code == 401:
                    raise AuthenticationError("Invalid API key")
                if resp.status_code == 404:
                    raise ModelNotFoundError(f"Model not found: {payload.get('model')}")
                if resp.status_code == 429 or resp.status_code >= 500:
                    if resp.status_code == 429:
                        last_error = RateLimitError(f"HTTP {resp.status_code}")
                    else:
                        last_error = LLMError(f"HTTP {resp.status_code}")
                    if attempt == max_retries - 1:
                        break
                    delay = _backoff_delay(attempt, backoff_base_seconds)
                    logger.warning("HTTP %d. Waiting %.1fs before retry %d", resp.status_code, delay, attempt + 1)
                    time.sleep(delay)
                    continue

                resp.raise_for_status()
                return _parse_completion(resp.json(), payload.get("model", "unknown"))

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                if attempt == max_retries - 1:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Network error: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)
            except (AuthenticationError, ModelNotFoundError, ResponseParseError):
                raise
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                if attempt == max_retries - 1:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Unexpected error: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)

        if isinstance(last_error, RateLimitError):
            raise RateLimitError(f"Request failed after {max_retries} attempts: {last_error}")
        raise LLMError(f"Request failed after {max_retries} attempts: {last_error}")

    def close(self) -> None:
        with self._lock:
            if self._client:
                self._client.close()
                self._client = None
            self._model_failure_counts.clear()
            self._model_cooldown_until.clear()

    def _cooldown_remaining_seconds(self, model: str) -> float:
        with self._lock:
            until = self._model_cooldown_until.get(model)
            if until is None:
                return 0.0
            remaining = until - time.monotonic()
            if remaining <= 0:
                self._model_cooldown_until.pop(model, None)
                return 0.0
            return remaining

    def _record_model_success(self, model: str) -> None:
        with self._lock:
            self._model_failure_counts.pop(model, None)
            self._model_cooldown_until.pop(model, None)

    def _record_model_failure(self, model: str, error: Exception) -> None:
        threshold = max(1, self.config.model_failure_threshold)
        cooldown = max(1, self.config.model_cooldown_seconds)
        with self._lock:
            count = self._model_failure_counts.get(model, 0) + 1
            self._model_failure_counts[model] = count
            if count < threshold:
                return
            self._model_cooldown_until[model] = time.monotonic() + cooldown
            self._model_failure_counts[model] = 0
        logger.warning(
            "Model '%s' entered cooldown for %ds after %d consecutive failures (%s)",
            model,
            cooldown,
            threshold,
            type(error).__name__,
        )


def _parse_completion(data: dict[str, Any], requested_model: str) -> LLMResponse:
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise ResponseParseError(f"Malformed completion payload: {e}") from e
    if not isinstance(message, dict):
        raise ResponseParseError(f"Malformed completion payload: message is {type(message).__name__}")

    tool_calls = []
    for raw_call in message.get("tool_calls") or []:
        if not isinstance(raw_call, dict):
            raise ResponseParseError(f"Malformed tool call: {raw_call!r}")
        function = raw_call.get("function") or {}
        tool_calls.append(LLMToolCall(
            id=raw_call.get("id", ""),
            name=function.get("name", ""),
            arguments=function.get("arguments") or "{}",
        ))

    usage = data.get("usage") or {}
    model = data.get("model", requested_model)
    tokens = usage.get("total_tokens", 0)
    logger.debug("LLM response: model=%s tokens=%d tool_calls=%d", model, tokens, len(tool_calls))
    return LLMResponse(
        content=_content_text(message.get("content")),
        model=model,
        tokens_used=tokens,
        raw=data,
        input_tokens=usage.get("prompt_tokens", 0),
        output_tokens=usage.get("completion_tokens", 0),
        tool_calls=tool_calls,
    )


def _content_text(content: Any) -> str:
    """Flatten message content. Some providers return a list of typed parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    raise ResponseParseError(f"Unsupported message content type: {type(content).__name__}")


def _backoff_delay(attempt: int, base_seconds: float = 2.0) -> float:
    """Exponential backoff: 2s, 4s, 8s, ..."""
    return min(base_seconds * (2 ** attempt), 60)


def strip_code_fences(text: str) -> str:
    """Strip a surrounding ```json fence from LLM output, if present."""
    cleaned = text.strip()
    match = re.match(r"^```(?:json)?\s*\n?(.*?)\n?```$", cleaned, re.DOTALL)
    if match:
        cleaned = match.group(1).strip()
    return cleaned
