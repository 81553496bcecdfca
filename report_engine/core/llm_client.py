"""Text-generation clients.

Provides one interface over the Anthropic Messages API and OpenRouter's
chat-completions API, with provider selection from configuration.
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from report_engine.core.base_llm_client import BaseLLMClient
from report_engine.core.config import LLMSettings, settings
from report_engine.core.exceptions import APIClientError, ConfigurationError
from report_engine.schemas.report import GenerationResult, StreamEvent, Usage
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported text-generation providers."""
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


class GenerationClient(ABC):
    """Complete and streaming generation against one provider."""

    def __init__(self, http: BaseLLMClient):
        self.http = http

    def _headers(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    async def generate(
        self,
        system: str,
        user: str,
        max_tokens: int,
        model: str,
        temperature: float = 0.0,
    ) -> GenerationResult:
        """Generate a complete response.

        Raises:
            APIClientError: If the call fails after retries
        """

    @abstractmethod
    def _stream_payload(
        self, system: str, user: str, max_tokens: int, model: str, temperature: float
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _read_stream_chunk(self, data: Dict[str, Any], usage: Usage) -> Optional[str]:
        """Apply one decoded stream chunk; return its text delta, if any."""

    async def generate_stream(
        self,
        system: str,
        user: str,
        max_tokens: int,
        model: str,
        temperature: float = 0.0,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response as ``text`` events, then one ``usage``, then ``done``.

        A failure yields a single ``error`` event and ends the stream; no
        exception escapes except cancellation.
        """
        usage = Usage()
        payload = self._stream_payload(system, user, max_tokens, model, temperature)
        try:
            async for line in self.http.stream_lines(payload, headers=self._headers()):
                data, finished = self._decode_sse_line(line)
                if finished:
                    break
                if data is None:
                    continue
                text = self._read_stream_chunk(data, usage)
                if text:
                    yield StreamEvent(type="text", text=text)
        except Exception as e:
            LOGGER.error(f"Generation stream failed: {e}", extra={"model": model})
            yield StreamEvent(type="error", message=str(e) or "Generation stream failed")
            return

        yield StreamEvent(
            type="usage",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        yield StreamEvent(type="done")

    @staticmethod
    def _decode_sse_line(line: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Decode one SSE line into ``(data, finished)``."""
        line = line.strip()
        if not line.startswith("data:"):
            return None, False
        body = line[len("data:"):].strip()
        if body == "[DONE]":
            return None, True
        if not body:
            return None, False
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            LOGGER.debug(f"Skipping undecodable stream line: {body[:200]}")
            return None, False
        return (data if isinstance(data, dict) else None), False


class AnthropicClient(GenerationClient):
    """Anthropic Messages API client.

    The system prompt is marked cacheable so repeated reports with the same
    tier and section set reuse it.
    """

    def __init__(self, http: BaseLLMClient, api_version: str = "2023-06-01"):
        super().__init__(http)
        self.api_version = api_version

    def _headers(self) -> Dict[str, str]:
        return {"anthropic-version": self.api_version}

    def _payload(self, system: str, user: str, max_tokens: int, model: str, temperature: float) -> Dict[str, Any]:
        return {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": [
                {"type": "text", "text": system, "cache_control": {"type": "ephemeral"}},
            ],
            "messages": [{"role": "user", "content": user}],
        }

    async def generate(self, system, user, max_tokens, model, temperature=0.0) -> GenerationResult:
        response = await self.http.call_api(
            self._payload(system, user, max_tokens, model, temperature),
            headers=self._headers(),
        )

        blocks = response.get("content")
        if not isinstance(blocks, list):
            LOGGER.error(f"Unexpected Anthropic response format: {str(response)[:500]}")
            raise APIClientError("Invalid response format from Anthropic")

        content = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")
        usage = response.get("usage") or {}
        if response.get("stop_reason") == "max_tokens":
            LOGGER.warning("Anthropic response hit max_tokens", extra={"model": model, "max_tokens": max_tokens})

        return GenerationResult(
            content=content,
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0) or 0,
                output_tokens=usage.get("output_tokens", 0) or 0,
            ),
        )

    def _stream_payload(self, system, user, max_tokens, model, temperature):
        payload = self._payload(system, user, max_tokens, model, temperature)
        payload["stream"] = True
        return payload

    def _read_stream_chunk(self, data: Dict[str, Any], usage: Usage) -> Optional[str]:
        event_type = data.get("type")
        if event_type == "message_start":
            message_usage = (data.get("message") or {}).get("usage") or {}
            usage.input_tokens = message_usage.get("input_tokens", 0) or 0
            usage.output_tokens = message_usage.get("output_tokens", 0) or 0
        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text", "")
        elif event_type == "message_delta":
            delta_usage = data.get("usage") or {}
            if "output_tokens" in delta_usage:
                usage.output_tokens = delta_usage["output_tokens"] or 0
        elif event_type == "error":
            error = data.get("error") or {}
            raise APIClientError(f"Anthropic stream error: {error.get('message', 'unknown error')}")
        return None


class OpenRouterClient(GenerationClient):
    """OpenRouter chat-completions client."""

    def _model_name(self, model: str) -> str:
        # OpenRouter model ids are namespaced by vendor
        return model if "/" in model else f"anthropic/{model}"

    def _payload(self, system: str, user: str, max_tokens: int, model: str, temperature: float) -> Dict[str, Any]:
        return {
            "model": self._model_name(model),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

    async def generate(self, system, user, max_tokens, model, temperature=0.0) -> GenerationResult:
        response = await self.http.call_api(self._payload(system, user, max_tokens, model, temperature))

        choices = response.get("choices")
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:500]}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        usage = response.get("usage") or {}
        return GenerationResult(
            content=content,
            usage=Usage(
                input_tokens=usage.get("prompt_tokens", 0) or 0,
                output_tokens=usage.get("completion_tokens", 0) or 0,
            ),
        )

    def _stream_payload(self, system, user, max_tokens, model, temperature):
        payload = self._payload(system, user, max_tokens, model, temperature)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}
        return payload

    def _read_stream_chunk(self, data: Dict[str, Any], usage: Usage) -> Optional[str]:
        if "error" in data:
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise APIClientError(f"OpenRouter stream error: {message}")

        chunk_usage = data.get("usage")
        if chunk_usage:
            usage.input_tokens = chunk_usage.get("prompt_tokens", 0) or 0
            usage.output_tokens = chunk_usage.get("completion_tokens", 0) or 0

        choices = data.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content")


def create_generation_client_from_settings(llm_settings: Optional[LLMSettings] = None) -> GenerationClient:
    """Create a generation client for the configured provider.

    Args:
        llm_settings: Provider settings; defaults to the application settings

    Returns:
        GenerationClient for the configured provider

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    config = llm_settings or settings.llm
    try:
        provider = LLMProvider(config.provider.lower())
    except ValueError as e:
        raise ConfigurationError(f"Unsupported provider: {config.provider}", e) from e

    if provider == LLMProvider.ANTHROPIC:
        if not config.anthropic_api_key.strip():
            raise ConfigurationError(
                "anthropic_api_key required when provider='anthropic'. "
                "Please set ANTHROPIC_API_KEY environment variable."
            )
        http = BaseLLMClient(
            api_key=config.anthropic_api_key.strip(),
            base_url=config.anthropic_api_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            auth_header="x-api-key",
            auth_prefix="",
        )
        LOGGER.info("Initialized Anthropic generation client")
        return AnthropicClient(http, api_version=config.anthropic_version)

    if not config.openrouter_api_key.strip():
        raise ConfigurationError(
            "openrouter_api_key required when provider='openrouter'. "
            "Please set OPENROUTER_API_KEY environment variable."
        )
    http = BaseLLMClient(
        api_key=config.openrouter_api_key.strip(),
        base_url=config.openrouter_api_url,
        timeout=config.timeout,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
    )
    LOGGER.info("Initialized OpenRouter generation client")
    return OpenRouterClient(http)
