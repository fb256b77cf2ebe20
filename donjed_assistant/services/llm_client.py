"""Streaming client for OpenAI-compatible chat completion endpoints.

Replies are streamed as server-sent events from the primary endpoint. Rate
limited calls (HTTP 429) are retried with exponential backoff, and when the
stream produces nothing or fails, the configured fallback endpoints are tried
in order. Every failure ends as in-band text so callers only ever consume a
stream of strings.
"""

import asyncio
import json
import logging
import math
import re
import time
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence

import httpx
from pydantic import BaseModel

from donjed_assistant.core.ai_constants import (
    DOCUMENTATION_CONTEXT_HEADER,
    ENERGY_ASSISTANT_SYSTEM_PROMPT,
    LLM_UNAVAILABLE_MESSAGE,
    MISSING_API_KEY_MESSAGE,
    RATE_LIMITED_MESSAGE,
    RETRY_MAX_DELAY_SECONDS,
    RETRY_MIN_DELAY_SECONDS,
)
from donjed_assistant.core.config import Settings, get_settings
from donjed_assistant.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE_MARKER = "[DONE]"
CHAT_COMPLETIONS_PATH = "chat/completions"


class ChatRole(str, Enum):
    """Roles understood by the chat completions API."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single message sent to the model."""

    role: ChatRole
    content: str


class LLMStage(str, Enum):
    """Progress stages reported while producing one reply."""

    REQUEST_STARTED = "request_started"
    RETRY_SCHEDULED = "retry_scheduled"
    STREAM_COMPLETED = "stream_completed"
    FALLBACK_STARTED = "fallback_started"
    FALLBACK_COMPLETED = "fallback_completed"
    RATE_LIMITED = "rate_limited"
    MISSING_CREDENTIALS = "missing_credentials"
    FAILED = "failed"


StageCallback = Callable[[LLMStage], None]


class LLMClientError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMAPIError(LLMClientError):
    """Non-success HTTP status from the LLM API."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"API returned {status_code}: {body[:500]}")
        self.status_code = status_code
        self.body = body


class LLMResponseError(LLMClientError):
    """Response body could not be used."""

    pass


class RateLimitExceeded(LLMClientError):
    """Still rate limited after all retries."""

    pass


@dataclass(frozen=True)
class LLMEndpoint:
    """One chat completions endpoint with its own retry budget."""

    url: str
    stream: bool = True
    max_retries: int = 3


def chat_completions_url(base_url: str) -> str:
    """Join an OpenAI-compatible base URL with the chat completions path."""
    return f"{base_url.rstrip('/')}/{CHAT_COMPLETIONS_PATH}"


def build_endpoints(settings: Settings) -> list[LLMEndpoint]:
    """Primary streaming endpoint followed by non-streaming fallbacks."""
    endpoints = [
        LLMEndpoint(
            url=chat_completions_url(settings.llm_base_url),
            stream=True,
            max_retries=settings.llm_max_retries,
        )
    ]
    for base_url in settings.llm_fallback_base_urls:
        endpoints.append(
            LLMEndpoint(
                url=chat_completions_url(base_url),
                stream=False,
                max_retries=settings.llm_max_retries,
            )
        )
    return endpoints


def build_system_message(context: Optional[str] = None) -> str:
    """Build the system message, appending the documentation context if any."""
    system_message = ENERGY_ASSISTANT_SYSTEM_PROMPT
    if context:
        system_message += f"\n\n{DOCUMENTATION_CONTEXT_HEADER}{context}"
    return system_message


def build_messages(
    prompt: str,
    context: Optional[str] = None,
    history: Optional[Sequence[ChatMessage]] = None,
) -> list[ChatMessage]:
    """System message, then prior history in order, then the new prompt."""
    messages = [ChatMessage(role=ChatRole.SYSTEM, content=build_system_message(context))]
    messages.extend(history or [])
    messages.append(ChatMessage(role=ChatRole.USER, content=prompt))
    return messages


class SSEDecoder:
    """Incremental decoder for ``data:`` lines of a server-sent event stream.

    Text may arrive split at arbitrary points; the incomplete trailing line
    is buffered until the next read.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        """Add decoded text and return the payloads of completed lines."""
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [payload for line in lines if (payload := _data_payload(line)) is not None]

    def flush(self) -> list[str]:
        """Return the payload of a final unterminated line, if any."""
        remainder, self._buffer = self._buffer, ""
        payload = _data_payload(remainder)
        return [payload] if payload is not None else []


def _data_payload(line: str) -> Optional[str]:
    trimmed = line.strip()
    if not trimmed.startswith(SSE_DATA_PREFIX):
        return None
    data = trimmed[len(SSE_DATA_PREFIX):]
    if data == SSE_DONE_MARKER:
        return None
    return data


def extract_delta_content(payload: str) -> str:
    """Text delta of one streaming frame; empty for malformed frames."""
    try:
        parsed = json.loads(payload)
        return parsed["choices"][0]["delta"].get("content") or ""
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logger.debug("Skipping malformed SSE frame: %s", payload[:200])
        return ""


def extract_message_content(data: Any) -> str:
    """Text of a non-streaming chat completion."""
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise LLMResponseError(f"Unexpected completion shape: {e}") from e


def _bounded_delay(seconds: float, max_delay: float) -> Optional[float]:
    """Clamp a provider-supplied delay; None when it is not a finite number."""
    if not math.isfinite(seconds):
        return None
    return min(max(seconds, RETRY_MIN_DELAY_SECONDS), max_delay)


def parse_retry_delay(
    response: httpx.Response,
    attempt: int,
    max_delay: float = RETRY_MAX_DELAY_SECONDS,
) -> float:
    """Seconds to wait before retrying a 429 response.

    Uses the provider's ``RetryInfo.retryDelay`` or a numeric ``Retry-After``
    header when present, otherwise 2, 4, 8... seconds. Every delay is kept
    between 2s and ``max_delay``; non-finite values are ignored.
    """
    default_delay = min(float(2 ** (attempt + 1)), max_delay)

    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            delay = _bounded_delay(float(retry_after), max_delay)
        except ValueError:
            delay = None
        if delay is not None:
            return delay

    try:
        body = response.json()
    except ValueError:
        return default_delay

    error = body.get("error") if isinstance(body, dict) else None
    details = error.get("details") if isinstance(error, dict) else None
    for detail in details or []:
        if not isinstance(detail, dict) or "RetryInfo" not in str(detail.get("@type", "")):
            continue
        match = re.search(r"(\d+(?:\.\d+)?)", str(detail.get("retryDelay", "")))
        if match:
            return _bounded_delay(float(match.group(1)), max_delay) or default_delay

    return default_delay



class LLMClient:
    """Chat completion client with retry and endpoint fallback."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        endpoints: Sequence[LLMEndpoint] | None = None,
        metrics: MetricsBackend | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self.endpoints = list(endpoints) if endpoints is not None else build_endpoints(self.settings)
        self._metrics = metrics or get_metrics_backend()
        self._sleep = sleep

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.settings.llm_timeout_seconds)
            self._owns_http_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.llm_api_key}",
        }

    def _request_body(self, messages: Sequence[ChatMessage], stream: bool) -> dict[str, Any]:
        return {
            "model": self.settings.llm_model,
            "messages": [message.model_dump(mode="json") for message in messages],
            "stream": stream,
            "temperature": self.settings.llm_temperature,
            "top_p": self.settings.llm_top_p,
            "max_tokens": self.settings.llm_max_tokens,
        }

    async def stream_chat_response(
        self,
        prompt: str,
        context: Optional[str] = None,
        history: Optional[Sequence[ChatMessage]] = None,
        on_stage: StageCallback | None = None,
    ) -> AsyncIterator[str]:
        """Stream a reply to ``prompt`` as text fragments.

        Args:
            prompt: Current user message.
            context: Retrieved documentation to inject into the system prompt.
            history: Prior conversation, oldest first.
            on_stage: Called with each LLMStage as the request progresses.

        Yields:
            Reply fragments in arrival order. Failures yield a single
            user-facing message instead of raising.
        """

        def notify(stage: LLMStage) -> None:
            if on_stage is not None:
                on_stage(stage)

        if not self.settings.has_llm_credentials:
            logger.error("Aborting chat request: no LLM API key configured")
            notify(LLMStage.MISSING_CREDENTIALS)
            yield MISSING_API_KEY_MESSAGE
            return

        messages = build_messages(prompt, context, history)

        for position, endpoint in enumerate(self.endpoints):
            if position > 0:
                logger.info(
                    "Falling back to %s (stream=%s)", endpoint.url, endpoint.stream
                )
                notify(LLMStage.FALLBACK_STARTED)

            yielded_any = False
            try:
                if endpoint.stream:
                    async with aclosing(self._stream_endpoint(endpoint, messages, notify)) as fragments:
                        async for fragment in fragments:
                            yielded_any = True
                            yield fragment

                    if yielded_any:
                        logger.info("Streaming from %s completed", endpoint.url)
                        notify(LLMStage.STREAM_COMPLETED)
                        return

                    logger.warning("Streaming from %s yielded no content", endpoint.url)
                else:
                    content = await self._complete_endpoint(endpoint, messages, notify)
                    logger.info("Non-streaming request to %s succeeded", endpoint.url)
                    notify(LLMStage.FALLBACK_COMPLETED)
                    yield content
                    return

            except RateLimitExceeded as e:
                logger.error("Giving up on rate limited request: %s", e)
                notify(LLMStage.RATE_LIMITED)
                yield RATE_LIMITED_MESSAGE
                return

            except Exception as e:
                if yielded_any:
                    # Falling back now would repeat text the caller already has
                    logger.error("Stream from %s broke after partial content: %s", endpoint.url, e)
                    notify(LLMStage.FAILED)
                    return
                logger.error("Request to %s failed: %s", endpoint.url, e)

        logger.error("All LLM endpoints failed")
        notify(LLMStage.FAILED)
        yield LLM_UNAVAILABLE_MESSAGE

    async def generate_chat_response(
        self,
        prompt: str,
        context: Optional[str] = None,
        history: Optional[Sequence[ChatMessage]] = None,
    ) -> str:
        """Collect a full reply."""
        fragments: list[str] = []
        async for fragment in self.stream_chat_response(prompt, context, history):
            fragments.append(fragment)
        return "".join(fragments)

    async def _stream_endpoint(
        self,
        endpoint: LLMEndpoint,
        messages: Sequence[ChatMessage],
        notify: StageCallback,
    ) -> AsyncIterator[str]:
        body = self._request_body(messages, stream=True)
        response = await self._send_with_retry(endpoint, body, notify)
        try:
            if response.status_code == 429:
                raise RateLimitExceeded(f"{endpoint.url} still returned 429")
            if not response.is_success:
                await response.aread()
                raise LLMAPIError(response.status_code, response.text)

            decoder = SSEDecoder()
            async for text in response.aiter_text():
                for payload in decoder.feed(text):
                    content = extract_delta_content(payload)
                    if content:
                        yield content

            for payload in decoder.flush():
                content = extract_delta_content(payload)
                if content:
                    yield content
        finally:
            await response.aclose()

    async def _complete_endpoint(
        self,
        endpoint: LLMEndpoint,
        messages: Sequence[ChatMessage],
        notify: StageCallback,
    ) -> str:
        body = self._request_body(messages, stream=False)
        response = await self._send_with_retry(endpoint, body, notify)
        try:
            if response.status_code == 429:
                raise RateLimitExceeded(f"{endpoint.url} still returned 429")

            await response.aread()
            if not response.is_success:
                raise LLMAPIError(response.status_code, response.text)

            try:
                data = response.json()
            except ValueError as e:
                raise LLMResponseError(f"Invalid JSON from {endpoint.url}") from e

            content = extract_message_content(data)
            if not content:
                raise LLMResponseError("No content in completion response")
            return content
        finally:
            await response.aclose()

    async def _send_with_retry(
        self,
        endpoint: LLMEndpoint,
        body: dict[str, Any],
        notify: StageCallback,
    ) -> httpx.Response:
        """POST ``body``, retrying on HTTP 429 up to ``endpoint.max_retries`` times.

        Returns the open (unread) response of the last attempt; the caller
        must close it.
        """
        client = self._get_http_client()
        operation = "chat.completions.stream" if endpoint.stream else "chat.completions"
        attempt = 0

        while True:
            notify(LLMStage.REQUEST_STARTED)
            logger.info(
                "Sending request to %s (model=%s, stream=%s, attempt=%d)",
                endpoint.url,
                body["model"],
                endpoint.stream,
                attempt,
            )

            request = client.build_request("POST", endpoint.url, json=body, headers=self._headers())
            start = time.perf_counter()
            try:
                response = await client.send(request, stream=True)
            except httpx.HTTPError:
                duration_ms = (time.perf_counter() - start) * 1000
                self._metrics.observe_external_api("llm", operation, 0, duration_ms)
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            self._metrics.observe_external_api("llm", operation, response.status_code, duration_ms)
            logger.info(
                "LLM API %s status=%s duration_ms=%.2f",
                operation,
                response.status_code,
                duration_ms,
            )

            if response.status_code != 429 or attempt >= endpoint.max_retries:
                return response

            await response.aread()
            delay = parse_retry_delay(
                response, attempt, max_delay=self.settings.llm_max_retry_delay_seconds
            )
            await response.aclose()

            logger.warning(
                "429 rate limited. Waiting %.0fs before retry %d/%d",
                delay,
                attempt + 1,
                endpoint.max_retries,
            )
            notify(LLMStage.RETRY_SCHEDULED)
            await self._sleep(delay)
            attempt += 1


# Singleton instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


async def close_llm_client() -> None:
    """Close the shared client on application shutdown."""
    global _llm_client
    if _llm_client is not None:
        await _llm_client.aclose()
        _llm_client = None
