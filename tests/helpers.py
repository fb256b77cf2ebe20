"""Shared builders and fakes for backend tests."""

import asyncio
import json
from typing import AsyncIterator, Optional, Sequence

import httpx

from donjed_assistant.knowledge.models import ChunkMetadata, DocumentChunk
from donjed_assistant.services.llm_client import ChatMessage, LLMStage, StageCallback

PRIMARY_BASE_URL = "https://llm.test/v1beta/openai/"
FALLBACK_BASE_URL = "https://direct.test/v1beta/openai/"
PRIMARY_URL = f"{PRIMARY_BASE_URL}chat/completions"
FALLBACK_URL = f"{FALLBACK_BASE_URL}chat/completions"


def make_chunk(text: str, source: str = "doc", index: int = 0, total_pages: int = 1) -> DocumentChunk:
    """Build a chunk with an id that satisfies the knowledge base invariant."""
    return DocumentChunk(
        id=f"{source}_chunk_{index}",
        text=text,
        source=source,
        metadata=ChunkMetadata(file_name=source, total_pages=total_pages, chunk_index=index),
    )


def sse_frame(content: str) -> str:
    """One chat completion streaming frame."""
    payload = {"choices": [{"index": 0, "delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n"


def sse_body(*fragments: str) -> bytes:
    """A complete SSE body with a frame per fragment and the done marker."""
    return ("".join(sse_frame(fragment) for fragment in fragments) + "data: [DONE]\n\n").encode()


def completion_body(content: str) -> dict:
    """A non-streaming chat completion response."""
    return {
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}}
        ]
    }


class TrackingStream(httpx.AsyncByteStream):
    """Response body that yields the given pieces and records closing."""

    def __init__(self, pieces: Sequence[bytes], error: Exception | None = None) -> None:
        self.pieces = list(pieces)
        self.error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for piece in self.pieces:
            yield piece
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeLLMClient:
    """LLM client double yielding canned fragments and recording calls.

    ``gate`` holds the stream before its first fragment until set;
    ``stages`` are reported through ``on_stage`` once the fragments are out.
    """

    def __init__(
        self,
        fragments: Sequence[str] = ("Hello", " there"),
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
        stages: Sequence[LLMStage] = (),
    ) -> None:
        self.fragments = list(fragments)
        self.error = error
        self.gate = gate
        self.stages = list(stages)
        self.calls: list[dict] = []

    async def stream_chat_response(
        self,
        prompt: str,
        context: Optional[str] = None,
        history: Optional[Sequence[ChatMessage]] = None,
        on_stage: StageCallback | None = None,
    ) -> AsyncIterator[str]:
        self.calls.append(
            {"prompt": prompt, "context": context, "history": list(history or [])}
        )
        if self.gate is not None:
            await self.gate.wait()
        for fragment in self.fragments:
            yield fragment
        if self.error is not None:
            raise self.error
        for stage in self.stages:
            if on_stage is not None:
                on_stage(stage)

