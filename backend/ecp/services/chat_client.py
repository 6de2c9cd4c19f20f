"""Streaming chat completion client for the business-context assistant."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from ecp.config import get_settings

STREAM_READ_SIZE = 4096


class ChatStreamError(RuntimeError):
    """Raised when the chat stream cannot be opened or continued."""


class ChatRateLimitedError(ChatStreamError):
    """Upstream rate limit (HTTP 429)."""


class ChatQuotaExceededError(ChatStreamError):
    """Upstream credits exhausted (HTTP 402)."""


class ChatServiceError(ChatStreamError):
    """Upstream failure, misconfiguration, or network error."""


class ChatStreamClient(Protocol):
    """Protocol for streaming chat completion providers."""

    def open_stream(self, messages: list[dict[str, str]]) -> Iterator[bytes]:
        """Open the upstream stream and return an iterator over raw SSE chunks.

        Transport errors must be raised by this call, before any chunk is
        yielded.
        """


@dataclass(slots=True)
class OpenAIStreamingChatClient:
    """OpenAI-compatible chat completions client with ``stream: true``."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60

    def open_stream(self, messages: list[dict[str, str]]) -> Iterator[bytes]:
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
        )
        try:
            resp = urllib_request.urlopen(req, timeout=self.timeout_seconds)
        except urllib_error.HTTPError as exc:
            raise _map_http_error(exc.code, exc.read().decode("utf-8", errors="replace")) from exc
        except urllib_error.URLError as exc:
            raise ChatServiceError(f"Chat request failed: {exc.reason}") from exc
        return _iter_response_chunks(resp)


def _iter_response_chunks(resp) -> Iterator[bytes]:
    try:
        while True:
            try:
                chunk = resp.read1(STREAM_READ_SIZE)
            except OSError as exc:
                raise ChatServiceError(f"Chat stream interrupted: {exc}") from exc
            if not chunk:
                return
            yield chunk
    finally:
        resp.close()


def _map_http_error(status: int, detail: str) -> ChatStreamError:
    if status == 429:
        return ChatRateLimitedError("Rate limit exceeded, please try again shortly.")
    if status == 402:
        return ChatQuotaExceededError("AI credits exhausted. Please add funds.")
    return ChatServiceError(f"Chat provider HTTP {status}: {detail[:500]}")


def get_default_chat_client() -> ChatStreamClient:
    """Return the configured streaming chat client."""

    settings = get_settings()
    if not settings.openai_api_key:
        raise ChatServiceError(
            "OPENAI_API_KEY is not configured. Set it in backend/.env before using the chat."
        )
    return OpenAIStreamingChatClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.openai_timeout_seconds,
    )
