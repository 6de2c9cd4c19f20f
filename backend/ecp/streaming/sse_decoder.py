"""Incremental decoder for server-sent chat completion frames."""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"
# A held-back data line that keeps failing to parse is dropped past this size.
MAX_HELD_LINE_CHARS = 64 * 1024


class StreamDecodeError(RuntimeError):
    """Base error for chat stream decoding failures."""


class StreamTerminatedError(StreamDecodeError):
    """Raised when the stream closes before the terminal [DONE] frame."""


class StreamProviderError(StreamDecodeError):
    """Raised when the provider reports an error inside the stream."""


class StreamFrameDecoder:
    """Turn raw SSE chunks into ordered text deltas.

    Chunks may split lines, frames, JSON tokens or multi-byte characters
    anywhere. A line is only interpreted once its terminating newline has
    arrived, so the emitted delta sequence does not depend on how the input
    was chunked.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._held_line: str | None = None
        self._done = False
        self._finished = False
        self.malformed_frames = 0

    @property
    def done(self) -> bool:
        """True once the terminal [DONE] frame has been seen."""

        return self._done

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume one raw chunk and return the deltas it completed."""

        if self._finished:
            raise StreamDecodeError("feed() called after finish()")
        if self._done:
            return []
        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self._buffer += text

        deltas: list[str] = []
        while not self._done:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break
            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1 :]
            self._process_line(line, deltas)
        return deltas

    def finish(self) -> list[str]:
        """Signal end of input; raise unless the stream was properly terminated."""

        if self._finished:
            return []
        deltas: list[str] = []
        if not self._done:
            tail = self._buffer + self._utf8.decode(b"", final=True)
            self._buffer = ""
            if tail:
                # End of input terminates the last line.
                self._process_line(tail, deltas)
        if not self._done and self._held_line is not None:
            self._drop_held_line()
        self._finished = True
        if not self._done:
            raise StreamTerminatedError("Chat stream closed before the [DONE] frame was received.")
        return deltas

    def _process_line(self, line: str, deltas: list[str]) -> None:
        if line.endswith("\r"):
            line = line[:-1]

        if self._held_line is not None:
            if _is_frame_boundary(line):
                self._drop_held_line()
            else:
                candidate = self._held_line + line
                self._held_line = None
                self._process_data_payload(candidate, deltas)
                return

        if not line.strip() or line.startswith(":"):
            return
        if not line.startswith(DATA_PREFIX):
            return
        payload = line[len(DATA_PREFIX) :]
        if payload.startswith(" "):
            payload = payload[1:]
        self._process_data_payload(payload, deltas)

    def _process_data_payload(self, payload: str, deltas: list[str]) -> None:
        stripped = payload.strip()
        if stripped == DONE_SENTINEL:
            self._done = True
            return
        try:
            decoded = json.loads(stripped)
        except json.JSONDecodeError:
            if len(payload) > MAX_HELD_LINE_CHARS:
                self._held_line = payload
                self._drop_held_line()
            else:
                # Possibly split by a stray newline; retry joined with the next line.
                self._held_line = payload
            return

        if isinstance(decoded, dict) and decoded.get("error"):
            raise StreamProviderError(f"Chat provider reported an error: {_error_message(decoded['error'])}")
        content = _delta_content(decoded)
        if content:
            deltas.append(content)

    def _drop_held_line(self) -> None:
        self.malformed_frames += 1
        logger.warning(
            "chat_stream.malformed_frame dropped_chars=%d malformed_frames=%d",
            len(self._held_line or ""),
            self.malformed_frames,
        )
        self._held_line = None


def iter_stream_deltas(chunks: Iterable[bytes | str]) -> Iterator[str]:
    """Yield text deltas from raw chunks; raise if the stream ends without [DONE]."""

    decoder = StreamFrameDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            break
    yield from decoder.finish()


def _is_frame_boundary(line: str) -> bool:
    return not line.strip() or line.startswith(":") or line.startswith(DATA_PREFIX)


def _delta_content(decoded: Any) -> str | None:
    try:
        content = decoded["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
