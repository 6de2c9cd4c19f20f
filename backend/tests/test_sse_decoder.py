"""Tests for the incremental chat stream decoder."""

from __future__ import annotations

import json
import unittest

from ecp.streaming.sse_decoder import (
    StreamFrameDecoder,
    StreamProviderError,
    StreamTerminatedError,
    iter_stream_deltas,
)


def _frame(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n\n"


def _decode_all(chunks: list[bytes]) -> list[str]:
    decoder = StreamFrameDecoder()
    deltas: list[str] = []
    for chunk in chunks:
        deltas.extend(decoder.feed(chunk))
    deltas.extend(decoder.finish())
    return deltas


class StreamFrameDecoderTests(unittest.TestCase):
    def test_split_frame_emits_nothing_until_line_completes(self) -> None:
        decoder = StreamFrameDecoder()

        self.assertEqual(decoder.feed(b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'), ["Hi"])
        self.assertEqual(decoder.feed(b'data: {"choices":[{"delta":'), [])
        self.assertEqual(decoder.feed(b'{"content":" there"}}]}\n\n'), [" there"])
        self.assertEqual(decoder.feed(b"data: [DONE]\n\n"), [])
        self.assertTrue(decoder.done)
        self.assertEqual(decoder.finish(), [])
        self.assertEqual(decoder.malformed_frames, 0)

    def test_output_is_independent_of_chunk_boundaries(self) -> None:
        raw = (
            ": keep-alive\n\n"
            + _frame("Café ")
            + _frame("naïve \U0001f600 ")
            + 'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
            + _frame("ok\nCONFIDENCE:40")
            + "data: [DONE]\n\n"
        ).encode("utf-8")
        expected = _decode_all([raw])

        self.assertEqual(expected, ["Café ", "naïve \U0001f600 ", "ok\nCONFIDENCE:40"])
        for size in (1, 2, 3, 5, 7, 13, 64):
            chunks = [raw[i : i + size] for i in range(0, len(raw), size)]
            self.assertEqual(_decode_all(chunks), expected, msg=f"chunk size {size}")

    def test_crlf_line_endings_are_accepted(self) -> None:
        raw = _frame("a").replace("\n", "\r\n") + "data: [DONE]\r\n\r\n"

        self.assertEqual(_decode_all([raw.encode("utf-8")]), ["a"])

    def test_stream_closed_without_done_raises(self) -> None:
        decoder = StreamFrameDecoder()
        decoder.feed(_frame("partial").encode("utf-8"))

        with self.assertRaises(StreamTerminatedError):
            decoder.finish()

    def test_trailing_done_without_newline_terminates_at_end_of_input(self) -> None:
        deltas = _decode_all([(_frame("x") + "data: [DONE]").encode("utf-8")])

        self.assertEqual(deltas, ["x"])

    def test_frames_after_done_are_ignored(self) -> None:
        deltas = list(iter_stream_deltas([_frame("one") + "data: [DONE]\n\n" + _frame("late")]))

        self.assertEqual(deltas, ["one"])

    def test_malformed_frame_is_dropped_and_stream_continues(self) -> None:
        decoder = StreamFrameDecoder()
        raw = 'data: {"choices": [oops\n\n' + _frame("after") + "data: [DONE]\n\n"

        deltas = decoder.feed(raw.encode("utf-8"))
        decoder.finish()

        self.assertEqual(deltas, ["after"])
        self.assertEqual(decoder.malformed_frames, 1)

    def test_data_line_broken_by_stray_newline_is_rejoined(self) -> None:
        raw = 'data: {"choices":[{"delta":{"content":"jo\nined"}}]}\n\ndata: [DONE]\n\n'

        self.assertEqual(_decode_all([raw.encode("utf-8")]), ["joined"])

    def test_provider_error_payload_raises(self) -> None:
        decoder = StreamFrameDecoder()

        with self.assertRaises(StreamProviderError) as ctx:
            decoder.feed(b'data: {"error": {"message": "overloaded"}}\n\n')
        self.assertIn("overloaded", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
