"""HTTP tests for the streamed chat route."""

from __future__ import annotations

import json
import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ecp.db.dependencies import get_session_factory
from ecp.main import app
from ecp.models.base import Base
from ecp.models.business_context import BusinessContext
from ecp.models.conversation_history import ConversationHistory
from ecp.routers.chat import get_chat_client_factory, get_repository_reader_factory
from ecp.services.business_chat import get_turn_guard
from ecp.services.chat_client import ChatQuotaExceededError, ChatRateLimitedError, ChatServiceError
from ecp.services.conversations import load_history
from ecp.services.github import RepositoryInfo
from ecp.tracking.types import RepoFileEntry


class _StubStreamClient:
    def __init__(self, reply: str | Exception, *, done: bool = True) -> None:
        self.reply = reply
        self.done = done
        self.calls: list[list[dict[str, str]]] = []

    def open_stream(self, messages: list[dict[str, str]]) -> list[bytes]:
        self.calls.append(messages)
        if isinstance(self.reply, Exception):
            raise self.reply
        frames = [
            ("data: " + json.dumps({"choices": [{"delta": {"content": self.reply[i : i + 8]}}]}) + "\n\n").encode("utf-8")
            for i in range(0, len(self.reply), 8)
        ]
        if self.done:
            frames.append(b"data: [DONE]\n\n")
        return frames


class _StubRepoReader:
    def describe(self) -> RepositoryInfo:
        return RepositoryInfo(full_name="acme/kits", language="TypeScript")

    def list_files(self) -> list[RepoFileEntry]:
        return []

    def read_file(self, path: str) -> str:
        raise AssertionError(path)


def _data_lines(body: str) -> list[str]:
    return [line[len("data: ") :] for line in body.split("\n") if line.startswith("data: ")]


class ChatStreamRouteTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        cls.engine.dispose()

    def setUp(self) -> None:
        with self.SessionLocal() as db:
            db.execute(delete(ConversationHistory))
            db.execute(delete(BusinessContext))
            db.commit()
        self.client = _StubStreamClient("Hello there!\nCONFIDENCE:20")
        app.dependency_overrides[get_session_factory] = lambda: self.SessionLocal
        app.dependency_overrides[get_chat_client_factory] = lambda: (lambda: self.client)
        app.dependency_overrides[get_repository_reader_factory] = lambda: (lambda url, token: _StubRepoReader())
        self.http = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _post(self, conversation_id: str = "c1", **body) -> object:
        payload = {"content": "Hi"}
        payload.update(body)
        return self.http.post(f"/projects/p1/conversations/{conversation_id}/chat/stream", json=payload)

    def test_completed_turn_streams_frames_then_done(self) -> None:
        response = self._post()

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        lines = _data_lines(response.text)
        self.assertEqual(lines[-1], "[DONE]")
        final = json.loads(lines[-2])
        self.assertEqual(
            final,
            {"display_text": "Hello there!", "confidence": 20, "context_ready": False, "done": True},
        )
        for line in lines[:-2]:
            self.assertFalse(json.loads(line)["done"])
        with self.SessionLocal() as db:
            stored = load_history(db, "c1")
            assert stored is not None
            self.assertEqual(stored.messages_json[-1], {"role": "assistant", "content": "Hello there!"})

    def test_upstream_limits_map_to_status_codes_before_streaming(self) -> None:
        self.client = _StubStreamClient(ChatRateLimitedError("Rate limit exceeded, please try again shortly."))
        limited = self._post()
        self.assertEqual(limited.status_code, 429)
        self.assertIn("Rate limit", limited.json()["detail"])

        self.client = _StubStreamClient(ChatQuotaExceededError("AI credits exhausted. Please add funds."))
        exhausted = self._post()
        self.assertEqual(exhausted.status_code, 402)
        self.assertIn("credits", exhausted.json()["detail"])

    def test_missing_provider_configuration_is_503(self) -> None:
        def _unconfigured():
            raise ChatServiceError("OPENAI_API_KEY is not configured.")

        app.dependency_overrides[get_chat_client_factory] = lambda: _unconfigured

        response = self._post()

        self.assertEqual(response.status_code, 503)

    def test_stream_failure_after_start_sends_error_frame_without_done(self) -> None:
        self.client = _StubStreamClient("Hello there!\nCONFIDENCE:20", done=False)

        response = self._post()

        self.assertEqual(response.status_code, 200)
        lines = _data_lines(response.text)
        self.assertNotIn("[DONE]", lines)
        self.assertIn("error", json.loads(lines[-1]))
        with self.SessionLocal() as db:
            self.assertIsNone(load_history(db, "c1"))

    def test_conversation_with_a_turn_in_flight_is_409(self) -> None:
        guard = get_turn_guard()
        self.assertTrue(guard.acquire("c-busy"))
        try:
            response = self._post("c-busy")
        finally:
            guard.release("c-busy")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.client.calls, [])
        self.assertEqual(self._post("c-busy").status_code, 200)

    def test_github_url_supplies_repository_context(self) -> None:
        response = self._post(github_url="https://github.com/acme/kits")

        self.assertEqual(response.status_code, 200)
        self.assertIn("Repository: acme/kits", self.client.calls[0][0]["content"])

    def test_empty_message_is_rejected(self) -> None:
        self.assertEqual(self._post(content="").status_code, 422)
        self.assertEqual(self._post(content="   ").status_code, 400)


if __name__ == "__main__":
    unittest.main()
