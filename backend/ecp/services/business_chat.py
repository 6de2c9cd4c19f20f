"""Business-context onboarding chat over a streamed completion."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterator
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from threading import Event, Lock
from time import perf_counter

from sqlalchemy.orm import Session

from ecp.config import get_settings
from ecp.services.business_context import (
    get_conversation_state,
    make_partial_context_sink,
    save_conversation_state,
)
from ecp.services.chat_client import ChatStreamClient, get_default_chat_client
from ecp.services.conversations import load_history, save_history
from ecp.services.github import RepositoryAccessError, RepositoryReader
from ecp.services.repo_context import build_repository_context
from ecp.streaming.confidence import ConfidenceStateMachine, PartialContextSink
from ecp.streaming.directives import ControlDirectiveExtractor
from ecp.streaming.sse_decoder import StreamFrameDecoder
from ecp.streaming.types import ConversationState, Directive, PartialContextDirective

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are ECP's onboarding assistant. Your goal is to understand the user's business so the platform can deliver event analytics insights tailored to it.

Gather information across these dimensions:
1. PRODUCT: what the product does and its core value proposition
2. AUDIENCE: who the target users or customers are
3. GOALS: key metrics, KPIs, or business goals they track
4. STAGE: product maturity (pre-launch, early, growing, mature)
5. CHALLENGES: analytics challenges they face and which events matter

If repository context is provided, lead with your own reading of it as confident statements and ask the user to confirm or correct it instead of asking open-ended questions. Keep replies brief (2-4 sentences) and ask one focused follow-up at a time.

Whenever you learn something new, you may save it early with a line:
PARTIAL_CONTEXT:{"product_description":"...","audience":"...","goals":"...","stage":"...","challenges":"..."}
Use the string "null" for dimensions you do not know yet.

When your confidence reaches 85 or more, summarize what you learned, followed by:
CONTEXT_COMPLETE:{"product_description":"...","audience":"...","goals":"...","stage":"...","challenges":"..."}

You MUST end EVERY response with a confidence tag on its own line:
CONFIDENCE:XX
where XX (0-100) is how well you understand the business across all five dimensions. A casual greeting must not increase confidence. The CONFIDENCE tag must always be the very last line."""


class BusinessChatError(RuntimeError):
    """Raised when a chat turn cannot be started."""


class ChatTurnInProgressError(BusinessChatError):
    """Raised when a second turn starts before the previous stream finished."""


class ConversationTurnGuard:
    """Process-wide registry of conversations that have a turn streaming."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._active: set[str] = set()

    def acquire(self, conversation_id: str) -> bool:
        with self._lock:
            if conversation_id in self._active:
                return False
            self._active.add(conversation_id)
            return True

    def release(self, conversation_id: str) -> None:
        with self._lock:
            self._active.discard(conversation_id)


@lru_cache
def get_turn_guard() -> ConversationTurnGuard:
    """Shared guard so separate sessions of one conversation never stream at once."""

    return ConversationTurnGuard()


@dataclass(slots=True)
class ChatTurnUpdate:
    """Snapshot emitted while a turn streams; the last one has ``done=True``."""

    display_text: str
    state: ConversationState
    done: bool = False


@dataclass(slots=True)
class TurnStats:
    deltas: int = 0
    partial_saves: int = 0
    directives: list[Directive] = field(default_factory=list)


class ChatTurnStream:
    """Iterator over one turn's updates; closing it early cancels the turn."""

    def __init__(self, updates: Generator[ChatTurnUpdate, None, None], finalize: Callable[[], None]) -> None:
        self._updates = updates
        self._finalize = finalize

    def __iter__(self) -> "ChatTurnStream":
        return self

    def __next__(self) -> ChatTurnUpdate:
        return next(self._updates)

    def close(self) -> None:
        self._updates.close()
        self._finalize()

    def __del__(self) -> None:
        self.close()


@lru_cache
def get_partial_context_executor() -> Executor:
    """Shared worker pool for fire-and-forget partial context saves."""

    return ThreadPoolExecutor(max_workers=2, thread_name_prefix="partial-context")


class BusinessChatSession:
    """One onboarding conversation: history, directive parsing and state.

    Turns are strictly sequential per conversation, also across sessions
    that share a turn guard. Confidence and context-complete directives
    are applied only once the stream reaches its terminal frame, so a
    cancelled turn leaves the state, the history and persistence untouched.
    """

    def __init__(
        self,
        project_id: str,
        conversation_id: str,
        *,
        client: ChatStreamClient,
        state: ConversationState | None = None,
        history: list[dict[str, str]] | None = None,
        repo_context: str | None = None,
        partial_context_sink: PartialContextSink | None = None,
        executor: Executor | None = None,
        on_complete: Callable[["BusinessChatSession"], None] | None = None,
        extractor: ControlDirectiveExtractor | None = None,
        repo_context_max_chars: int = 8000,
        turn_guard: ConversationTurnGuard | None = None,
    ) -> None:
        self.project_id = project_id
        self.conversation_id = conversation_id
        self.history: list[dict[str, str]] = list(history or [])
        self.repo_context = repo_context
        self.machine = ConfidenceStateMachine(state, sink=partial_context_sink, executor=executor)
        self._client = client
        self._on_complete = on_complete
        self._extractor = extractor or ControlDirectiveExtractor()
        self._repo_context_max_chars = repo_context_max_chars
        self._turn_guard = turn_guard or get_turn_guard()
        self.last_turn: TurnStats | None = None

    @property
    def state(self) -> ConversationState:
        return self.machine.state

    def clear_context(self) -> ConversationState:
        """Explicit context reset back to ``Gathering(0)``."""

        return self.machine.clear()

    def build_messages(self, user_content: str) -> list[dict[str, str]]:
        """Model input: system prompt, prior turns, then the new user message."""

        system_prompt = SYSTEM_PROMPT
        if self.repo_context and self.repo_context.strip():
            system_prompt += (
                "\n\nThe user has connected their GitHub repository. Use this context about their "
                "codebase to ask smarter, more relevant questions:\n\n"
                + self.repo_context.strip()[: self._repo_context_max_chars]
            )
        messages = [{"role": "system", "content": system_prompt}]
        for message in self.history:
            role = str(message.get("role", "")).strip().lower()
            content = str(message.get("content", "")).strip()
            if role in {"user", "assistant"} and content:
                messages.append({"role": role, "content": content})
        messages.append({"role": "user", "content": user_content})
        return messages

    def start_turn(self, user_content: str, cancel_event: Event | None = None) -> ChatTurnStream:
        """Open the upstream stream and return an iterator of turn updates.

        Transport errors are raised here, before anything is streamed.
        """

        content = user_content.strip()
        if not content:
            raise BusinessChatError("Message content cannot be empty.")
        if not self._turn_guard.acquire(self.conversation_id):
            raise ChatTurnInProgressError(
                f"Conversation {self.conversation_id} already has a turn in progress."
            )
        try:
            chunks = self._client.open_stream(self.build_messages(content))
        except BaseException:
            self._turn_guard.release(self.conversation_id)
            raise
        finished = False

        def _finish() -> None:
            nonlocal finished
            if finished:
                return
            finished = True
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
            self._turn_guard.release(self.conversation_id)

        return ChatTurnStream(self._stream_turn(content, chunks, cancel_event, _finish), _finish)

    def _stream_turn(
        self,
        user_content: str,
        chunks: Iterator[bytes],
        cancel_event: Event | None,
        finish: Callable[[], None],
    ) -> Generator[ChatTurnUpdate, None, None]:
        started = perf_counter()
        stats = TurnStats()
        dispatched: set[tuple[tuple[str, str], ...]] = set()
        decoder = StreamFrameDecoder()
        iterator = iter(chunks)
        text = ""
        completed = False
        try:
            while not decoder.done:
                if cancel_event is not None and cancel_event.is_set():
                    return
                chunk = next(iterator, None)
                if chunk is None:
                    break
                deltas = decoder.feed(chunk)
                if not deltas:
                    continue
                stats.deltas += len(deltas)
                text += "".join(deltas)
                extraction = self._extractor.extract(text, final=False)
                self._dispatch_partial_context(extraction.directives, dispatched, stats)
                yield ChatTurnUpdate(display_text=extraction.display_text, state=_snapshot(self.state))

            if cancel_event is not None and cancel_event.is_set():
                return
            text += "".join(decoder.finish())

            final = self._extractor.extract(text)
            self._dispatch_partial_context(final.directives, dispatched, stats)
            self.machine.apply_all(
                directive for directive in final.directives if not isinstance(directive, PartialContextDirective)
            )
            stats.directives = list(final.directives)
            self.history.append({"role": "user", "content": user_content})
            self.history.append({"role": "assistant", "content": final.display_text})
            self.last_turn = stats
            completed = True
            if self._on_complete is not None:
                self._on_complete(self)
            logger.info(
                (
                    "business_chat.turn_timing project_id=%s conversation_id=%s deltas=%d "
                    "directives=%d partial_saves=%d confidence=%d context_ready=%s total_ms=%.2f"
                ),
                self.project_id,
                self.conversation_id,
                stats.deltas,
                len(stats.directives),
                stats.partial_saves,
                self.state.confidence,
                self.state.context_ready,
                (perf_counter() - started) * 1000.0,
            )
            yield ChatTurnUpdate(display_text=final.display_text, state=_snapshot(self.state), done=True)
        finally:
            if not completed:
                logger.info(
                    "business_chat.turn_abandoned project_id=%s conversation_id=%s deltas=%d elapsed_ms=%.2f",
                    self.project_id,
                    self.conversation_id,
                    stats.deltas,
                    (perf_counter() - started) * 1000.0,
                )
            finish()

    def _dispatch_partial_context(
        self,
        directives: list[Directive],
        dispatched: set[tuple[tuple[str, str], ...]],
        stats: TurnStats,
    ) -> None:
        for directive in directives:
            if not isinstance(directive, PartialContextDirective):
                continue
            key = tuple(sorted(directive.fields.items()))
            if key in dispatched:
                continue
            dispatched.add(key)
            stats.partial_saves += 1
            self.machine.apply(directive)


def run_business_chat_turn(
    db: Session,
    project_id: str,
    conversation_id: str,
    *,
    user_content: str,
    repo_context: str | None = None,
    client: ChatStreamClient | None = None,
    partial_context_sink: PartialContextSink | None = None,
    executor: Executor | None = None,
    cancel_event: Event | None = None,
    repo_reader: RepositoryReader | None = None,
    turn_guard: ConversationTurnGuard | None = None,
) -> ChatTurnStream:
    """Load stored state, stream one turn, and persist it once it completes.

    Without an explicit ``repo_context`` the context is built from
    ``repo_reader`` when one is given; a repository that cannot be read only
    means the turn runs without it.
    """

    stored = load_history(db, conversation_id)
    if stored is not None and stored.project_id != project_id:
        raise BusinessChatError(f"Conversation {conversation_id} belongs to another project.")
    expected_version = stored.version if stored is not None else None

    if not (repo_context and repo_context.strip()) and repo_reader is not None:
        try:
            repo_context = build_repository_context(repo_reader).render()
        except RepositoryAccessError as exc:
            logger.warning(
                "business_chat.repo_context_unavailable project_id=%s conversation_id=%s error=%s",
                project_id,
                conversation_id,
                exc,
            )
            repo_context = None

    def _persist(session: BusinessChatSession) -> None:
        save_history(
            db,
            conversation_id,
            project_id,
            session.history,
            expected_version=expected_version,
        )
        save_conversation_state(db, project_id, session.state)

    session = BusinessChatSession(
        project_id,
        conversation_id,
        client=client or get_default_chat_client(),
        state=get_conversation_state(db, project_id),
        history=list(stored.messages_json) if stored is not None else [],
        repo_context=repo_context,
        partial_context_sink=partial_context_sink or make_partial_context_sink(project_id),
        executor=executor if executor is not None else get_partial_context_executor(),
        on_complete=_persist,
        repo_context_max_chars=get_settings().repo_context_max_chars,
        turn_guard=turn_guard,
    )
    return session.start_turn(user_content, cancel_event=cancel_event)


def _snapshot(state: ConversationState) -> ConversationState:
    return ConversationState(
        context_ready=state.context_ready,
        confidence=state.confidence,
        business_fields=dict(state.business_fields),
    )
