"""Onboarding confidence state machine driven by chat directives."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Executor

from ecp.streaming.types import (
    ConfidenceDirective,
    ContextCompleteDirective,
    ConversationPhase,
    ConversationState,
    Directive,
    PartialContextDirective,
)

logger = logging.getLogger(__name__)

PartialContextSink = Callable[[dict[str, str]], None]


class ConfidenceStateMachine:
    """Gathering(confidence) -> Ready, with directives as the only inputs.

    ``Ready`` is terminal until :meth:`clear` is called. Partial context
    directives never change state; their fields are handed to ``sink`` on a
    best-effort basis, through ``executor`` when one is given so the stream
    consumer is never blocked.
    """

    def __init__(
        self,
        state: ConversationState | None = None,
        *,
        sink: PartialContextSink | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._state = state or ConversationState()
        if self._state.context_ready:
            self._state.confidence = 100
        self._sink = sink
        self._executor = executor

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def phase(self) -> ConversationPhase:
        return self._state.phase

    def apply(self, directive: Directive) -> ConversationState:
        """Apply one directive and return the resulting state."""

        if isinstance(directive, ContextCompleteDirective):
            self._state.business_fields.update(directive.fields)
            self._state.confidence = 100
            self._state.context_ready = True
        elif isinstance(directive, ConfidenceDirective):
            if not self._state.context_ready:
                self._state.confidence = directive.value
        elif isinstance(directive, PartialContextDirective):
            self._dispatch_partial_context(dict(directive.fields))
        return self._state

    def apply_all(self, directives: Iterable[Directive]) -> ConversationState:
        """Apply directives left to right; later ones overwrite earlier ones."""

        for directive in directives:
            self.apply(directive)
        return self._state

    def clear(self) -> ConversationState:
        """Reset to ``Gathering(0)`` and forget gathered fields."""

        self._state = ConversationState()
        return self._state

    def _dispatch_partial_context(self, fields: dict[str, str]) -> None:
        if self._sink is None or not fields:
            return
        if self._executor is None:
            _run_sink(self._sink, fields)
            return
        try:
            self._executor.submit(_run_sink, self._sink, fields)
        except RuntimeError:
            logger.warning("chat_state.partial_context_dispatch_failed fields=%s", sorted(fields))


def _run_sink(sink: PartialContextSink, fields: dict[str, str]) -> None:
    try:
        sink(fields)
    except Exception:
        logger.exception("chat_state.partial_context_save_failed fields=%s", sorted(fields))
