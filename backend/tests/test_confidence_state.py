"""Tests for the onboarding confidence state machine."""

from __future__ import annotations

import unittest
from concurrent.futures import ThreadPoolExecutor

from ecp.streaming.confidence import ConfidenceStateMachine
from ecp.streaming.directives import extract_directives
from ecp.streaming.types import (
    ConfidenceDirective,
    ContextCompleteDirective,
    ConversationPhase,
    ConversationState,
    PartialContextDirective,
)


def _confidence(value: int) -> ConfidenceDirective:
    return ConfidenceDirective(value=value, start=0, end=0)


class ConfidenceStateMachineTests(unittest.TestCase):
    def test_last_applied_confidence_wins_while_gathering(self) -> None:
        machine = ConfidenceStateMachine()

        for value in (10, 5, 40):
            machine.apply(_confidence(value))

        self.assertEqual(machine.phase, ConversationPhase.GATHERING)
        self.assertEqual(machine.state.confidence, 40)

    def test_context_complete_wins_over_confidence_in_same_text(self) -> None:
        text = (
            "Here is what I learned.\n"
            'CONTEXT_COMPLETE:{"product_description":"A flashcard app","audience":"null"}\n'
            "CONFIDENCE:60"
        )
        machine = ConfidenceStateMachine()

        state = machine.apply_all(extract_directives(text).directives)

        self.assertEqual(state.phase, ConversationPhase.READY)
        self.assertEqual(state.confidence, 100)
        self.assertTrue(state.context_ready)
        self.assertEqual(state.business_fields, {"product_description": "A flashcard app"})

    def test_ready_ignores_later_confidence_until_cleared(self) -> None:
        machine = ConfidenceStateMachine(ConversationState(context_ready=True, confidence=90))
        self.assertEqual(machine.state.confidence, 100)

        machine.apply(_confidence(20))
        self.assertEqual(machine.state.confidence, 100)

        cleared = machine.clear()
        self.assertEqual(cleared.phase, ConversationPhase.GATHERING)
        self.assertEqual(cleared.confidence, 0)
        self.assertEqual(cleared.business_fields, {})

        machine.apply(_confidence(20))
        self.assertEqual(machine.state.confidence, 20)

    def test_partial_context_reaches_sink_without_changing_state(self) -> None:
        saved: list[dict[str, str]] = []
        machine = ConfidenceStateMachine(ConversationState(confidence=35), sink=saved.append)

        state = machine.apply(PartialContextDirective(fields={"stage": "early"}, start=0, end=0))

        self.assertEqual(saved, [{"stage": "early"}])
        self.assertEqual(state.confidence, 35)
        self.assertEqual(state.business_fields, {})

    def test_sink_failure_is_contained(self) -> None:
        def _failing_sink(fields: dict[str, str]) -> None:
            raise ValueError("database unavailable")

        machine = ConfidenceStateMachine(sink=_failing_sink)

        with self.assertLogs("ecp.streaming.confidence", level="ERROR"):
            machine.apply(PartialContextDirective(fields={"goals": "retention"}, start=0, end=0))
        machine.apply(_confidence(15))
        self.assertEqual(machine.state.confidence, 15)

    def test_sink_runs_on_executor(self) -> None:
        saved: list[dict[str, str]] = []
        with ThreadPoolExecutor(max_workers=1) as executor:
            machine = ConfidenceStateMachine(sink=saved.append, executor=executor)
            machine.apply(PartialContextDirective(fields={"audience": "Clinics"}, start=0, end=0))

        self.assertEqual(saved, [{"audience": "Clinics"}])

    def test_context_complete_applies_regardless_of_prior_confidence(self) -> None:
        machine = ConfidenceStateMachine()
        machine.apply(_confidence(12))

        machine.apply(ContextCompleteDirective(fields={"goals": "Grow MRR"}, start=0, end=0))

        self.assertEqual(machine.state.confidence, 100)
        self.assertEqual(machine.phase, ConversationPhase.READY)


if __name__ == "__main__":
    unittest.main()
