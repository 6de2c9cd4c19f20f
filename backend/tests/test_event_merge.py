"""Tests for the event dictionary merge engine."""

from __future__ import annotations

import unittest

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ecp.models.base import Base
from ecp.models.codebase_file import CodebaseFile
from ecp.models.event_annotation import EventAnnotation
from ecp.models.live_event import LiveEvent
from ecp.services.event_merge import (
    UNANNOTATED_STATUS,
    build_event_dictionary,
    dedupe_matches,
    merge_events,
)
from ecp.services.live_events import get_live_counts, record_live_events
from ecp.tracking.types import TrackingCallMatch


def _annotation(name: str, status: str = "verified") -> EventAnnotation:
    return EventAnnotation(project_id="p1", event_name=name, status=status)


class MergeEventsTests(unittest.TestCase):
    def test_union_of_sources_with_attribution(self) -> None:
        merged = merge_events(
            annotations=[
                _annotation("signup", "discovered"),
                _annotation("legacy_export", "deprecated"),
                _annotation("invite_sent", "verified"),
                _annotation("page_view", "discovered"),
            ],
            live_counts={"page_view": 12, "invite_sent": 3, "app_opened": 7, "never_seen": 0},
            code_event_names=["signup", "checkout_started"],
        )

        by_name = {event.event_name: event for event in merged}
        self.assertEqual(
            [event.event_name for event in merged],
            ["app_opened", "checkout_started", "invite_sent", "legacy_export", "page_view", "signup"],
        )
        self.assertEqual(by_name["signup"].source, "codebase")
        self.assertEqual(by_name["checkout_started"].source, "codebase")
        self.assertEqual(by_name["page_view"].source, "live")
        self.assertEqual(by_name["page_view"].live_count, 12)
        self.assertEqual(by_name["app_opened"].source, "live")
        self.assertEqual(by_name["invite_sent"].source, "manual")
        self.assertEqual(by_name["legacy_export"].source, "manual")

    def test_unannotated_rows_are_flagged(self) -> None:
        merged = merge_events([], {"app_opened": 2}, ["checkout_started"])

        for event in merged:
            self.assertFalse(event.is_annotated)
            self.assertIsNone(event.annotation)
            self.assertEqual(event.status, UNANNOTATED_STATUS)

    def test_annotated_rows_keep_their_status(self) -> None:
        merged = merge_events([_annotation("signup", "deprecated")], {}, ["signup"])

        self.assertTrue(merged[0].is_annotated)
        self.assertEqual(merged[0].status, "deprecated")

    def test_dedupe_keeps_first_match_per_call_site(self) -> None:
        generic = TrackingCallMatch("checkout", "cart.js", 3, "snippet", "method_call")
        specific = TrackingCallMatch("checkout", "cart.js", 3, "snippet", "mixpanel_track")
        other_line = TrackingCallMatch("checkout", "cart.js", 9, "snippet", "method_call")
        other_file = TrackingCallMatch("checkout", "pay.js", 3, "snippet", "method_call")

        unique = dedupe_matches([generic, specific, other_line, other_file])

        self.assertEqual(unique, [generic, other_line, other_file])


class EventDictionaryTests(unittest.TestCase):
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
        self.db = self.SessionLocal()
        self.db.execute(delete(EventAnnotation))
        self.db.execute(delete(LiveEvent))
        self.db.execute(delete(CodebaseFile))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_live_counts_aggregate_per_project(self) -> None:
        recorded = record_live_events(self.db, "p1", ["page_view", "page_view", " ", "signup"])
        record_live_events(self.db, "p2", ["page_view"])

        self.assertEqual(recorded, 3)
        self.assertEqual(get_live_counts(self.db, "p1"), {"page_view": 2, "signup": 1})

    def test_dictionary_uses_indexed_code_evidence(self) -> None:
        self.db.add(_annotation("signup", "verified"))
        self.db.add(
            CodebaseFile(
                project_id="p1",
                file_path="src/auth.ts",
                content_snippet="// Line 4\nposthog.capture('signup')",
                event_names_json=["signup", "login"],
                has_tracking_calls=True,
            )
        )
        self.db.add(
            CodebaseFile(
                project_id="p2",
                file_path="src/other.ts",
                content_snippet="",
                event_names_json=["elsewhere"],
                has_tracking_calls=True,
            )
        )
        self.db.commit()
        record_live_events(self.db, "p1", ["page_view"])

        merged = build_event_dictionary(self.db, "p1")

        self.assertEqual(
            [(event.event_name, event.source, event.status) for event in merged],
            [
                ("login", "codebase", UNANNOTATED_STATUS),
                ("page_view", "live", UNANNOTATED_STATUS),
                ("signup", "codebase", "verified"),
            ],
        )

    def test_explicit_code_names_override_indexed_evidence(self) -> None:
        record_live_events(self.db, "p1", ["page_view"])

        merged = build_event_dictionary(self.db, "p1", code_event_names=["page_view"])

        self.assertEqual([(event.event_name, event.source) for event in merged], [("page_view", "codebase")])


if __name__ == "__main__":
    unittest.main()
