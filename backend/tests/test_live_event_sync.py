"""Tests for pulling live events from analytics providers."""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ecp.models.base import Base
from ecp.models.live_event import LiveEvent
from ecp.services.analytics_sources import (
    LiveEventSourceError,
    MixpanelEventSource,
    ObservedEvent,
    PostHogEventSource,
    get_live_event_source,
    parse_mixpanel_export,
    parse_posthog_rows,
)
from ecp.services.live_events import get_live_counts, latest_occurrence, record_live_events, sync_live_events

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class _StubSource:
    def __init__(self, *batches: list[ObservedEvent], name: str = "posthog") -> None:
        self.batches = list(batches)
        self.name = name
        self.since_values: list[datetime | None] = []

    def fetch_events(self, since: datetime | None) -> list[ObservedEvent]:
        self.since_values.append(since)
        return self.batches.pop(0)


class _FailingSource(_StubSource):
    def fetch_events(self, since: datetime | None) -> list[ObservedEvent]:
        raise LiveEventSourceError("PostHog API error (401): invalid key")


class ProviderPayloadTests(unittest.TestCase):
    def test_posthog_rows_map_to_events(self) -> None:
        rows = [
            ["plan_upgraded", "user-1", json.dumps({"$current_url": "https://app.test/billing"}), "2026-10-01T12:00:00Z"],
            ["page_viewed", None, {"plan": "pro"}, "2026-10-01T12:05:00.250000+00:00"],
            ["too", "short"],
        ]

        events = parse_posthog_rows(rows)

        self.assertEqual(
            events,
            [
                ObservedEvent("plan_upgraded", T0, "user-1", "https://app.test/billing"),
                ObservedEvent("page_viewed", T0 + timedelta(minutes=5, microseconds=250000), None, None),
            ],
        )

    def test_mixpanel_export_lines_map_to_events_and_bad_lines_are_skipped(self) -> None:
        raw = "\n".join(
            [
                json.dumps({"event": "Signed Up", "properties": {"time": T0.timestamp(), "distinct_id": "u1"}}),
                "{not json",
                "",
                json.dumps({"properties": {"time": T0.timestamp(), "$current_url": "https://app.test/"}}),
            ]
        )

        events = parse_mixpanel_export(raw)

        self.assertEqual(
            events,
            [
                ObservedEvent("Signed Up", T0, "u1", None),
                ObservedEvent("unknown", T0, None, "https://app.test/"),
            ],
        )

    def test_provider_factory(self) -> None:
        posthog = get_live_event_source("posthog", "42", "phx_key", host="https://eu.i.posthog.com")
        mixpanel = get_live_event_source("mixpanel", "7", "secret")

        self.assertIsInstance(posthog, PostHogEventSource)
        self.assertEqual(posthog.host, "https://eu.i.posthog.com")
        self.assertIsInstance(mixpanel, MixpanelEventSource)
        self.assertEqual(mixpanel.secret, "secret")
        with self.assertRaises(LiveEventSourceError):
            get_live_event_source("amplitude", "1", "key")


class LiveEventSyncTests(unittest.TestCase):
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
        self.db.execute(delete(LiveEvent))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_sync_stores_events_and_resumes_from_the_newest_one(self) -> None:
        source = _StubSource(
            [
                ObservedEvent("plan_upgraded", T0),
                ObservedEvent("plan_upgraded", T0 + timedelta(minutes=1)),
                ObservedEvent("  ", T0),
                ObservedEvent("page_viewed", T0 + timedelta(minutes=2)),
            ],
            [ObservedEvent("page_viewed", T0 + timedelta(minutes=3))],
        )

        first = sync_live_events(self.db, "p1", source)
        second = sync_live_events(self.db, "p1", source)

        self.assertEqual((first.source, first.fetched, first.recorded), ("posthog", 4, 3))
        self.assertEqual(second.recorded, 1)
        self.assertIsNone(source.since_values[0])
        self.assertEqual(source.since_values[1].replace(tzinfo=timezone.utc), T0 + timedelta(minutes=2))
        self.assertEqual(get_live_counts(self.db, "p1"), {"plan_upgraded": 2, "page_viewed": 2})

    def test_watermark_is_per_source(self) -> None:
        record_live_events(self.db, "p1", ["manual_event"], occurred_at=T0 + timedelta(days=1))
        source = _StubSource([], name="mixpanel")

        sync_live_events(self.db, "p1", source)

        self.assertEqual(source.since_values, [None])
        self.assertIsNone(latest_occurrence(self.db, "p1", "mixpanel"))

    def test_provider_failure_writes_nothing(self) -> None:
        with self.assertRaises(LiveEventSourceError):
            sync_live_events(self.db, "p1", _FailingSource())

        self.assertEqual(self.db.scalars(select(LiveEvent)).all(), [])


if __name__ == "__main__":
    unittest.main()
