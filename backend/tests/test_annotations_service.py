"""Tests for event annotation persistence."""

from __future__ import annotations

import unittest

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ecp.models.base import Base
from ecp.models.event_annotation import EventAnnotation
from ecp.schemas.events import EventAnnotationUpsert
from ecp.services.annotations import (
    get_annotation,
    insert_discovered_annotation,
    list_annotations,
    upsert_annotation,
)


class AnnotationServiceTests(unittest.TestCase):
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
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _count(self) -> int:
        return int(self.db.scalar(select(func.count(EventAnnotation.id))) or 0)

    def test_discovered_insert_is_idempotent(self) -> None:
        self.assertTrue(insert_discovered_annotation(self.db, "p1", "signup", description="User signs up"))
        self.db.commit()
        self.assertFalse(insert_discovered_annotation(self.db, "p1", "signup", description="Other text"))
        self.db.commit()

        annotation = get_annotation(self.db, "p1", "signup")
        self.assertIsNotNone(annotation)
        assert annotation is not None
        self.assertEqual(annotation.status, "discovered")
        self.assertEqual(annotation.description, "User signs up")
        self.assertEqual(self._count(), 1)

    def test_discovered_insert_never_touches_curated_rows(self) -> None:
        self.db.add(EventAnnotation(project_id="p1", event_name="signup", status="verified", description="Curated"))
        self.db.add(EventAnnotation(project_id="p1", event_name="old_export", status="deprecated"))
        self.db.commit()

        self.assertFalse(insert_discovered_annotation(self.db, "p1", "signup", description="AI guess"))
        self.assertFalse(insert_discovered_annotation(self.db, "p1", "old_export"))
        self.db.commit()

        rows = {row.event_name: row for row in list_annotations(self.db, "p1")}
        self.assertEqual(rows["signup"].status, "verified")
        self.assertEqual(rows["signup"].description, "Curated")
        self.assertEqual(rows["old_export"].status, "deprecated")

    def test_same_name_in_other_project_is_separate(self) -> None:
        self.assertTrue(insert_discovered_annotation(self.db, "p1", "signup"))
        self.assertTrue(insert_discovered_annotation(self.db, "p2", "signup"))
        self.db.commit()

        self.assertEqual(self._count(), 2)

    def test_upsert_creates_verified_annotation(self) -> None:
        annotation = upsert_annotation(
            self.db,
            "p1",
            EventAnnotationUpsert(event_name=" checkout_started ", description="Cart checkout", category="revenue"),
        )

        self.assertEqual(annotation.event_name, "checkout_started")
        self.assertEqual(annotation.status, "verified")
        self.assertEqual(annotation.category, "revenue")

    def test_upsert_does_not_erase_fields_left_empty(self) -> None:
        upsert_annotation(
            self.db,
            "p1",
            EventAnnotationUpsert(event_name="signup", description="Account created", category="acquisition"),
        )

        updated = upsert_annotation(self.db, "p1", EventAnnotationUpsert(event_name="signup", status="deprecated"))

        self.assertEqual(updated.description, "Account created")
        self.assertEqual(updated.category, "acquisition")
        self.assertEqual(updated.status, "deprecated")

    def test_upsert_overwrite_clears_fields(self) -> None:
        upsert_annotation(
            self.db,
            "p1",
            EventAnnotationUpsert(event_name="signup", description="Account created", category="acquisition"),
        )

        updated = upsert_annotation(self.db, "p1", EventAnnotationUpsert(event_name="signup", overwrite=True))

        self.assertIsNone(updated.description)
        self.assertIsNone(updated.category)
        self.assertEqual(updated.status, "verified")


if __name__ == "__main__":
    unittest.main()
