"""Event annotation persistence services."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecp.models.event_annotation import EventAnnotation
from ecp.schemas.events import EventAnnotationUpsert

logger = logging.getLogger(__name__)

_UNIQUE_KEY = ["project_id", "event_name"]


def list_annotations(db: Session, project_id: str) -> list[EventAnnotation]:
    """Return a project's annotations ordered by event name."""

    stmt = (
        select(EventAnnotation)
        .where(EventAnnotation.project_id == project_id)
        .order_by(EventAnnotation.event_name.asc(), EventAnnotation.id.asc())
    )
    return list(db.scalars(stmt).all())


def get_annotation(db: Session, project_id: str, event_name: str) -> EventAnnotation | None:
    """Return one annotation by its unique key."""

    return db.scalar(
        select(EventAnnotation).where(
            EventAnnotation.project_id == project_id,
            EventAnnotation.event_name == event_name,
        )
    )


def insert_discovered_annotation(
    db: Session,
    project_id: str,
    event_name: str,
    *,
    description: str | None = None,
    category: str | None = None,
) -> bool:
    """Insert a ``discovered`` annotation unless one already exists.

    Existing rows are never modified, whatever their status. The insert itself
    is conditioned on the unique ``(project_id, event_name)`` key so two scans
    racing on the same new event leave exactly one row. Returns True when a
    row was created. The caller owns the commit.
    """

    if get_annotation(db, project_id, event_name) is not None:
        return False

    values = {
        "project_id": project_id,
        "event_name": event_name,
        "description": description,
        "category": category,
        "status": "discovered",
    }
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        stmt = postgresql_insert(EventAnnotation).values(**values).on_conflict_do_nothing(index_elements=_UNIQUE_KEY)
    elif dialect_name == "sqlite":
        stmt = sqlite_insert(EventAnnotation).values(**values).on_conflict_do_nothing(index_elements=_UNIQUE_KEY)
    else:
        try:
            with db.begin_nested():
                db.add(EventAnnotation(**values))
        except IntegrityError:
            logger.info(
                "annotations.discovered_insert_raced project_id=%s event_name=%s",
                project_id,
                event_name,
            )
            return False
        return True

    result = db.execute(stmt)
    return bool(result.rowcount)


def upsert_annotation(db: Session, project_id: str, payload: EventAnnotationUpsert) -> EventAnnotation:
    """Create or update an annotation without erasing curated fields.

    A field left as ``None`` (or blank) keeps its stored value unless
    ``payload.overwrite`` is set. New manual annotations default to
    ``verified``.
    """

    event_name = payload.event_name.strip()
    annotation = get_annotation(db, project_id, event_name)
    if annotation is None:
        annotation = EventAnnotation(
            project_id=project_id,
            event_name=event_name,
            description=_clean(payload.description),
            category=payload.category,
            status=payload.status or "verified",
        )
        db.add(annotation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            annotation = get_annotation(db, project_id, event_name)
            if annotation is None:
                raise
            _apply_update(annotation, payload)
            db.commit()
    else:
        _apply_update(annotation, payload)
        db.commit()
    db.refresh(annotation)
    return annotation


def _apply_update(annotation: EventAnnotation, payload: EventAnnotationUpsert) -> None:
    description = _clean(payload.description)
    if description is not None or payload.overwrite:
        annotation.description = description
    if payload.category is not None or payload.overwrite:
        annotation.category = payload.category
    if payload.status is not None:
        annotation.status = payload.status


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
