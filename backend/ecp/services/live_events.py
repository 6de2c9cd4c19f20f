"""Live telemetry ingestion, provider sync and aggregation."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ecp.models.live_event import LiveEvent
from ecp.schemas.events import LiveEventsSyncResult
from ecp.services.analytics_sources import LiveEventSource, ObservedEvent

logger = logging.getLogger(__name__)


def record_live_events(
    db: Session,
    project_id: str,
    event_names: list[str],
    *,
    source: str = "ingest",
    occurred_at: datetime | None = None,
) -> int:
    """Persist observed event names; blank names are ignored."""

    timestamp = occurred_at or datetime.now(timezone.utc)
    return record_observed_events(
        db,
        project_id,
        (ObservedEvent(event_name=name, occurred_at=timestamp) for name in event_names),
        source=source,
    )


def record_observed_events(
    db: Session,
    project_id: str,
    events: Iterable[ObservedEvent],
    *,
    source: str,
) -> int:
    """Persist provider events with their own timestamps; blank names are ignored."""

    recorded = 0
    for event in events:
        cleaned = event.event_name.strip()
        if not cleaned:
            continue
        db.add(LiveEvent(project_id=project_id, event_name=cleaned, source=source, occurred_at=event.occurred_at))
        recorded += 1
    db.commit()
    return recorded


def latest_occurrence(db: Session, project_id: str, source: str) -> datetime | None:
    """Timestamp of the newest stored event from ``source``, used as the sync watermark."""

    return db.scalar(
        select(func.max(LiveEvent.occurred_at)).where(LiveEvent.project_id == project_id, LiveEvent.source == source)
    )


def sync_live_events(db: Session, project_id: str, source: LiveEventSource) -> LiveEventsSyncResult:
    """Fetch events newer than the last synced one and store them.

    Provider errors propagate before anything is written.
    """

    started = perf_counter()
    since = latest_occurrence(db, project_id, source.name)
    fetched = source.fetch_events(since)
    recorded = record_observed_events(db, project_id, fetched, source=source.name)
    logger.info(
        "live_events.sync project_id=%s source=%s since=%s fetched=%d recorded=%d total_ms=%.2f",
        project_id,
        source.name,
        since.isoformat() if since is not None else None,
        len(fetched),
        recorded,
        (perf_counter() - started) * 1000.0,
    )
    return LiveEventsSyncResult(project_id=project_id, source=source.name, fetched=len(fetched), recorded=recorded)


def get_live_counts(db: Session, project_id: str) -> dict[str, int]:
    """Return occurrence counts per event name for a project."""

    stmt = (
        select(LiveEvent.event_name, func.count(LiveEvent.id))
        .where(LiveEvent.project_id == project_id)
        .group_by(LiveEvent.event_name)
    )
    return {name: int(count) for name, count in db.execute(stmt).all()}
