"""Event dictionary routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from ecp.db.dependencies import get_db
from ecp.schemas.common import ApiResponse
from ecp.schemas.events import (
    EventAnnotationRead,
    EventAnnotationUpsert,
    LiveEventsIngestRequest,
    LiveEventsIngestResult,
    LiveEventsSyncRequest,
    LiveEventsSyncResult,
    MergedEventRead,
)
from ecp.schemas.indexing import EnrichmentResult
from ecp.services.annotations import upsert_annotation
from ecp.services.enrichment import EnrichmentError, enrich_event_dictionary
from ecp.services.event_classifier import EventClassificationError, get_default_event_classifier
from ecp.services.event_merge import MergedEvent, build_event_dictionary
from ecp.services.analytics_sources import LiveEventSourceError, get_live_event_source
from ecp.services.live_events import record_live_events, sync_live_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}")


@router.get("/events", response_model=ApiResponse[list[MergedEventRead]])
def list_events(
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[MergedEventRead]]:
    """Merged view of annotated, live and code-discovered events."""

    merged = build_event_dictionary(db, project_id)
    return ApiResponse(data=[_to_read(event) for event in merged])


@router.put("/events/annotations", response_model=ApiResponse[EventAnnotationRead])
def put_annotation(
    payload: EventAnnotationUpsert,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[EventAnnotationRead]:
    """Create or update one annotation; omitted fields keep stored values."""

    annotation = upsert_annotation(db, project_id, payload)
    return ApiResponse(data=EventAnnotationRead.model_validate(annotation))


@router.post("/events/live", response_model=ApiResponse[LiveEventsIngestResult], status_code=201)
def ingest_live_events(
    payload: LiveEventsIngestRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[LiveEventsIngestResult]:
    """Record event names observed in production telemetry."""

    recorded = record_live_events(db, project_id, payload.event_names, source=payload.source)
    return ApiResponse(data=LiveEventsIngestResult(project_id=project_id, recorded=recorded))


@router.post("/events/live/sync", response_model=ApiResponse[LiveEventsSyncResult])
def sync_provider_events(
    payload: LiveEventsSyncRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[LiveEventsSyncResult]:
    """Pull events newer than the last sync from PostHog or Mixpanel."""

    try:
        source = get_live_event_source(payload.provider, payload.external_project_id, payload.api_key, payload.host)
        result = sync_live_events(db, project_id, source)
    except LiveEventSourceError as exc:
        logger.exception("events.live_sync_failed project_id=%s provider=%s", project_id, payload.provider)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ApiResponse(data=result)


@router.post("/events/enrich", response_model=ApiResponse[EnrichmentResult])
def enrich_events(
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[EnrichmentResult]:
    """Rewrite event descriptions and categories for the project's business."""

    try:
        result = enrich_event_dictionary(db, project_id, get_default_event_classifier())
    except EnrichmentError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except EventClassificationError as exc:
        logger.exception("events.enrich_failed project_id=%s", project_id)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=result)


def _to_read(event: MergedEvent) -> MergedEventRead:
    return MergedEventRead(
        event_name=event.event_name,
        annotation=EventAnnotationRead.model_validate(event.annotation) if event.annotation is not None else None,
        live_count=event.live_count,
        source=event.source,
        is_annotated=event.is_annotated,
        status=event.status,
    )
