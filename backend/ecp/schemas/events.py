"""Event annotation and event dictionary schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

AnnotationStatus = Literal["discovered", "verified", "deprecated"]
EventCategory = Literal["acquisition", "activation", "retention", "revenue", "core", "content", "other"]
EventSource = Literal["codebase", "live", "manual"]


class EventAnnotationRead(BaseModel):
    """Serialized event annotation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: str
    event_name: str
    description: str | None = None
    category: str | None = None
    status: AnnotationStatus
    updated_at: datetime


class EventAnnotationUpsert(BaseModel):
    """Manual annotation write; omitted fields keep their stored values."""

    event_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: EventCategory | None = None
    status: AnnotationStatus | None = None
    overwrite: bool = False


class MergedEventRead(BaseModel):
    """One canonical event dictionary row."""

    event_name: str
    annotation: EventAnnotationRead | None = None
    live_count: int = 0
    source: EventSource
    is_annotated: bool
    status: str


class LiveEventsIngestRequest(BaseModel):
    """Batch of observed event names."""

    event_names: list[str] = Field(default_factory=list, min_length=1)
    source: str = Field(default="ingest", min_length=1, max_length=64)


class LiveEventsIngestResult(BaseModel):
    """Live ingestion summary."""

    project_id: str
    recorded: int


class LiveEventsSyncRequest(BaseModel):
    """Credentials for pulling events from an analytics provider."""

    provider: Literal["posthog", "mixpanel"]
    external_project_id: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    host: str | None = None


class LiveEventsSyncResult(BaseModel):
    """Provider sync summary."""

    project_id: str
    source: str
    fetched: int
    recorded: int
