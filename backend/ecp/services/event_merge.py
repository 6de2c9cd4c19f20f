"""Event dictionary merge engine.

Three independent sources describe which events a project has: persisted
annotations, live telemetry counts, and tracking calls found in code. They are
reconciled per event name into one read-only row with a source label.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from ecp.models.codebase_file import CodebaseFile
from ecp.models.event_annotation import EventAnnotation
from ecp.services.annotations import list_annotations
from ecp.services.live_events import get_live_counts
from ecp.tracking.types import TrackingCallMatch

UNANNOTATED_STATUS = "unannotated"


@dataclass(frozen=True, slots=True)
class MergedEvent:
    """Canonical per-event projection."""

    event_name: str
    annotation: EventAnnotation | None
    live_count: int
    source: str
    is_annotated: bool
    status: str


def dedupe_matches(matches: Iterable[TrackingCallMatch]) -> list[TrackingCallMatch]:
    """Keep the first match per ``(event_name, file_path, line)``, preserving order."""

    seen: set[tuple[str, str, int]] = set()
    unique: list[TrackingCallMatch] = []
    for match in matches:
        if match.identity in seen:
            continue
        seen.add(match.identity)
        unique.append(match)
    return unique


def distinct_event_names(matches: Iterable[TrackingCallMatch]) -> list[str]:
    """Event names in first-seen order."""

    return list(dict.fromkeys(match.event_name for match in matches))


def merge_events(
    annotations: Sequence[EventAnnotation],
    live_counts: Mapping[str, int],
    code_event_names: Iterable[str],
) -> list[MergedEvent]:
    """Unite the three sources into one row per event name, sorted by name."""

    annotation_by_name = {annotation.event_name: annotation for annotation in annotations}
    code_names = set(code_event_names)
    names = set(annotation_by_name) | {name for name, count in live_counts.items() if count > 0} | code_names

    merged: list[MergedEvent] = []
    for name in sorted(names):
        annotation = annotation_by_name.get(name)
        live_count = int(live_counts.get(name, 0))
        merged.append(
            MergedEvent(
                event_name=name,
                annotation=annotation,
                live_count=live_count,
                source=_attribute_source(name, annotation, live_count, code_names),
                is_annotated=annotation is not None,
                status=annotation.status if annotation is not None else UNANNOTATED_STATUS,
            )
        )
    return merged


def build_event_dictionary(
    db: Session,
    project_id: str,
    code_event_names: Iterable[str] | None = None,
) -> list[MergedEvent]:
    """Load a project's sources and merge them.

    Without explicit scan results, code evidence comes from the snippets the
    last repository scan persisted.
    """

    if code_event_names is None:
        code_event_names = load_indexed_event_names(db, project_id)
    return merge_events(list_annotations(db, project_id), get_live_counts(db, project_id), code_event_names)


def load_indexed_event_names(db: Session, project_id: str) -> list[str]:
    """Event names found by the latest scan of the project's repository."""

    rows = db.scalars(
        select(CodebaseFile)
        .where(CodebaseFile.project_id == project_id, CodebaseFile.has_tracking_calls.is_(True))
        .order_by(CodebaseFile.file_path.asc())
    )
    names: dict[str, None] = {}
    for row in rows:
        for name in row.event_names_json or []:
            names.setdefault(name, None)
    return list(names)


def _attribute_source(
    name: str,
    annotation: EventAnnotation | None,
    live_count: int,
    code_names: set[str],
) -> str:
    if name in code_names:
        return "codebase"
    if live_count > 0 and (annotation is None or annotation.status == "discovered"):
        return "live"
    return "manual"
