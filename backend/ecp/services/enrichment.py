"""Business-aware enrichment of a project's event dictionary."""

from __future__ import annotations

import logging
from time import perf_counter

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ecp.schemas.indexing import EnrichmentResult
from ecp.services.annotations import list_annotations
from ecp.services.business_context import business_fields_of, get_business_context
from ecp.services.event_classifier import EventClassifier

logger = logging.getLogger(__name__)


class EnrichmentError(RuntimeError):
    """Raised when enrichment cannot start."""


def enrich_event_dictionary(db: Session, project_id: str, classifier: EventClassifier) -> EnrichmentResult:
    """Describe and categorize annotated events using the stored business context.

    Each event is updated independently; ``discovered`` events that receive an
    interpretation are promoted to ``verified``. Deprecated events are skipped.
    """

    context = get_business_context(db, project_id)
    if context is None:
        raise EnrichmentError(f"Project {project_id} has no business context yet.")

    annotations = [row for row in list_annotations(db, project_id) if row.status != "deprecated"]
    result = EnrichmentResult(project_id=project_id, attempted=len(annotations))
    if not annotations:
        return result

    started = perf_counter()
    interpretations = classifier.enrich(
        [
            {
                "event_name": row.event_name,
                "description": row.description or "",
                "category": row.category or "",
            }
            for row in annotations
        ],
        business_fields_of(context),
    )

    for row in annotations:
        interpretation = interpretations.get(row.event_name)
        if interpretation is None:
            result.failed += 1
            continue
        try:
            if interpretation.description:
                row.description = interpretation.description
            if interpretation.category:
                row.category = interpretation.category
            if row.status == "discovered":
                row.status = "verified"
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception("enrichment.update_failed project_id=%s event_name=%s", project_id, row.event_name)
            continue
        result.enriched += 1

    logger.info(
        "enrichment.timing project_id=%s attempted=%d enriched=%d failed=%d total_ms=%.2f",
        project_id,
        result.attempted,
        result.enriched,
        result.failed,
        (perf_counter() - started) * 1000.0,
    )
    return result
