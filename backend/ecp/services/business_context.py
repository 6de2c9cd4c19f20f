"""Business context persistence for the onboarding chat."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecp.models.business_context import BusinessContext
from ecp.streaming.types import BUSINESS_CONTEXT_FIELDS, ConversationState

logger = logging.getLogger(__name__)


def get_business_context(db: Session, project_id: str) -> BusinessContext | None:
    """Return the stored business context for a project."""

    return db.scalar(select(BusinessContext).where(BusinessContext.project_id == project_id))


def get_conversation_state(db: Session, project_id: str) -> ConversationState:
    """Rebuild the onboarding state from the stored context."""

    context = get_business_context(db, project_id)
    if context is None:
        return ConversationState()
    return ConversationState(
        context_ready=context.context_ready,
        confidence=100 if context.context_ready else context.confidence,
        business_fields=business_fields_of(context),
    )


def business_fields_of(context: BusinessContext) -> dict[str, str]:
    """Non-empty business fields of a stored context."""

    fields: dict[str, str] = {}
    for name in BUSINESS_CONTEXT_FIELDS:
        value = getattr(context, name)
        if value:
            fields[name] = value
    return fields


def save_partial_context(db: Session, project_id: str, fields: Mapping[str, str]) -> BusinessContext:
    """Merge provided fields into the stored context; other columns are untouched."""

    context = _get_or_create(db, project_id)
    _merge_fields(context, fields)
    db.commit()
    db.refresh(context)
    return context


def save_conversation_state(db: Session, project_id: str, state: ConversationState) -> BusinessContext:
    """Persist confidence, readiness and gathered fields."""

    context = _get_or_create(db, project_id)
    _merge_fields(context, state.business_fields)
    context.context_ready = state.context_ready
    context.confidence = 100 if state.context_ready else state.confidence
    db.commit()
    db.refresh(context)
    return context


def clear_business_context(db: Session, project_id: str) -> ConversationState:
    """Reset a project's onboarding back to ``Gathering(0)``."""

    context = get_business_context(db, project_id)
    if context is not None:
        for name in BUSINESS_CONTEXT_FIELDS:
            setattr(context, name, None)
        context.confidence = 0
        context.context_ready = False
        db.commit()
    return ConversationState()


def make_partial_context_sink(
    project_id: str,
    session_factory: Callable[[], Session] | None = None,
) -> Callable[[dict[str, str]], None]:
    """Return a callable that saves partial fields in its own session."""

    def _sink(fields: dict[str, str]) -> None:
        factory = session_factory
        if factory is None:
            from ecp.db.session import SessionLocal

            factory = SessionLocal
        db = factory()
        try:
            save_partial_context(db, project_id, fields)
            logger.info("business_context.partial_saved project_id=%s fields=%s", project_id, sorted(fields))
        finally:
            db.close()

    return _sink


def _get_or_create(db: Session, project_id: str) -> BusinessContext:
    context = get_business_context(db, project_id)
    if context is not None:
        return context
    context = BusinessContext(project_id=project_id, confidence=0, context_ready=False)
    db.add(context)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        context = get_business_context(db, project_id)
        if context is None:
            raise
    return context


def _merge_fields(context: BusinessContext, fields: Mapping[str, str]) -> None:
    for name, value in fields.items():
        if name in BUSINESS_CONTEXT_FIELDS and value:
            setattr(context, name, value)
