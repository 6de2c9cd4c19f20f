"""Versioned conversation history persistence."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecp.models.conversation_history import ConversationHistory


class ConversationVersionConflict(RuntimeError):
    """Raised when a history write was based on a stale version."""


def load_history(db: Session, conversation_id: str) -> ConversationHistory | None:
    """Return the stored transcript row for a conversation."""

    return db.scalar(select(ConversationHistory).where(ConversationHistory.conversation_id == conversation_id))


def save_history(
    db: Session,
    conversation_id: str,
    project_id: str,
    messages: list[dict[str, str]],
    *,
    expected_version: int | None,
) -> int:
    """Write the full transcript and return the new version.

    ``expected_version=None`` means the caller saw no stored history; the row
    is inserted. Otherwise the row is only updated if it is still at
    ``expected_version``. Either kind of lost race raises
    :class:`ConversationVersionConflict` and leaves stored data untouched.
    """

    payload = [{"role": str(m["role"]), "content": str(m["content"])} for m in messages]
    if expected_version is None:
        db.add(ConversationHistory(conversation_id=conversation_id, project_id=project_id, messages_json=payload))
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConversationVersionConflict(
                f"Conversation {conversation_id} was created concurrently."
            ) from exc
        return 1

    result = db.execute(
        update(ConversationHistory)
        .where(
            ConversationHistory.conversation_id == conversation_id,
            ConversationHistory.version == expected_version,
        )
        .values(messages_json=payload, version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConversationVersionConflict(
            f"Conversation {conversation_id} changed since version {expected_version}."
        )
    db.commit()
    return expected_version + 1
