"""Conversation history ORM model."""

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ecp.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class ConversationHistory(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Versioned chat transcript, one row per conversation."""

    __tablename__ = "conversation_histories"

    conversation_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    messages_json: Mapped[list[dict[str, str]]] = mapped_column(JSON, default=list, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
