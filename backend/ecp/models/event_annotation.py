"""Event annotation ORM model."""

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ecp.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin

ANNOTATION_STATUSES = ("discovered", "verified", "deprecated")


class EventAnnotation(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Human- or AI-curated description of an analytics event."""

    __tablename__ = "event_annotations"
    __table_args__ = (UniqueConstraint("project_id", "event_name", name="uq_event_annotations_project_event"),)

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="discovered", nullable=False)
