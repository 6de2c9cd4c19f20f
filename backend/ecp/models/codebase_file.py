"""Scanned codebase file ORM model."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ecp.models.base import Base, IdMixin


class CodebaseFile(Base, IdMixin):
    """Bounded tracking-call snippets persisted for one repository file."""

    __tablename__ = "codebase_files"
    __table_args__ = (UniqueConstraint("project_id", "file_path", name="uq_codebase_files_project_path"),)

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    content_snippet: Mapped[str] = mapped_column(Text, default="", nullable=False)
    event_names_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    has_tracking_calls: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
