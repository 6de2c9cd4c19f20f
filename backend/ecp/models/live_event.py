"""Live telemetry event ORM model."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ecp.models.base import Base, IdMixin


class LiveEvent(Base, IdMixin):
    """One observed product-usage event."""

    __tablename__ = "live_events"

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    event_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    source: Mapped[str] = mapped_column(String(64), default="ingest", nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
