"""Business context ORM model."""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ecp.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class BusinessContext(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Durable onboarding context gathered by the business-context chat."""

    __tablename__ = "business_contexts"

    project_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    product_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience: Mapped[str | None] = mapped_column(Text, nullable=True)
    goals: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenges: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    context_ready: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
