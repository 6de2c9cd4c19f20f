"""Business context schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict


class BusinessContextRead(BaseModel):
    """Serialized business context."""

    model_config = ConfigDict(from_attributes=True)

    project_id: str
    product_description: str | None = None
    audience: str | None = None
    goals: str | None = None
    stage: str | None = None
    challenges: str | None = None
    confidence: int
    context_ready: bool
    updated_at: datetime


class ConversationStateRead(BaseModel):
    """Onboarding phase after a reset or a completed turn."""

    phase: Literal["gathering", "ready"]
    confidence: int
    context_ready: bool
