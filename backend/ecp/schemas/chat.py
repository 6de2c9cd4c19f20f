"""Schemas for business-context chat streaming."""

from pydantic import BaseModel, Field


class ChatTurnRequest(BaseModel):
    """Request payload for one streamed chat turn."""

    content: str = Field(min_length=1)
    repo_context: str | None = None
    github_url: str | None = None
    github_token: str | None = None


class ChatTurnFrame(BaseModel):
    """One frame of the outbound chat stream."""

    display_text: str
    confidence: int
    context_ready: bool
    done: bool = False


class ChatErrorFrame(BaseModel):
    """Terminal frame sent when a stream fails after it started."""

    error: str
