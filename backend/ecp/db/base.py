"""SQLAlchemy metadata registry import for Alembic."""

from ecp.models import BusinessContext, CodebaseFile, ConversationHistory, EventAnnotation, LiveEvent
from ecp.models.base import Base

__all__ = ["Base", "BusinessContext", "CodebaseFile", "ConversationHistory", "EventAnnotation", "LiveEvent"]
