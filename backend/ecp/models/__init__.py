"""ORM models package exports."""

from ecp.models.business_context import BusinessContext
from ecp.models.codebase_file import CodebaseFile
from ecp.models.conversation_history import ConversationHistory
from ecp.models.event_annotation import EventAnnotation
from ecp.models.live_event import LiveEvent

__all__ = [
    "BusinessContext",
    "CodebaseFile",
    "ConversationHistory",
    "EventAnnotation",
    "LiveEvent",
]
