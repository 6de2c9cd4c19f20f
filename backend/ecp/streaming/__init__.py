"""Incremental chat stream parsing: frames, directives and onboarding state."""

from ecp.streaming.confidence import ConfidenceStateMachine
from ecp.streaming.directives import ControlDirectiveExtractor, extract_directives
from ecp.streaming.sse_decoder import (
    StreamDecodeError,
    StreamFrameDecoder,
    StreamProviderError,
    StreamTerminatedError,
    iter_stream_deltas,
)
from ecp.streaming.types import (
    ConfidenceDirective,
    ContextCompleteDirective,
    ConversationPhase,
    ConversationState,
    Directive,
    DirectiveExtraction,
    PartialContextDirective,
)

__all__ = [
    "ConfidenceDirective",
    "ConfidenceStateMachine",
    "ContextCompleteDirective",
    "ControlDirectiveExtractor",
    "ConversationPhase",
    "ConversationState",
    "Directive",
    "DirectiveExtraction",
    "PartialContextDirective",
    "StreamDecodeError",
    "StreamFrameDecoder",
    "StreamProviderError",
    "StreamTerminatedError",
    "extract_directives",
    "iter_stream_deltas",
]
