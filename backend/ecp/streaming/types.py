"""Typed stream-parsing outputs independent of transport and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

BUSINESS_CONTEXT_FIELDS = ("product_description", "audience", "goals", "stage", "challenges")


class DirectiveKind(str, Enum):
    """Control directive keywords embedded in assistant text."""

    PARTIAL_CONTEXT = "PARTIAL_CONTEXT"
    CONTEXT_COMPLETE = "CONTEXT_COMPLETE"
    CONFIDENCE = "CONFIDENCE"


@dataclass(frozen=True, slots=True)
class PartialContextDirective:
    """Incremental business-context fields worth saving early."""

    fields: dict[str, str]
    start: int
    end: int
    kind: DirectiveKind = DirectiveKind.PARTIAL_CONTEXT


@dataclass(frozen=True, slots=True)
class ContextCompleteDirective:
    """Final business-context payload; the conversation becomes ready."""

    fields: dict[str, str]
    start: int
    end: int
    kind: DirectiveKind = DirectiveKind.CONTEXT_COMPLETE


@dataclass(frozen=True, slots=True)
class ConfidenceDirective:
    """Onboarding confidence score in [0, 100]."""

    value: int
    start: int
    end: int
    kind: DirectiveKind = DirectiveKind.CONFIDENCE


Directive = PartialContextDirective | ContextCompleteDirective | ConfidenceDirective


@dataclass(slots=True)
class DirectiveExtraction:
    """Directive-free display text plus the directives found, left to right."""

    display_text: str
    directives: list[Directive] = field(default_factory=list)


class ConversationPhase(str, Enum):
    """Onboarding conversation phases."""

    GATHERING = "gathering"
    READY = "ready"


@dataclass(slots=True)
class ConversationState:
    """Onboarding progress for one conversation."""

    context_ready: bool = False
    confidence: int = 0
    business_fields: dict[str, str] = field(default_factory=dict)

    @property
    def phase(self) -> ConversationPhase:
        return ConversationPhase.READY if self.context_ready else ConversationPhase.GATHERING
