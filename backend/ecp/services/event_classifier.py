"""LLM interpretation of tracking calls and event enrichment."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from pydantic import BaseModel, ValidationError

from ecp.config import get_settings
from ecp.tracking.types import TrackingCallMatch

EVENT_CATEGORIES = ("acquisition", "activation", "retention", "revenue", "core", "content", "other")
MAX_SNIPPETS_CHARS = 30_000
_CODE_FENCE = re.compile(r"```(?:json)?\n?|\n?```")

_CLASSIFY_SYSTEM_PROMPT = """You are a code analysis expert. Given compact code snippets around event tracking calls, interpret the business meaning of each event.

Focus on:
- The function or method wrapping the tracking call (e.g. handleSignup, onCheckout) to infer the user action
- The property keys passed with the event (e.g. { plan, price, item_id }) for business context
- Whether the code runs in a click handler, form submit, page load, API callback, etc.

Return a JSON object:
{"events": [{"event_name": "exact_event_name_from_code", "description": "what user action triggers this and why it matters", "category": "one of: acquisition, activation, retention, revenue, core, content, other"}]}

Deduplicate events with the same name. Only return valid JSON, no markdown."""

_ENRICH_SYSTEM_PROMPT = """You are a product analytics expert. Given business context about a product and a list of tracked events, enrich each event with:
1. A clear, business-friendly description of what the event means for THIS product (1-2 sentences)
2. The most appropriate category from: acquisition, activation, retention, revenue, core, content, other

Business context:
- Product: {product_description}
- Audience: {audience}
- Goals: {goals}
- Stage: {stage}
- Challenges: {challenges}

Return a JSON object:
{{"events": [{{"event_name": "exact_original_name", "description": "...", "category": "..."}}]}}

Only return valid JSON, no markdown formatting."""


class EventClassificationError(RuntimeError):
    """Raised when AI classification is misconfigured or returns an invalid payload."""


@dataclass(frozen=True, slots=True)
class EventInterpretation:
    """AI reading of one event."""

    event_name: str
    description: str | None
    category: str | None


class EventClassifier(Protocol):
    """Protocol for pluggable event interpretation backends."""

    def classify(self, calls: Sequence[TrackingCallMatch]) -> dict[str, EventInterpretation]:
        """Interpret tracking-call snippets, keyed by event name."""

    def enrich(
        self,
        events: Sequence[Mapping[str, str]],
        business_context: Mapping[str, str],
    ) -> dict[str, EventInterpretation]:
        """Describe and categorize existing events for a business, keyed by event name."""


class _RawEvent(BaseModel):
    event_name: str
    description: str | None = None
    category: str | None = None


class _RawEventsPayload(BaseModel):
    events: list[_RawEvent] = []


@dataclass(slots=True)
class OpenAIEventClassifier:
    """OpenAI chat completions client returning JSON event interpretations."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60

    def classify(self, calls: Sequence[TrackingCallMatch]) -> dict[str, EventInterpretation]:
        if not calls:
            return {}
        snippets = "\n\n===\n\n".join(
            f"File: {call.file_path} (line {call.line})\nEvent: {call.event_name}\nCode:\n{call.snippet}"
            for call in calls
        )[:MAX_SNIPPETS_CHARS]
        content = self._complete(
            _CLASSIFY_SYSTEM_PROMPT,
            f"Here are the tracking calls found in the codebase:\n\n{snippets}",
        )
        return parse_event_interpretations(content)

    def enrich(
        self,
        events: Sequence[Mapping[str, str]],
        business_context: Mapping[str, str],
    ) -> dict[str, EventInterpretation]:
        if not events:
            return {}
        system_prompt = _ENRICH_SYSTEM_PROMPT.format(
            **{
                key: business_context.get(key) or "Unknown"
                for key in ("product_description", "audience", "goals", "stage", "challenges")
            }
        )
        content = self._complete(
            system_prompt,
            "Here are the events to enrich:\n" + json.dumps(list(events), indent=2, ensure_ascii=True),
        )
        return parse_event_interpretations(content)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "model": self.model,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise EventClassificationError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise EventClassificationError(f"OpenAI request failed: {exc.reason}") from exc

        try:
            content = json.loads(raw)["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise EventClassificationError("OpenAI returned an unexpected chat response") from exc
        if not isinstance(content, str):
            raise EventClassificationError("OpenAI response content is not a string")
        return content


def parse_event_interpretations(content: str) -> dict[str, EventInterpretation]:
    """Parse an ``{"events": [...]}`` payload, tolerating markdown fences."""

    cleaned = _CODE_FENCE.sub("", content).strip()
    try:
        decoded: Any = json.loads(cleaned)
        payload = _RawEventsPayload.model_validate(decoded)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise EventClassificationError("Event interpretation payload is not valid JSON") from exc

    interpretations: dict[str, EventInterpretation] = {}
    for raw in payload.events:
        name = raw.event_name.strip()
        if not name or name in interpretations:
            continue
        category = (raw.category or "").strip().lower() or None
        if category is not None and category not in EVENT_CATEGORIES:
            category = "other"
        description = (raw.description or "").strip() or None
        interpretations[name] = EventInterpretation(event_name=name, description=description, category=category)
    return interpretations


def get_default_event_classifier() -> EventClassifier:
    """Return the configured classifier."""

    settings = get_settings()
    if not settings.openai_api_key:
        raise EventClassificationError(
            "OPENAI_API_KEY is not configured. Set it in backend/.env before classifying events."
        )
    return OpenAIEventClassifier(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.openai_timeout_seconds,
    )
