"""Extraction of control directives embedded in assistant text.

The assistant appends machine-readable tags to its prose:

    PARTIAL_CONTEXT:{"product_description": "...", ...}
    CONTEXT_COMPLETE:{"product_description": "...", ...}
    CONFIDENCE:72

Extraction always runs on the full text accumulated so far. Each pattern is
anchored on what follows it (another directive keyword or the end of the text)
so a keyword that merely appears inside prose is left alone. While tokens are
still arriving, a directive that is only terminated by the end of the text is
not accepted yet: the next token may turn it back into prose. Accepted
directives are cut out of the display text by span, never by string
replacement, which keeps repeated extraction stable.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable

from ecp.streaming.types import (
    BUSINESS_CONTEXT_FIELDS,
    ConfidenceDirective,
    ContextCompleteDirective,
    Directive,
    DirectiveExtraction,
    DirectiveKind,
    PartialContextDirective,
)

logger = logging.getLogger(__name__)

_KEYWORDS = tuple(f"{kind.value}:" for kind in DirectiveKind)
_KEYWORD = re.compile("|".join(re.escape(keyword) for keyword in _KEYWORDS))
_NEXT_DIRECTIVE = re.compile(r"\s*(?:PARTIAL_CONTEXT:|CONTEXT_COMPLETE:|CONFIDENCE:)")
_NEXT_DIRECTIVE_OR_END = r"(?=\s*(?:PARTIAL_CONTEXT:|CONTEXT_COMPLETE:|CONFIDENCE:)|\s*\Z)"
_CONFIDENCE_VALUE = re.compile(r"\s*-?\d*")

PARTIAL_CONTEXT_PATTERN = re.compile(r"PARTIAL_CONTEXT:\s*(?P<body>\{.*?\})" + _NEXT_DIRECTIVE_OR_END, re.DOTALL)
CONTEXT_COMPLETE_PATTERN = re.compile(r"CONTEXT_COMPLETE:\s*(?P<body>\{.*?\})" + _NEXT_DIRECTIVE_OR_END, re.DOTALL)
CONFIDENCE_PATTERN = re.compile(r"CONFIDENCE:\s*(?P<value>-?\d{1,4})" + _NEXT_DIRECTIVE_OR_END)

NULL_SENTINELS = {"null", "...or null"}
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


class ControlDirectiveExtractor:
    """Stateless extractor for the three directive kinds."""

    def __init__(self, allowed_fields: Iterable[str] = BUSINESS_CONTEXT_FIELDS) -> None:
        self.allowed_fields = frozenset(allowed_fields)

    def extract(self, text: str, *, final: bool = True) -> DirectiveExtraction:
        """Return display text with well-formed directives removed, plus the directives.

        With ``final=False`` a directive that ends the text is not returned
        and is withheld from the display text together with any trailing
        fragment that may still grow into a directive. Earlier prose, including
        malformed or merely mentioned keywords, stays visible.
        """

        candidates: list[tuple[int, int, int, Directive]] = []
        for priority, pattern in enumerate(
            (PARTIAL_CONTEXT_PATTERN, CONTEXT_COMPLETE_PATTERN, CONFIDENCE_PATTERN)
        ):
            for match in pattern.finditer(text):
                directive = self._build_directive(pattern, match)
                if directive is not None:
                    candidates.append((match.start(), priority, match.end(), directive))

        directives: list[Directive] = []
        spans: list[tuple[int, int]] = []
        for start, _, end, directive in sorted(candidates, key=lambda item: (item[0], item[1])):
            if spans and start < spans[-1][1]:
                continue
            spans.append((start, end))
            directives.append(directive)

        cut = len(text)
        if not final and spans and not _NEXT_DIRECTIVE.match(text, spans[-1][1]):
            cut = spans.pop()[0]
            directives.pop()

        pieces: list[str] = []
        cursor = 0
        for start, end in spans:
            pieces.append(text[cursor:start])
            cursor = end
        pieces.append(text[cursor:cut])
        display_text = "".join(pieces)
        if not final:
            display_text = _strip_pending_directive(display_text)
        display_text = _EXCESS_NEWLINES.sub("\n\n", display_text).strip()
        return DirectiveExtraction(display_text=display_text, directives=directives)

    def _build_directive(self, pattern: re.Pattern[str], match: re.Match[str]) -> Directive | None:
        if pattern is CONFIDENCE_PATTERN:
            value = max(0, min(100, int(match.group("value"))))
            return ConfidenceDirective(value=value, start=match.start(), end=match.end())

        fields = self._parse_fields(match.group("body"))
        if fields is None:
            return None
        if pattern is PARTIAL_CONTEXT_PATTERN:
            return PartialContextDirective(fields=fields, start=match.start(), end=match.end())
        return ContextCompleteDirective(fields=fields, start=match.start(), end=match.end())

    def _parse_fields(self, body: str) -> dict[str, str] | None:
        try:
            decoded = json.loads(body)
        except json.JSONDecodeError:
            logger.info("chat_directive.malformed_payload chars=%d", len(body))
            return None
        if not isinstance(decoded, dict):
            logger.info("chat_directive.non_object_payload type=%s", type(decoded).__name__)
            return None

        fields: dict[str, str] = {}
        for key, value in decoded.items():
            if key not in self.allowed_fields or value is None:
                continue
            text_value = value.strip() if isinstance(value, str) else str(value)
            if not text_value or text_value.lower() in NULL_SENTINELS:
                continue
            fields[key] = text_value
        return fields


_default_extractor = ControlDirectiveExtractor()


def extract_directives(text: str, *, final: bool = True) -> DirectiveExtraction:
    """Extract directives with the default business-context field set."""

    return _default_extractor.extract(text, final=final)


def _strip_pending_directive(text: str) -> str:
    """Cut off a trailing directive that has started but is not terminated yet."""

    line_start = text.rfind("\n") + 1
    tail = text[line_start:].lstrip()
    if tail and _is_keyword_prefix(tail):
        text = text[:line_start]
    for match in _KEYWORD.finditer(text):
        rest = text[match.end() :]
        if match.group(0) == "CONFIDENCE:":
            payload_end = _CONFIDENCE_VALUE.match(rest).end()
        else:
            payload_end = _object_end(rest)
            if payload_end is None:
                return text[: match.start()]
        if _is_keyword_prefix(rest[payload_end:].lstrip()):
            return text[: match.start()]
    return text


def _is_keyword_prefix(fragment: str) -> bool:
    return any(keyword.startswith(fragment) for keyword in _KEYWORDS)


def _object_end(rest: str) -> int | None:
    """Offset just past a leading ``{...}`` payload, or None while it is still open."""

    offset = len(rest) - len(rest.lstrip())
    if not rest[offset:].startswith("{"):
        return offset
    depth = 0
    in_string = False
    escaped = False
    for index in range(offset, len(rest)):
        char = rest[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return None
