"""Deterministic regex scanner for analytics tracking calls."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence

from ecp.tracking.types import RawCallMatch, TrackingCallMatch

CallMatcher = Callable[[str], list[RawCallMatch]]

_EVENT_LITERAL = r"(?P<quote>['\"])(?P<event>[\w.:\-/ ]+)(?P=quote)"

DEFAULT_CONTEXT_LINES = 5
MAX_FILE_SNIPPET_CHARS = 10_000


def regex_matcher(name: str, pattern: str) -> CallMatcher:
    """Build a pure matcher over a pattern exposing an ``event`` group."""

    compiled = re.compile(pattern)

    def _match(text: str) -> list[RawCallMatch]:
        return [
            RawCallMatch(event_name=match.group("event").strip(), offset=match.start("event"), pattern=name)
            for match in compiled.finditer(text)
            if match.group("event").strip()
        ]

    _match.__name__ = f"match_{name}"
    return _match


match_method_call = regex_matcher(
    "method_call",
    r"\.(?:capture|track|logEvent|send)\s*\(\s*" + _EVENT_LITERAL,
)
match_gtag_event = regex_matcher(
    "gtag_event",
    r"\bgtag\s*\(\s*['\"]event['\"]\s*,\s*" + _EVENT_LITERAL,
)
match_track_event = regex_matcher("track_event", r"\btrackEvent\s*\(\s*" + _EVENT_LITERAL)
match_log_analytics = regex_matcher("log_analytics", r"\blogAnalytics\s*\(\s*" + _EVENT_LITERAL)
match_data_layer_push = regex_matcher(
    "data_layer_push",
    r"\bdataLayer\.push\s*\(\s*\{[^}]*?(?:['\"]event['\"]|\bevent)\s*:\s*" + _EVENT_LITERAL,
)
match_analytics_track = regex_matcher("analytics_track", r"\banalytics\.track\s*\(\s*" + _EVENT_LITERAL)
match_analytics_call = regex_matcher(
    "analytics_call",
    r"\banalytics\.(?:identify|page|group)\s*\(\s*" + _EVENT_LITERAL,
)
match_mixpanel_track = regex_matcher("mixpanel_track", r"\bmixpanel\.track\s*\(\s*" + _EVENT_LITERAL)

DEFAULT_MATCHERS: tuple[CallMatcher, ...] = (
    match_method_call,
    match_gtag_event,
    match_track_event,
    match_log_analytics,
    match_data_layer_push,
    match_analytics_track,
    match_analytics_call,
    match_mixpanel_track,
)


class TrackingCallScanner:
    """Apply an ordered set of matchers over whole file contents.

    Output order is matcher order, then offset, so the same content and
    matcher set always produce the same list. Overlapping hits from different
    matchers are kept here and collapsed later by identity.
    """

    def __init__(
        self,
        matchers: Sequence[CallMatcher] = DEFAULT_MATCHERS,
        *,
        context_lines: int = DEFAULT_CONTEXT_LINES,
    ) -> None:
        self.matchers = tuple(matchers)
        self.context_lines = max(0, context_lines)

    def scan(self, content: str, file_path: str) -> list[TrackingCallMatch]:
        """Return every tracking-call site found in ``content``."""

        if not content:
            return []
        lines = content.split("\n")
        found: list[TrackingCallMatch] = []
        for matcher in self.matchers:
            for raw in sorted(matcher(content), key=lambda item: item.offset):
                line_index = content.count("\n", 0, raw.offset)
                found.append(
                    TrackingCallMatch(
                        event_name=raw.event_name,
                        file_path=file_path,
                        line=line_index + 1,
                        snippet=self._snippet(lines, line_index),
                        pattern=raw.pattern,
                    )
                )
        return found

    def _snippet(self, lines: list[str], line_index: int) -> str:
        start = max(0, line_index - self.context_lines)
        end = min(len(lines), line_index + self.context_lines + 1)
        return "\n".join(lines[start:end])


def format_file_snippet(matches: Sequence[TrackingCallMatch], *, limit: int = MAX_FILE_SNIPPET_CHARS) -> str:
    """Join per-call snippets of one file into the bounded text that gets persisted."""

    return "\n\n---\n\n".join(f"// Line {match.line}\n{match.snippet}" for match in matches)[:limit]
