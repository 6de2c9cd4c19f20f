"""Pull live product events from external analytics providers."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from ecp.config import get_settings


class LiveEventSourceError(RuntimeError):
    """Raised when a provider rejects the request or returns an unreadable payload."""


@dataclass(frozen=True, slots=True)
class ObservedEvent:
    """One event occurrence reported by a provider."""

    event_name: str
    occurred_at: datetime
    user_identifier: str | None = None
    page_url: str | None = None


class LiveEventSource(Protocol):
    """Protocol for providers the live event sync can read from."""

    name: str

    def fetch_events(self, since: datetime | None) -> list[ObservedEvent]:
        """Return events that occurred after ``since`` (all recent events when None)."""


@dataclass(slots=True)
class PostHogEventSource:
    """PostHog HogQL query API, paged newest first."""

    project_id: str
    api_key: str
    host: str = "https://us.i.posthog.com"
    page_size: int = 500
    timeout_seconds: int = 60
    name: str = "posthog"

    def fetch_events(self, since: datetime | None) -> list[ObservedEvent]:
        where = f"WHERE timestamp > '{_isoformat(since)}' " if since is not None else ""
        events: list[ObservedEvent] = []
        offset = 0
        while True:
            query = (
                f"SELECT event, distinct_id, properties, timestamp FROM events {where}"
                f"ORDER BY timestamp DESC LIMIT {self.page_size} OFFSET {offset}"
            )
            decoded = _request_json(
                f"{self.host.rstrip('/')}/api/projects/{urllib_parse.quote(self.project_id)}/query",
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                body={"query": {"kind": "HogQLQuery", "query": query}},
                timeout_seconds=self.timeout_seconds,
                provider="PostHog",
            )
            rows = decoded.get("results") or []
            events.extend(parse_posthog_rows(rows))
            if len(rows) < self.page_size:
                return events
            offset += self.page_size


@dataclass(slots=True)
class MixpanelEventSource:
    """Mixpanel raw export API (newline-delimited JSON, day granularity)."""

    project_id: str
    secret: str
    export_url: str = "https://data.mixpanel.com/api/2.0/export"
    lookback_days: int = 7
    timeout_seconds: int = 60
    name: str = "mixpanel"

    def fetch_events(self, since: datetime | None) -> list[ObservedEvent]:
        today = datetime.now(timezone.utc).date()
        from_date: date = since.date() if since is not None else today - timedelta(days=self.lookback_days)
        query = urllib_parse.urlencode(
            {"from_date": from_date.isoformat(), "to_date": today.isoformat(), "project_id": self.project_id}
        )
        token = base64.b64encode(f"{self.secret}:".encode("utf-8")).decode("ascii")
        raw = _request_text(
            f"{self.export_url}?{query}",
            headers={"Authorization": f"Basic {token}", "Accept": "text/plain"},
            timeout_seconds=self.timeout_seconds,
            provider="Mixpanel",
        )
        events = parse_mixpanel_export(raw)
        if since is None:
            return events
        return [event for event in events if event.occurred_at > _as_utc(since)]


def parse_posthog_rows(rows: list[Any]) -> list[ObservedEvent]:
    """Map ``[event, distinct_id, properties, timestamp]`` rows; malformed rows are skipped."""

    events: list[ObservedEvent] = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 4:
            continue
        properties = row[2]
        if isinstance(properties, str):
            try:
                properties = json.loads(properties)
            except json.JSONDecodeError:
                properties = {}
        if not isinstance(properties, dict):
            properties = {}
        occurred_at = _parse_timestamp(row[3])
        events.append(
            ObservedEvent(
                event_name=str(row[0] or "unknown"),
                occurred_at=occurred_at or datetime.now(timezone.utc),
                user_identifier=str(row[1]) if row[1] else None,
                page_url=properties.get("$current_url") or None,
            )
        )
    return events


def parse_mixpanel_export(raw: str) -> list[ObservedEvent]:
    """Parse Mixpanel's JSONL export; undecodable lines are skipped."""

    events: list[ObservedEvent] = []
    for line in raw.splitlines():
        if not line.strip():
            continue
        try:
            decoded = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(decoded, dict):
            continue
        properties = decoded.get("properties")
        if not isinstance(properties, dict):
            properties = {}
        seconds = properties.get("time")
        occurred_at = (
            datetime.fromtimestamp(seconds, tz=timezone.utc)
            if isinstance(seconds, (int, float))
            else datetime.now(timezone.utc)
        )
        distinct_id = properties.get("distinct_id")
        events.append(
            ObservedEvent(
                event_name=str(decoded.get("event") or "unknown"),
                occurred_at=occurred_at,
                user_identifier=str(distinct_id) if distinct_id else None,
                page_url=properties.get("$current_url") or None,
            )
        )
    return events


def get_live_event_source(provider: str, project_id: str, api_key: str, host: str | None = None) -> LiveEventSource:
    """Build a provider client using configured defaults."""

    settings = get_settings()
    if provider == "posthog":
        return PostHogEventSource(
            project_id=project_id,
            api_key=api_key,
            host=host or settings.posthog_host,
            page_size=settings.live_sync_page_size,
            timeout_seconds=settings.live_sync_timeout_seconds,
        )
    if provider == "mixpanel":
        return MixpanelEventSource(
            project_id=project_id,
            secret=api_key,
            export_url=host or settings.mixpanel_export_url,
            lookback_days=settings.live_sync_lookback_days,
            timeout_seconds=settings.live_sync_timeout_seconds,
        )
    raise LiveEventSourceError(f"Unsupported analytics provider: {provider}")


def _request_json(
    url: str,
    *,
    headers: dict[str, str],
    body: dict[str, Any],
    timeout_seconds: int,
    provider: str,
) -> dict[str, Any]:
    raw = _request_text(
        url,
        headers=headers,
        timeout_seconds=timeout_seconds,
        provider=provider,
        data=json.dumps(body).encode("utf-8"),
    )
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LiveEventSourceError(f"{provider} returned a non-JSON response") from exc
    if not isinstance(decoded, dict):
        raise LiveEventSourceError(f"{provider} returned an unexpected response shape")
    return decoded


def _request_text(
    url: str,
    *,
    headers: dict[str, str],
    timeout_seconds: int,
    provider: str,
    data: bytes | None = None,
) -> str:
    req = urllib_request.Request(url=url, data=data, method="POST" if data is not None else "GET", headers=headers)
    try:
        with urllib_request.urlopen(req, timeout=timeout_seconds) as resp:
            return resp.read().decode("utf-8")
    except urllib_error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise LiveEventSourceError(f"{provider} API error ({exc.code}): {detail[:300]}") from exc
    except urllib_error.URLError as exc:
        raise LiveEventSourceError(f"{provider} request failed: {exc.reason}") from exc


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _isoformat(value: datetime) -> str:
    return _as_utc(value).strftime("%Y-%m-%d %H:%M:%S.%f")
