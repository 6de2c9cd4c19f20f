"""Typed tracking-call scan outputs independent of persistence."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RawCallMatch:
    """One regex hit: event name and the offset of its string literal."""

    event_name: str
    offset: int
    pattern: str


@dataclass(frozen=True, slots=True)
class TrackingCallMatch:
    """Line-anchored tracking call site found in a source file."""

    event_name: str
    file_path: str
    line: int
    snippet: str
    pattern: str = ""

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.event_name, self.file_path, self.line)


@dataclass(frozen=True, slots=True)
class RepoFileEntry:
    """Entry of a repository file tree listing."""

    path: str
    type: str = "blob"
    size: int | None = None
