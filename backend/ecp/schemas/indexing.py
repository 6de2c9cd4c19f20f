"""Codebase indexing and enrichment schemas."""

from pydantic import BaseModel, Field


class CodebaseIndexRequest(BaseModel):
    """Request payload for a repository scan."""

    github_url: str = Field(min_length=1)
    github_token: str | None = None
    classify: bool = True


class CodebaseIndexResult(BaseModel):
    """Repository scan summary; counts are reported even for partial failures."""

    project_id: str
    files_selected: int = 0
    files_scanned: int = 0
    files_skipped: list[str] = Field(default_factory=list)
    tracking_calls_found: int = 0
    events_attempted: int = 0
    events_discovered: int = 0
    events_failed: int = 0
    raw_events: list[str] = Field(default_factory=list)
    snippets_stored: bool = True


class EnrichmentResult(BaseModel):
    """Event dictionary enrichment summary."""

    project_id: str
    attempted: int = 0
    enriched: int = 0
    failed: int = 0


class RepositoryContextRequest(BaseModel):
    """Repository to summarize for the onboarding assistant."""

    github_url: str = Field(min_length=1)
    github_token: str | None = None


class TrackingSnippetRead(BaseModel):
    """One tracking call with surrounding code."""

    event_name: str
    file_path: str
    line: int
    snippet: str


class RepositoryContextRead(BaseModel):
    """Repository summary plus the prompt text built from it."""

    repo: str
    description: str = ""
    language: str = ""
    topics: list[str] = Field(default_factory=list)
    default_branch: str | None = None
    file_tree: list[str] = Field(default_factory=list)
    key_files: dict[str, str] = Field(default_factory=dict)
    tracking_snippets: list[TrackingSnippetRead] = Field(default_factory=list)
    rendered: str
