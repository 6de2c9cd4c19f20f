"""Repository summary handed to the onboarding assistant."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import perf_counter

from ecp.config import get_settings
from ecp.services.codebase_index import fetch_files
from ecp.services.event_merge import dedupe_matches
from ecp.services.github import RepositoryAccessError, RepositoryInfo, RepositoryReader
from ecp.tracking.file_selection import select_files
from ecp.tracking.scanner import TrackingCallScanner
from ecp.tracking.types import TrackingCallMatch

logger = logging.getLogger(__name__)

KEY_FILE_NAMES = ("readme.md", "package.json", "pyproject.toml", "cargo.toml", "go.mod")
MAX_KEY_FILES = 3
KEY_FILE_CHARS = 3000
FILE_TREE_LIMIT = 200
MAX_TRACKING_SNIPPETS = 50


@dataclass(slots=True)
class RepositoryContext:
    """What the assistant gets to know about a connected repository."""

    info: RepositoryInfo
    file_tree: list[str] = field(default_factory=list)
    key_files: dict[str, str] = field(default_factory=dict)
    tracking_calls: list[TrackingCallMatch] = field(default_factory=list)

    def render(self) -> str:
        """Plain-text prompt section; the most useful parts come first."""

        lines = [f"Repository: {self.info.full_name}"]
        if self.info.description:
            lines.append(f"Description: {self.info.description}")
        if self.info.language:
            lines.append(f"Language: {self.info.language}")
        if self.info.topics:
            lines.append(f"Topics: {', '.join(self.info.topics)}")

        if self.tracking_calls:
            lines.append("")
            lines.append("Tracking calls found:")
            lines.extend(f"- {call.event_name} ({call.file_path}:{call.line})" for call in self.tracking_calls)

        for path, content in self.key_files.items():
            lines.append("")
            lines.append(f"--- {path} ---")
            lines.append(content)

        if self.tracking_calls:
            lines.append("")
            lines.append("Tracking call snippets:")
            for call in self.tracking_calls:
                lines.append(f"// {call.file_path}:{call.line}")
                lines.append(call.snippet)

        if self.file_tree:
            lines.append("")
            lines.append("File tree:")
            lines.extend(self.file_tree)
        return "\n".join(lines)


def build_repository_context(
    reader: RepositoryReader,
    *,
    max_source_files: int | None = None,
    context_lines: int | None = None,
    batch_size: int | None = None,
) -> RepositoryContext:
    """Collect metadata, key files, a bounded file tree and tracking-call snippets.

    Metadata failures raise :class:`RepositoryAccessError`. A missing tree or an
    unreadable file only makes the context smaller.
    """

    settings = get_settings()
    max_source_files = settings.repo_context_source_files if max_source_files is None else max_source_files
    context_lines = settings.repo_context_lines if context_lines is None else context_lines
    batch_size = settings.scan_batch_size if batch_size is None else batch_size

    started = perf_counter()
    info = reader.describe()
    try:
        entries = reader.list_files()
    except RepositoryAccessError as exc:
        logger.warning("repo_context.tree_unavailable repo=%s error=%s", info.full_name, exc)
        entries = []

    blobs = [entry for entry in entries if entry.type == "blob"]
    key_entries = [entry for entry in blobs if entry.path.lower() in KEY_FILE_NAMES][:MAX_KEY_FILES]
    key_contents, _ = fetch_files(reader, key_entries, batch_size=batch_size)

    selected = select_files(entries, max_files=max_source_files)
    contents, skipped = fetch_files(reader, selected, batch_size=batch_size)
    scanner = TrackingCallScanner(context_lines=context_lines)
    calls = dedupe_matches(match for path, content in contents for match in scanner.scan(content, path))

    context = RepositoryContext(
        info=info,
        file_tree=[entry.path for entry in blobs][:FILE_TREE_LIMIT],
        key_files={path: content[:KEY_FILE_CHARS] for path, content in key_contents},
        tracking_calls=calls[:MAX_TRACKING_SNIPPETS],
    )
    logger.info(
        "repo_context.built repo=%s files=%d key_files=%d scanned=%d skipped=%d calls=%d total_ms=%.2f",
        info.full_name,
        len(blobs),
        len(context.key_files),
        len(contents),
        len(skipped),
        len(context.tracking_calls),
        (perf_counter() - started) * 1000.0,
    )
    return context
