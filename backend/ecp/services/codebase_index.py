"""Repository scan: fetch source files, find tracking calls, record discovered events."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ecp.config import get_settings
from ecp.models.codebase_file import CodebaseFile
from ecp.schemas.indexing import CodebaseIndexResult
from ecp.services.annotations import insert_discovered_annotation
from ecp.services.event_classifier import EventClassifier, EventInterpretation
from ecp.services.event_merge import dedupe_matches, distinct_event_names
from ecp.services.github import RepositoryAccessError, RepositoryReader
from ecp.tracking.file_selection import select_files
from ecp.tracking.scanner import TrackingCallScanner, format_file_snippet
from ecp.tracking.types import RepoFileEntry, TrackingCallMatch

logger = logging.getLogger(__name__)


def run_codebase_index(
    db: Session,
    project_id: str,
    reader: RepositoryReader,
    classifier: EventClassifier | None = None,
    *,
    max_files: int | None = None,
    batch_size: int | None = None,
    context_lines: int | None = None,
) -> CodebaseIndexResult:
    """Scan a repository and insert every newly seen event as ``discovered``.

    Listing failures abort the scan with :class:`RepositoryAccessError`. A file
    that cannot be fetched, a failed snippet write, an AI classification
    failure, or a failed insert for one event only reduce what gets reported.
    Snippet rows of files outside this scan are removed, so code attribution
    always reflects the latest scan.
    """

    settings = get_settings()
    max_files = settings.scan_max_files if max_files is None else max_files
    batch_size = settings.scan_batch_size if batch_size is None else batch_size
    context_lines = settings.scan_context_lines if context_lines is None else context_lines

    total_started = perf_counter()
    result = CodebaseIndexResult(project_id=project_id)

    started = perf_counter()
    try:
        entries = reader.list_files()
    except RepositoryAccessError:
        logger.exception("codebase_index.list_failed project_id=%s", project_id)
        raise
    selected = select_files(entries, max_files=max_files)
    result.files_selected = len(selected)
    list_ms = (perf_counter() - started) * 1000.0

    started = perf_counter()
    contents, skipped = fetch_files(reader, selected, batch_size=batch_size)
    result.files_scanned = len(contents)
    result.files_skipped = skipped
    fetch_ms = (perf_counter() - started) * 1000.0

    started = perf_counter()
    scanner = TrackingCallScanner(context_lines=context_lines)
    matches_by_file: dict[str, list[TrackingCallMatch]] = {}
    for path, content in contents:
        matches_by_file[path] = dedupe_matches(scanner.scan(content, path))
    all_matches = [match for matches in matches_by_file.values() for match in matches]
    result.tracking_calls_found = len(all_matches)
    event_names = distinct_event_names(all_matches)
    result.raw_events = event_names
    scan_ms = (perf_counter() - started) * 1000.0

    started = perf_counter()
    try:
        _store_file_snippets(db, project_id, matches_by_file)
    except SQLAlchemyError:
        db.rollback()
        result.snippets_stored = False
        logger.exception(
            "codebase_index.store_failed project_id=%s files=%d", project_id, len(matches_by_file)
        )
    store_ms = (perf_counter() - started) * 1000.0

    started = perf_counter()
    interpretations: dict[str, EventInterpretation] = {}
    if classifier is not None and all_matches:
        try:
            interpretations = classifier.classify(all_matches)
        except Exception:
            logger.exception(
                "codebase_index.classification_failed project_id=%s calls=%d",
                project_id,
                len(all_matches),
            )
    classify_ms = (perf_counter() - started) * 1000.0

    started = perf_counter()
    for name in event_names:
        result.events_attempted += 1
        interpretation = interpretations.get(name)
        try:
            created = insert_discovered_annotation(
                db,
                project_id,
                name,
                description=interpretation.description if interpretation else None,
                category=interpretation.category if interpretation else None,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            result.events_failed += 1
            logger.exception("codebase_index.insert_failed project_id=%s event_name=%s", project_id, name)
            continue
        if created:
            result.events_discovered += 1
    insert_ms = (perf_counter() - started) * 1000.0

    logger.info(
        (
            "codebase_index.timing project_id=%s files_selected=%d files_scanned=%d files_skipped=%d "
            "calls=%d events=%d discovered=%d failed=%d list_ms=%.2f fetch_ms=%.2f scan_ms=%.2f "
            "store_ms=%.2f classify_ms=%.2f insert_ms=%.2f total_ms=%.2f"
        ),
        project_id,
        result.files_selected,
        result.files_scanned,
        len(result.files_skipped),
        result.tracking_calls_found,
        result.events_attempted,
        result.events_discovered,
        result.events_failed,
        list_ms,
        fetch_ms,
        scan_ms,
        store_ms,
        classify_ms,
        insert_ms,
        (perf_counter() - total_started) * 1000.0,
    )
    return result


def fetch_files(
    reader: RepositoryReader,
    entries: Sequence[RepoFileEntry],
    *,
    batch_size: int = 5,
) -> tuple[list[tuple[str, str]], list[str]]:
    """Read files in bounded batches.

    Returns ``(path, content)`` pairs in selection order plus the paths that
    could not be read.
    """

    batch_size = max(1, batch_size)
    contents: list[tuple[str, str]] = []
    skipped: list[str] = []
    with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="repo-fetch") as pool:
        for offset in range(0, len(entries), batch_size):
            batch = entries[offset : offset + batch_size]
            futures = [(entry.path, pool.submit(reader.read_file, entry.path)) for entry in batch]
            for path, future in futures:
                try:
                    contents.append((path, future.result()))
                except Exception as exc:
                    skipped.append(path)
                    logger.warning("codebase_index.fetch_failed path=%s error=%s", path, exc)
    return contents, skipped


def _store_file_snippets(
    db: Session,
    project_id: str,
    matches_by_file: dict[str, list[TrackingCallMatch]],
) -> None:
    stale = delete(CodebaseFile).where(CodebaseFile.project_id == project_id)
    if matches_by_file:
        stale = stale.where(CodebaseFile.file_path.not_in(list(matches_by_file)))
    db.execute(stale)
    existing = {
        row.file_path: row
        for row in db.scalars(
            select(CodebaseFile).where(
                CodebaseFile.project_id == project_id,
                CodebaseFile.file_path.in_(list(matches_by_file)),
            )
        )
    }
    synced_at = datetime.now(timezone.utc)
    for path, matches in matches_by_file.items():
        row = existing.get(path)
        if row is None:
            row = CodebaseFile(project_id=project_id, file_path=path)
            db.add(row)
        row.content_snippet = format_file_snippet(matches)
        row.event_names_json = distinct_event_names(matches)
        row.has_tracking_calls = bool(matches)
        row.last_synced_at = synced_at
    db.commit()
