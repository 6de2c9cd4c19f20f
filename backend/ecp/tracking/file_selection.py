"""Repository file selection policy applied before scanning."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ecp.tracking.types import RepoFileEntry

SOURCE_EXTENSIONS = re.compile(r"\.(?:ts|tsx|js|jsx|mjs|cjs|vue|svelte|py)$")
SKIP_PATTERNS = re.compile(
    r"(?:^|/)(?:node_modules|dist|build|out|coverage|vendor|__pycache__|\.next)/"
    r"|(?:^|/)(?:tests?|__tests__|__mocks__)/"
    r"|\.(?:test|spec)\.|(?:^|/)test_[^/]*\.py$|_test\.py$"
    r"|\.d\.ts$|\.min\.js$"
    r"|\.(?:css|scss|json|md|svg|png|jpe?g|gif|ico|woff2?|ttf|eot|map|lock)$"
)
PRIORITY_KEYWORDS = re.compile(r"analytics|tracking|events?|posthog|mixpanel|gtag|segment|amplitude", re.IGNORECASE)

DEFAULT_MAX_FILES = 20


def is_scannable(path: str) -> bool:
    """Return whether a path is a source file worth scanning."""

    return bool(SOURCE_EXTENSIONS.search(path)) and not SKIP_PATTERNS.search(path)


def select_files(entries: Iterable[RepoFileEntry], *, max_files: int = DEFAULT_MAX_FILES) -> list[RepoFileEntry]:
    """Pick source blobs, analytics-related paths first, capped at ``max_files``."""

    sources = [entry for entry in entries if entry.type == "blob" and is_scannable(entry.path)]
    priority = [entry for entry in sources if PRIORITY_KEYWORDS.search(entry.path)]
    others = [entry for entry in sources if not PRIORITY_KEYWORDS.search(entry.path)]
    return (priority + others)[: max(0, max_files)]
