"""Source-code scanning for analytics tracking calls."""

from ecp.tracking.file_selection import select_files
from ecp.tracking.scanner import DEFAULT_MATCHERS, TrackingCallScanner, format_file_snippet
from ecp.tracking.types import RawCallMatch, RepoFileEntry, TrackingCallMatch

__all__ = [
    "DEFAULT_MATCHERS",
    "RawCallMatch",
    "RepoFileEntry",
    "TrackingCallMatch",
    "TrackingCallScanner",
    "format_file_snippet",
    "select_files",
]
