"""Scan a GitHub repository for tracking calls and record discovered events.

Usage (from repository root):
    python backend/scripts/index_repo.py https://github.com/owner/repo --project-id demo

Usage (from backend directory):
    python scripts/index_repo.py https://github.com/owner/repo
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Make `ecp` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from ecp.db.session import SessionLocal
from ecp.services.codebase_index import run_codebase_index
from ecp.services.event_classifier import get_default_event_classifier
from ecp.services.event_merge import build_event_dictionary
from ecp.services.github import get_github_reader


DEFAULT_PROJECT_ID = "demo-project"


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Scan a GitHub repository for analytics tracking calls.")
    parser.add_argument("github_url", help="Repository URL, e.g. https://github.com/owner/repo")
    parser.add_argument(
        "--project-id",
        default=DEFAULT_PROJECT_ID,
        help=f"Project to record events under (default: {DEFAULT_PROJECT_ID})",
    )
    parser.add_argument("--token", default=None, help="GitHub token for private repositories.")
    parser.add_argument(
        "--no-classify",
        action="store_true",
        help="Skip AI interpretation of the tracking calls.",
    )
    parser.add_argument("--max-files", type=int, default=None, help="Override the configured file cap.")
    return parser.parse_args()


def main() -> None:
    """Run one scan and print a short summary."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    args = parse_args()
    reader = get_github_reader(args.github_url, args.token)
    classifier = None if args.no_classify else get_default_event_classifier()

    with SessionLocal() as db:
        result = run_codebase_index(db, args.project_id, reader, classifier, max_files=args.max_files)
        merged = build_event_dictionary(db, args.project_id)

    print("Scan complete")
    print(f"project_id={result.project_id}")
    print(f"files_scanned={result.files_scanned}/{result.files_selected}")
    print(f"files_skipped={len(result.files_skipped)}")
    print(f"tracking_calls_found={result.tracking_calls_found}")
    print(f"events_discovered={result.events_discovered}/{result.events_attempted}")
    print()
    for event in merged:
        print(f"  {event.event_name:<40} {event.source:<9} {event.status}")


if __name__ == "__main__":
    main()
