"""Stream one real onboarding chat turn to stdout without touching the database.

Usage (from repo root):
    python backend/scripts/smoke_chat_stream.py "We sell project management software to agencies."
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from ecp.services.business_chat import BusinessChatSession
from ecp.services.chat_client import get_default_chat_client


def main() -> None:
    content = " ".join(sys.argv[1:]) or "Hi! We run a subscription meal-kit business."
    saved: list[dict[str, str]] = []
    session = BusinessChatSession(
        "smoke-project",
        "smoke-conversation",
        client=get_default_chat_client(),
        partial_context_sink=saved.append,
    )
    shown = ""
    final = None
    for update in session.start_turn(content):
        if update.display_text.startswith(shown):
            sys.stdout.write(update.display_text[len(shown):])
        sys.stdout.flush()
        shown = update.display_text
        final = update
    print()
    if final is not None:
        print(
            json.dumps(
                {
                    "phase": final.state.phase.value,
                    "confidence": final.state.confidence,
                    "business_fields": final.state.business_fields,
                    "partial_saves": saved,
                },
                indent=2,
            )
        )


if __name__ == "__main__":
    main()
