#!/usr/bin/env python3
"""
Seed the notes SQLite DB for demos or tests.

Creates data/notes.db (if missing), inserts demo notes for one user and,
unless --no-index is given, pushes them into that user's vector collection.

Run from project root:

    python scripts/seed_notes.py
    python scripts/seed_notes.py --user-id 2 --no-index
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Project root on path so "app" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.core.config import NOTES_DB_PATH
from app.core.note_store import NoteStore
from app.services.indexing_service import index_user_notes
from app.services.vector_store import open_vector_index

# (created date, content). Edit to change the demo corpus.
SEED_NOTES = [
    ("2024-01-24", "Standup: migrate the billing cron to the new scheduler. #work"),
    ("2024-01-26", "Dentist appointment at 3pm, bring the insurance card. #personal"),
    ("2024-01-26", "Idea: a weekly digest email summarising tagged notes. #ideas #work"),
    ("2024-02-02", "Reading list: Designing Data-Intensive Applications, chapter 5. #reading"),
    ("2024-02-10", "Groceries: oat milk, coffee beans, spinach."),
]


def _ts(day: str) -> int:
    return int(datetime.strptime(day, "%Y-%m-%d").replace(hour=12, tzinfo=timezone.utc).timestamp())


async def seed(user_id: int, index: bool) -> None:
    notes = NoteStore(NOTES_DB_PATH)
    await notes.init()
    for day, content in SEED_NOTES:
        note = await notes.create_note(user_id, content, created_ts=_ts(day))
        print(f"  added: {note.uid} ({day})")
    print(f"Done. Seeded {len(SEED_NOTES)} notes for user {user_id}.")

    if index:
        indexed = await index_user_notes(notes, open_vector_index(), user_id)
        print(f"Indexed {indexed} notes.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed notes DB for demos/tests.")
    parser.add_argument("--user-id", type=int, default=1, help="Owner of the seeded notes.")
    parser.add_argument(
        "--no-index",
        action="store_true",
        help="Skip pushing the notes into the vector store (no HF_API_KEY needed).",
    )
    args = parser.parse_args()
    asyncio.run(seed(args.user_id, not args.no_index))


if __name__ == "__main__":
    main()
