"""Generation history storage helpers.

This module keeps the history list of successful image requests in a single
``history.json`` file so route handlers can focus on HTTP concerns while the
file-backed store remains testable as a small unit.

The history is intentionally simple:

- entries are plain dictionaries validated by
  :class:`~colorpage.api.models.HistoryEntry` at the API boundary
- list order is reverse-chronological (newest first)
- each entry is identified by its ``timestamp`` (epoch milliseconds); a
  colliding timestamp is moved forward to the next free millisecond on insert
- entries are never mutated, only added, deleted individually or cleared

Persistence is best effort.  Unparsable or malformed state is discarded
rather than repaired, and the cleaned list is written back immediately.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "history.json"

# Serializes read-modify-write cycles; entries are added from worker threads.
_lock = threading.Lock()


def load_history(history_db: Path) -> list[dict]:
    """Load history entries, discarding anything that cannot be used.

    - if the JSON file is missing, return an empty history
    - if the file is invalid JSON or not a list, reset it to an empty list
    - entries that are not objects or lack an integer ``timestamp`` are dropped

    Args:
        history_db: Path to ``history.json``.

    Returns:
        Surviving entries in persisted order.
    """
    if not history_db.exists():
        return []

    try:
        with open(history_db, encoding="utf-8") as handle:
            raw_entries = json.load(handle)
    except (OSError, ValueError) as e:
        logger.warning(f"Discarding unreadable history file {history_db}: {e}")
        raw_entries = None

    if not isinstance(raw_entries, list):
        save_history(history_db, [])
        return []

    entries = [
        entry
        for entry in raw_entries
        if isinstance(entry, dict) and isinstance(entry.get("timestamp"), int)
    ]
    if entries != raw_entries:
        save_history(history_db, entries)
    return entries


def save_history(history_db: Path, entries: list[dict]) -> None:
    """Persist the history list to disk."""
    with open(history_db, "w", encoding="utf-8") as handle:
        json.dump(entries, handle, indent=2)


def add_history_entry(history_db: Path, entry: dict) -> dict:
    """Insert ``entry`` at the front of the history and persist it.

    Returns:
        The stored entry, whose ``timestamp`` may have been moved forward
        so that no two entries share one.
    """
    with _lock:
        entries = load_history(history_db)
        taken = {existing["timestamp"] for existing in entries}
        timestamp = entry["timestamp"]
        while timestamp in taken:
            timestamp += 1
        stored = {**entry, "timestamp": timestamp}
        entries.insert(0, stored)
        save_history(history_db, entries)
    return stored


def delete_history_entry(history_db: Path, timestamp: int) -> bool:
    """Remove the entry with ``timestamp``.  Returns False if none matched."""
    with _lock:
        entries = load_history(history_db)
        remaining = [entry for entry in entries if entry.get("timestamp") != timestamp]
        if len(remaining) == len(entries):
            return False
        save_history(history_db, remaining)
    return True


def clear_history(history_db: Path) -> int:
    """Delete every entry.  Returns the number of entries removed."""
    with _lock:
        removed = len(load_history(history_db))
        save_history(history_db, [])
    return removed
