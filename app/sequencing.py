"""Submission ordering and solo sequence positions.

Entries are ordered by ``submitted_at`` and, for identical instants, by the
lexical order of ``str(id)``. Every "earlier than" check in the fee engine
uses :func:`order_key` so sorting and counting can never disagree.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

from .errors import MalformedEntryError
from .identity import participant_ids, same_dancer


def submitted_at(entry: Dict[str, Any]) -> datetime:
    """Return ``submitted_at`` as an aware datetime (naive values are UTC)."""
    raw = entry.get("submitted_at")
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedEntryError(f"unparseable submitted_at {raw!r}", entry.get("id"))
    else:
        raise MalformedEntryError("submitted_at is missing", entry.get("id"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def normalize_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``entry`` with parsed participants and timestamp.

    Raises :class:`MalformedEntryError` if either field cannot be read.
    """
    return {
        **entry,
        "participant_ids": participant_ids(entry),
        "submitted_at": submitted_at(entry),
    }


def order_key(entry: Dict[str, Any]) -> Tuple[datetime, str]:
    return (submitted_at(entry), str(entry.get("id") or ""))


def sort_entries(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return entries sorted ascending by submission order."""
    return sorted(entries, key=order_key)


def _is_other(candidate: Dict[str, Any], other: Dict[str, Any]) -> bool:
    if other is candidate:
        return False
    cid = candidate.get("id")
    return cid is None or str(other.get("id")) != str(cid)


def _earlier_matches(entry: Dict[str, Any], entries: Iterable[Dict[str, Any]]):
    key = order_key(entry)
    for other in entries:
        if not _is_other(entry, other):
            continue
        if order_key(other) < key and same_dancer(entry, other):
            yield other


def sequence_position(entry: Dict[str, Any], entries: Iterable[Dict[str, Any]]) -> int:
    """Return which solo this entry is for its dancer within the event (1-based).

    Counts the dancer's other solo entries submitted strictly earlier than the
    candidate, then adds one.
    """
    earlier = sum(1 for other in _earlier_matches(entry, entries) if len(participant_ids(other)) == 1)
    return earlier + 1


def is_first_entry(entry: Dict[str, Any], entries: Iterable[Dict[str, Any]]) -> bool:
    """Return True when no earlier entry of any type belongs to the same dancer."""
    for _other in _earlier_matches(entry, entries):
        return False
    return True


__all__ = [
    "is_first_entry",
    "normalize_entry",
    "order_key",
    "sequence_position",
    "sort_entries",
    "submitted_at",
]
