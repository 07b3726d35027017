"""Dancer identity matching for fee sequencing."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

from .errors import MalformedEntryError

SOLO = "Solo"
DUET = "Duet"
TRIO = "Trio"
GROUP = "Group"
PERFORMANCE_TYPES = (SOLO, DUET, TRIO, GROUP)


def _clean_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def participant_ids(entry: Dict[str, Any]) -> Tuple[str, ...]:
    """Return the entry's participant ids as a tuple of strings.

    Older rows store the list as JSON text, so strings are decoded first.
    Raises :class:`MalformedEntryError` when the value is not a non-empty list
    of non-blank ids.
    """
    raw = entry.get("participant_ids")
    entry_id = entry.get("id")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise MalformedEntryError(
                f"participant_ids is not a JSON list: {entry.get('participant_ids')!r}", entry_id
            )
    if not isinstance(raw, (list, tuple)):
        raise MalformedEntryError(f"participant_ids must be a list, got {type(raw).__name__}", entry_id)
    ids = []
    for item in raw:
        if isinstance(item, (dict, list, tuple)):
            raise MalformedEntryError(f"participant id must be a scalar, got {item!r}", entry_id)
        cleaned = _clean_id(item)
        if cleaned is None:
            raise MalformedEntryError("participant_ids contains a blank id", entry_id)
        if cleaned not in ids:
            ids.append(cleaned)
    if not ids:
        raise MalformedEntryError("participant_ids is empty", entry_id)
    return tuple(ids)


def performance_type_for(participant_count: int) -> str:
    """Map a participant count to Solo, Duet, Trio or Group."""
    if participant_count <= 0:
        raise MalformedEntryError(f"participant count must be positive, got {participant_count}")
    if participant_count == 1:
        return SOLO
    if participant_count == 2:
        return DUET
    if participant_count == 3:
        return TRIO
    return GROUP


def same_dancer(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    """Return True when two entries belong to the same dancer.

    Any one channel is enough: equal ``eodsa_id``, equal ``contestant_id``,
    a shared participant, or one entry's ``eodsa_id`` appearing among the
    other's participants. Blank ids never match.
    """
    a_eodsa = _clean_id(a.get("eodsa_id"))
    b_eodsa = _clean_id(b.get("eodsa_id"))
    if a_eodsa is not None and a_eodsa == b_eodsa:
        return True

    a_contestant = _clean_id(a.get("contestant_id"))
    if a_contestant is not None and a_contestant == _clean_id(b.get("contestant_id")):
        return True

    a_people = set(participant_ids(a))
    b_people = set(participant_ids(b))
    if a_people & b_people:
        return True
    if a_eodsa is not None and a_eodsa in b_people:
        return True
    if b_eodsa is not None and b_eodsa in a_people:
        return True
    return False


__all__ = [
    "DUET",
    "GROUP",
    "PERFORMANCE_TYPES",
    "SOLO",
    "TRIO",
    "participant_ids",
    "performance_type_for",
    "same_dancer",
]
