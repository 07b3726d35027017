"""Entry fee calculation: progressive solo packages and per-person rates."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import FeeCalculationError, MalformedEntryError
from .identity import GROUP, PERFORMANCE_TYPES, SOLO, participant_ids, performance_type_for
from .schedule import CURRENCY, DEFAULT_MASTERY, FeeSchedule
from .sequencing import is_first_entry, normalize_entry, sequence_position

logger = logging.getLogger(__name__)

# Currency rounding tolerance when comparing stored and computed fees.
FEE_EPSILON = 0.01

REGISTRATION_WAIVED = "waived — already charged on an earlier entry"


def _fmt(amount: float) -> str:
    return f"{CURRENCY}{amount:.2f}"


def fees_differ(a: Optional[float], b: Optional[float]) -> bool:
    """Return True when two amounts differ by more than :data:`FEE_EPSILON`.

    A non-finite amount never matches anything.
    """
    left, right = float(a or 0), float(b or 0)
    if not (math.isfinite(left) and math.isfinite(right)):
        return True
    return abs(left - right) > FEE_EPSILON


def _increment(
    position: int, current: Optional[float], previous: Optional[float]
) -> Tuple[float, str, List[str]]:
    """Incremental charge between two consecutive package totals."""
    if current is None or previous is None:
        missing = f"solo_{position}_fee" if current is None else f"solo_{position - 1}_fee"
        return 0.0, f"Solo #{position}: {_fmt(0)}", [f"{missing} is not configured; solo #{position} charged 0"]
    diff = round(current - previous, 2)
    if diff < 0:
        return (
            0.0,
            f"Solo #{position}: {_fmt(0)} (package total {_fmt(current)})",
            [
                f"solo_{position}_fee ({current:.2f}) is lower than solo_{position - 1}_fee "
                f"({previous:.2f}); increment clamped to 0"
            ],
        )
    return diff, f"Solo #{position}: {_fmt(diff)} (package total {_fmt(current)})", []


def solo_performance_fee(position: int, schedule: FeeSchedule) -> Tuple[float, str, List[str]]:
    """Return ``(fee, explanation, warnings)`` for the dancer's Nth solo."""
    if position < 1:
        raise FeeCalculationError(f"solo position must be >= 1, got {position}")
    if position == 1:
        if schedule.solo_1_fee is None:
            return 0.0, f"Solo #1: {_fmt(0)}", ["solo_1_fee is not configured; solo #1 charged 0"]
        return schedule.solo_1_fee, f"Solo #1: {_fmt(schedule.solo_1_fee)} (first solo)", []
    if position == 2:
        return _increment(2, schedule.solo_2_fee, schedule.solo_1_fee)
    if position == 3:
        return _increment(3, schedule.solo_3_fee, schedule.solo_2_fee)
    if schedule.solo_additional_fee is None:
        return (
            0.0,
            f"Solo #{position}: {_fmt(0)}",
            [f"solo_additional_fee is not configured; solo #{position} charged 0"],
        )
    fee = schedule.solo_additional_fee
    return fee, f"Solo #{position}: {_fmt(fee)} (additional solo)", []


def non_solo_performance_fee(
    performance_type: str, participant_count: int, schedule: FeeSchedule
) -> Tuple[float, str, List[str]]:
    """Return ``(fee, explanation, warnings)`` for duets, trios and groups."""
    if performance_type == GROUP:
        if participant_count <= schedule.group_break_point:
            rate = schedule.small_group_fee_per_person
            rate_name = "small_group_fee_per_person"
        else:
            rate = schedule.large_group_fee_per_person
            rate_name = "large_group_fee_per_person"
    else:
        rate = schedule.duet_trio_fee_per_person
        rate_name = "duet_trio_fee_per_person"
    label = f"{performance_type} with {participant_count} participants"
    if rate is None:
        return 0.0, f"{label}: {_fmt(0)}", [f"{rate_name} is not configured; {performance_type} charged 0"]
    fee = round(rate * participant_count, 2)
    return fee, f"{label}: {participant_count} x {_fmt(rate)} = {_fmt(fee)}", []


def compute_fee(
    performance_type: str,
    solo_position: Optional[int],
    participant_count: int,
    schedule: FeeSchedule,
    is_first_entry_for_dancer: bool,
) -> Dict[str, Any]:
    """Price one entry.

    Args:
        performance_type: ``Solo``, ``Duet``, ``Trio`` or ``Group``.
        solo_position: Which solo this is for the dancer (required for solos).
        participant_count: Number of dancers in the entry.
        schedule: The event's resolved fee schedule.
        is_first_entry_for_dancer: Whether this is the dancer's earliest entry
            in the event, which carries the one-time registration fee.

    Returns:
        Dictionary with performance_fee, registration_fee, total_fee,
        explanation and warnings. Schedule problems never raise; they yield a
        zero charge and a warning.
    """
    if performance_type not in PERFORMANCE_TYPES:
        raise FeeCalculationError(f"unknown performance type {performance_type!r}")
    if participant_count is None or participant_count < 1:
        raise FeeCalculationError(f"participant count must be >= 1, got {participant_count}")

    if performance_type == SOLO:
        if solo_position is None:
            raise FeeCalculationError("solo entries need a solo position")
        performance_fee, perf_text, warnings = solo_performance_fee(int(solo_position), schedule)
    else:
        performance_fee, perf_text, warnings = non_solo_performance_fee(
            performance_type, participant_count, schedule
        )

    registration = schedule.registration_fee_per_dancer
    if not is_first_entry_for_dancer:
        registration_fee = 0.0
        reg_text = f"Registration: {REGISTRATION_WAIVED}"
    elif registration is None:
        registration_fee = 0.0
        reg_text = "Registration: not configured for this event"
    else:
        registration_fee = registration
        reg_text = f"Registration: {_fmt(registration)} (first entry in event)"

    total = round(performance_fee + registration_fee, 2)
    return {
        "performance_type": performance_type,
        "solo_position": solo_position if performance_type == SOLO else None,
        "participant_count": participant_count,
        "performance_fee": round(performance_fee, 2),
        "registration_fee": round(registration_fee, 2),
        "total_fee": total,
        "explanation": f"{perf_text}; {reg_text}",
        "warnings": warnings,
    }


def _usable_history(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    history: List[Dict[str, Any]] = []
    for other in entries:
        try:
            history.append(normalize_entry(other))
        except MalformedEntryError as exc:
            logger.warning("Ignoring malformed entry %s in fee history: %s", other.get("id"), exc)
    return history


def quote_entry(
    entry: Dict[str, Any], existing_entries: Iterable[Dict[str, Any]], schedule: FeeSchedule
) -> Dict[str, Any]:
    """Price a new entry against the event's existing entries.

    ``entry`` needs ``participant_ids`` and may carry ``id``, ``eodsa_id``,
    ``contestant_id``, ``mastery``, ``performance_type`` and
    ``submitted_at`` (defaults to now). A history row with the same ``id``
    is the entry itself and is not counted. Malformed history rows are skipped.
    """
    candidate = dict(entry)
    if not candidate.get("submitted_at"):
        candidate["submitted_at"] = datetime.now(timezone.utc)
    candidate = normalize_entry(candidate)
    count = len(participant_ids(candidate))
    performance_type = candidate.get("performance_type") or performance_type_for(count)
    if performance_type not in PERFORMANCE_TYPES:
        raise FeeCalculationError(f"unknown performance type {performance_type!r}")
    history = _usable_history(existing_entries)
    position = sequence_position(candidate, history) if performance_type == SOLO else None
    breakdown = compute_fee(
        performance_type, position, count, schedule, is_first_entry(candidate, history)
    )
    breakdown["mastery"] = candidate.get("mastery") or DEFAULT_MASTERY
    return breakdown


def validate_submitted_fee(submitted_fee: Any, breakdown: Dict[str, Any]) -> Dict[str, Any]:
    """Check a client-submitted fee against the computed breakdown."""
    try:
        submitted = float(submitted_fee)
    except (TypeError, ValueError):
        submitted = None
    correct = breakdown["total_fee"]
    was_correct = submitted is not None and not fees_differ(submitted, correct)
    if was_correct:
        explanation = breakdown["explanation"]
    else:
        shown = "missing" if submitted is None else _fmt(submitted)
        explanation = f"Submitted fee {shown} corrected to {_fmt(correct)}. {breakdown['explanation']}"
    return {
        "submitted_fee": submitted,
        "validated_fee": correct,
        "was_correct": was_correct,
        "explanation": explanation,
    }


__all__ = [
    "FEE_EPSILON",
    "compute_fee",
    "fees_differ",
    "non_solo_performance_fee",
    "quote_entry",
    "solo_performance_fee",
    "validate_submitted_fee",
]
