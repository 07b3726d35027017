"""Batch recalculation of stored entry fees for one event."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from .datastore import get_event as ds_get_event
from .datastore import list_event_entries as ds_list_event_entries
from .datastore import update_entry_fee as ds_update_entry_fee
from .fees import compute_fee, fees_differ
from .identity import SOLO, performance_type_for
from .schedule import DEFAULT_MASTERY, FeeSchedule, resolve_schedule, schedule_warnings
from .sequencing import is_first_entry, normalize_entry, order_key, sequence_position

logger = logging.getLogger(__name__)

STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_ERROR = "error"


def _stored_fee(entry: Dict[str, Any]) -> Optional[float]:
    """Return the persisted fee, or None when it is missing or unreadable.

    Unreadable and non-finite values count as never priced so the pass
    rewrites them.
    """
    value = entry.get("calculated_fee")
    if value is None:
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        logger.warning("Entry %s has unreadable calculated_fee %r", entry.get("id"), value)
        return None
    if not math.isfinite(amount):
        logger.warning("Entry %s has non-finite calculated_fee %r", entry.get("id"), value)
        return None
    return round(amount, 2)


def _error_outcome(entry: Dict[str, Any], exc: Exception) -> Dict[str, Any]:
    return {
        "entry_id": entry.get("id"),
        "item_name": entry.get("item_name"),
        "status": STATUS_ERROR,
        "error": str(exc) or exc.__class__.__name__,
    }


def plan_event_fees(entries: Iterable[Dict[str, Any]], schedule: FeeSchedule) -> List[Dict[str, Any]]:
    """Compute the fee every entry of an event should carry.

    Entries are normalized once; malformed ones become error outcomes and take
    no part in anyone else's history. The rest are walked in submission order
    and each is priced from the entries before it, so the result does not
    depend on the order ``entries`` arrives in. Nothing is persisted here.
    """
    valid: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for entry in entries:
        try:
            valid.append(normalize_entry(entry))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Skipping entry %s during fee planning: %s", entry.get("id"), exc)
            errors.append(_error_outcome(entry, exc))

    valid.sort(key=order_key)

    outcomes: List[Dict[str, Any]] = []
    for idx, entry in enumerate(valid):
        earlier = valid[:idx]
        try:
            count = len(entry["participant_ids"])
            performance_type = performance_type_for(count)
            position = sequence_position(entry, earlier) if performance_type == SOLO else None
            breakdown = compute_fee(
                performance_type, position, count, schedule, is_first_entry(entry, earlier)
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Fee computation failed for entry %s: %s", entry.get("id"), exc)
            outcomes.append(_error_outcome(entry, exc))
            continue
        outcomes.append(
            {
                "entry_id": entry.get("id"),
                "item_name": entry.get("item_name"),
                "mastery": entry.get("mastery") or DEFAULT_MASTERY,
                "submitted_at": entry["submitted_at"].isoformat(),
                **breakdown,
                "old_fee": _stored_fee(entry),
                "new_fee": breakdown["total_fee"],
            }
        )
    return outcomes + errors


def _summary(event_id: str, event_name: Optional[str], dry_run: bool, message: str) -> Dict[str, Any]:
    return {
        "event_id": event_id,
        "event_name": event_name,
        "dry_run": dry_run,
        "message": message,
        "total": 0,
        "updated_count": 0,
        "unchanged_count": 0,
        "error_count": 0,
        "schedule_warnings": [],
        "per_entry_results": [],
    }


def reconcile(event_id: str, dry_run: bool = False) -> Dict[str, Any]:
    """Recalculate and persist fees for every entry of an event.

    Uses the event's current fee schedule and a single snapshot of its
    entries. Only entries whose stored ``calculated_fee`` differs from the
    recomputed total by more than 0.01 are written, each with its own update.
    A failing entry is reported and counted without stopping the others.
    With ``dry_run`` the outcomes are reported but nothing is written.
    """
    event = ds_get_event(event_id)
    if not event:
        logger.info("Fee recalculation skipped: event %s not found", event_id)
        return _summary(event_id, None, dry_run, "Event not found; nothing to recalculate")

    event_name = event.get("name")
    entries = ds_list_event_entries(event_id) or []
    if not entries:
        return _summary(event_id, event_name, dry_run, "No entries found for this event")

    schedule = resolve_schedule(event)
    summary = _summary(
        event_id, event_name, dry_run, f"Recalculated fees for {len(entries)} entries"
    )
    summary["total"] = len(entries)
    summary["schedule_warnings"] = schedule_warnings(schedule)

    results: List[Dict[str, Any]] = []
    for outcome in plan_event_fees(entries, schedule):
        if outcome.get("status") == STATUS_ERROR:
            results.append(outcome)
            continue
        old_fee = outcome["old_fee"]
        new_fee = outcome["new_fee"]
        if old_fee is not None and not fees_differ(old_fee, new_fee):
            results.append({**outcome, "delta": 0.0, "status": STATUS_UNCHANGED})
            continue
        try:
            if not dry_run:
                ds_update_entry_fee(outcome["entry_id"], new_fee)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Failed to persist fee for entry %s", outcome["entry_id"])
            results.append({**outcome, "status": STATUS_ERROR, "error": str(exc) or exc.__class__.__name__})
            continue
        delta = round(new_fee - (old_fee or 0.0), 2)
        results.append({**outcome, "delta": delta, "status": STATUS_UPDATED})

    summary["per_entry_results"] = results
    summary["updated_count"] = sum(1 for r in results if r["status"] == STATUS_UPDATED)
    summary["unchanged_count"] = sum(1 for r in results if r["status"] == STATUS_UNCHANGED)
    summary["error_count"] = sum(1 for r in results if r["status"] == STATUS_ERROR)
    logger.info(
        "fee_recalc event=%s total=%d updated=%d unchanged=%d errors=%d dry_run=%s",
        event_id,
        summary["total"],
        summary["updated_count"],
        summary["unchanged_count"],
        summary["error_count"],
        dry_run,
    )
    return summary


__all__ = ["plan_event_fees", "reconcile"]
