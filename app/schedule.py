"""Event fee schedule resolution.

Events store their price points as loose numeric columns. This module turns
them into a :class:`FeeSchedule` where ``None`` means "not configured" and
only positive amounts count as configured tiers.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Data directory lives at the project root under ``data``.
DATA_DIR = Path(__file__).resolve().parent.parent / "data"

DEFAULT_GROUP_BREAK_POINT = 9


def _build_lookup(entries: List[Dict], key_field: str, value_field: str) -> Dict[str, float]:
    """Build a lookup dict from settings entries."""
    lookup: Dict[str, float] = {}
    for item in entries:
        key = item.get(key_field)
        if key is None:
            continue
        lookup[str(key)] = float(item.get(value_field) or 0)
    return lookup


# Load federation defaults from settings.json.
with (DATA_DIR / "settings.json").open() as f:
    _SETTINGS = json.load(f)

_NON_SOLO_RATES = _build_lookup(
    _SETTINGS.get("non_solo_fee_per_person", []), "performance_type", "fee_per_person"
)
_GROUP_BREAK_POINT = int(_SETTINGS.get("group_break_point") or DEFAULT_GROUP_BREAK_POINT)
DEFAULT_MASTERY = _SETTINGS.get("default_mastery") or "Water (Competitive)"
CURRENCY = _SETTINGS.get("currency") or "R"


def _money(value: Any) -> Optional[float]:
    """Return a positive amount rounded to cents, or ``None`` if not configured.

    Blank, zero, negative and unparseable values all count as not configured.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if amount != amount or amount <= 0:  # NaN or non-positive
        return None
    return round(amount, 2)


def _default_rate(key: str) -> Optional[float]:
    return _money(_NON_SOLO_RATES.get(key))


@dataclass(frozen=True)
class FeeSchedule:
    """Resolved price points for one event."""

    registration_fee_per_dancer: Optional[float] = None
    solo_1_fee: Optional[float] = None
    solo_2_fee: Optional[float] = None
    solo_3_fee: Optional[float] = None
    solo_additional_fee: Optional[float] = None
    duet_trio_fee_per_person: Optional[float] = None
    small_group_fee_per_person: Optional[float] = None
    large_group_fee_per_person: Optional[float] = None
    group_break_point: int = DEFAULT_GROUP_BREAK_POINT

    def solo_tiers(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return (self.solo_1_fee, self.solo_2_fee, self.solo_3_fee)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_schedule(event: Optional[Dict[str, Any]]) -> FeeSchedule:
    """Build a :class:`FeeSchedule` from an event record.

    Solo tiers and the registration fee come only from the event. Duet, trio
    and group per-person rates fall back to the federation defaults in
    ``data/settings.json`` when the event leaves them unset.
    """
    event = event or {}
    duet_trio = _money(event.get("duet_trio_fee_per_person"))
    if duet_trio is None:
        duet_trio = _default_rate("Duet")
    small_group = _money(event.get("small_group_fee_per_person"))
    if small_group is None:
        small_group = _default_rate("Small Group")
    large_group = _money(event.get("large_group_fee_per_person"))
    if large_group is None:
        large_group = _default_rate("Large Group")
    try:
        break_point = int(event.get("group_break_point") or _GROUP_BREAK_POINT)
    except (TypeError, ValueError):
        break_point = _GROUP_BREAK_POINT
    return FeeSchedule(
        registration_fee_per_dancer=_money(event.get("registration_fee_per_dancer")),
        solo_1_fee=_money(event.get("solo_1_fee")),
        solo_2_fee=_money(event.get("solo_2_fee")),
        solo_3_fee=_money(event.get("solo_3_fee")),
        solo_additional_fee=_money(event.get("solo_additional_fee")),
        duet_trio_fee_per_person=duet_trio,
        small_group_fee_per_person=small_group,
        large_group_fee_per_person=large_group,
        group_break_point=max(break_point, 1),
    )


def package_total(schedule: FeeSchedule, solo_count: int) -> Optional[float]:
    """Return the cumulative price for ``solo_count`` solos.

    Returns ``None`` when a tier needed for the total is not configured.
    """
    if solo_count <= 0:
        return 0.0
    tiers = schedule.solo_tiers()
    if solo_count <= len(tiers):
        return tiers[solo_count - 1]
    base = tiers[-1]
    if base is None or schedule.solo_additional_fee is None:
        return None
    return round(base + schedule.solo_additional_fee * (solo_count - len(tiers)), 2)


def schedule_warnings(schedule: FeeSchedule) -> List[str]:
    """Return data-quality problems an administrator should fix on the event."""
    warnings: List[str] = []
    names = ("solo_1_fee", "solo_2_fee", "solo_3_fee")
    tiers = schedule.solo_tiers()
    for name, value in zip(names, tiers):
        if value is None:
            warnings.append(f"{name} is not configured")
    if schedule.solo_additional_fee is None:
        warnings.append("solo_additional_fee is not configured")
    if schedule.registration_fee_per_dancer is None:
        warnings.append("registration_fee_per_dancer is not configured")
    for idx in range(1, len(tiers)):
        prev, cur = tiers[idx - 1], tiers[idx]
        if prev is not None and cur is not None and cur < prev:
            warnings.append(
                f"{names[idx]} ({cur:.2f}) is lower than {names[idx - 1]} ({prev:.2f}); "
                f"package totals must not decrease"
            )
    return warnings


__all__ = [
    "CURRENCY",
    "DEFAULT_MASTERY",
    "FeeSchedule",
    "package_total",
    "resolve_schedule",
    "schedule_warnings",
]
