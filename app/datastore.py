from typing import Any, Dict, List, Optional

# PostgreSQL-only datastore proxy
# Callers import from here so tests can swap the datastore_pg functions.

from . import datastore_pg as _pg


def get_event(event_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_event(event_id)


def list_event_entries(event_id: str) -> List[Dict[str, Any]]:
    return _pg.list_event_entries(event_id)


def update_entry_fee(entry_id: str, fee: float) -> None:
    return _pg.update_entry_fee(entry_id, fee)
