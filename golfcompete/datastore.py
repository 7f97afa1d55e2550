from typing import Any, Dict, List, Optional

# Round store proxy
# Route handlers import from here; every call delegates to datastore_pg at call
# time so tests can monkeypatch the PostgreSQL module in one place.

from . import datastore_pg as _pg


def fetch_rounds(profile_id: str, bag_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return _pg.fetch_rounds(profile_id, bag_id=bag_id)


def save_handicap(profile_id: str, bag_id: Optional[str], value: Optional[float], rounds_used: int = 0) -> None:
    _pg.save_handicap(profile_id, bag_id, value, rounds_used=rounds_used)


def get_current_handicap(profile_id: str, bag_id: Optional[str] = None) -> Optional[float]:
    return _pg.get_current_handicap(profile_id, bag_id=bag_id)


def list_bags(profile_id: str) -> List[Dict[str, Any]]:
    return _pg.list_bags(profile_id)
