import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


def make_json_safe(value: Any) -> Any:
    """
    Convert Python objects into JSON-serialisable structures for the
    ``error_details`` column.
    """
    if isinstance(value, dict):
        return {str(key): make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    if isinstance(value, Enum):
        return make_json_safe(value.value)
    if isinstance(value, Decimal):
        if value == value.to_integral():
            return int(value)
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode(errors="ignore")
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    return str(value)


def dump_json(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(make_json_safe(value))


def load_json(value: Any) -> Any:
    """Decode a JSON text column; PostgreSQL JSON types already arrive decoded."""
    if value is None or isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return {"raw": str(value)}


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Timestamps are written as naive UTC ISO strings so both dialects accept them."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ")


def from_db_timestamp(value: Any) -> Optional[datetime]:
    """Read a timestamp column back as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
