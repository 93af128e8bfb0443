import json
import uuid
from datetime import datetime, timezone
from fractions import Fraction

from .amounts import serialize


def _default(value):
    # exact amounts travel as "n/d" text so consumers can rebuild them losslessly
    if isinstance(value, Fraction):
        return serialize(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=_default)
