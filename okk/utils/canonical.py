"""Canonical JSON and hashing utilities."""

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


def _canonical_value(obj: Any) -> Any:
    """Convert value for canonical representation."""
    if obj is None:
        return None
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, (int, float, Decimal)):
        return float(obj) if isinstance(obj, (float, Decimal)) else int(obj)
    if isinstance(obj, datetime):
        # Same instant, same text - naive values are taken as UTC
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.astimezone(timezone.utc).isoformat()
    if isinstance(obj, dict):
        return {str(k): _canonical_value(v) for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))}
    if isinstance(obj, (list, tuple)):
        return [_canonical_value(v) for v in obj]
    if isinstance(obj, str):
        return obj
    return str(obj)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON string (sorted keys, consistent formatting)."""
    canonical = _canonical_value(obj)
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def violation_key(
    rule_code: str, order_id: int | None, violation_time: datetime, call_id: str | None
) -> str:
    """SHA256 over the violation identity; a missing call id hashes like any other value."""
    identity = [rule_code, order_id, violation_time, call_id]
    return hashlib.sha256(canonical_json(identity).encode()).hexdigest()


def prompt_json(obj: Any) -> str:
    """Readable JSON for judgment payloads (stable key order, unicode kept)."""
    return json.dumps(_canonical_value(obj), sort_keys=True, indent=2, ensure_ascii=False)
