"""Typed read access to loose CRM payloads.

CRM rows carry free-form JSON (``raw_payload``, custom-field maps, order context)
whose shape drifts between API versions. Everything the engine reads from such
JSON goes through :class:`Payload`, which never raises on a missing or oddly
shaped path and returns ``None`` instead.
"""

from collections.abc import Mapping
from typing import Any


class Payload:
    """Read-only view over a JSON mapping with dotted-path accessors."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._data: Mapping[str, Any] = data if isinstance(data, Mapping) else {}

    def __repr__(self) -> str:
        return f"Payload({dict(self._data)!r})"

    def __contains__(self, path: str) -> bool:
        return self.get(path) is not None

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def get(self, path: str, default: Any = None) -> Any:
        """Value at a dotted path (e.g. ``status.code``), or ``default``."""
        current: Any = self._data
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return default
        return current

    def text(self, path: str) -> str | None:
        """Stripped string value; non-strings are stringified, blanks become None."""
        value = self.get(path)
        if value is None or isinstance(value, (Mapping, list)):
            return None
        value = str(value).strip()
        return value or None

    def code(self, path: str) -> str | None:
        """Status-like value that may be a plain string or an object with ``code``."""
        value = self.get(path)
        if isinstance(value, Mapping):
            value = value.get("code")
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def number(self, path: str) -> float | None:
        value = self.get(path)
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def is_empty(self, path: str) -> bool:
        """Missing, null, blank string, or empty collection."""
        value = self.get(path)
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        if isinstance(value, (Mapping, list, tuple)):
            return len(value) == 0
        return False

    def child(self, path: str) -> "Payload":
        return Payload(self.get(path))


def flatten_custom_fields(raw_payload: Mapping[str, Any] | None, prefix: str = "custom_") -> dict[str, Any]:
    """Flatten RetailCRM ``customFields`` into ``{prefix + name: value}``.

    Accepts both the map shape and the list-of-``{code, value}`` shape.
    """
    fields = Payload(raw_payload).get("customFields")
    flat: dict[str, Any] = {}
    if isinstance(fields, Mapping):
        for name, value in fields.items():
            flat[f"{prefix}{name}"] = value
    elif isinstance(fields, list):
        for item in fields:
            if isinstance(item, Mapping) and item.get("code"):
                flat[f"{prefix}{item['code']}"] = item.get("value")
    return flat

