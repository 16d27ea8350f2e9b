"""Typed lookups over untyped option maps.

Step and action options arrive as raw YAML trees. OptionReader normalizes keys
(trimmed, lowercased) and raises ValidationError naming the offending key.
"""

from __future__ import annotations

from typing import Any

from gitfleet.errors import ValidationError

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


def normalize_keys(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Return a shallow copy with trimmed, lowercased keys."""
    if not raw:
        return {}
    return {str(key).strip().lower(): value for key, value in raw.items()}


class OptionReader:
    def __init__(self, raw: dict[str, Any] | None) -> None:
        self._values = normalize_keys(raw)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def raw(self, key: str) -> Any:
        return self._values.get(key)

    def string(self, key: str, default: str = "") -> str:
        value = self._values.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, str | int | float):
            raise ValidationError(f"option {key} must be a string")
        text = str(value).strip()
        return text or default

    def boolean(self, key: str, default: bool = False) -> bool:
        value = self._values.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        raise ValidationError(f"option {key} must be a boolean")

    def integer(self, key: str, default: int = 0) -> int:
        value = self._values.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            raise ValidationError(f"option {key} must be an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
        raise ValidationError(f"option {key} must be an integer")

    def string_list(self, key: str) -> list[str]:
        """Accept a list of strings or a single (comma-free) string."""
        value = self._values.get(key)
        if value is None:
            return []
        if isinstance(value, str):
            return [value.strip()] if value.strip() else []
        if not isinstance(value, list):
            raise ValidationError(f"option {key} must be a list of strings")
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValidationError(f"option {key} must be a list of strings")
            if item.strip():
                items.append(item.strip())
        return items

    def mapping(self, key: str) -> dict[str, Any]:
        value = self._values.get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValidationError(f"option {key} must be a mapping")
        return value

    def mapping_list(self, key: str) -> list[dict[str, Any]]:
        value = self._values.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
            raise ValidationError(f"option {key} must be a list of mappings")
        return value
