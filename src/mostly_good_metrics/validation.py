"""
Event name and property validation. Pure functions; each returns an error
message, or None when the input is valid.
"""

import math
import re
from typing import Any, Mapping, Optional

MAX_EVENT_NAME_LENGTH = 255
MAX_PROPERTY_DEPTH = 3

# Optional leading $ (reserved for system events), then a letter, then
# letters, digits or underscores.
EVENT_NAME_RE = re.compile(r"^\$?[A-Za-z][A-Za-z0-9_]*$")

_SCALARS = (str, int, float, bool, type(None))


def validate_event_name(name: str) -> Optional[str]:
    if not name:
        return "Event name cannot be empty"
    if len(name) > MAX_EVENT_NAME_LENGTH:
        return f"Event name exceeds maximum length of {MAX_EVENT_NAME_LENGTH} characters"
    if not EVENT_NAME_RE.fullmatch(name):
        return (
            "Event name must start with a letter (or $) and contain only "
            "alphanumeric characters and underscores"
        )
    return None


def validate_properties(properties: Optional[Mapping[str, Any]], depth: int = 0) -> Optional[str]:
    """Check nesting depth and JSON shape.

    A map value nests one level deeper, as does a map inside a list. Three
    levels of maps are allowed; entering a fourth is an error.
    """
    if properties is None:
        return None
    if depth >= MAX_PROPERTY_DEPTH:
        return f"Properties exceed maximum nesting depth of {MAX_PROPERTY_DEPTH}"

    for key, value in properties.items():
        if not isinstance(key, str):
            return f"Property keys must be strings, got {type(key).__name__}"
        error = _validate_value(key, value, depth)
        if error:
            return error
    return None


def _validate_value(key: str, value: Any, depth: int) -> Optional[str]:
    if isinstance(value, Mapping):
        return validate_properties(value, depth + 1)
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, Mapping):
                error = validate_properties(item, depth + 1)
                if error:
                    return error
            elif isinstance(item, (list, tuple)):
                error = _validate_value(key, item, depth)
                if error:
                    return error
            elif not isinstance(item, _SCALARS):
                return f"Property {key!r} contains a non-JSON value of type {type(item).__name__}"
            elif _is_non_finite(item):
                return f"Property {key!r} contains a non-finite number"
        return None
    if not isinstance(value, _SCALARS):
        return f"Property {key!r} has a non-JSON value of type {type(value).__name__}"
    if _is_non_finite(value):
        return f"Property {key!r} has a non-finite number"
    return None


def _is_non_finite(value: Any) -> bool:
    # NaN and infinity have no JSON encoding.
    return isinstance(value, float) and not math.isfinite(value)
