"""
Id generation, hashing and naming helpers.
"""

import re
import secrets
import string
import time
import uuid
from typing import Optional

ANONYMOUS_ID_PREFIX = "$anon_"
_ANON_ALPHABET = string.ascii_letters + string.digits


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_anonymous_id() -> str:
    """$anon_ followed by 12 random alphanumeric characters."""
    return ANONYMOUS_ID_PREFIX + "".join(secrets.choice(_ANON_ALPHABET) for _ in range(12))


def now_ms() -> int:
    return int(time.time() * 1000)


def rolling_hash(value: str, mask: int) -> int:
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & mask
    return h


def variant_hash(user_id: str, experiment_name: str) -> int:
    """Stable non-negative 31-bit hash used for variant bucketing."""
    return rolling_hash(f"{user_id}|{experiment_name}", 0x7FFFFFFF)


def identify_hash(user_id: str, email: Optional[str], name: Optional[str]) -> str:
    return format(rolling_hash(f"{user_id}|{email or ''}|{name or ''}", 0xFFFFFFFF), "x")


def to_snake_case(value: str) -> str:
    value = re.sub(r"([A-Z])", lambda m: "_" + m.group(1).lower(), value)
    value = re.sub(r"[^a-z0-9_]", "_", value)
    value = re.sub(r"_+", "_", value)
    return value.strip("_")
