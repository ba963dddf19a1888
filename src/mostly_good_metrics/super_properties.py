"""
Super properties: merged into every tracked event at lowest precedence.
"""

import json
import logging
from typing import Any, Mapping, Optional

from mostly_good_metrics.models.event import Properties
from mostly_good_metrics.storage import StateStorage

logger = logging.getLogger(__name__)

SUPER_PROPERTIES_KEY = "super_properties"


class SuperPropertyStore:
    """In-memory map mirrored to a single JSON blob on every mutation."""

    def __init__(self, state: StateStorage):
        self._state = state
        self._props: Properties = {}

    async def restore(self) -> None:
        raw = await self._state.get_string(SUPER_PROPERTIES_KEY)
        self._props = {}
        if raw is None:
            return
        try:
            loaded = json.loads(raw)
            if not isinstance(loaded, dict):
                raise ValueError(f"expected an object, got {type(loaded).__name__}")
            self._props = loaded
            logger.debug(f"Restored super properties: {', '.join(self._props)}")
        except ValueError as e:
            logger.warning(f"Failed to restore super properties: {e}")

    def get(self, key: str) -> Optional[Any]:
        return self._props.get(key)

    def get_all(self) -> Properties:
        return dict(self._props)

    def merge(self, properties: Optional[Mapping[str, Any]]) -> Properties:
        """Super properties overlaid by the caller's properties."""
        return {**self._props, **(properties or {})}

    async def set(self, key: str, value: Any) -> None:
        self._props[key] = value
        await self._save()

    async def set_all(self, properties: Mapping[str, Any]) -> None:
        self._props.update(properties)
        await self._save()

    async def remove(self, key: str) -> None:
        self._props.pop(key, None)
        await self._save()

    async def remove_prefixed(self, prefix: str) -> list[str]:
        removed = [k for k in self._props if k.startswith(prefix)]
        if removed:
            for key in removed:
                del self._props[key]
            await self._save()
        return removed

    async def clear(self) -> None:
        self._props.clear()
        await self._state.set_string(SUPER_PROPERTIES_KEY, None)

    async def _save(self) -> None:
        await self._state.set_string(SUPER_PROPERTIES_KEY, json.dumps(self._props))
