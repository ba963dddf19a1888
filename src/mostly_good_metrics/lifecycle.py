"""
App lifecycle signals (foreground/background).

The SDK subscribes to a LifecycleSource on configure and unsubscribes on
teardown. Hosts forward their framework's lifecycle callbacks into a
ManualLifecycleSource.
"""

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


LifecycleHandler = Callable[[AppState], None]


class LifecycleSource:
    def add_handler(self, handler: LifecycleHandler) -> Callable[[], None]:
        """Subscribe to lifecycle changes. Returns a function that unsubscribes."""
        raise NotImplementedError


class ManualLifecycleSource(LifecycleSource):
    def __init__(self) -> None:
        self._handlers: list[LifecycleHandler] = []

    def add_handler(self, handler: LifecycleHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def emit(self, state: AppState) -> None:
        logger.debug(f"App state changed: {state.value}")
        for handler in list(self._handlers):
            handler(state)

    def foreground(self) -> None:
        self.emit(AppState.FOREGROUND)

    def background(self) -> None:
        self.emit(AppState.BACKGROUND)
