"""
mostly-good-metrics: MostlyGoodMetrics SDK for Python.

Simple, privacy-focused analytics: batched event delivery, identity and
sessions, super properties and A/B experiment assignment.
"""

__version__ = "0.1.0"

from mostly_good_metrics.client import AsyncMostlyGoodMetrics
from mostly_good_metrics.delivery import FlushOutcome
from mostly_good_metrics.device import (
    DeviceContextProvider,
    StaticDeviceContextProvider,
    SystemDeviceContextProvider,
)
from mostly_good_metrics.errors import (
    MGMError,
    NotConfiguredError,
    InvalidEventNameError,
    InvalidPropertiesError,
    NetworkError,
    StorageError,
    RateLimitedError,
)
from mostly_good_metrics.lifecycle import AppState, LifecycleSource, ManualLifecycleSource
from mostly_good_metrics.models import (
    MGMConfiguration,
    Event,
    EventContext,
    EventsPayload,
    SendResponse,
    SendResult,
    UserProfile,
    ExperimentDefinition,
    ExperimentsResult,
)
from mostly_good_metrics.storage import (
    EventStorage,
    StateStorage,
    FileEventStorage,
    FileStateStorage,
    InMemoryEventStorage,
    InMemoryStateStorage,
)
from mostly_good_metrics.transport import NetworkClient, HttpNetworkClient

__all__ = [
    "AsyncMostlyGoodMetrics",
    "FlushOutcome",
    "DeviceContextProvider",
    "StaticDeviceContextProvider",
    "SystemDeviceContextProvider",
    "MGMError",
    "NotConfiguredError",
    "InvalidEventNameError",
    "InvalidPropertiesError",
    "NetworkError",
    "StorageError",
    "RateLimitedError",
    "AppState",
    "LifecycleSource",
    "ManualLifecycleSource",
    "MGMConfiguration",
    "Event",
    "EventContext",
    "EventsPayload",
    "SendResponse",
    "SendResult",
    "UserProfile",
    "ExperimentDefinition",
    "ExperimentsResult",
    "EventStorage",
    "StateStorage",
    "FileEventStorage",
    "FileStateStorage",
    "InMemoryEventStorage",
    "InMemoryStateStorage",
    "NetworkClient",
    "HttpNetworkClient",
]
