from mostly_good_metrics.models.config import MGMConfiguration, DEFAULT_BASE_URL
from mostly_good_metrics.models.event import (
    Event,
    EventContext,
    EventsPayload,
    Properties,
    SendResponse,
    SendResult,
    UserProfile,
)
from mostly_good_metrics.models.experiment import ExperimentDefinition, ExperimentsResult

__all__ = [
    "MGMConfiguration",
    "DEFAULT_BASE_URL",
    "Event",
    "EventContext",
    "EventsPayload",
    "Properties",
    "SendResponse",
    "SendResult",
    "UserProfile",
    "ExperimentDefinition",
    "ExperimentsResult",
]
