"""
Network capability used by the delivery and experiment engines.
"""

from abc import ABC, abstractmethod

from mostly_good_metrics.models.config import MGMConfiguration
from mostly_good_metrics.models.event import EventsPayload, SendResponse
from mostly_good_metrics.models.experiment import ExperimentsResult


class NetworkClient(ABC):
    @abstractmethod
    async def send_events(self, payload: EventsPayload, config: MGMConfiguration) -> SendResponse:
        """POST a batch.

        Transport failures are reported as SendResult.FAILURE; raising
        NetworkError is treated the same way.
        """

    @abstractmethod
    async def fetch_experiments(self, user_id: str, config: MGMConfiguration) -> ExperimentsResult:
        """GET experiment assignments for a user. Failures give success=False."""

    async def close(self) -> None:
        pass
