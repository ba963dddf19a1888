"""
Delivery engine: drains the event queue to the ingestion endpoint.

One flush cycle:

    check rate limit -> fetch oldest batch -> send -> remove on success

Only a confirmed success removes events; every other outcome leaves the queue
untouched for the next cycle (at-least-once). Flushes are single-flight: a
trigger while a flush is running is a no-op.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from mostly_good_metrics.errors import NetworkError, RateLimitedError, StorageError
from mostly_good_metrics.models.config import MGMConfiguration
from mostly_good_metrics.models.event import Event, EventContext, EventsPayload, SendResponse, SendResult
from mostly_good_metrics.storage import EventStorage
from mostly_good_metrics.transport.base import NetworkClient
from mostly_good_metrics.transport.http import DEFAULT_RETRY_AFTER_S

logger = logging.getLogger(__name__)


class FlushOutcome(str, Enum):
    SENT = "sent"            # batch delivered and removed
    RETAINED = "retained"    # send failed, batch kept for retry
    EMPTY = "empty"          # nothing queued
    RATE_LIMITED = "rate_limited"
    IN_FLIGHT = "in_flight"  # another flush is running
    STALE = "stale"          # engine closed or queue cleared while sending


class DeliveryEngine:
    def __init__(
        self,
        config: MGMConfiguration,
        storage: EventStorage,
        network: NetworkClient,
        context: Callable[[], EventContext],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._storage = storage
        self._network = network
        self._context = context
        self._clock = clock
        self._retry_not_before: Optional[float] = None
        self._in_flight = False
        self._closed = False
        self._queue_cleared = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds left in the rate-limit backoff window, or None."""
        if self._retry_not_before is None:
            return None
        remaining = self._retry_not_before - self._clock()
        return remaining if remaining > 0 else None

    def close(self) -> None:
        self._closed = True

    def queue_cleared(self) -> None:
        """The queue was emptied outside the engine; an in-flight batch must not be removed."""
        self._queue_cleared = True

    def _check_rate_limit(self) -> None:
        remaining = self.retry_after
        if remaining is not None:
            raise RateLimitedError(remaining)
        self._retry_not_before = None

    async def flush(self) -> FlushOutcome:
        if self._in_flight:
            logger.debug("Flush already in progress, skipping")
            return FlushOutcome.IN_FLIGHT
        self._in_flight = True
        self._queue_cleared = False
        try:
            return await self._flush_batch()
        finally:
            self._in_flight = False

    async def _flush_batch(self) -> FlushOutcome:
        try:
            self._check_rate_limit()
        except RateLimitedError as e:
            logger.debug(f"{e.message}, skipping flush")
            return FlushOutcome.RATE_LIMITED

        try:
            events = await self._storage.fetch(self._config.max_batch_size)
        except StorageError as e:
            logger.error(f"Failed to read pending events: {e}")
            return FlushOutcome.RETAINED
        if not events:
            logger.debug("No events to flush")
            return FlushOutcome.EMPTY

        logger.debug(f"Flushing {len(events)} events")
        payload = EventsPayload(events=events, context=self._context())
        response = await self._send(payload)

        if self._closed:
            logger.debug("Configuration replaced during send, keeping events")
            return FlushOutcome.STALE
        if self._queue_cleared:
            logger.debug("Queue cleared during send, nothing to remove")
            return FlushOutcome.STALE

        if response.result == SendResult.SUCCESS:
            try:
                await self._remove_sent(events)
            except StorageError as e:
                logger.error(f"Sent {len(events)} events but failed to remove them: {e}")
                return FlushOutcome.RETAINED
            logger.debug(f"Successfully sent {len(events)} events")
            return FlushOutcome.SENT

        if response.result == SendResult.RATE_LIMITED:
            retry_after = response.retry_after if response.retry_after is not None else DEFAULT_RETRY_AFTER_S
            self._retry_not_before = self._clock() + retry_after
            logger.warning(f"Rate limited, will retry in {retry_after:.0f}s")
        elif response.result == SendResult.PARTIAL_SUCCESS:
            logger.warning("Partial success sending events, keeping batch for retry")
        else:
            logger.warning("Failed to send events, will retry")
        return FlushOutcome.RETAINED

    async def _remove_sent(self, events: list[Event]) -> None:
        # Events evicted while the batch was in flight are no longer at the
        # head; only the sent events still queued there are removed.
        sent_ids = {e.client_event_id for e in events}
        confirmed = 0
        for event in await self._storage.fetch(len(events)):
            if event.client_event_id not in sent_ids:
                break
            confirmed += 1
        if confirmed < len(events):
            logger.debug(f"{len(events) - confirmed} sent events were evicted during the send")
        if confirmed:
            await self._storage.remove(confirmed)

    async def _send(self, payload: EventsPayload) -> SendResponse:
        try:
            return await self._network.send_events(payload, self._config)
        except NetworkError as e:
            logger.warning(f"Network error sending events: {e}")
            return SendResponse(result=SendResult.FAILURE)
        except Exception as e:
            logger.error(f"Network client raised while sending events: {e!r}")
            return SendResponse(result=SendResult.FAILURE)
