"""
HTTP network client for the MostlyGoodMetrics ingestion API.

  POST {base_url}/v1/events        event batches
  GET  {base_url}/v1/experiments   experiment assignments
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

from mostly_good_metrics import __version__
from mostly_good_metrics.device import DeviceContextProvider, SystemDeviceContextProvider
from mostly_good_metrics.models.config import MGMConfiguration
from mostly_good_metrics.models.event import EventsPayload, SendResponse, SendResult
from mostly_good_metrics.models.experiment import ExperimentsResult
from mostly_good_metrics.transport.base import NetworkClient

logger = logging.getLogger(__name__)

SDK_NAME = "python"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_RETRY_AFTER_S = 60.0


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Retry-After as seconds: either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(int(value)), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)


class HttpNetworkClient(NetworkClient):
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        device: Optional[DeviceContextProvider] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._device = device or SystemDeviceContextProvider()

    def _headers(self, config: MGMConfiguration) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-MGM-Key": config.api_key,
            "User-Agent": f"MostlyGoodMetrics-Python/{__version__}",
            "X-MGM-SDK": SDK_NAME,
            "X-MGM-SDK-Version": __version__,
            "X-MGM-Platform": self._device.platform(),
        }
        os_version = self._device.os_version()
        if os_version:
            headers["X-MGM-Platform-Version"] = os_version
        return headers

    async def send_events(self, payload: EventsPayload, config: MGMConfiguration) -> SendResponse:
        url = f"{config.base_url.rstrip('/')}/v1/events"
        logger.debug(f"Sending {len(payload.events)} events to {url}")
        try:
            resp = await self._client.post(url, json=payload.to_wire(), headers=self._headers(config))
        except httpx.HTTPError as e:
            logger.error(f"Network error sending events: {e!r}")
            return SendResponse(result=SendResult.FAILURE)

        status = resp.status_code
        logger.debug(f"Response status: {status}")
        if 200 <= status < 300:
            return SendResponse(result=SendResult.SUCCESS, status_code=status)
        if status == 429:
            retry_after = parse_retry_after(resp.headers.get("retry-after"))
            if retry_after is None:
                retry_after = DEFAULT_RETRY_AFTER_S
            logger.warning(f"Rate limited, retry after {retry_after:.0f}s")
            return SendResponse(result=SendResult.RATE_LIMITED, status_code=status, retry_after=retry_after)
        if status >= 500:
            logger.warning(f"Server error: {status} - {resp.text[:200]}")
        else:
            # Client errors are unlikely to succeed on retry, but events are still kept.
            logger.error(f"Client error: {status} - {resp.text[:200]}")
        return SendResponse(result=SendResult.FAILURE, status_code=status)

    async def fetch_experiments(self, user_id: str, config: MGMConfiguration) -> ExperimentsResult:
        url = f"{config.base_url.rstrip('/')}/v1/experiments"
        logger.debug(f"Fetching experiments for user {user_id}")
        try:
            resp = await self._client.get(url, params={"user_id": user_id}, headers=self._headers(config))
        except httpx.HTTPError as e:
            logger.error(f"Network error fetching experiments: {e!r}")
            return ExperimentsResult(success=False)

        if not 200 <= resp.status_code < 300:
            logger.warning(f"Failed to fetch experiments: {resp.status_code} - {resp.text[:200]}")
            return ExperimentsResult(success=False)
        try:
            return ExperimentsResult.from_response(resp.json())
        except (ValueError, AttributeError) as e:
            logger.error(f"Failed to parse experiments response: {e}")
            return ExperimentsResult(success=False)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
