"""Shared fixtures: in-memory storages, a recording fake network client, and a configured SDK."""

import asyncio
from typing import Optional

import pytest
import pytest_asyncio

from mostly_good_metrics import (
    AsyncMostlyGoodMetrics,
    EventsPayload,
    ExperimentsResult,
    InMemoryEventStorage,
    InMemoryStateStorage,
    ManualLifecycleSource,
    MGMConfiguration,
    NetworkClient,
    SendResponse,
    SendResult,
    StaticDeviceContextProvider,
)


class FakeNetworkClient(NetworkClient):
    """Records every request; responses are set per test."""

    def __init__(self) -> None:
        self.payloads: list[EventsPayload] = []
        self.experiment_requests: list[str] = []
        self.send_response = SendResponse(result=SendResult.SUCCESS, status_code=204)
        self.experiments_result = ExperimentsResult(success=True)
        self.send_gate: Optional[asyncio.Event] = None
        self.fetch_gate: Optional[asyncio.Event] = None
        self.send_error: Optional[Exception] = None
        self.closed = False

    async def send_events(self, payload, config):
        self.payloads.append(payload)
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        return self.send_response

    async def fetch_experiments(self, user_id, config):
        self.experiment_requests.append(user_id)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        return self.experiments_result

    async def close(self):
        self.closed = True

    @property
    def sent_events(self):
        return [e for p in self.payloads for e in p.events]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def device():
    return StaticDeviceContextProvider(
        platform="linux",
        os_version="6.1",
        device_manufacturer="Acme",
        locale="en_US",
        timezone="UTC",
    )


@pytest.fixture
def network():
    return FakeNetworkClient()


@pytest.fixture
def event_storage():
    return InMemoryEventStorage()


@pytest.fixture
def state_storage():
    return InMemoryStateStorage()


@pytest.fixture
def lifecycle():
    return ManualLifecycleSource()


@pytest.fixture
def config():
    return MGMConfiguration(api_key="test-key", app_version="1.0.0", environment="test")


@pytest_asyncio.fixture
async def mgm(config, event_storage, state_storage, network, lifecycle, device):
    client = AsyncMostlyGoodMetrics()
    await client.configure(
        config,
        event_storage=event_storage,
        state_storage=state_storage,
        network_client=network,
        lifecycle=lifecycle,
        device=device,
    )
    await client.experiments_ready()
    await client.wait_for_pending_writes()
    yield client
    await client.shutdown()


@pytest.fixture
def clock():
    return FakeClock()
