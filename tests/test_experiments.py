"""Experiment engine: server assignment, bucketing, fallback, caching."""

import asyncio
import json

import pytest

from mostly_good_metrics import ExperimentDefinition, ExperimentsResult, InMemoryStateStorage, MGMConfiguration
from mostly_good_metrics.experiments import (
    CACHE_FETCHED_AT_KEY,
    CACHE_USER_ID_KEY,
    CACHE_VARIANTS_KEY,
    CACHE_TTL_MS,
    ExperimentEngine,
    assign_variant,
    experiment_property_key,
)
from mostly_good_metrics.super_properties import SuperPropertyStore
from mostly_good_metrics.utils import now_ms

USER = "user-42"


@pytest.fixture
def state():
    return InMemoryStateStorage()


def make_engine(state, network, user=USER):
    supers = SuperPropertyStore(state)
    engine = ExperimentEngine(MGMConfiguration(api_key="k"), state, network, supers, user_id=lambda: user)
    return engine, supers


async def loaded_engine(state, network, user=USER):
    engine, supers = make_engine(state, network, user)
    engine.start()
    await engine.ready()
    return engine, supers


def test_property_key_is_snake_cased():
    assert experiment_property_key("checkoutFlow") == "$experiment_checkout_flow"
    assert experiment_property_key("new onboarding") == "$experiment_new_onboarding"


def test_assign_variant_is_deterministic_and_in_range():
    variants = ["control", "a", "b"]
    picked = assign_variant(USER, "pricing", variants)
    assert picked in variants
    assert all(assign_variant(USER, "pricing", variants) == picked for _ in range(5))
    assert assign_variant(USER, "pricing", []) is None


def test_assign_variant_spreads_users():
    picks = {assign_variant(f"user-{i}", "pricing", ["a", "b"]) for i in range(50)}
    assert picks == {"a", "b"}


@pytest.mark.asyncio
async def test_server_assigned_variant(state, network):
    network.experiments_result = ExperimentsResult(success=True, assigned_variants={"checkout": "b"})
    engine, supers = await loaded_engine(state, network)

    assert await engine.get_variant("checkout") == "b"
    assert supers.get("$experiment_checkout") == "b"
    assert network.experiment_requests == [USER]


@pytest.mark.asyncio
async def test_definition_is_bucketed_client_side(state, network):
    variants = ["control", "treatment"]
    network.experiments_result = ExperimentsResult(
        success=True, experiments=[ExperimentDefinition(id="onboarding", variants=variants)],
    )
    engine, _ = await loaded_engine(state, network)
    assert await engine.get_variant("onboarding") == assign_variant(USER, "onboarding", variants)


@pytest.mark.asyncio
async def test_unknown_experiment_returns_none(state, network):
    engine, supers = await loaded_engine(state, network)
    assert await engine.get_variant("nope") is None
    assert supers.get_all() == {}


@pytest.mark.asyncio
async def test_fallback_before_load_is_kept_after_load(state, network):
    network.fetch_gate = asyncio.Event()
    network.experiments_result = ExperimentsResult(success=True, assigned_variants={"checkout": "server"})
    engine, supers = make_engine(state, network)
    engine.start()
    await asyncio.sleep(0)
    assert not engine.loaded

    fallback = await engine.get_variant("checkout")
    assert fallback == assign_variant(USER, "checkout", ["a", "b"])

    network.fetch_gate.set()
    await engine.ready()
    # The first answer is memoized so events stay consistent.
    assert await engine.get_variant("checkout") == fallback


@pytest.mark.asyncio
async def test_successful_fetch_is_cached(state, network):
    network.experiments_result = ExperimentsResult(success=True, assigned_variants={"checkout": "b"})
    await loaded_engine(state, network)
    assert await state.get_string(CACHE_USER_ID_KEY) == USER
    assert json.loads(await state.get_string(CACHE_VARIANTS_KEY))["assigned_variants"] == {"checkout": "b"}

    network.experiment_requests.clear()
    engine, supers = await loaded_engine(state, network)
    await supers.clear()
    assert await engine.get_variant("checkout") == "b"
    assert network.experiment_requests == []


@pytest.mark.asyncio
async def test_cache_for_other_user_is_ignored(state, network):
    await loaded_engine(state, network, user="someone-else")
    network.experiment_requests.clear()
    await loaded_engine(state, network)
    assert network.experiment_requests == [USER]


@pytest.mark.asyncio
async def test_expired_cache_is_refetched(state, network):
    stale = now_ms() - CACHE_TTL_MS - 1
    await state.set_string(CACHE_USER_ID_KEY, USER)
    await state.set_string(CACHE_FETCHED_AT_KEY, str(stale))
    await state.set_string(CACHE_VARIANTS_KEY, ExperimentsResult(success=True).model_dump_json())

    await loaded_engine(state, network)
    assert network.experiment_requests == [USER]


@pytest.mark.asyncio
async def test_failed_fetch_loads_empty_and_is_not_cached(state, network):
    network.experiments_result = ExperimentsResult(success=False)
    engine, _ = await loaded_engine(state, network)
    assert engine.loaded
    assert await engine.get_variant("checkout") is None
    assert await state.get_string(CACHE_VARIANTS_KEY) is None


@pytest.mark.asyncio
async def test_invalidate_discards_inflight_fetch_and_clears_variants(state, network):
    network.fetch_gate = asyncio.Event()
    network.experiments_result = ExperimentsResult(success=True, assigned_variants={"checkout": "b"})
    engine, supers = make_engine(state, network)
    await supers.set("$experiment_checkout", "a")
    await supers.set("plan", "pro")
    engine.start()
    await asyncio.sleep(0)

    await engine.invalidate()
    network.fetch_gate.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert not engine.loaded
    assert supers.get_all() == {"plan": "pro"}
    assert await state.get_string(CACHE_VARIANTS_KEY) is None


@pytest.mark.asyncio
async def test_close_releases_ready_waiters(state, network):
    network.fetch_gate = asyncio.Event()
    engine, _ = make_engine(state, network)
    engine.start()
    waiter = asyncio.ensure_future(engine.ready())
    await asyncio.sleep(0)
    engine.close()
    await asyncio.wait_for(waiter, 1)
    network.fetch_gate.set()
