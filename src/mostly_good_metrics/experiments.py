"""
Experiment engine: per-user A/B variant assignment.

Variants come from the server (assigned_variants) or, when the server only
returns experiment definitions, from deterministic client-side bucketing:

    index = hash(effective_user_id + "|" + experiment_name) % len(variants)

Assignments are cached in StateStorage for 24h, tagged with the user id they
were fetched for. A resolved variant is stored as the super property
"$experiment_<snake_case(name)>" so every later event carries it.
"""

import asyncio
import logging
from typing import Callable, Optional, Sequence

from mostly_good_metrics.models.config import MGMConfiguration
from mostly_good_metrics.models.experiment import ExperimentsResult
from mostly_good_metrics.storage import StateStorage
from mostly_good_metrics.super_properties import SuperPropertyStore
from mostly_good_metrics.transport.base import NetworkClient
from mostly_good_metrics.utils import now_ms, to_snake_case, variant_hash

logger = logging.getLogger(__name__)

EXPERIMENT_PROPERTY_PREFIX = "$experiment_"
FALLBACK_VARIANTS = ("a", "b")
CACHE_TTL_MS = 24 * 60 * 60 * 1000

CACHE_USER_ID_KEY = "experiments_user_id"
CACHE_FETCHED_AT_KEY = "experiments_fetched_at"
CACHE_VARIANTS_KEY = "experiments_variants"
CACHE_KEYS = (CACHE_USER_ID_KEY, CACHE_FETCHED_AT_KEY, CACHE_VARIANTS_KEY)


def experiment_property_key(experiment_name: str) -> str:
    return EXPERIMENT_PROPERTY_PREFIX + to_snake_case(experiment_name)


def assign_variant(user_id: str, experiment_name: str, variants: Sequence[str]) -> Optional[str]:
    """Deterministic bucket for (user, experiment). None for an empty variant list."""
    if not variants:
        return None
    return variants[variant_hash(user_id, experiment_name) % len(variants)]


class ExperimentEngine:
    def __init__(
        self,
        config: MGMConfiguration,
        state: StateStorage,
        network: NetworkClient,
        super_properties: SuperPropertyStore,
        user_id: Callable[[], str],
    ):
        self._config = config
        self._state = state
        self._network = network
        self._super = super_properties
        self._user_id = user_id

        self._result: Optional[ExperimentsResult] = None
        self._fetched_at_ms: Optional[int] = None
        self._loaded = asyncio.Event()
        self._generation = 0
        self._closed = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    def start(self) -> None:
        """Load experiments in the background (cache first, then network)."""
        task = asyncio.get_running_loop().create_task(self._load(self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def ready(self) -> None:
        """Wait until experiments have loaded, successfully or not."""
        await self._loaded.wait()

    async def invalidate(self) -> None:
        """Drop cached and in-memory assignments after a user change.

        In-flight fetches for the previous user are discarded when they land.
        """
        self._generation += 1
        self._result = None
        self._fetched_at_ms = None
        self._loaded.clear()
        for key in CACHE_KEYS:
            await self._state.set_string(key, None)
        removed = await self._super.remove_prefixed(EXPERIMENT_PROPERTY_PREFIX)
        logger.debug(f"Experiments invalidated, cleared {len(removed)} assigned variants")

    def close(self) -> None:
        self._closed = True
        # Release ready() waiters; nothing will load after close.
        self._loaded.set()

    async def get_variant(self, experiment_name: str) -> Optional[str]:
        key = experiment_property_key(experiment_name)
        existing = self._super.get(key)
        if isinstance(existing, str):
            return existing

        if self._is_expired():
            logger.debug("Experiment assignments older than 24h, refreshing")
            self._fetched_at_ms = None
            self.start()

        variant = self._resolve(experiment_name)
        if variant is None:
            return None
        await self._super.set(key, variant)
        logger.debug(f'Assigned variant "{variant}" for experiment "{experiment_name}"')
        return variant

    def _resolve(self, experiment_name: str) -> Optional[str]:
        user_id = self._user_id()
        if not self.loaded:
            logger.debug(f"Experiments not loaded yet, using fallback variants for {experiment_name}")
            return assign_variant(user_id, experiment_name, FALLBACK_VARIANTS)

        result = self._result
        if result is None:
            return None
        if result.assigned_variants and experiment_name in result.assigned_variants:
            return result.assigned_variants[experiment_name]
        definition = result.definition(experiment_name)
        if definition is None:
            logger.debug(f'Experiment "{experiment_name}" not found')
            return None
        return assign_variant(user_id, experiment_name, definition.variants)

    def _is_expired(self) -> bool:
        return self._fetched_at_ms is not None and now_ms() - self._fetched_at_ms >= CACHE_TTL_MS

    async def _load(self, generation: int) -> None:
        user_id = self._user_id()
        cached = await self._restore_cache(user_id)
        if cached is not None:
            if self._is_current(generation):
                self._apply(cached[0], cached[1])
                logger.debug(f"Restored experiments from cache for user {user_id}")
            return

        try:
            result = await self._network.fetch_experiments(user_id, self._config)
        except Exception as e:
            logger.warning(f"Failed to fetch experiments: {e!r}")
            result = ExperimentsResult(success=False)

        if not self._is_current(generation):
            logger.debug(f"Discarding experiments fetched for superseded user {user_id}")
            return

        if not result.success:
            logger.warning("Failed to fetch experiments, continuing without assignments")
            self._apply(result, None)
            return

        fetched_at = now_ms()
        self._apply(result, fetched_at)
        logger.debug(f"Loaded experiments for user {user_id}")
        await self._state.set_string(CACHE_USER_ID_KEY, user_id)
        await self._state.set_string(CACHE_FETCHED_AT_KEY, str(fetched_at))
        await self._state.set_string(CACHE_VARIANTS_KEY, result.model_dump_json())

    async def _restore_cache(self, user_id: str) -> Optional[tuple[ExperimentsResult, int]]:
        cached_user = await self._state.get_string(CACHE_USER_ID_KEY)
        fetched_at_raw = await self._state.get_string(CACHE_FETCHED_AT_KEY)
        raw = await self._state.get_string(CACHE_VARIANTS_KEY)
        if cached_user != user_id or fetched_at_raw is None or raw is None:
            return None
        try:
            fetched_at = int(fetched_at_raw)
            result = ExperimentsResult.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable experiments cache: {e}")
            return None
        if now_ms() - fetched_at >= CACHE_TTL_MS:
            return None
        return result, fetched_at

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _apply(self, result: ExperimentsResult, fetched_at: Optional[int]) -> None:
        self._result = result
        self._fetched_at_ms = fetched_at
        self._loaded.set()
