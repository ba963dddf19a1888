"""
AsyncMostlyGoodMetrics: the SDK client.

    mgm = AsyncMostlyGoodMetrics()
    await mgm.configure(MGMConfiguration(api_key="..."))
    mgm.track("button_clicked", {"button_id": "signup"})
    await mgm.identify("user-123", UserProfile(email="jane@example.com"))

track() never blocks: it validates, stamps and schedules persistence, and the
delivery engine ships queued events on a timer, on backgrounding, or on
flush().
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Mapping, Optional

from mostly_good_metrics.delivery import DeliveryEngine, FlushOutcome
from mostly_good_metrics.device import DeviceContextProvider, SystemDeviceContextProvider
from mostly_good_metrics.errors import (
    InvalidEventNameError,
    InvalidPropertiesError,
    NotConfiguredError,
    StorageError,
)
from mostly_good_metrics.experiments import ExperimentEngine
from mostly_good_metrics.identity import IdentityManager
from mostly_good_metrics.lifecycle import AppState, LifecycleSource
from mostly_good_metrics.log import set_debug_logging
from mostly_good_metrics.models.config import MGMConfiguration
from mostly_good_metrics.models.event import Event, EventContext, Properties, UserProfile
from mostly_good_metrics.storage import (
    BestEffortStateStorage,
    EventStorage,
    FileEventStorage,
    FileStateStorage,
    StateStorage,
)
from mostly_good_metrics.super_properties import SuperPropertyStore
from mostly_good_metrics.transport.base import NetworkClient
from mostly_good_metrics.transport.http import HttpNetworkClient
from mostly_good_metrics.validation import validate_event_name, validate_properties

logger = logging.getLogger(__name__)

APP_VERSION_KEY = "app_version"

APP_OPENED = "$app_opened"
APP_INSTALLED = "$app_installed"
APP_UPDATED = "$app_updated"
APP_FOREGROUNDED = "$app_foregrounded"
APP_BACKGROUNDED = "$app_backgrounded"
IDENTIFY = "$identify"


class AsyncMostlyGoodMetrics:
    """Async MostlyGoodMetrics client. Create one per application.

    All methods must be called from the event loop that ran configure().
    """

    def __init__(self) -> None:
        self._configured = False
        self._config: Optional[MGMConfiguration] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._device: DeviceContextProvider = SystemDeviceContextProvider()
        self._event_storage: Optional[EventStorage] = None
        self._state: Optional[StateStorage] = None
        self._network: Optional[NetworkClient] = None
        self._owned_network: Optional[NetworkClient] = None

        self._identity: Optional[IdentityManager] = None
        self._super: Optional[SuperPropertyStore] = None
        self._experiments: Optional[ExperimentEngine] = None
        self._delivery: Optional[DeliveryEngine] = None

        self._remove_lifecycle_handler: Optional[Callable[[], None]] = None
        self._foreground = True
        self._flush_timer: Optional[asyncio.Task[None]] = None
        self._write_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # Configuration

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def config(self) -> MGMConfiguration:
        self._ensure_configured()
        return self._config  # type: ignore[return-value]

    async def configure(
        self,
        config: MGMConfiguration,
        *,
        event_storage: Optional[EventStorage] = None,
        state_storage: Optional[StateStorage] = None,
        network_client: Optional[NetworkClient] = None,
        lifecycle: Optional[LifecycleSource] = None,
        device: Optional[DeviceContextProvider] = None,
    ) -> None:
        """(Re)initialize the SDK. Safe to call more than once; every call starts a new session."""
        if self._configured:
            await self._teardown()
            self._configured = False

        set_debug_logging(config.enable_debug_logging)
        logger.debug("Configuring MostlyGoodMetrics SDK")

        self._loop = asyncio.get_running_loop()
        self._config = config
        self._device = device or SystemDeviceContextProvider()
        self._event_storage = event_storage or FileEventStorage(max_stored_events=config.max_stored_events)
        self._state = BestEffortStateStorage(state_storage or FileStateStorage())
        if network_client is None:
            network_client = HttpNetworkClient(device=self._device)
            self._owned_network = network_client
        self._network = network_client

        self._identity = IdentityManager(self._state)
        self._super = SuperPropertyStore(self._state)
        await self._identity.restore()
        await self._super.restore()
        await self._identity.start_new_session()

        self._delivery = DeliveryEngine(config, self._event_storage, network_client, self._build_context)
        self._experiments = ExperimentEngine(
            config, self._state, network_client, self._super,
            user_id=lambda: self._identity.effective_user_id,  # type: ignore[union-attr]
        )

        self._foreground = True
        self._start_flush_timer()
        if lifecycle is not None:
            self._remove_lifecycle_handler = lifecycle.add_handler(self._on_app_state)

        self._configured = True

        await self._check_app_version_change()
        if config.track_app_lifecycle_events:
            self.track(APP_OPENED)

        self._experiments.start()
        logger.debug("MostlyGoodMetrics SDK configured successfully")

    async def shutdown(self) -> None:
        """Stop timers, detach lifecycle observation and persist pending events.

        In-flight sends are not cancelled; their results are discarded.
        """
        if not self._configured:
            return
        await self._teardown()
        self._configured = False
        logger.debug("MostlyGoodMetrics SDK shut down")

    async def _teardown(self) -> None:
        self._stop_flush_timer()
        if self._remove_lifecycle_handler is not None:
            self._remove_lifecycle_handler()
            self._remove_lifecycle_handler = None
        if self._experiments is not None:
            self._experiments.close()
        if self._delivery is not None:
            self._delivery.close()
        await self.wait_for_pending_writes()
        if self._owned_network is not None:
            await self._owned_network.close()
            self._owned_network = None

    async def _check_app_version_change(self) -> None:
        config = self.config
        current = config.app_version
        if current is None:
            return
        stored = await self._state.get_string(APP_VERSION_KEY)  # type: ignore[union-attr]
        if stored is None:
            if config.track_app_lifecycle_events:
                self.track(APP_INSTALLED)
        elif stored != current:
            if config.track_app_lifecycle_events:
                self.track(APP_UPDATED, {"previous_version": stored, "current_version": current})
        await self._state.set_string(APP_VERSION_KEY, current)  # type: ignore[union-attr]

    # Tracking

    def track(self, name: str, properties: Optional[Mapping[str, Any]] = None) -> Event:
        """Queue an event.

        Super properties are merged underneath `properties`; on a key collision
        the event's own value wins. Raises InvalidEventNameError or
        InvalidPropertiesError; the event is not queued in that case.
        """
        self._ensure_configured()
        config = self.config

        error = validate_event_name(name)
        if error:
            raise InvalidEventNameError(error, name)

        merged = self._super.merge(properties)  # type: ignore[union-attr]
        error = validate_properties(merged)
        if error:
            raise InvalidPropertiesError(error)

        identity = self._identity
        event = Event(
            name=name,
            user_id=identity.effective_user_id,  # type: ignore[union-attr]
            session_id=identity.session_id,  # type: ignore[union-attr]
            platform=self._device.platform(),
            app_version=config.app_version,
            app_build_number=config.app_build_number,
            os_version=self._device.os_version(),
            environment=config.environment,
            device_manufacturer=self._device.device_manufacturer(),
            locale=self._device.locale(),
            timezone=self._device.timezone(),
            properties=merged or None,
        )
        self._enqueue(event)
        logger.debug(f"Tracked event: {name}")
        return event

    def _enqueue(self, event: Event) -> None:
        storage = self._event_storage

        async def _persist() -> None:
            async with self._write_lock:
                try:
                    await storage.store(event)  # type: ignore[union-attr]
                except (StorageError, OSError) as e:
                    logger.error(f"Failed to store event {event.name}: {e}")
                except Exception as e:
                    logger.error(f"Event storage raised while storing {event.name}: {e!r}")

        task = self._loop.create_task(_persist())  # type: ignore[union-attr]
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def wait_for_pending_writes(self) -> None:
        """Wait until every tracked event has reached the event storage."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    async def drain(self) -> None:
        """Wait for pending writes and for background flushes started so far."""
        await self.wait_for_pending_writes()
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    # Identity

    @property
    def user_id(self) -> Optional[str]:
        self._ensure_configured()
        return self._identity.user_id  # type: ignore[union-attr]

    @property
    def anonymous_id(self) -> Optional[str]:
        """Auto-generated `$anon_xxxxxxxxxxxx` id, stable across launches."""
        self._ensure_configured()
        return self._identity.anonymous_id  # type: ignore[union-attr]

    @property
    def session_id(self) -> Optional[str]:
        self._ensure_configured()
        return self._identity.session_id  # type: ignore[union-attr]

    async def identify(self, user_id: str, profile: Optional[UserProfile] = None) -> None:
        """Attach `user_id` to all subsequent events.

        With profile data, a $identify event is queued unless the same profile
        was already sent for this user within the last 24 hours.
        """
        self._ensure_configured()
        identity = self._identity
        changed = await identity.set_user_id(user_id)  # type: ignore[union-attr]
        logger.debug(f"Identified user: {user_id}")
        if changed:
            await self._refresh_experiments()

        if profile is None or (profile.email is None and profile.name is None):
            return
        if await identity.should_send_identify(user_id, profile):  # type: ignore[union-attr]
            self.track(IDENTIFY, profile.to_properties())
            await identity.record_identify(user_id, profile)  # type: ignore[union-attr]
        else:
            logger.debug("Skipping $identify event (debounced)")

    async def reset_identity(self) -> None:
        """Forget the identified user and start a new session. The anonymous id is kept."""
        self._ensure_configured()
        changed = await self._identity.reset()  # type: ignore[union-attr]
        if changed:
            await self._refresh_experiments()
        logger.debug("Identity reset")

    async def start_new_session(self) -> str:
        self._ensure_configured()
        return await self._identity.start_new_session()  # type: ignore[union-attr]

    async def _refresh_experiments(self) -> None:
        await self._experiments.invalidate()  # type: ignore[union-attr]
        self._experiments.start()  # type: ignore[union-attr]

    # Super properties

    async def set_super_property(self, key: str, value: Any) -> None:
        self._ensure_configured()
        error = validate_properties({key: value})
        if error:
            raise InvalidPropertiesError(error)
        await self._super.set(key, value)  # type: ignore[union-attr]
        logger.debug(f"Set super property: {key}")

    async def set_super_properties(self, properties: Mapping[str, Any]) -> None:
        self._ensure_configured()
        error = validate_properties(properties)
        if error:
            raise InvalidPropertiesError(error)
        await self._super.set_all(properties)  # type: ignore[union-attr]
        logger.debug(f"Set super properties: {', '.join(properties)}")

    async def remove_super_property(self, key: str) -> None:
        self._ensure_configured()
        await self._super.remove(key)  # type: ignore[union-attr]
        logger.debug(f"Removed super property: {key}")

    async def clear_super_properties(self) -> None:
        self._ensure_configured()
        await self._super.clear()  # type: ignore[union-attr]
        logger.debug("Cleared all super properties")

    def get_super_properties(self) -> Properties:
        self._ensure_configured()
        return self._super.get_all()  # type: ignore[union-attr]

    # Experiments

    async def get_variant(self, experiment_name: str) -> Optional[str]:
        """Variant assigned to the current user, or None for an unknown experiment.

        Before experiments have loaded this falls back to bucketing over
        ("a", "b") instead of waiting. The result is stored as the super
        property `$experiment_<snake_case(name)>`.
        """
        self._ensure_configured()
        return await self._experiments.get_variant(experiment_name)  # type: ignore[union-attr]

    async def experiments_ready(self) -> None:
        """Wait until experiments have loaded (or failed to load)."""
        self._ensure_configured()
        await self._experiments.ready()  # type: ignore[union-attr]

    # Delivery

    async def flush(self) -> FlushOutcome:
        """Send the oldest batch of pending events now."""
        self._ensure_configured()
        await self.wait_for_pending_writes()
        return await self._delivery.flush()  # type: ignore[union-attr]

    async def pending_event_count(self) -> int:
        self._ensure_configured()
        await self.wait_for_pending_writes()
        return await self._event_storage.count()  # type: ignore[union-attr]

    async def clear_pending_events(self) -> None:
        """Delete every event that has not been sent yet."""
        self._ensure_configured()
        await self.wait_for_pending_writes()
        await self._event_storage.clear()  # type: ignore[union-attr]
        self._delivery.queue_cleared()  # type: ignore[union-attr]
        logger.debug("Cleared pending events")

    def _build_context(self) -> EventContext:
        config = self.config
        return EventContext(
            platform=self._device.platform(),
            app_version=config.app_version,
            app_build_number=config.app_build_number,
            os_version=self._device.os_version(),
            user_id=self._identity.effective_user_id,  # type: ignore[union-attr]
            session_id=self._identity.session_id,  # type: ignore[union-attr]
            environment=config.environment,
            device_manufacturer=self._device.device_manufacturer(),
            locale=self._device.locale(),
            timezone=self._device.timezone(),
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self._loop.create_task(coro)  # type: ignore[union-attr]
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_flush(self, delivery: DeliveryEngine) -> None:
        await self.wait_for_pending_writes()
        await delivery.flush()

    def _start_flush_timer(self) -> None:
        self._stop_flush_timer()
        self._flush_timer = self._loop.create_task(  # type: ignore[union-attr]
            self._flush_loop(self._delivery, self._config.flush_interval)  # type: ignore[union-attr, arg-type]
        )

    def _stop_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    async def _flush_loop(self, delivery: DeliveryEngine, interval: float) -> None:
        # Each tick gets its own task so a hung send never delays the next tick.
        while True:
            await asyncio.sleep(interval)
            self._spawn(self._background_flush(delivery))

    # Lifecycle

    def _on_app_state(self, state: AppState) -> None:
        if not self._configured:
            return
        track_lifecycle = self.config.track_app_lifecycle_events
        if state == AppState.FOREGROUND and not self._foreground:
            self._foreground = True
            if track_lifecycle:
                self.track(APP_FOREGROUNDED)
            self._start_flush_timer()
        elif state == AppState.BACKGROUND and self._foreground:
            self._foreground = False
            if track_lifecycle:
                self.track(APP_BACKGROUNDED)
            self._spawn(self._background_flush(self._delivery))  # type: ignore[arg-type]
            self._stop_flush_timer()

    def _ensure_configured(self) -> None:
        if not self._configured:
            raise NotConfiguredError()
