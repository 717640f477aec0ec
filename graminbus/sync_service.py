"""Sync service orchestrator - wires registry, offline queue and connectivity"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Tuple, Union

from .config import Settings, settings as default_settings
from .connectivity import ConnectivityMonitor, ConnectivitySource, ReachabilityProbe
from .events import BUSES, CONNECTIVITY, QUEUE, SYNC, EventHub
from .i18n import label, offline_banner
from .models import (
    BusRecord,
    BusUpdate,
    CapacityStatus,
    FlushResult,
    FlushStatus,
    Language,
    PredictionResult,
    SyncSnapshot,
    SyncState,
    TrafficStatus,
)
from .offline_queue import DeliveryTarget, OfflineQueue, SimulatedDelivery
from .prediction import PredictionService
from .registry import BusRegistry
from .state_store import StateStore, create_state_store
from .utils import Clock, now_ms
from .voice import LOCALE_TAGS, Speaker

logger = logging.getLogger(__name__)


# Seats restored when a conductor flips a bus back to AVAILABLE from zero
DEFAULT_RESTORED_SEATS = 5
# Starting point for ETA adjustment when no ETA is known
DEFAULT_ETA_MINS = 10


class GraminBusService:
    """
    Main service that owns the bus state and its synchronisation

    Mutation flow (local-first):
    1. Apply the change to the registry (always)
    2. Offline: append it to the offline queue
    3. Online: show the syncing indicator for a short window
    4. Persist the roster, and the queue when it changed

    On reconnect the connectivity monitor triggers a queue flush in the
    background.
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        delivery: Optional[DeliveryTarget] = None,
        connectivity_source: Optional[ConnectivitySource] = None,
        prediction: Optional[PredictionService] = None,
        speaker: Optional[Speaker] = None,
        clock: Clock = now_ms,
        config: Settings = default_settings
    ):
        self.settings = config
        self.clock = clock
        self.events = EventHub()

        # Initialize components
        self.store = store or create_state_store(config.storage_backend, config.redis_url)
        self.registry = BusRegistry(self.store, config.roster_key, clock=clock)
        self.queue = OfflineQueue(
            self.store,
            config.queue_key,
            delivery or SimulatedDelivery(config.sync_delay_seconds),
            clock=clock,
            on_change=self._on_queue_change
        )
        if connectivity_source is None:
            if config.reachability_url:
                connectivity_source = ReachabilityProbe(
                    config.reachability_url,
                    interval_seconds=config.reachability_interval_seconds,
                    timeout=config.reachability_timeout_seconds
                )
            else:
                connectivity_source = ConnectivitySource()
        self.connectivity_source = connectivity_source
        self.monitor = ConnectivityMonitor(
            initial_online=True,
            on_online=self.flush,
            on_change=self._on_connectivity_change
        )
        self.prediction = prediction or PredictionService(
            self.store,
            config.prediction_cache_key,
            api_key=config.gemini_api_key,
            model=config.gemini_model,
            api_base=config.gemini_api_base,
            ttl_seconds=config.prediction_cache_ttl_seconds,
            timeout=config.prediction_timeout_seconds,
            clock=clock,
            is_online=lambda: self.online
        )
        self.speaker = speaker or Speaker()

        # State
        self.language = Language(config.default_language)
        self.is_running = False
        self._remote_write_active = False
        self._remote_write_task: Optional[asyncio.Task] = None

    async def start(self):
        """Load persisted state, sample connectivity and subscribe to it"""
        logger.info("Starting GraminBus service")

        try:
            await self.store.connect()
        except Exception as e:
            logger.error(f"State store unavailable, continuing in memory: {e}")
            self.store.degraded = True

        await self.registry.initialize()
        await self.queue.load()
        await self._load_language()

        sampled = await self.connectivity_source.sample()
        self.monitor.online = True if sampled is None else sampled
        if not self.monitor.subscribed:
            self.monitor.subscribe(self.connectivity_source)
        await self.connectivity_source.start()

        self.is_running = True
        logger.info(
            f"GraminBus service started ({len(self.registry)} buses, "
            f"{len(self.queue)} pending, {'online' if self.online else 'offline'})"
        )

    async def stop(self):
        """Stop background work and disconnect from dependencies"""
        logger.info("Stopping GraminBus service")
        self.is_running = False

        if self._remote_write_task:
            self._remote_write_task.cancel()
            try:
                await self._remote_write_task
            except asyncio.CancelledError:
                pass

        self.speaker.cancel()
        await self.connectivity_source.stop()
        await self.monitor.wait_idle()
        await self.prediction.disconnect()
        await self.store.disconnect()
        logger.info("GraminBus service stopped")

    # Observable State

    @property
    def online(self) -> bool:
        return self.monitor.online

    @property
    def sync_state(self) -> SyncState:
        if self._remote_write_active or self.queue.sync_state == SyncState.SYNCING:
            return SyncState.SYNCING
        return SyncState.IDLE

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            online=self.online,
            sync_state=self.sync_state,
            pending=len(self.queue),
            degraded=self.store.degraded,
            last_flush=self.queue.last_result,
        )

    def status_banner(self) -> Optional[str]:
        """Localized status line, None when online and idle"""
        if not self.online:
            return offline_banner(self.language, len(self.queue))
        if self.sync_state == SyncState.SYNCING:
            return label(self.language, "syncing")
        return None

    def _on_queue_change(self, queue: OfflineQueue):
        self.events.publish(QUEUE, len(queue))
        self.events.publish(SYNC, self.snapshot())

    def _on_connectivity_change(self, online: bool):
        self.events.publish(CONNECTIVITY, online)

    def _publish_buses(self):
        self.events.publish(BUSES, self.registry.buses())

    # Mutation Entry Point

    async def update_bus(
        self,
        bus_id: str,
        fields: Union[BusUpdate, Mapping[str, Any]]
    ) -> BusRecord:
        """
        Apply a partial update locally and queue it if offline

        Nothing suspends until the update is either queued or marked as an
        online write, so a reconnect flush cannot slip in between. Roster
        and queue are persisted afterwards.

        Raises:
            UnknownBusId: bus_id is not tracked (nothing applied or queued)
            InvalidBusUpdate: update breaks a record invariant
        """
        record = self.registry.apply(bus_id, fields)
        offline = not self.online
        if offline:
            self.queue.enqueue(bus_id, fields, record.last_updated)
        else:
            self._mark_remote_write()
        self._publish_buses()

        await self.registry.persist()
        if offline:
            await self.queue.persist()
        return record

    def _mark_remote_write(self):
        """Show the syncing indicator for the immediate remote write window"""
        if self._remote_write_task and not self._remote_write_task.done():
            self._remote_write_task.cancel()
        self._remote_write_active = True
        self.events.publish(SYNC, self.snapshot())
        self._remote_write_task = asyncio.create_task(self._end_remote_write())

    async def _end_remote_write(self):
        await asyncio.sleep(self.settings.online_sync_window_seconds)
        self._remote_write_active = False
        self.events.publish(SYNC, self.snapshot())

    async def flush(self) -> FlushResult:
        """Deliver queued updates (reconnect handler and manual trigger)"""
        if not self.online:
            logger.info("Flush requested while offline, keeping queue")
            return FlushResult(status=FlushStatus.OFFLINE, remaining=len(self.queue))
        return await self.queue.flush()

    # Conductor Operations

    async def adjust_seats(self, bus_id: str, delta: int) -> BusRecord:
        """Change seats by delta, clamped to 0..max_seats"""
        bus = self.registry.get(bus_id)
        seats = max(0, min(bus.max_seats, bus.seats_remaining + delta))
        capacity = CapacityStatus.AVAILABLE if seats > 0 else CapacityStatus.FULL
        return await self.update_bus(bus_id, BusUpdate(seats_remaining=seats, capacity=capacity))

    async def set_capacity(self, bus_id: str, status: CapacityStatus) -> BusRecord:
        bus = self.registry.get(bus_id)
        status = CapacityStatus(status)
        seats = bus.seats_remaining
        if status != CapacityStatus.AVAILABLE:
            seats = 0
        elif seats == 0:
            seats = min(DEFAULT_RESTORED_SEATS, bus.max_seats)
        return await self.update_bus(bus_id, BusUpdate(capacity=status, seats_remaining=seats))

    async def adjust_eta(self, bus_id: str, delta: int) -> BusRecord:
        bus = self.registry.get(bus_id)
        current = bus.eta_mins if bus.eta_mins is not None else DEFAULT_ETA_MINS
        return await self.update_bus(bus_id, BusUpdate(eta_mins=max(0, current + delta)))

    async def set_traffic(self, bus_id: str, status: TrafficStatus) -> BusRecord:
        return await self.update_bus(bus_id, BusUpdate(traffic=TrafficStatus(status)))

    async def update_location(self, bus_id: str, lat: float, lng: float) -> BusRecord:
        return await self.update_bus(bus_id, BusUpdate(lat=lat, lng=lng))

    # Passenger Operations

    async def predict_eta(
        self,
        bus_id: str,
        language: Optional[Language] = None
    ) -> Tuple[BusRecord, PredictionResult]:
        """
        Predict the ETA for a bus, record it and announce it

        Returns:
            Updated bus record and the prediction used
        """
        language = Language(language or self.language)
        bus = self.registry.get(bus_id)
        result = await self.prediction.predict(bus.route_number, bus.capacity, bus.traffic)

        record = self.registry.apply_prediction(bus_id, result, language)
        self._publish_buses()
        await self.registry.persist()

        self.speaker.speak(result.message(language), LOCALE_TAGS[language])
        return record, result

    # Language Preference

    async def _load_language(self):
        stored = await self.store.read_json(self.settings.language_key)
        try:
            self.language = Language(stored) if stored else Language(self.settings.default_language)
        except ValueError:
            logger.warning(f"Ignoring stored language preference: {stored!r}")

    async def set_language(self, language: Language) -> Language:
        self.language = Language(language)
        await self.store.write_json(self.settings.language_key, self.language.value)
        return self.language
