"""Offline queue manager - buffers mutations made while disconnected"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from .errors import DeliveryFailure
from .models import BusUpdate, FlushResult, FlushStatus, PendingUpdate, SyncState
from .state_store import StateStore
from .utils import Clock, new_update_id, now_ms

logger = logging.getLogger(__name__)


class DeliveryTarget(ABC):
    """Remote counterpart receiving pending updates, in queue order"""

    @abstractmethod
    async def deliver(self, updates: Sequence[PendingUpdate]):
        """Deliver every update or raise"""
        pass


class SimulatedDelivery(DeliveryTarget):
    """
    Stand-in for a real backend: waits for a bounded delay and succeeds

    Setting ``fail_with`` makes every attempt fail, which exercises the
    retained-queue path without a network.
    """

    def __init__(self, delay_seconds: float = 1.5, fail_with: Optional[Exception] = None):
        self.delay_seconds = delay_seconds
        self.fail_with = fail_with
        self.delivered: List[PendingUpdate] = []

    async def deliver(self, updates: Sequence[PendingUpdate]):
        await asyncio.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with
        self.delivered.extend(updates)
        logger.info(f"Simulated delivery of {len(updates)} pending updates")


class OfflineQueue:
    """
    Ordered FIFO of pending updates with all-or-nothing flush

    Entries are never merged: every mutation made while offline gets its
    own entry. A flush delivers the queue snapshot taken when it starts and
    removes exactly those entries on success; on failure nothing is removed.
    Only one flush runs at a time, extra requests are dropped.
    """

    def __init__(
        self,
        store: StateStore,
        queue_key: str,
        delivery: DeliveryTarget,
        clock: Clock = now_ms,
        on_change: Optional[Callable[["OfflineQueue"], None]] = None
    ):
        self.store = store
        self.queue_key = queue_key
        self.delivery = delivery
        self.clock = clock
        self.on_change = on_change

        self._entries: List[PendingUpdate] = []
        self._flushing = False
        self.sync_state = SyncState.IDLE
        self.last_result: Optional[FlushResult] = None

    async def load(self) -> int:
        """Restore persisted entries; invalid data leaves the queue empty"""
        raw = await self.store.read_json(self.queue_key)
        entries: List[PendingUpdate] = []
        if isinstance(raw, list):
            try:
                entries = [PendingUpdate.model_validate(item) for item in raw]
            except ValidationError as e:
                logger.warning(f"Discarding invalid persisted queue: {e.error_count()} errors")
        elif raw is not None:
            logger.warning(f"Discarding persisted queue of type {type(raw).__name__}")

        self._entries = entries
        logger.info(f"Offline queue loaded with {len(entries)} pending updates")
        return len(entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending(self) -> Tuple[PendingUpdate, ...]:
        return tuple(self._entries)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self)

    def _set_sync_state(self, state: SyncState):
        if self.sync_state != state:
            self.sync_state = state
            self._notify()

    async def persist(self) -> bool:
        return await self.store.write_snapshot(
            self.queue_key,
            lambda: [entry.to_storage_dict() for entry in self._entries]
        )

    def enqueue(
        self,
        bus_id: str,
        fields: Union[BusUpdate, Mapping[str, Any]],
        timestamp: Optional[int] = None
    ) -> PendingUpdate:
        """
        Append a pending update to the tail of the queue

        Never suspends, so a flush starting later always sees the entry.
        Callers follow up with ``persist``.

        Args:
            bus_id: Target bus identifier
            fields: Partial field-set as applied locally
            timestamp: Creation time in ms (defaults to now)

        Returns:
            The new queue entry
        """
        entry = PendingUpdate(
            id=new_update_id(),
            bus_id=bus_id,
            updates=BusUpdate.coerce(fields).to_storage_dict(),
            timestamp=self.clock() if timestamp is None else timestamp,
        )
        self._entries.append(entry)
        logger.debug(f"Queued update {entry.id} for bus {bus_id} ({len(self._entries)} pending)")
        self._notify()
        return entry

    async def flush(self) -> FlushResult:
        """
        Deliver every queued entry, removing them only if all succeed

        Returns:
            FlushResult describing the outcome; never raises for delivery errors
        """
        if self._flushing:
            logger.debug("Flush already in progress, ignoring request")
            return FlushResult(status=FlushStatus.SKIPPED, remaining=len(self._entries))

        if not self._entries:
            return FlushResult(status=FlushStatus.EMPTY)

        self._flushing = True
        batch = list(self._entries)
        self._set_sync_state(SyncState.SYNCING)
        logger.info(f"Syncing {len(batch)} offline updates")

        try:
            try:
                await self.delivery.deliver(batch)
            except Exception as e:
                error = DeliveryFailure(str(e) or type(e).__name__)
                logger.error(f"Delivery of {len(batch)} pending updates failed: {error}")
                result = FlushResult(
                    status=FlushStatus.FAILED,
                    remaining=len(self._entries),
                    error=str(error),
                )
            else:
                delivered_ids = {entry.id for entry in batch}
                self._entries = [e for e in self._entries if e.id not in delivered_ids]
                await self.persist()
                result = FlushResult(
                    status=FlushStatus.DELIVERED,
                    delivered=len(batch),
                    remaining=len(self._entries),
                )
                logger.info(f"Flushed {len(batch)} offline updates")
        finally:
            self._flushing = False
            self.sync_state = SyncState.IDLE

        self.last_result = result
        self._notify()
        return result
