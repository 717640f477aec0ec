from __future__ import annotations

import asyncio
import json

import pytest

from graminbus import events
from graminbus.connectivity import ConnectivitySource
from graminbus.errors import UnknownBusId
from graminbus.models import CapacityStatus, FlushStatus, Language, SyncState, TrafficStatus
from graminbus.state_store import MemoryStateStore


def test_seat_increment_reopens_full_bus_while_online(make_service):
    service = make_service()

    async def scenario():
        await service.start()
        await service.adjust_seats("SH-02", 1)
        record = await service.adjust_seats("SH-02", 1)
        await service.stop()
        return record

    record = asyncio.run(scenario())
    assert record.seats_remaining == 2
    assert record.capacity == CapacityStatus.AVAILABLE
    assert len(service.queue) == 0


def test_offline_traffic_reports_are_queued_individually(make_service, source):
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        for _ in range(3):
            await service.update_bus("SH-01", {"traffic": "BLOCK"})
        await service.stop()

    asyncio.run(scenario())
    pending = service.queue.pending
    assert len(pending) == 3
    assert all(entry.bus_id == "SH-01" for entry in pending)
    assert all(entry.updates == {"traffic": "BLOCK"} for entry in pending)
    assert service.registry.get("SH-01").traffic == TrafficStatus.BLOCK


def test_online_update_leaves_queue_and_shows_syncing(make_service):
    service = make_service()
    states = []
    service.events.subscribe(events.SYNC, lambda snap: states.append(snap.sync_state))

    async def scenario():
        await service.start()
        record = await service.update_bus("SH-01", {"etaMins": 9})
        syncing = service.sync_state
        await asyncio.sleep(0.01)
        idle = service.sync_state
        await service.stop()
        return record, syncing, idle

    record, syncing, idle = asyncio.run(scenario())
    assert record.eta_mins == 9
    assert len(service.queue) == 0
    assert syncing == SyncState.SYNCING
    assert idle == SyncState.IDLE
    assert states[:2] == [SyncState.SYNCING, SyncState.IDLE]


def test_reconnect_flushes_queue(make_service, source, delivery):
    service = make_service()
    queue_lengths = []
    service.events.subscribe(events.QUEUE, queue_lengths.append)

    async def scenario():
        await service.start()
        source.emit(False)
        await service.set_traffic("SH-01", TrafficStatus.HEAVY)
        await service.update_location("SH-01", 27.31, 75.93)
        source.emit(True)
        await service.monitor.wait_idle()
        await service.stop()

    asyncio.run(scenario())
    assert len(service.queue) == 0
    assert [e.updates for e in delivery.calls[0]] == [
        {"traffic": "HEAVY"},
        {"lat": 27.31, "lng": 75.93},
    ]
    assert service.snapshot().last_flush.status == FlushStatus.DELIVERED
    assert queue_lengths[-1] == 0


def test_reconnect_with_failed_delivery_keeps_queue(make_service, source, delivery):
    delivery.fail_with = TimeoutError("gateway timeout")
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        await service.adjust_eta("SH-01", 5)
        await service.adjust_eta("SH-01", 5)
        source.emit(True)
        await service.monitor.wait_idle()
        await service.stop()

    asyncio.run(scenario())
    assert len(service.queue) == 2
    snapshot = service.snapshot()
    assert snapshot.pending == 2
    assert snapshot.sync_state == SyncState.IDLE
    assert snapshot.last_flush.status == FlushStatus.FAILED
    assert service.registry.get("SH-01").eta_mins == 22


def test_unknown_bus_is_rejected_before_queueing(make_service, source):
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        with pytest.raises(UnknownBusId):
            await service.update_bus("SH-42", {"traffic": "HEAVY"})
        await service.stop()

    asyncio.run(scenario())
    assert len(service.queue) == 0


def test_manual_flush_while_offline_is_refused(make_service, source, delivery):
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        await service.set_traffic("SH-02", TrafficStatus.SMOOTH)
        result = await service.flush()
        await service.stop()
        return result

    result = asyncio.run(scenario())
    assert result.status == FlushStatus.OFFLINE
    assert result.remaining == 1
    assert delivery.calls == []


@pytest.mark.parametrize("status, seats", [
    (CapacityStatus.FULL, 0),
    (CapacityStatus.OVERLOADED, 0),
    (CapacityStatus.STANDING, 0),
])
def test_set_capacity_non_available_clears_seats(make_service, status, seats):
    service = make_service()

    async def scenario():
        await service.start()
        record = await service.set_capacity("SH-01", status)
        await service.stop()
        return record

    record = asyncio.run(scenario())
    assert record.capacity == status
    assert record.seats_remaining == seats


def test_set_capacity_available_restores_seats(make_service):
    service = make_service()

    async def scenario():
        await service.start()
        record = await service.set_capacity("SH-02", CapacityStatus.AVAILABLE)
        await service.stop()
        return record

    record = asyncio.run(scenario())
    assert record.capacity == CapacityStatus.AVAILABLE
    assert record.seats_remaining == 5


def test_adjust_seats_clamps_to_bounds(make_service):
    service = make_service()

    async def scenario():
        await service.start()
        low = await service.adjust_seats("SH-01", -100)
        high = await service.adjust_seats("SH-01", 100)
        await service.stop()
        return low, high

    low, high = asyncio.run(scenario())
    assert (low.seats_remaining, low.capacity) == (0, CapacityStatus.FULL)
    assert (high.seats_remaining, high.capacity) == (45, CapacityStatus.AVAILABLE)


def test_state_survives_restart(store, make_service, source):
    first = make_service()

    async def run_first():
        await first.start()
        source.emit(False)
        await first.adjust_seats("SH-01", -5)
        await first.set_language(Language.HI)
        await first.stop()

    asyncio.run(run_first())

    second = make_service(connectivity_source=ConnectivitySource())
    asyncio.run(second.start())
    assert second.registry.get("SH-01").seats_remaining == 10
    assert len(second.queue) == 1
    assert second.language == Language.HI
    assert second.status_banner() is None
    asyncio.run(second.stop())


def test_offline_banner_is_localized(make_service, source):
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        cached = service.status_banner()
        await service.set_traffic("SH-01", TrafficStatus.BLOCK)
        await service.set_language(Language.HI)
        pending = service.status_banner()
        await service.stop()
        return cached, pending

    cached, pending = asyncio.run(scenario())
    assert cached == "Offline Mode - Using cached data"
    assert pending == "ऑफलाइन मोड - 1 अपडेट बाकी है"


def test_predict_eta_records_and_speaks(make_service, spoken, source):
    service = make_service()

    async def scenario():
        await service.start()
        source.emit(False)
        bus, result = await service.predict_eta("SH-01", Language.HI)
        await asyncio.sleep(0)
        await service.stop()
        return bus, result

    bus, result = asyncio.run(scenario())
    assert result.message_hi == "ऑफलाइन"
    assert bus.eta_mins == 15
    assert bus.prediction == "ऑफलाइन"
    assert spoken.spoken == [("ऑफलाइन", "hi-IN")]
    # Predictions are derived locally, not conductor reports
    assert len(service.queue) == 0


def test_degraded_store_keeps_working_in_memory(make_service):
    class BrokenStore(MemoryStateStore):
        async def _set(self, key, value):
            raise OSError("disk full")

    service = make_service(store=BrokenStore())

    async def scenario():
        await service.start()
        record = await service.adjust_seats("SH-01", 1)
        await service.stop()
        return record

    record = asyncio.run(scenario())
    assert record.seats_remaining == 16
    assert service.snapshot().degraded


class HeldWriteStore(MemoryStateStore):
    """Memory store whose writes to one key wait until released"""

    def __init__(self, held_key):
        super().__init__()
        self.held_key = held_key
        self.gate = None

    async def _set(self, key, value):
        if key == self.held_key and self.gate is not None:
            await self.gate.wait()
        await super()._set(key, value)


def test_reconnect_during_roster_write_flushes_the_new_entry(make_service, source, delivery, test_settings):
    store = HeldWriteStore(test_settings.roster_key)
    service = make_service(store=store)

    async def scenario():
        await service.start()
        source.emit(False)
        store.gate = asyncio.Event()
        update = asyncio.create_task(service.update_bus("SH-01", {"traffic": "BLOCK"}))
        await asyncio.sleep(0)
        # Queued before the roster write finishes
        queued = len(service.queue)

        source.emit(True)
        await service.monitor.wait_idle()
        store.gate.set()
        await update
        await service.stop()
        return queued

    assert asyncio.run(scenario()) == 1
    snapshot = service.snapshot()
    assert snapshot.pending == 0
    assert snapshot.last_flush.status == FlushStatus.DELIVERED
    assert [e.updates for e in delivery.calls[0]] == [{"traffic": "BLOCK"}]
    assert json.loads(store.data[test_settings.queue_key]) == []
    assert json.loads(store.data[test_settings.roster_key])[0]["traffic"] == "BLOCK"


def test_going_offline_during_roster_write_does_not_queue(make_service, source, test_settings):
    store = HeldWriteStore(test_settings.roster_key)
    service = make_service(store=store)

    async def scenario():
        await service.start()
        store.gate = asyncio.Event()
        update = asyncio.create_task(service.update_bus("SH-01", {"etaMins": 3}))
        await asyncio.sleep(0)
        syncing = service.sync_state

        source.emit(False)
        store.gate.set()
        await update
        await service.stop()
        return syncing

    assert asyncio.run(scenario()) == SyncState.SYNCING
    assert len(service.queue) == 0
    assert service.registry.get("SH-01").eta_mins == 3


class UnreachableAtStartup(ConnectivitySource):
    async def sample(self):
        return False


def test_start_samples_offline_and_queues_first_update(make_service, delivery):
    source = UnreachableAtStartup()
    service = make_service(connectivity_source=source)

    async def scenario():
        await service.start()
        started_online = service.online
        await service.set_traffic("SH-02", TrafficStatus.BLOCK)
        pending_while_offline = len(service.queue)
        source.emit(True)
        await service.monitor.wait_idle()
        await service.stop()
        return started_online, pending_while_offline

    started_online, pending_while_offline = asyncio.run(scenario())
    assert started_online is False
    assert pending_while_offline == 1
    assert [e.bus_id for e in delivery.calls[0]] == ["SH-02"]
    assert len(service.queue) == 0
