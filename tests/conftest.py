from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import pytest

from graminbus.config import Settings
from graminbus.connectivity import ConnectivitySource
from graminbus.models import PendingUpdate
from graminbus.offline_queue import DeliveryTarget
from graminbus.state_store import MemoryStateStore
from graminbus.sync_service import GraminBusService
from graminbus.voice import Speaker


START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class GatedDelivery(DeliveryTarget):
    """Delivery target the test opens and fails by hand"""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[List[PendingUpdate]] = []

    def hold(self):
        self.gate = asyncio.Event()

    def release(self):
        self.gate.set()

    async def deliver(self, updates: Sequence[PendingUpdate]):
        self.calls.append(list(updates))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with


class SpokenLog:
    def __init__(self):
        self.spoken: List[tuple] = []

    async def __call__(self, text: str, locale: str):
        self.spoken.append((text, locale))


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        storage_backend="memory",
        sync_delay_seconds=0,
        online_sync_window_seconds=0,
        gemini_api_key="",
        reachability_url=None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def delivery():
    return GatedDelivery()


@pytest.fixture
def source():
    return ConnectivitySource()


@pytest.fixture
def spoken():
    return SpokenLog()


@pytest.fixture
def make_service(store, delivery, source, clock, spoken, test_settings):
    def factory(**overrides):
        kwargs = dict(
            store=store,
            delivery=delivery,
            connectivity_source=source,
            speaker=Speaker(spoken),
            clock=clock,
            config=test_settings,
        )
        kwargs.update(overrides)
        return GraminBusService(**kwargs)
    return factory
