"""Seed fleet and stops around Shahpura, Rajasthan (approx 27.3872, 75.9554)"""

from typing import List

from .models import BusRecord, BusStop, CapacityStatus, TrafficStatus
from .utils import now_ms


SEED_STOPS: List[BusStop] = [
    BusStop(id="1", name="Shahpura Main Stand", lat=27.3872, lng=75.9554),
    BusStop(id="2", name="Amarpura Mod", lat=27.3500, lng=75.9400),
    BusStop(id="3", name="Manoharpur Stand", lat=27.3000, lng=75.9300),
    BusStop(id="4", name="Chandwaji (NH-48)", lat=27.2185, lng=75.9535),
]


def seed_fleet(now: int = None) -> List[BusRecord]:
    """Build the seeded fleet, stamped relative to ``now`` (ms)"""
    now = now_ms() if now is None else now
    return [
        BusRecord(
            id="SH-01",
            route_number="Jaipur Exp",
            destination="Jaipur Sindhi Camp",
            last_updated=now,
            lat=27.3600,
            lng=75.9500,
            capacity=CapacityStatus.AVAILABLE,
            seats_remaining=15,
            max_seats=45,
            is_crowdsourced=True,
            eta_mins=12,
            traffic=TrafficStatus.SMOOTH,
        ),
        BusRecord(
            id="SH-02",
            route_number="Kotputli Local",
            destination="Kotputli",
            last_updated=now - 600_000,  # 10 minutes stale
            lat=27.4200,
            lng=75.9600,
            capacity=CapacityStatus.FULL,
            seats_remaining=0,
            max_seats=40,
            is_crowdsourced=False,
            eta_mins=25,
            traffic=TrafficStatus.HEAVY,
        ),
    ]
