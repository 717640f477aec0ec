"""Bus state registry - canonical in-memory roster with write-through persistence"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .errors import InvalidBusUpdate, UnknownBusId
from .models import BusRecord, BusUpdate, CapacityStatus, Language, PredictionResult
from .seed import seed_fleet
from .state_store import StateStore
from .utils import Clock, now_ms

logger = logging.getLogger(__name__)


class BusRegistry:
    """
    Owns every BusRecord and is the only place they are mutated

    All changes go through ``apply``, which replaces the record in memory
    without suspending. ``persist`` then writes the whole roster through to
    the store.
    """

    def __init__(
        self,
        store: StateStore,
        roster_key: str,
        clock: Clock = now_ms,
        seed: Optional[Iterable[BusRecord]] = None
    ):
        self.store = store
        self.roster_key = roster_key
        self.clock = clock
        self._seed = list(seed) if seed is not None else None
        self._buses: Dict[str, BusRecord] = {}

    async def initialize(self) -> Dict[str, BusRecord]:
        """
        Load the persisted roster, falling back to the seed fleet

        Never raises: absent, unreadable or invalid data is logged and the
        seed set is used instead.
        """
        buses = self._parse_roster(await self.store.read_json(self.roster_key))
        if buses is None:
            buses = self._seed if self._seed is not None else seed_fleet(self.clock())
            logger.info(f"Registry initialized from seed fleet ({len(buses)} buses)")
        else:
            logger.info(f"Registry initialized from store ({len(buses)} buses)")

        self._buses = {bus.id: bus for bus in buses}
        return dict(self._buses)

    def _parse_roster(self, raw: Any) -> Optional[List[BusRecord]]:
        if raw is None:
            return None
        if not isinstance(raw, list):
            logger.warning(f"Ignoring persisted roster of type {type(raw).__name__}")
            return None
        try:
            return [BusRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.warning(f"Ignoring invalid persisted roster: {e.error_count()} errors")
            return None

    def __contains__(self, bus_id: str) -> bool:
        return bus_id in self._buses

    def __len__(self) -> int:
        return len(self._buses)

    def get(self, bus_id: str) -> BusRecord:
        try:
            return self._buses[bus_id]
        except KeyError:
            raise UnknownBusId(bus_id) from None

    def buses(self) -> List[BusRecord]:
        return list(self._buses.values())

    def _merge(self, current: BusRecord, fields: Dict[str, Any]) -> BusRecord:
        merged = current.model_dump()
        merged.update(fields)

        # Seat count drives capacity unless the update states it explicitly
        if "seats_remaining" in fields and "capacity" not in fields:
            seats = fields["seats_remaining"]
            if seats == 0 and current.capacity == CapacityStatus.AVAILABLE:
                merged["capacity"] = CapacityStatus.FULL
            elif seats > 0 and current.capacity == CapacityStatus.FULL:
                merged["capacity"] = CapacityStatus.AVAILABLE

        # Strictly increasing per record even when the clock stalls
        merged["last_updated"] = max(self.clock(), current.last_updated + 1)

        try:
            return BusRecord.model_validate(merged)
        except ValidationError as e:
            raise InvalidBusUpdate(f"Update rejected for bus {current.id}: {e}") from e

    def apply(
        self,
        bus_id: str,
        fields: Union[BusUpdate, Mapping[str, Any]]
    ) -> BusRecord:
        """
        Merge a partial field-set into a bus record

        Never suspends: the new record is visible to every reader when this
        returns. Callers follow up with ``persist`` to write the roster
        through to the store.

        Args:
            bus_id: Target bus identifier
            fields: Partial field-set (BusUpdate or mapping of field names)

        Returns:
            The updated record

        Raises:
            UnknownBusId: bus_id is not in the registry (nothing changes)
            InvalidBusUpdate: the merged record breaks an invariant (nothing changes)
        """
        current = self.get(bus_id)
        try:
            update = BusUpdate.coerce(fields)
        except ValidationError as e:
            raise InvalidBusUpdate(f"Malformed update for bus {bus_id}: {e}") from e

        record = self._merge(current, update.to_fields())
        self._buses[bus_id] = record
        logger.debug(f"Applied update to bus {bus_id}: {update.to_storage_dict()}")
        return record

    def apply_prediction(
        self,
        bus_id: str,
        prediction: PredictionResult,
        language: Language = Language.EN
    ) -> BusRecord:
        """Record a predicted ETA and its message through the regular update path"""
        return self.apply(bus_id, BusUpdate(
            eta_mins=prediction.eta_mins,
            prediction=prediction.message(language),
        ))

    async def persist(self) -> bool:
        """Write the full roster through to the store"""
        return await self.store.write_snapshot(
            self.roster_key,
            lambda: [bus.to_storage_dict() for bus in self._buses.values()]
        )
