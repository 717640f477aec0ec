"""Data models for bus state, offline updates and predictions"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CapacityStatus(str, Enum):
    """Discrete occupancy classification reported for a bus"""
    AVAILABLE = "AVAILABLE"
    STANDING = "STANDING"
    FULL = "FULL"
    OVERLOADED = "OVERLOADED"


class TrafficStatus(str, Enum):
    """Road condition reported by the conductor"""
    SMOOTH = "SMOOTH"
    HEAVY = "HEAVY"
    BLOCK = "BLOCK"


class Language(str, Enum):
    EN = "en"
    HI = "hi"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class FlushStatus(str, Enum):
    EMPTY = "EMPTY"          # Nothing queued
    DELIVERED = "DELIVERED"  # Every queued entry delivered and removed
    FAILED = "FAILED"        # Delivery failed, queue retained
    SKIPPED = "SKIPPED"      # Another flush already in flight
    OFFLINE = "OFFLINE"      # Not attempted while disconnected


class CamelModel(BaseModel):
    """Base model persisted with camelCase keys, accepting both spellings"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BusStop(CamelModel):
    id: str
    name: str
    lat: float
    lng: float


class BusRecord(CamelModel):
    """Canonical state of one tracked bus"""
    id: str
    route_number: str
    destination: str
    last_updated: int  # Unix timestamp (ms)
    lat: float
    lng: float
    capacity: CapacityStatus
    seats_remaining: int
    max_seats: int = Field(gt=0)
    is_crowdsourced: bool = False
    traffic: TrafficStatus = TrafficStatus.SMOOTH
    eta_mins: Optional[int] = Field(default=None, ge=0)
    prediction: Optional[str] = None

    @model_validator(mode="after")
    def check_seats(self) -> "BusRecord":
        if not 0 <= self.seats_remaining <= self.max_seats:
            raise ValueError(
                f"seats_remaining {self.seats_remaining} outside 0..{self.max_seats}"
            )
        if self.capacity == CapacityStatus.FULL and self.seats_remaining != 0:
            raise ValueError("a FULL bus cannot have seats remaining")
        return self

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase JSON document kept in the roster"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BusUpdate(CamelModel):
    """
    Partial field-set applied to a bus record

    Only fields explicitly supplied take part in the merge. The identifier,
    seat ceiling and update timestamp are not part of the set: they are
    immutable or stamped by the registry.
    """
    model_config = ConfigDict(extra="forbid")

    route_number: Optional[str] = None
    destination: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    capacity: Optional[CapacityStatus] = None
    seats_remaining: Optional[int] = Field(default=None, ge=0)
    is_crowdsourced: Optional[bool] = None
    traffic: Optional[TrafficStatus] = None
    eta_mins: Optional[int] = Field(default=None, ge=0)
    prediction: Optional[str] = None

    @classmethod
    def coerce(cls, fields: Union["BusUpdate", Mapping[str, Any]]) -> "BusUpdate":
        if isinstance(fields, cls):
            return fields
        return cls.model_validate(dict(fields))

    def to_fields(self) -> Dict[str, Any]:
        """Supplied fields keyed by attribute name"""
        return self.model_dump(exclude_unset=True)

    def to_storage_dict(self) -> Dict[str, Any]:
        """Supplied fields keyed by their persisted camelCase name"""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class PendingUpdate(CamelModel):
    """
    One buffered mutation awaiting remote delivery

    ``updates`` holds exactly the fields the caller supplied with the same
    values, keyed by their persisted camelCase names whichever spelling was
    used (``{"eta_mins": 5}`` is queued as ``{"etaMins": 5}``).
    """
    id: str
    bus_id: str
    updates: Dict[str, Any]
    timestamp: int  # Unix timestamp (ms)

    def to_storage_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FlushResult(CamelModel):
    """Outcome of one flush attempt"""
    status: FlushStatus
    delivered: int = 0
    remaining: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (FlushStatus.EMPTY, FlushStatus.DELIVERED)


class PredictionResult(CamelModel):
    """Bilingual ETA prediction for a route"""
    eta_mins: int = Field(ge=0)
    message_en: str
    message_hi: str
    timestamp: int  # Unix timestamp (ms)
    cached: bool = False

    def message(self, language: Language) -> str:
        return self.message_hi if Language(language) == Language.HI else self.message_en


class PredictionCacheEntry(BaseModel):
    """Prediction cache value stored per route label"""
    model_config = ConfigDict(populate_by_name=True)

    prediction_en: str = Field(alias="predictionEn")
    prediction_hi: str = Field(alias="predictionHi")
    eta_mins: int = Field(alias="etaMins")
    cached_at: int = Field(alias="cachedAt")  # Unix timestamp (ms)


class SyncSnapshot(CamelModel):
    """Observable sync status surfaced to UI consumers"""
    online: bool
    sync_state: SyncState
    pending: int
    degraded: bool = False
    last_flush: Optional[FlushResult] = None
