"""Error taxonomy for the bus state and sync components"""


class GraminBusError(Exception):
    """Base class for service errors"""


class UnknownBusId(GraminBusError, KeyError):
    """Mutation targets a bus that is not in the registry"""

    def __init__(self, bus_id: str):
        super().__init__(bus_id)
        self.bus_id = bus_id

    def __str__(self) -> str:
        return f"Unknown bus id: {self.bus_id}"


class InvalidBusUpdate(GraminBusError, ValueError):
    """Merged record would break a bus record invariant"""


class PersistenceFailure(GraminBusError):
    """Durable store could not be read or written"""


class DeliveryFailure(GraminBusError):
    """Remote delivery of pending updates failed"""


class PredictionUnavailable(GraminBusError):
    """Prediction call failed, timed out or returned an unusable answer"""
