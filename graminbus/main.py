"""FastAPI application entry point"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .errors import InvalidBusUpdate, UnknownBusId
from .i18n import capacity_label, label, traffic_label
from .models import BusRecord, BusUpdate, CapacityStatus, Language, TrafficStatus
from .seed import SEED_STOPS
from .sync_service import GraminBusService
from .utils import format_local_time

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global service instance
service: GraminBusService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager

    Handles startup and shutdown events
    """
    global service

    # Startup
    logger.info("Application starting up")
    if service is None:
        service = GraminBusService()
    await service.start()

    yield

    # Shutdown
    logger.info("Application shutting down")
    await service.stop()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Crowdsourced rural bus tracking with offline-first sync",
    version="1.0.0",
    lifespan=lifespan
)


class DeltaRequest(BaseModel):
    delta: int


class TrafficRequest(BaseModel):
    traffic: TrafficStatus


class CapacityRequest(BaseModel):
    capacity: CapacityStatus


class LocationRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ConnectivityRequest(BaseModel):
    online: bool


class LanguageRequest(BaseModel):
    language: Language


@app.exception_handler(UnknownBusId)
async def unknown_bus_handler(request: Request, exc: UnknownBusId):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(InvalidBusUpdate)
async def invalid_update_handler(request: Request, exc: InvalidBusUpdate):
    return JSONResponse(status_code=422, content={"error": str(exc)})


def bus_view(bus: BusRecord, language: Optional[Language] = None) -> dict:
    """Bus record as served to clients, with localized display fields"""
    language = language or service.language
    view = bus.to_storage_dict()
    view["lastUpdatedLocal"] = format_local_time(bus.last_updated)
    view["capacityLabel"] = capacity_label(language, bus.capacity)
    view["trafficLabel"] = traffic_label(language, bus.traffic)
    if bus.eta_mins is not None:
        view["etaLabel"] = f"{label(language, 'eta_label')} {bus.eta_mins} min"
    return view


@app.get("/")
async def root(language: Optional[Language] = None):
    """Root endpoint"""
    language = language or service.language
    return {
        "service": settings.app_name,
        "title": label(language, "app_name"),
        "village": label(language, "village_name"),
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint

    Reports store connectivity and degraded mode
    """
    store_ok = await service.store.ping()
    healthy = store_ok and not service.store.degraded

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "store": "connected" if store_ok else "disconnected",
            "online": service.online
        }
    )


@app.get("/buses")
async def list_buses(language: Optional[Language] = None):
    """Get every tracked bus"""
    buses = service.registry.buses()
    return {
        "count": len(buses),
        "buses": [bus_view(bus, language) for bus in buses]
    }


@app.get("/buses/{bus_id}")
async def get_bus(bus_id: str, language: Optional[Language] = None):
    """Get current state of a specific bus"""
    return bus_view(service.registry.get(bus_id), language)


@app.patch("/buses/{bus_id}")
async def update_bus(bus_id: str, update: BusUpdate):
    """Apply a partial update (queued while offline)"""
    return bus_view(await service.update_bus(bus_id, update))


@app.post("/buses/{bus_id}/seats")
async def adjust_seats(bus_id: str, request: DeltaRequest):
    return bus_view(await service.adjust_seats(bus_id, request.delta))


@app.post("/buses/{bus_id}/eta")
async def adjust_eta(bus_id: str, request: DeltaRequest):
    return bus_view(await service.adjust_eta(bus_id, request.delta))


@app.post("/buses/{bus_id}/traffic")
async def set_traffic(bus_id: str, request: TrafficRequest):
    return bus_view(await service.set_traffic(bus_id, request.traffic))


@app.post("/buses/{bus_id}/capacity")
async def set_capacity(bus_id: str, request: CapacityRequest):
    return bus_view(await service.set_capacity(bus_id, request.capacity))


@app.post("/buses/{bus_id}/location")
async def update_location(bus_id: str, request: LocationRequest):
    return bus_view(await service.update_location(bus_id, request.lat, request.lng))


@app.post("/buses/{bus_id}/predict")
async def predict_eta(bus_id: str, language: Optional[Language] = None):
    """
    Predict the ETA for a bus

    Stores the predicted ETA and message on the bus and announces it
    """
    bus, result = await service.predict_eta(bus_id, language)
    return {
        "bus": bus_view(bus, language),
        "prediction": result.model_dump(mode="json", by_alias=True)
    }


@app.get("/stops")
async def list_stops():
    return {
        "count": len(SEED_STOPS),
        "stops": [stop.model_dump(by_alias=True) for stop in SEED_STOPS]
    }


@app.get("/sync")
async def get_sync_status():
    """
    Get sync status

    Returns connectivity, sync state, pending count, last flush outcome and
    the localized status banner
    """
    status = service.snapshot().model_dump(mode="json", by_alias=True)
    status["banner"] = service.status_banner()
    return status


@app.post("/sync/flush")
async def manual_flush():
    """
    Manually trigger delivery of pending updates
    """
    result = await service.flush()
    return result.model_dump(mode="json", by_alias=True)


@app.post("/connectivity")
async def set_connectivity(request: ConnectivityRequest):
    """
    Report a reachability change (stands in for the platform signal)
    """
    service.connectivity_source.emit(request.online)
    return service.snapshot().model_dump(mode="json", by_alias=True)


@app.get("/language")
async def get_language():
    return {"language": service.language.value}


@app.put("/language")
async def set_language(request: LanguageRequest):
    language = await service.set_language(request.language)
    return {"language": language.value}
