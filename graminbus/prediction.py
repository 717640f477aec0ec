"""ETA prediction via the Gemini API, cached per route"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from .errors import PredictionUnavailable
from .models import CapacityStatus, PredictionCacheEntry, PredictionResult, TrafficStatus
from .state_store import StateStore
from .utils import Clock, now_ms

logger = logging.getLogger(__name__)


RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "prediction": {"type": "STRING"},
        "hindiPrediction": {"type": "STRING"},
        "etaMins": {"type": "NUMBER"},
    },
    "required": ["prediction", "hindiPrediction", "etaMins"],
}

PROMPT_TEMPLATE = (
    "Context: Rural bus near Shahpura village.\n"
    "Bus Route: {route}\n"
    "Capacity: {capacity}\n"
    "Traffic reported by conductor: {traffic}\n"
    "Predict arrival minutes (ETA) and a short message in English and Hindi."
)


def offline_fallback(timestamp: int) -> PredictionResult:
    """Deterministic answer used while the device is offline"""
    return PredictionResult(
        eta_mins=15,
        message_en="Offline",
        message_hi="ऑफलाइन",
        timestamp=timestamp,
    )


def failure_fallback(timestamp: int) -> PredictionResult:
    """Deterministic answer used when the model call fails"""
    return PredictionResult(
        eta_mins=20,
        message_en="Next bus in 20 mins",
        message_hi="अगली बस 20 मिनट में",
        timestamp=timestamp,
    )


class PredictionService:
    """
    Bilingual ETA predictions with a per-route freshness window

    The cache is consulted before any network call. Offline requests and
    failed calls get fixed fallback answers, which are never cached.
    """

    def __init__(
        self,
        store: StateStore,
        cache_key: str,
        api_key: str = "",
        model: str = "gemini-3-flash-preview",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        ttl_seconds: int = 300,
        timeout: float = 15.0,
        clock: Clock = now_ms,
        is_online: Callable[[], bool] = lambda: True,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.store = store
        self.cache_key = cache_key
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.ttl_ms = ttl_seconds * 1000
        self.timeout = timeout
        self.clock = clock
        self.is_online = is_online
        self.client = client
        self._owns_client = client is None

    async def connect(self):
        """Initialize HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
            logger.info(f"Prediction client initialized for model {self.model}")

    async def disconnect(self):
        """Close HTTP client"""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.info("Prediction client closed")

    # Cache Operations

    async def _read_cache(self) -> Dict[str, Any]:
        cache = await self.store.read_json(self.cache_key)
        return cache if isinstance(cache, dict) else {}

    async def get_cached(self, route: str) -> Optional[PredictionResult]:
        """Return the cached prediction for a route if still fresh"""
        raw = (await self._read_cache()).get(route)
        if raw is None:
            return None
        try:
            entry = PredictionCacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning(f"Ignoring malformed prediction cache entry for {route}")
            return None

        if self.clock() - entry.cached_at >= self.ttl_ms:
            return None
        return PredictionResult(
            eta_mins=entry.eta_mins,
            message_en=entry.prediction_en,
            message_hi=entry.prediction_hi,
            timestamp=entry.cached_at,
            cached=True,
        )

    async def _write_cache(self, route: str, result: PredictionResult):
        cache = await self._read_cache()
        cache[route] = PredictionCacheEntry(
            prediction_en=result.message_en,
            prediction_hi=result.message_hi,
            eta_mins=result.eta_mins,
            cached_at=result.timestamp,
        ).model_dump(by_alias=True)
        await self.store.write_json(self.cache_key, cache)

    # Prediction

    async def predict(
        self,
        route: str,
        capacity: CapacityStatus,
        traffic: TrafficStatus
    ) -> PredictionResult:
        """
        Predict the ETA for a route

        Args:
            route: Route label (cache key)
            capacity: Current capacity status of the bus
            traffic: Conductor-reported traffic status

        Returns:
            PredictionResult; never raises
        """
        cached = await self.get_cached(route)
        if cached is not None:
            logger.debug(f"Prediction cache hit for {route}")
            return cached

        if not self.is_online():
            return offline_fallback(self.clock())

        try:
            result = await self._generate(route, capacity, traffic)
        except PredictionUnavailable as e:
            logger.error(f"Prediction failed for {route}: {e}")
            return failure_fallback(self.clock())

        await self._write_cache(route, result)
        return result

    async def _generate(
        self,
        route: str,
        capacity: CapacityStatus,
        traffic: TrafficStatus
    ) -> PredictionResult:
        if not self.api_key:
            raise PredictionUnavailable("no API key configured")

        await self.connect()
        prompt = PROMPT_TEMPLATE.format(
            route=route,
            capacity=CapacityStatus(capacity).value,
            traffic=TrafficStatus(traffic).value,
        )
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }

        try:
            response = await self.client.post(
                f"{self.api_base}/models/{self.model}:generateContent",
                json=body,
                headers={"x-goog-api-key": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PredictionUnavailable(f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise PredictionUnavailable(f"request error: {e}") from e

        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
            answer = json.loads(text)
            return PredictionResult(
                eta_mins=max(0, round(float(answer["etaMins"]))),
                message_en=str(answer["prediction"]),
                message_hi=str(answer["hindiPrediction"]),
                timestamp=self.clock(),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise PredictionUnavailable(f"unusable model answer: {e}") from e
