"""Persistent key/value store for roster, offline queue and preferences"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from redis import asyncio as aioredis

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """
    Flat durable name/value store holding JSON documents

    Each logical record lives under its own key and is overwritten as a
    whole (last write wins per key). Reads never raise: absent or unreadable
    data comes back as None. Writes are best-effort: a failing backend puts
    the store in degraded mode until a later write succeeds.
    """

    def __init__(self):
        self.degraded = False
        self._locks: Dict[str, asyncio.Lock] = {}

    async def connect(self):
        """Open the backend"""

    async def disconnect(self):
        """Close the backend"""

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def _get(self, key: str) -> Optional[str]:
        """Raw stored string, None if absent"""
        pass

    @abstractmethod
    async def _set(self, key: str, value: str):
        pass

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def read_json(self, key: str) -> Optional[Any]:
        """Read and decode a JSON document, None if absent or unreadable"""
        try:
            raw = await self._get(key)
        except Exception as e:
            logger.error(f"Persistence failure reading {key}: {e}")
            self.degraded = True
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Persistence failure: {key} holds malformed JSON: {e}")
            return None

    async def write_snapshot(self, key: str, snapshot: Callable[[], Any]) -> bool:
        """
        Persist the value produced by ``snapshot`` under ``key``

        Writes to one key are serialised and the snapshot is taken once the
        key is free, so the stored document always reflects the newest
        in-memory state even when writes overlap.

        Returns:
            True if the backend accepted the write
        """
        async with self._lock(key):
            try:
                await self._set(key, json.dumps(snapshot(), ensure_ascii=False))
            except Exception as e:
                logger.error(f"Persistence failure writing {key}: {e}")
                self.degraded = True
                return False

        if self.degraded:
            logger.info(f"Store recovered from degraded mode on write to {key}")
            self.degraded = False
        return True

    async def write_json(self, key: str, value: Any) -> bool:
        return await self.write_snapshot(key, lambda: value)


class MemoryStateStore(StateStore):
    """Process-local store, used when no durable backend is configured"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self.data: Dict[str, str] = dict(initial or {})

    async def _get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def _set(self, key: str, value: str):
        self.data[key] = value


class RedisStateStore(StateStore):
    """
    Redis-backed store

    Data Structures:
    1. Bus roster: {prefix}_data -> STRING (JSON array of bus records)
    2. Pending queue: {prefix}_offline_queue -> STRING (JSON array of updates)
    3. Language preference: {prefix}_lang -> STRING (JSON string)
    4. Prediction cache: {prefix}_predictions -> STRING (JSON object by route)
    """

    def __init__(self, redis_url: str, client: Optional[aioredis.Redis] = None):
        super().__init__()
        self.redis_url = redis_url
        self.client = client

    async def connect(self):
        """Establish connection to Redis"""
        if self.client is not None:
            return
        self.client = await aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_keepalive=True,
            health_check_interval=30  # Check connection health every 30s
        )
        logger.info("Connected to Redis state store")

    async def disconnect(self):
        """Close Redis connection"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected from Redis")

    async def ping(self) -> bool:
        """Check Redis connectivity"""
        try:
            return await self.client.ping()
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def _get(self, key: str) -> Optional[str]:
        if self.client is None:
            raise PersistenceFailure("Redis client not connected")
        return await self.client.get(key)

    async def _set(self, key: str, value: str):
        if self.client is None:
            raise PersistenceFailure("Redis client not connected")
        await self.client.set(key, value)


def create_state_store(backend: str, redis_url: str) -> StateStore:
    """Build the configured store backend"""
    if backend == "memory":
        logger.warning("Using in-memory state store - data will not survive a restart")
        return MemoryStateStore()
    if backend == "redis":
        return RedisStateStore(redis_url)
    raise ValueError(f"Unknown storage backend: {backend}")
