"""Connectivity monitor - tracks online/offline and triggers queue flush on reconnect"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

import httpx

logger = logging.getLogger(__name__)


Listener = Callable[[bool], None]


class ConnectivitySource:
    """
    Platform reachability signal

    Emits True when the network becomes reachable and False when it is
    lost. The base class is driven by hand (e.g. from an HTTP endpoint).
    """

    def __init__(self):
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def emit(self, online: bool):
        for listener in list(self._listeners):
            listener(online)

    async def sample(self) -> Optional[bool]:
        """Current reachability, or None when the platform offers no signal"""
        return None

    async def start(self):
        """Begin producing signals"""

    async def stop(self):
        """Stop producing signals"""


class ReachabilityProbe(ConnectivitySource):
    """
    HTTP reachability probe

    Polls a URL on a fixed interval and emits the result. Any response
    counts as reachable; transport errors and timeouts count as offline.
    """

    def __init__(self, url: str, interval_seconds: float = 15, timeout: float = 5.0):
        super().__init__()
        self.url = url
        self.interval_seconds = interval_seconds
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None
        self.task: Optional[asyncio.Task] = None

    async def connect(self):
        """Initialize HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    async def sample(self) -> Optional[bool]:
        await self.connect()
        try:
            await self.client.head(self.url)
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Reachability probe to {self.url} failed: {e}")
            return False

    async def start(self):
        await self.connect()
        self.task = asyncio.create_task(self._probe_loop())
        logger.info(f"Reachability probe started for {self.url} (interval: {self.interval_seconds}s)")

    async def stop(self):
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Reachability probe closed")

    async def _probe_loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.emit(await self.sample())
            except Exception as e:
                logger.error(f"Error in reachability probe: {e}", exc_info=True)


class ConnectivityMonitor:
    """
    Process-wide online/offline flag

    Going offline only flips the flag. Going online flips the flag and then
    schedules ``on_online`` in the background; the transition itself never
    waits for it.
    """

    def __init__(
        self,
        initial_online: bool = True,
        on_online: Optional[Callable[[], Awaitable]] = None,
        on_change: Optional[Listener] = None
    ):
        self.online = initial_online
        self.on_online = on_online
        self.on_change = on_change
        self._source: Optional[ConnectivitySource] = None
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, source: ConnectivitySource):
        """Attach to the platform signal; allowed once per monitor"""
        if self._source is not None:
            raise RuntimeError("Connectivity monitor is already subscribed")
        self._source = source
        source.add_listener(self.set_online)

    @property
    def subscribed(self) -> bool:
        return self._source is not None

    def set_online(self, online: bool) -> bool:
        """
        Process a reachability signal

        Returns:
            True if the signal changed the connectivity state
        """
        online = bool(online)
        if online == self.online:
            return False

        self.online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        if self.on_change is not None:
            self.on_change(online)

        if online and self.on_online is not None:
            task = asyncio.create_task(self._run_on_online())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return True

    async def _run_on_online(self):
        try:
            await self.on_online()
        except Exception as e:
            logger.error(f"Reconnect handler failed: {e}", exc_info=True)

    async def wait_idle(self):
        """Wait for reconnect handlers scheduled so far"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
