"""Voice announcements - fire-and-forget, one utterance at a time"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .models import Language

logger = logging.getLogger(__name__)


SayBackend = Callable[[str, str], Awaitable[None]]

LOCALE_TAGS = {
    Language.EN: "en-US",
    Language.HI: "hi-IN",
}


async def log_backend(text: str, locale: str):
    logger.info(f"[speak {locale}] {text}")


class Speaker:
    """
    Speaks text through an async backend

    A new utterance cancels the one still in progress. Backend errors are
    logged and never reach the caller.
    """

    def __init__(self, backend: SayBackend = log_backend):
        self.backend = backend
        self.current: Optional[asyncio.Task] = None

    def speak(self, text: str, locale: str = "hi-IN"):
        self.cancel()
        self.current = asyncio.create_task(self._say(text, locale))

    def cancel(self):
        if self.current is not None and not self.current.done():
            self.current.cancel()
        self.current = None

    async def _say(self, text: str, locale: str):
        try:
            await self.backend(text, locale)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Voice output failed: {e}")
