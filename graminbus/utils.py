"""Utility functions for the sync service"""

import time
import uuid
from datetime import datetime
from typing import Callable

import pytz

from .config import settings


Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time as a Unix timestamp in milliseconds"""
    return int(time.time() * 1000)


def new_update_id() -> str:
    """Generate a collision-resistant identifier for a pending update"""
    return uuid.uuid4().hex


def format_local_time(timestamp_ms: int, timezone: str = None) -> str:
    """
    Render a millisecond timestamp as local wall-clock time.
    
    Args:
        timestamp_ms: Unix timestamp in milliseconds
        timezone: Olson timezone name (defaults to the configured local zone)
        
    Returns:
        Time of day as HH:MM:SS string (e.g., "14:05:09")
        
    Examples:
        >>> format_local_time(1700000000000, "Asia/Kolkata")
        '03:43:20'
    """
    tz = pytz.timezone(timezone or settings.local_timezone)
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=tz)
    return dt.strftime('%H:%M:%S')
