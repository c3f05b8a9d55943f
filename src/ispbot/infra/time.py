"""Time utilities for consistent timestamp handling."""

import os
import time
from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

# Epoch seconds; stores and gates take one of these so tests can drive time
Clock = Callable[[], float]

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_seconds() -> float:
    """Return current wall-clock time in epoch seconds."""
    return time.time()


def epoch_millis() -> int:
    """Return current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def local_today() -> date:
    """Return today's date in the bot's business timezone (BOT_TIMEZONE)."""
    tz = ZoneInfo(os.environ.get("BOT_TIMEZONE", DEFAULT_TIMEZONE))
    return datetime.now(tz).date()
