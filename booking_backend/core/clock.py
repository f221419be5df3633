from datetime import datetime
from zoneinfo import ZoneInfo

from booking_backend.core import config


def current_time() -> datetime:
    """Naive wall-clock time in the clinic timezone."""
    return datetime.now(ZoneInfo(config.CLINIC_TIMEZONE)).replace(tzinfo=None, second=0, microsecond=0)
