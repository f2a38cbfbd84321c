# =======================================================================================
# smartgrid/services/expiry.py - Content Freshness
# =======================================================================================
import math
from datetime import datetime, timezone
from typing import Optional
from ..config import config
from ..models.enums import ExpiryStatus
from ..models.schemas import as_utc

SECONDS_PER_DAY = 24 * 60 * 60


def classify(expiry: Optional[datetime], now: Optional[datetime] = None) -> ExpiryStatus:
    """EXPIRED if the date is past, WARNING within the warning window (whole days, rounded up), else OK."""
    if expiry is None:
        return ExpiryStatus.OK

    expiry = as_utc(expiry)
    now = now or datetime.now(timezone.utc)
    if expiry < now:
        return ExpiryStatus.EXPIRED

    days_left = math.ceil((expiry - now).total_seconds() / SECONDS_PER_DAY)
    if days_left <= config.EXPIRY_WARNING_DAYS:
        return ExpiryStatus.WARNING
    return ExpiryStatus.OK
