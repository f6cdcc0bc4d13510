from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from beanie.odm.fields import PydanticObjectId

from models.base import as_utc
from .errors import NotFound


def to_object_id(value: Any, not_found_message: str) -> PydanticObjectId:
    if isinstance(value, PydanticObjectId):
        return value
    try:
        return PydanticObjectId(str(value))
    except Exception:
        raise NotFound(not_found_message)


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / 86400)


def round_rupees(value: Any) -> float:
    """Round half-up to whole rupees."""
    return float(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def prorated_refund(amount: float, start: datetime, end: datetime, now: datetime) -> float:
    """Refund for the unused part of [start, end).

    Both the total and the elapsed span are counted in whole days, rounded up.
    """
    start, end, now = as_utc(start), as_utc(end), as_utc(now)
    total_days = ceil_days(end - start)
    if total_days <= 0:
        return 0.0
    used_days = max(0, ceil_days(now - start))
    remaining_days = max(0, total_days - used_days)
    return round_rupees(Decimal(str(amount)) * remaining_days / total_days)
