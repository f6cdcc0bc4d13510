from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from conftest import NOW, make_active_subscription, make_plan
from services import stats
from services.errors import ValidationFailed


def test_period_range():
    assert stats.period_range("week", NOW)[0] == datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)
    assert stats.period_range("month", NOW)[0] == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert stats.period_range("year", NOW)[0] == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert stats.period_range("all", NOW) == (stats.EPOCH, NOW)
    assert stats.period_range(None, NOW)[0] == datetime(2025, 3, 1, tzinfo=timezone.utc)


def test_invalid_period():
    with pytest.raises(ValidationFailed) as exc:
        stats.period_range("decade", NOW)
    assert exc.value.message == "Invalid period. Must be one of: week, month, year, all"


def test_fill_trend_zero_fills():
    rows = [{"_id": "2025-03-10", "bookings": 3, "revenue": 1500}]
    trend = stats.fill_trend(rows, NOW, days=3)
    assert trend == [
        {"date": "2025-03-08", "bookings": 0, "revenue": 0},
        {"date": "2025-03-09", "bookings": 0, "revenue": 0},
        {"date": "2025-03-10", "bookings": 3, "revenue": 1500},
    ]


async def test_booking_stats_average_order_value():
    with patch.object(stats, "_count", AsyncMock(return_value=4)), \
         patch.object(stats, "_sum", AsyncMock(return_value=2000.0)), \
         patch.object(stats, "_aggregate", AsyncMock(return_value=[])):
        out = await stats.booking_stats("week", NOW)

    assert out["period"] == "week"
    assert out["total_bookings"] == 4
    assert out["revenue"] == 2000.0
    assert out["average_order_value"] == 500.0
    assert out["payments"] == {"paid": 4, "pending": 4, "refunded": 4}
    assert len(out["daily_trends"]) == stats.TREND_DAYS
    assert out["daily_trends"][-1]["date"] == "2025-03-10"


async def test_booking_stats_without_bookings():
    with patch.object(stats, "_count", AsyncMock(return_value=0)), \
         patch.object(stats, "_sum", AsyncMock(return_value=0.0)), \
         patch.object(stats, "_aggregate", AsyncMock(return_value=[])):
        out = await stats.booking_stats("all", NOW)
    assert out["average_order_value"] == 0


async def test_amc_stats_shape(user):
    plan = make_plan(is_popular=True)
    sub = make_active_subscription(user, plan, subscription_id="AMC12345")

    async def latest(model, query, sort, limit):
        return [plan] if model is stats.AMCPlan else [sub]

    rows = [{"_id": "active", "count": 2, "revenue": 236.0}]
    with patch.object(stats, "_count", AsyncMock(return_value=2)), \
         patch.object(stats, "_sum", AsyncMock(return_value=236.0)), \
         patch.object(stats, "_aggregate", AsyncMock(return_value=rows)), \
         patch.object(stats, "_latest", latest):
        out = await stats.amc_stats("month", NOW)

    assert out["subscriptions"]["breakdown"] == [{"status": "active", "count": 2, "revenue": 236.0}]
    assert out["revenue"]["total"] == 236.0
    assert out["revenue"]["period"] == "month"
    assert out["popular_plans"][0]["name"] == "CARE PLAN"
    assert out["recent_subscriptions"][0]["subscription_id"] == "AMC12345"
    assert out["expiring_soon"] == 2
