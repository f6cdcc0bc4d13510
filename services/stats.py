from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from config import EXPIRING_SOON_DAYS
from models.amc import AMCPlan, AMCSubscription
from models.base import utcnow
from models.bookings import Booking
from models.enums import AMCStatus, BookingStatus, PaymentStatus, PlanStatus, StatsPeriod
from .errors import ValidationFailed

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
TREND_DAYS = 30


def period_range(period: Any, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    try:
        period = StatsPeriod(period or StatsPeriod.month)
    except ValueError:
        raise ValidationFailed("Invalid period. Must be one of: week, month, year, all")

    now = now or utcnow()
    if period == StatsPeriod.week:
        return now - timedelta(days=7), now
    if period == StatsPeriod.month:
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0), now
    if period == StatsPeriod.year:
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0), now
    return EPOCH, now


# thin query helpers, patched out in tests

async def _count(model, query: Dict[str, Any]) -> int:
    return await model.find(query).count()


async def _sum(model, field: str, query: Dict[str, Any]) -> float:
    return float(await model.find(query).sum(field) or 0)


async def _aggregate(model, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return await model.aggregate(pipeline).to_list()


async def _latest(model, query: Dict[str, Any], sort: List[Tuple[str, int]], limit: int) -> List[Any]:
    return await model.find(query).sort(sort).limit(limit).to_list()


# ---------------- AMC ----------------

def _plan_card(plan: AMCPlan) -> Dict[str, Any]:
    return {"id": str(plan.id), "name": plan.name, "price": plan.price, "sort_order": plan.sort_order}


def _subscription_card(sub: AMCSubscription) -> Dict[str, Any]:
    return {
        "id": str(sub.id),
        "subscription_id": sub.subscription_id,
        "user": sub.user.model_dump(),
        "plan_name": sub.plan_name,
        "amount": sub.amount,
        "status": sub.status.value,
        "payment_status": sub.payment_status.value,
        "created_at": sub.created_at,
    }


async def amc_stats(period: Any = StatsPeriod.month, now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = period_range(period, now)
    now = end

    plans = {"total": await _count(AMCPlan, {})}
    for s in PlanStatus:
        plans[s.value] = await _count(AMCPlan, {"status": s.value})

    subscriptions: Dict[str, Any] = {"total": await _count(AMCSubscription, {})}
    for s in AMCStatus:
        subscriptions[s.value] = await _count(AMCSubscription, {"status": s.value})
    rows = await _aggregate(AMCSubscription, [
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$amount"}}},
        {"$sort": {"_id": 1}},
    ])
    subscriptions["breakdown"] = [
        {"status": r["_id"], "count": r.get("count", 0), "revenue": r.get("revenue", 0)} for r in rows
    ]

    paid = {"payment_status": PaymentStatus.completed.value}
    in_period = {**paid, "created_at": {"$gte": start, "$lte": end}}
    revenue = {
        "total": await _sum(AMCSubscription, "amount", paid),
        "period": StatsPeriod(period or StatsPeriod.month).value,
        "period_revenue": await _sum(AMCSubscription, "amount", in_period),
        "period_subscriptions": await _count(AMCSubscription, in_period),
    }

    popular = await _latest(
        AMCPlan, {"status": PlanStatus.active.value, "is_popular": True}, [("sort_order", 1)], 5
    )
    expiring_soon = await _count(AMCSubscription, {
        "status": AMCStatus.active.value,
        "end_date": {"$gte": now, "$lte": now + timedelta(days=EXPIRING_SOON_DAYS)},
    })
    recent = await _latest(AMCSubscription, {}, [("created_at", -1)], 10)

    return {
        "plans": plans,
        "subscriptions": subscriptions,
        "revenue": revenue,
        "popular_plans": [_plan_card(p) for p in popular],
        "expiring_soon": expiring_soon,
        "recent_subscriptions": [_subscription_card(s) for s in recent],
    }


# ---------------- BOOKINGS ----------------

def fill_trend(rows: List[Dict[str, Any]], now: datetime, days: int = TREND_DAYS) -> List[Dict[str, Any]]:
    """One entry per day (oldest first), zero-filled where nothing happened."""
    by_day = {r["_id"]: r for r in rows}
    out = []
    for i in range(days - 1, -1, -1):
        day = (now - timedelta(days=i)).strftime("%Y-%m-%d")
        r = by_day.get(day, {})
        out.append({"date": day, "bookings": r.get("bookings", 0), "revenue": r.get("revenue", 0)})
    return out


async def booking_stats(period: Any = StatsPeriod.month, now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = period_range(period, now)
    scope = {"created_at": {"$gte": start, "$lte": end}}

    total = await _count(Booking, scope)
    by_status = {s.value: await _count(Booking, {**scope, "status": s.value}) for s in BookingStatus}
    payments = {
        "paid": await _count(Booking, {**scope, "payment.status": PaymentStatus.completed.value}),
        "pending": await _count(Booking, {**scope, "payment.status": PaymentStatus.pending.value}),
        "refunded": await _count(Booking, {**scope, "payment.status": PaymentStatus.refunded.value}),
    }
    revenue = await _sum(Booking, "pricing.total_amount", scope)

    trend_start = (end - timedelta(days=TREND_DAYS - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    rows = await _aggregate(Booking, [
        {"$match": {"created_at": {"$gte": trend_start, "$lte": end}}},
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
            "bookings": {"$sum": 1},
            "revenue": {"$sum": "$pricing.total_amount"},
        }},
    ])

    return {
        "period": StatsPeriod(period or StatsPeriod.month).value,
        "total_bookings": total,
        "status": by_status,
        "payments": payments,
        "revenue": round(revenue, 2),
        "average_order_value": round(revenue / total, 2) if total else 0,
        "daily_trends": fill_trend(rows, end),
    }
