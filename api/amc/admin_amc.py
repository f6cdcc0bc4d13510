from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from api.amc.amc import plan_to_out, subscription_to_out
from api.auth.config import get_current_admin
from api.deps import clamp_limit, ok
from models.amc import AMCPlan, AMCSubscription
from models.enums import AMCStatus, PaymentStatus, PlanStatus
from schemas.amc import AdminServiceIn, AdminStatusIn, AdminUsageIn
from services import amc_lifecycle as amc
from services.audit import record_admin_action
from services.common import to_object_id
from services.stats import amc_stats

router = APIRouter(prefix="/admin/amc", tags=["admin-amc"])


def regex_search(q: str, *fields: str) -> Dict[str, Any]:
    return {"$or": [{f: {"$regex": q, "$options": "i"}} for f in fields]}


# ---------------- PLANS ----------------

@router.get("/plans")
async def list_plans(
    status: Optional[PlanStatus] = None,
    q: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    admin=Depends(get_current_admin),
):
    limit = clamp_limit(limit)
    query: Dict[str, Any] = {}
    if status is not None:
        query["status"] = status.value
    if q:
        query.update(regex_search(q.strip(), "name", "description"))

    cursor = AMCPlan.find(query)
    total = await cursor.count()
    items = await cursor.sort("sort_order", "price").skip(max(int(skip), 0)).limit(limit).to_list()
    return ok({"items": [plan_to_out(p) for p in items], "total": int(total), "skip": int(skip), "limit": int(limit)})


@router.post("/plans", status_code=201)
async def create_plan(payload: Dict[str, Any] = Body(...), admin=Depends(get_current_admin)):
    plan = await amc.create_plan(payload, admin.id)
    await record_admin_action(admin, "amc.plan.create", {"plan_id": str(plan.id)}, {"name": plan.name})
    return ok(plan_to_out(plan), "AMC plan created successfully")


@router.post("/seed-plans", status_code=201)
async def seed_plans(admin=Depends(get_current_admin)):
    plans = await amc.seed_default_plans(admin.id)
    await record_admin_action(admin, "amc.plan.seed", meta={"count": len(plans)})
    return ok([plan_to_out(p) for p in plans], "Default AMC plans created successfully")


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str, admin=Depends(get_current_admin)):
    plan = await amc.get_plan(plan_id)
    active = await AMCSubscription.find({"plan_id": plan.id, "status": AMCStatus.active.value}).count()
    return ok({**plan_to_out(plan), "active_subscriptions": int(active)})


@router.put("/plans/{plan_id}")
async def update_plan(plan_id: str, payload: Dict[str, Any] = Body(...), admin=Depends(get_current_admin)):
    plan = await amc.get_plan(plan_id)
    plan = await amc.update_plan(plan, payload, admin.id)
    await record_admin_action(admin, "amc.plan.update", {"plan_id": str(plan.id)}, {"fields": sorted(payload)})
    return ok(plan_to_out(plan), "AMC plan updated successfully")


@router.delete("/plans/{plan_id}")
async def delete_plan(plan_id: str, admin=Depends(get_current_admin)):
    plan = await amc.get_plan(plan_id)
    await amc.delete_plan(plan)
    await record_admin_action(admin, "amc.plan.delete", {"plan_id": plan_id}, {"name": plan.name})
    return ok(message="AMC plan deleted successfully")


# ---------------- SUBSCRIPTIONS ----------------

@router.get("/subscriptions")
async def list_subscriptions(
    status: Optional[AMCStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    plan_id: Optional[str] = None,
    q: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
    admin=Depends(get_current_admin),
):
    limit = clamp_limit(limit)
    query: Dict[str, Any] = {}
    if status is not None:
        query["status"] = status.value
    if payment_status is not None:
        query["payment_status"] = payment_status.value
    if plan_id:
        query["plan_id"] = to_object_id(plan_id, "AMC plan not found")
    if q:
        query.update(regex_search(q.strip(), "subscription_id", "user.name", "user.email", "user.phone"))

    cursor = AMCSubscription.find(query)
    total = await cursor.count()
    items = await cursor.sort("-created_at").skip(max(int(skip), 0)).limit(limit).to_list()
    return ok({
        "items": [subscription_to_out(s) for s in items],
        "total": int(total),
        "skip": int(skip),
        "limit": int(limit),
    })


@router.post("/subscriptions/expire")
async def expire_subscriptions(admin=Depends(get_current_admin)):
    count = await amc.expire_due_subscriptions()
    await record_admin_action(admin, "amc.subscription.expire", meta={"count": count})
    return ok({"expired": count}, f"{count} subscriptions expired")


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str, admin=Depends(get_current_admin)):
    sub = await amc.get_subscription(subscription_id)
    data = subscription_to_out(sub)
    data["payment_details"] = sub.payment_details
    return ok(data)


@router.put("/subscriptions/{subscription_id}/status")
async def set_status(subscription_id: str, payload: AdminStatusIn, admin=Depends(get_current_admin)):
    sub = await amc.get_subscription(subscription_id)
    previous = sub.status.value
    sub = await amc.admin_set_status(sub, payload.status, payload.reason)
    await record_admin_action(
        admin, "amc.subscription.status",
        {"subscription_id": sub.subscription_id},
        {"from": previous, "to": sub.status.value, "reason": payload.reason},
    )
    return ok(subscription_to_out(sub), "Subscription status updated successfully")


@router.put("/subscriptions/{subscription_id}/usage")
async def update_usage(subscription_id: str, payload: AdminUsageIn, admin=Depends(get_current_admin)):
    sub = await amc.get_subscription(subscription_id)
    sub = await amc.admin_update_usage(sub, payload.usage)
    await record_admin_action(admin, "amc.subscription.usage", {"subscription_id": sub.subscription_id}, payload.usage)
    return ok(amc.usage_summary(sub), "Usage updated successfully")


@router.post("/subscriptions/{subscription_id}/services", status_code=201)
async def add_service(subscription_id: str, payload: AdminServiceIn, admin=Depends(get_current_admin)):
    sub = await amc.get_subscription(subscription_id)
    record = await amc.admin_add_service(
        sub,
        payload.service_type,
        payload.device_id,
        payload.description,
        cost=payload.cost,
        technician=payload.technician,
        notes=payload.notes,
    )
    await record_admin_action(
        admin, "amc.subscription.service", {"subscription_id": sub.subscription_id}, {"type": record.service_type.value}
    )
    return ok(record.model_dump(mode="json"), "Service record added successfully")


# ---------------- STATS ----------------

@router.get("/stats")
async def stats(period: str = Query(default="month"), admin=Depends(get_current_admin)):
    return ok(await amc_stats(period))
