from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.auth.config import get_current_user, require_auth
from api.deps import clamp_limit, get_gateway, get_notifier, ok
from models.amc import AMCPlan, AMCSubscription
from models.enums import AMCStatus
from schemas.amc import (
    CancelIn,
    PaymentVerifyIn,
    RenewIn,
    ServiceRequestIn,
    SubscriptionCreateIn,
    SubscriptionUpdateIn,
)
from services import amc_lifecycle as amc
from services.errors import ValidationFailed
from services.notifications import NotificationSink
from services.payments import PaymentGateway

router = APIRouter(prefix="/amc", tags=["amc"])


def plan_to_out(plan: AMCPlan) -> Dict[str, Any]:
    data = plan.model_dump(mode="json", exclude={"id", "revision_id", "created_by", "last_modified_by"})
    data["id"] = str(plan.id)
    return data


def subscription_to_out(sub: AMCSubscription) -> Dict[str, Any]:
    data = sub.model_dump(mode="json", exclude={"id", "revision_id", "razorpay_signature", "payment_details"})
    data["id"] = str(sub.id)
    data["refund_preview"] = amc.compute_refund(sub) if sub.status == AMCStatus.active else 0
    return data


# ---------------- PLANS ----------------

@router.get("/plans")
async def list_plans():
    plans = await amc.list_active_plans()
    return ok([plan_to_out(p) for p in plans])


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str):
    plan = await amc.get_active_plan(plan_id)
    return ok(plan_to_out(plan))


# ---------------- SUBSCRIPTIONS ----------------

@router.get("/subscriptions")
async def list_subscriptions(
    status: Optional[AMCStatus] = None,
    skip: int = 0,
    limit: int = 20,
    current_user=Depends(get_current_user),
):
    require_auth(current_user)

    limit = clamp_limit(limit)
    query: Dict[str, Any] = {"user_id": current_user.id}
    if status is not None:
        query["status"] = status.value

    q = AMCSubscription.find(query)
    total = await q.count()
    items = await q.sort("-created_at").skip(max(int(skip), 0)).limit(limit).to_list()
    return ok({
        "items": [subscription_to_out(s) for s in items],
        "total": int(total),
        "skip": int(skip),
        "limit": int(limit),
    })


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str, current_user=Depends(get_current_user)):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    return ok(subscription_to_out(sub))


@router.post("/subscriptions", status_code=201)
async def create_subscription(
    payload: SubscriptionCreateIn,
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    require_auth(current_user)
    sub, payment = await amc.create_subscription(
        current_user,
        payload.plan_id,
        payload.devices,
        gateway,
        payment_method=payload.payment_method,
        auto_renewal=payload.auto_renewal,
        checkout_meta=payload.checkout_meta,
    )
    return ok(
        {"subscription": subscription_to_out(sub), "payment": payment},
        "AMC subscription created successfully",
    )


@router.post("/subscriptions/{subscription_id}/verify-payment")
async def verify_payment(
    subscription_id: str,
    payload: PaymentVerifyIn,
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    sub = await amc.verify_payment(
        sub,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
        gateway,
        notifier,
    )
    return ok(subscription_to_out(sub), "Payment verified and AMC subscription activated")


@router.put("/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: str,
    payload: SubscriptionUpdateIn,
    current_user=Depends(get_current_user),
):
    require_auth(current_user)
    if payload.auto_renewal is None and payload.devices is None:
        raise ValidationFailed("Nothing to update")
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    sub = await amc.update_subscription(sub, auto_renewal=payload.auto_renewal, devices=payload.devices)
    return ok(subscription_to_out(sub), "AMC subscription updated successfully")


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelIn] = None,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    sub = await amc.cancel_subscription(sub, payload.reason if payload else None, notifier)
    return ok(
        {"subscription": subscription_to_out(sub), "refund_amount": sub.cancellation.refund_amount},
        "AMC subscription cancelled successfully",
    )


@router.post("/subscriptions/{subscription_id}/renew")
async def renew_subscription(
    subscription_id: str,
    payload: Optional[RenewIn] = None,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    sub = await amc.renew_subscription(sub, notifier, period_days=payload.period_days if payload else 365)
    return ok(subscription_to_out(sub), "AMC subscription renewed successfully")


# ---------------- SERVICES ----------------

@router.post("/subscriptions/{subscription_id}/services", status_code=201)
async def request_service(
    subscription_id: str,
    payload: ServiceRequestIn,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    record = await amc.request_service(
        sub,
        payload.service_type,
        payload.device_id,
        payload.description,
        notifier,
        preferred_date=payload.preferred_date,
        preferred_time=payload.preferred_time,
        address=payload.address,
    )
    return ok(
        {"service": record.model_dump(mode="json"), "usage": amc.usage_summary(sub)},
        "Service request submitted successfully",
    )


@router.get("/subscriptions/{subscription_id}/services")
async def service_history(
    subscription_id: str,
    status: Optional[str] = Query(default=None),
    current_user=Depends(get_current_user),
):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    records = [r for r in sub.service_history if status is None or r.status.value == status]
    records.sort(key=lambda r: r.requested_at, reverse=True)
    return ok([r.model_dump(mode="json") for r in records])


@router.get("/subscriptions/{subscription_id}/usage")
async def usage(subscription_id: str, current_user=Depends(get_current_user)):
    require_auth(current_user)
    sub = await amc.get_user_subscription(subscription_id, current_user.id)
    return ok({
        "subscription_id": sub.subscription_id,
        "status": sub.status.value,
        "end_date": sub.end_date.isoformat() if sub.end_date else None,
        "usage": amc.usage_summary(sub),
    })
