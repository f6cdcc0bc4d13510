from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from beanie.odm.fields import PydanticObjectId
from pydantic import ValidationError

from config import PAYMENT_CURRENCY
from models.amc import (
    UNLIMITED,
    AMCPlan,
    AMCSubscription,
    AMCUsage,
    AmountCounter,
    CoveredDevice,
    MeteredCounter,
    ServiceRecord,
    SubscriptionCancellation,
    SupportCounter,
    UserSnapshot,
)
from models.base import as_utc, utcnow
from models.enums import (
    ActorRole,
    AMCServiceType,
    AMCStatus,
    PaymentMode,
    PaymentStatus,
    PlanStatus,
    RefundStatus,
    ServiceRecordStatus,
    SupportLevel,
)
from models.users import User
from .common import prorated_refund, to_object_id
from .errors import GatewayError, InvalidTransition, LimitExceeded, NotFound, ValidationFailed
from .notifications import NotificationSink, Recipient, dispatch
from .payments import PaymentGateway
from .state_machine import AMC_SUBSCRIPTION

logger = logging.getLogger(__name__)

DEVICE_FIELDS_MESSAGE = "All devices must have device type, serial number, and model number"


def subscription_recipient(sub: AMCSubscription) -> Recipient:
    return Recipient(id=str(sub.user_id), role=ActorRole.user, email=sub.user.email, name=sub.user.name)


def user_snapshot(user: User) -> UserSnapshot:
    return UserSnapshot(name=user.name, email=str(user.email) if user.email else None, phone=user.phone)


def parse_devices(raw: Optional[List[Any]]) -> List[CoveredDevice]:
    if not raw:
        raise ValidationFailed("At least one device is required")
    devices = []
    for item in raw:
        if isinstance(item, CoveredDevice):
            devices.append(item)
            continue
        if not isinstance(item, dict):
            raise ValidationFailed(DEVICE_FIELDS_MESSAGE)
        try:
            device = CoveredDevice.model_validate(item)
        except ValidationError:
            raise ValidationFailed(DEVICE_FIELDS_MESSAGE)
        if not (device.device_type.strip() and device.serial_number.strip() and device.model_number.strip()):
            raise ValidationFailed(DEVICE_FIELDS_MESSAGE)
        devices.append(device)
    return devices


def _support_limit(level: SupportLevel, sessions: int):
    if level == SupportLevel.unlimited:
        return UNLIMITED
    if level == SupportLevel.limited:
        return int(sessions)
    return 0


def initial_usage(plan: AMCPlan) -> AMCUsage:
    b = plan.benefits
    return AMCUsage(
        call_support=SupportCounter(limit=_support_limit(b.call_support, b.call_support_sessions)),
        remote_support=SupportCounter(limit=_support_limit(b.remote_support, b.remote_support_sessions)),
        home_visits=MeteredCounter(limit=b.home_visits.count, remaining=b.home_visits.count),
        warranty_claims=MeteredCounter(limit=b.warranty_claims, remaining=b.warranty_claims),
        spare_parts_discount=AmountCounter(limit=b.spare_parts_discount.percentage),
        free_spare_parts=AmountCounter(limit=b.free_spare_parts.amount, remaining=b.free_spare_parts.amount),
    )


# ---------------- PLANS ----------------

async def get_active_plan(plan_id: Any) -> AMCPlan:
    oid = to_object_id(plan_id, "AMC plan not found or inactive")
    plan = await AMCPlan.get(oid)
    if not plan or plan.status != PlanStatus.active:
        raise NotFound("AMC plan not found or inactive")
    return plan


async def get_plan(plan_id: Any) -> AMCPlan:
    plan = await AMCPlan.get(to_object_id(plan_id, "AMC plan not found"))
    if not plan:
        raise NotFound("AMC plan not found")
    return plan


async def list_active_plans() -> List[AMCPlan]:
    return await AMCPlan.find({"status": PlanStatus.active.value}).sort("sort_order", "price").to_list()


_PLAN_READONLY = ("id", "revision_id", "created_at", "updated_at", "created_by", "last_modified_by")


def _plan_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k in AMCPlan.model_fields and k not in _PLAN_READONLY}


async def create_plan(data: Dict[str, Any], admin_id: Optional[PydanticObjectId] = None) -> AMCPlan:
    name = (data.get("name") or "").strip()
    if not name or data.get("price") is None or not (data.get("description") or "").strip():
        raise ValidationFailed("Plan name, price, and description are required")

    if await AMCPlan.find_one({"name": name}):
        raise ValidationFailed("Plan with this name already exists")

    try:
        plan = AMCPlan(**{**_plan_fields(data), "name": name, "created_by": admin_id, "last_modified_by": admin_id})
    except ValidationError as e:
        raise ValidationFailed("Invalid plan data", error=e.errors(include_url=False))
    await plan.insert()
    logger.info("AMC plan created: %s (%s)", plan.name, plan.id)
    return plan


async def update_plan(plan: AMCPlan, data: Dict[str, Any], admin_id: Optional[PydanticObjectId] = None) -> AMCPlan:
    fields = _plan_fields(data)
    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise ValidationFailed("Plan name cannot be empty")
        if name != plan.name and await AMCPlan.find_one({"name": name, "_id": {"$ne": plan.id}}):
            raise ValidationFailed("Plan with this name already exists")
        fields["name"] = name

    merged = {**plan.model_dump(exclude={"id", "revision_id"}), **fields, "last_modified_by": admin_id}
    try:
        validated = AMCPlan.model_validate(merged)
    except ValidationError as e:
        raise ValidationFailed("Invalid plan data", error=e.errors(include_url=False))

    for key in fields:
        setattr(plan, key, getattr(validated, key))
    plan.last_modified_by = admin_id
    await plan.touch()
    logger.info("AMC plan updated: %s (%s)", plan.name, plan.id)
    return plan


async def delete_plan(plan: AMCPlan) -> None:
    active = await AMCSubscription.find({"plan_id": plan.id, "status": AMCStatus.active.value}).count()
    if active > 0:
        raise ValidationFailed(
            f"Cannot delete plan with {active} active subscriptions. Please deactivate instead."
        )
    await plan.delete()
    logger.info("AMC plan deleted: %s (%s)", plan.name, plan.id)


DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "TRY PLAN",
        "price": 17,
        "period": "yearly",
        "description": "Perfect for getting started with basic AMC coverage",
        "short_description": "Basic AMC plan with essential features",
        "features": [
            {"title": "Unlimited Call Support", "description": "24/7 phone support for all your queries"},
            {"title": "3 Remote Support Sessions", "description": "Get help remotely for your devices"},
            {"title": "1 Free Home Visit & Diagnosis", "description": "One complimentary home visit for diagnosis"},
            {"title": "Free Hidden Tips & Tricks", "description": "Access to exclusive maintenance tips"},
        ],
        "benefits": {
            "call_support": "unlimited",
            "remote_support": "limited",
            "remote_support_sessions": 3,
            "home_visits": {"count": 1, "description": "1 Free Home Visit & Diagnosis"},
        },
        "sort_order": 1,
    },
    {
        "name": "CARE PLAN",
        "price": 59,
        "period": "yearly",
        "description": "Comprehensive care for your devices with antivirus and regular maintenance",
        "short_description": "Most popular plan with complete protection",
        "features": [
            {"title": "Unlimited Call Support", "description": "24/7 phone support for all your queries"},
            {"title": "Unlimited Remote Support", "description": "Unlimited remote assistance"},
            {"title": "Free Antivirus Pro", "description": "Premium antivirus for 1 year"},
            {"title": "6 Free Home Visits", "description": "Regular maintenance and diagnosis"},
            {"title": "Free Software Installation", "description": "Installation of licensed software"},
            {"title": "Up to 40% Off on Spare Parts", "description": "Discount on genuine spare parts"},
        ],
        "benefits": {
            "call_support": "unlimited",
            "remote_support": "unlimited",
            "home_visits": {"count": 6, "description": "6 Free Home Visits"},
            "antivirus": {"included": True, "name": "Quick Heal Pro"},
            "software_installation": {"included": True},
            "spare_parts_discount": {"percentage": 40},
        },
        "is_popular": True,
        "sort_order": 2,
    },
    {
        "name": "RELAX PLAN",
        "price": 199,
        "period": "yearly",
        "description": "Premium coverage with free spare parts and labor included",
        "short_description": "Complete peace of mind with maximum benefits",
        "features": [
            {"title": "Unlimited Call Support", "description": "24/7 phone support for all your queries"},
            {"title": "Unlimited Remote Support", "description": "Unlimited remote assistance"},
            {"title": "Free Antivirus Pro", "description": "Premium antivirus for 1 year"},
            {"title": "12 Free Home Visits", "description": "Monthly maintenance visits"},
            {"title": "Free Spare Parts up to ₹2000", "description": "Genuine parts at no extra cost"},
            {"title": "Labor Cost Included", "description": "No charges for repair labor"},
            {"title": "Up to 60% Off on Spare Parts", "description": "Discount beyond the free parts cap"},
        ],
        "benefits": {
            "call_support": "unlimited",
            "remote_support": "unlimited",
            "home_visits": {"count": 12, "description": "12 Free Home Visits"},
            "antivirus": {"included": True, "name": "Quick Heal Pro"},
            "software_installation": {"included": True},
            "spare_parts_discount": {"percentage": 60},
            "free_spare_parts": {"amount": 2000},
            "labor_cost": {"included": True},
        },
        "is_recommended": True,
        "sort_order": 3,
    },
]


async def seed_default_plans(admin_id: Optional[PydanticObjectId] = None) -> List[AMCPlan]:
    if await AMCPlan.find().count() > 0:
        raise ValidationFailed("AMC plans already exist. Use update endpoints to modify them.")
    plans = []
    for data in DEFAULT_PLANS:
        plan = AMCPlan(**data, created_by=admin_id, last_modified_by=admin_id)
        await plan.insert()
        plans.append(plan)
    logger.info("Seeded %d default AMC plans", len(plans))
    return plans


# ---------------- SUBSCRIPTIONS ----------------

async def get_user_subscription(subscription_id: Any, user_id: PydanticObjectId) -> AMCSubscription:
    oid = to_object_id(subscription_id, "AMC subscription not found")
    sub = await AMCSubscription.find_one({"_id": oid, "user_id": user_id})
    if not sub:
        raise NotFound("AMC subscription not found")
    return sub


async def get_subscription(subscription_id: Any) -> AMCSubscription:
    sub = await AMCSubscription.get(to_object_id(subscription_id, "AMC subscription not found"))
    if not sub:
        raise NotFound("AMC subscription not found")
    return sub


async def create_subscription(
    user: User,
    plan_id: Any,
    devices: Optional[List[Any]],
    gateway: PaymentGateway,
    payment_method: PaymentMode = PaymentMode.online,
    auto_renewal: bool = False,
    checkout_meta: Optional[Dict[str, Any]] = None,
) -> Tuple[AMCSubscription, Optional[Dict[str, Any]]]:
    if not plan_id:
        raise ValidationFailed("Plan ID is required")
    covered = parse_devices(devices)
    plan = await get_active_plan(plan_id)

    # abandoned checkouts for the same plan
    await AMCSubscription.find({
        "user_id": user.id,
        "plan_id": plan.id,
        "status": AMCStatus.inactive.value,
        "payment_status": PaymentStatus.pending.value,
    }).delete()

    sub = AMCSubscription(
        user_id=user.id,
        user=user_snapshot(user),
        plan_id=plan.id,
        plan_name=plan.name,
        plan_price=plan.price,
        amount=plan.price * len(covered),
        payment_method=payment_method,
        devices=covered,
        usage=initial_usage(plan),
        validity_days=plan.validity_period,
        checkout_meta=dict(checkout_meta or {}),
    )
    sub.auto_renewal.enabled = bool(auto_renewal)
    await sub.insert()

    if payment_method != PaymentMode.online:
        logger.info("AMC subscription %s created awaiting %s payment", sub.subscription_id, payment_method.value)
        return sub, None

    try:
        order = await gateway.create_order(
            amount=sub.amount,
            currency=PAYMENT_CURRENCY,
            receipt=f"AMC_{sub.subscription_id}",
            notes={"subscription_id": sub.subscription_id, "user_id": str(user.id), "plan_id": str(plan.id)},
        )
    except GatewayError as e:
        logger.error("Order creation failed for %s, rolling back: %s", sub.subscription_id, e.message)
        await sub.delete()
        raise GatewayError("Failed to create payment order. Please try again.", error=e.error)

    sub.razorpay_order_id = order.get("id")
    await sub.touch()
    logger.info("AMC subscription %s created for user %s, order %s", sub.subscription_id, user.id, sub.razorpay_order_id)
    return sub, {
        "order_id": order.get("id"),
        "amount": order.get("amount"),
        "currency": order.get("currency", PAYMENT_CURRENCY),
        "key": gateway.key_id,
    }


async def verify_payment(
    sub: AMCSubscription,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    gateway: PaymentGateway,
    sink: NotificationSink,
) -> AMCSubscription:
    if not (order_id and payment_id and signature):
        raise ValidationFailed("Razorpay order ID, payment ID, and signature are required")

    # a replayed callback lands here once the first one has activated the subscription
    if sub.payment_status != PaymentStatus.pending or not AMC_SUBSCRIPTION.can("verify_payment", sub.status):
        raise InvalidTransition(
            f"Payment verification not allowed. Current status: {sub.status.value}",
            current=sub.status,
            action="verify_payment",
        )

    if sub.razorpay_order_id and sub.razorpay_order_id != order_id:
        raise ValidationFailed("Payment verification failed - order mismatch")
    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("Invalid payment signature for subscription %s", sub.subscription_id)
        raise ValidationFailed("Payment verification failed - invalid signature")

    try:
        details = await gateway.get_payment_details(payment_id)
    except GatewayError as e:
        logger.warning("Could not fetch payment %s details: %s", payment_id, e.message)
        details = {}

    now = utcnow()
    AMC_SUBSCRIPTION.apply(sub, "verify_payment")
    sub.payment_status = PaymentStatus.completed
    sub.razorpay_order_id = order_id
    sub.razorpay_payment_id = payment_id
    sub.razorpay_signature = signature
    sub.payment_details = details
    sub.start_date = now
    sub.end_date = now + timedelta(days=sub.validity_days)
    if sub.auto_renewal.enabled:
        sub.auto_renewal.next_renewal_date = sub.end_date
    if await _plan_includes_antivirus(sub.plan_id):
        sub.usage.antivirus.activated = True
        sub.usage.antivirus.activation_date = now
        sub.usage.antivirus.expiry_date = sub.end_date
    await sub.touch()

    logger.info("AMC subscription %s activated (payment %s)", sub.subscription_id, payment_id)
    await dispatch(
        sink, subscription_recipient(sub), "amc.activated",
        "AMC subscription activated",
        f"Your {sub.plan_name} subscription {sub.subscription_id} is active until {sub.end_date:%d %b %Y}.",
        {"subscription_id": sub.subscription_id},
    )
    return sub


async def _plan_includes_antivirus(plan_id: PydanticObjectId) -> bool:
    plan = await AMCPlan.get(plan_id)
    return bool(plan and plan.benefits.antivirus.included)


async def update_subscription(
    sub: AMCSubscription,
    auto_renewal: Optional[bool] = None,
    devices: Optional[List[Any]] = None,
) -> AMCSubscription:
    AMC_SUBSCRIPTION.apply(sub, "update", "Subscription is not active")
    if auto_renewal is not None:
        sub.auto_renewal.enabled = bool(auto_renewal)
        sub.auto_renewal.next_renewal_date = sub.end_date if auto_renewal else None
    if devices is not None:
        sub.devices = parse_devices(devices)
    await sub.touch()
    logger.info("AMC subscription %s updated", sub.subscription_id)
    return sub


def compute_refund(sub: AMCSubscription, now: Optional[datetime] = None) -> float:
    if not sub.start_date or not sub.end_date:
        return 0.0
    return prorated_refund(sub.amount, sub.start_date, sub.end_date, now or utcnow())


async def cancel_subscription(
    sub: AMCSubscription,
    reason: Optional[str],
    sink: NotificationSink,
    now: Optional[datetime] = None,
) -> AMCSubscription:
    now = now or utcnow()
    AMC_SUBSCRIPTION.target("cancel", sub.status, "Subscription is not active")
    refund = compute_refund(sub, now)

    AMC_SUBSCRIPTION.apply(sub, "cancel")
    sub.auto_renewal.enabled = False
    sub.auto_renewal.next_renewal_date = None
    sub.cancellation = SubscriptionCancellation(
        reason=(reason or "").strip() or "Cancelled by user",
        requested_at=now,
        cancelled_at=now,
        refund_amount=refund,
        refund_status=RefundStatus.pending if refund > 0 else RefundStatus.none,
    )
    await sub.touch()

    logger.info("AMC subscription %s cancelled, refund %s", sub.subscription_id, refund)
    await dispatch(
        sink, subscription_recipient(sub), "amc.cancelled",
        "AMC subscription cancelled",
        f"Subscription {sub.subscription_id} was cancelled. Refund due: ₹{refund:.0f}.",
        {"subscription_id": sub.subscription_id, "refund_amount": refund},
    )
    return sub


async def renew_subscription(
    sub: AMCSubscription,
    sink: NotificationSink,
    period_days: int = 365,
    now: Optional[datetime] = None,
) -> AMCSubscription:
    if int(period_days or 0) < 1:
        raise ValidationFailed("Renewal period must be at least 1 day")
    now = now or utcnow()
    AMC_SUBSCRIPTION.apply(sub, "renew", "Subscription is not active")

    base = max(as_utc(sub.end_date) or now, now)
    sub.end_date = base + timedelta(days=int(period_days))

    plan = await AMCPlan.get(sub.plan_id)
    if plan:
        fresh = initial_usage(plan)
        sub.usage.call_support = fresh.call_support
        sub.usage.remote_support = fresh.remote_support
        sub.usage.home_visits = fresh.home_visits
        sub.usage.warranty_claims = fresh.warranty_claims
        sub.usage.free_spare_parts = fresh.free_spare_parts
    else:
        logger.warning("Plan %s missing while renewing %s, usage limits kept", sub.plan_id, sub.subscription_id)
    if sub.usage.antivirus.activated:
        sub.usage.antivirus.expiry_date = sub.end_date
    if sub.auto_renewal.enabled:
        sub.auto_renewal.next_renewal_date = sub.end_date
    sub.renewal_count += 1
    sub.last_renewed_at = now
    await sub.touch()

    logger.info("AMC subscription %s renewed until %s", sub.subscription_id, sub.end_date)
    await dispatch(
        sink, subscription_recipient(sub), "amc.renewed",
        "AMC subscription renewed",
        f"Subscription {sub.subscription_id} now runs until {sub.end_date:%d %b %Y}.",
        {"subscription_id": sub.subscription_id},
    )
    return sub


def consume_usage(sub: AMCSubscription, service_type: AMCServiceType) -> None:
    usage = sub.usage
    if service_type == AMCServiceType.home_visit:
        _take_metered(usage.home_visits, "No home visits remaining in your plan")
    elif service_type == AMCServiceType.warranty_claim:
        _take_metered(
            usage.warranty_claims,
            "No remaining warranty claims available. Please contact support to increase your warranty claims limit.",
        )
    elif service_type == AMCServiceType.remote_support:
        _take_support(usage.remote_support, "No remote support sessions remaining in your plan")
    elif service_type == AMCServiceType.call_support:
        _take_support(usage.call_support, "No call support remaining in your plan")


def _take_metered(counter: MeteredCounter, message: str) -> None:
    if counter.remaining <= 0:
        raise LimitExceeded(message)
    counter.used += 1
    counter.remaining = max(0, counter.remaining - 1)


def _take_support(counter: SupportCounter, message: str) -> None:
    if not counter.unlimited and counter.remaining <= 0:
        raise LimitExceeded(message)
    counter.used += 1


def find_device(sub: AMCSubscription, device_id: str) -> Optional[CoveredDevice]:
    key = str(device_id).strip()
    for device in sub.devices:
        if device.serial_number == key:
            return device
    if key.isdigit() and int(key) < len(sub.devices):
        return sub.devices[int(key)]
    return None


async def request_service(
    sub: AMCSubscription,
    service_type: Optional[str],
    device_id: Optional[str],
    description: Optional[str],
    sink: NotificationSink,
    preferred_date: Optional[datetime] = None,
    preferred_time: Optional[str] = None,
    address: Optional[str] = None,
) -> ServiceRecord:
    if not (service_type and device_id and (description or "").strip()):
        raise ValidationFailed("Service type, device ID, and description are required")
    try:
        kind = AMCServiceType(service_type)
    except ValueError:
        raise ValidationFailed(f"Invalid service type: {service_type}")

    AMC_SUBSCRIPTION.target("use_service", sub.status, "Subscription is not active")
    if sub.end_date and as_utc(sub.end_date) < utcnow():
        raise ValidationFailed("Subscription has expired")

    device = find_device(sub, device_id)
    if device is None:
        raise ValidationFailed("Device not found in subscription")

    consume_usage(sub, kind)
    AMC_SUBSCRIPTION.apply(sub, "use_service")

    notes = []
    if preferred_time:
        notes.append(f"Preferred time: {preferred_time}")
    if address:
        notes.append(f"Address: {address}")
    record = ServiceRecord(
        service_type=kind,
        device_id=device.serial_number,
        description=description.strip(),
        preferred_date=preferred_date,
        notes="; ".join(notes),
    )
    sub.service_history.append(record)
    await sub.touch()

    logger.info("Service %s requested on %s for device %s", kind.value, sub.subscription_id, device.serial_number)
    await dispatch(
        sink, subscription_recipient(sub), "amc.service_requested",
        "AMC service request received",
        f"We received your {kind.value.replace('_', ' ')} request for device {device.serial_number}.",
        {"subscription_id": sub.subscription_id, "service_type": kind.value},
    )
    return record


def usage_summary(sub: AMCSubscription) -> Dict[str, Any]:
    u = sub.usage
    return {
        "call_support": {"used": u.call_support.used, "limit": u.call_support.limit, "remaining": u.call_support.remaining},
        "remote_support": {"used": u.remote_support.used, "limit": u.remote_support.limit, "remaining": u.remote_support.remaining},
        "home_visits": u.home_visits.model_dump(),
        "warranty_claims": u.warranty_claims.model_dump(),
        "antivirus": u.antivirus.model_dump(),
        "spare_parts_discount": {"used": u.spare_parts_discount.used, "limit": u.spare_parts_discount.limit},
        "free_spare_parts": u.free_spare_parts.model_dump(),
    }


# ---------------- ADMIN ----------------

async def admin_set_status(sub: AMCSubscription, status: str, reason: Optional[str] = None) -> AMCSubscription:
    try:
        wanted = AMCStatus(status)
    except ValueError:
        raise ValidationFailed(f"Invalid status: {status}")
    if wanted not in (AMCStatus.cancelled, AMCStatus.expired):
        raise ValidationFailed("Subscription status can only be changed to cancelled or expired")
    action = AMC_SUBSCRIPTION.action_for(sub.status, wanted, allowed=("cancel", "expire"))
    if action is None:
        raise InvalidTransition(
            f"Cannot change subscription status to {wanted.value}. Current status: {sub.status.value}",
            current=sub.status,
        )

    now = utcnow()
    AMC_SUBSCRIPTION.apply(sub, action)
    if action == "cancel":
        sub.auto_renewal.enabled = False
        sub.cancellation = SubscriptionCancellation(
            reason=(reason or "").strip() or "Cancelled by admin",
            requested_at=now,
            cancelled_at=now,
        )
    await sub.touch()
    logger.info("Admin moved subscription %s to %s", sub.subscription_id, wanted.value)
    return sub


async def admin_update_usage(sub: AMCSubscription, usage: Dict[str, Any]) -> AMCSubscription:
    for key, entry in usage.items():
        if entry is not None and not isinstance(entry, dict):
            raise ValidationFailed(f"Invalid usage entry: {key}")
    for key in ("home_visits", "warranty_claims"):
        if key in usage and usage[key] is not None:
            entry = usage[key]
            used = max(0, int(entry.get("used", 0) or 0))
            limit = max(0, int(entry.get("limit", 0) or 0))
            setattr(sub.usage, key, MeteredCounter(used=used, limit=limit, remaining=max(0, limit - used)))
    for key in ("call_support", "remote_support"):
        if key in usage and usage[key] is not None:
            entry = usage[key]
            limit = entry.get("limit", 0)
            if limit != UNLIMITED:
                limit = max(0, int(limit or 0))
            setattr(sub.usage, key, SupportCounter(used=max(0, int(entry.get("used", 0) or 0)), limit=limit))
    if usage.get("free_spare_parts") is not None:
        entry = usage["free_spare_parts"]
        used = max(0.0, float(entry.get("used", 0) or 0))
        limit = max(0.0, float(entry.get("limit", 0) or 0))
        sub.usage.free_spare_parts = AmountCounter(used=used, limit=limit, remaining=max(0.0, limit - used))
    await sub.touch()
    logger.info("Admin updated usage for %s", sub.subscription_id)
    return sub


async def admin_add_service(
    sub: AMCSubscription,
    service_type: Optional[str],
    device_id: Optional[str],
    description: Optional[str],
    cost: float = 0,
    technician: Optional[str] = None,
    notes: str = "",
) -> ServiceRecord:
    if not (service_type and device_id and (description or "").strip()):
        raise ValidationFailed("Service type, device ID, and description are required")
    try:
        kind = AMCServiceType(service_type)
    except ValueError:
        raise ValidationFailed(f"Invalid service type: {service_type}")
    AMC_SUBSCRIPTION.apply(sub, "use_service", "Subscription is not active")

    now = utcnow()
    record = ServiceRecord(
        service_type=kind,
        device_id=str(device_id),
        description=description.strip(),
        status=ServiceRecordStatus.completed,
        requested_at=now,
        completed_at=now,
        cost=max(0.0, float(cost or 0)),
        technician=technician,
        notes=notes or "",
    )
    sub.service_history.append(record)
    await sub.touch()
    logger.info("Admin added %s service to %s", kind.value, sub.subscription_id)
    return record


async def expire_due_subscriptions(now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    due = await AMCSubscription.find({"status": AMCStatus.active.value, "end_date": {"$lt": now}}).to_list()
    for sub in due:
        AMC_SUBSCRIPTION.apply(sub, "expire")
        sub.auto_renewal.next_renewal_date = None
        await sub.touch()
    if due:
        logger.info("Expired %d AMC subscriptions", len(due))
    return len(due)
