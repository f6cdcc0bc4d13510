from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import GST_RATE, PAYMENT_CURRENCY, RESCHEDULE_MIN_LEAD_HOURS
from models.base import as_utc, utcnow
from models.bookings import (
    BookedService,
    Booking,
    CancellationRecord,
    CompletionData,
    CustomerSnapshot,
    Pricing,
    RescheduleRecord,
    Scheduling,
    VendorAssignment,
    VendorResponse,
)
from models.enums import (
    ActorRole,
    BookingStatus,
    PaymentChannel,
    PaymentMode,
    PaymentStatus,
    Priority,
    VendorResponseStatus,
)
from models.vendors import Vendor
from .common import round_rupees, to_object_id
from .errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from .notifications import NotificationSink, Recipient, dispatch
from .payments import PaymentGateway
from .state_machine import BOOKING

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (
    BookingStatus.pending,
    BookingStatus.waiting_for_engineer,
    BookingStatus.confirmed,
    BookingStatus.in_progress,
)


def customer_recipient(booking: Booking) -> Recipient:
    return Recipient(
        id=str(booking.user_id or booking.customer.email),
        role=ActorRole.customer,
        email=str(booking.customer.email),
        name=booking.customer.name,
    )


def vendor_recipient(vendor: Vendor) -> Recipient:
    return Recipient(id=vendor.vendor_id, role=ActorRole.vendor, email=str(vendor.email), name=vendor.full_name)


def _invalid(e: ValidationError, message: str) -> ValidationFailed:
    return ValidationFailed(message, error=e.errors(include_url=False))


async def get_booking(booking_id: Any) -> Booking:
    booking = await Booking.get(to_object_id(booking_id, "Booking not found"))
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def create_booking(
    customer: Optional[Dict[str, Any]],
    services: Optional[List[Dict[str, Any]]],
    pricing: Optional[Dict[str, Any]],
    scheduling: Optional[Dict[str, Any]],
    sink: NotificationSink,
    notes: Optional[str] = None,
    payment_mode: PaymentMode = PaymentMode.online,
    user_id=None,
) -> Booking:
    if not customer or not services or not pricing or not scheduling:
        raise ValidationFailed("Customer, services, pricing, and scheduling information are required")
    if pricing.get("subtotal") is None or pricing.get("total_amount", pricing.get("totalAmount")) is None:
        raise ValidationFailed("Pricing subtotal and total amount are required")

    try:
        snapshot = CustomerSnapshot.model_validate(customer)
    except ValidationError as e:
        raise _invalid(e, "Invalid customer details")
    try:
        items = [BookedService.model_validate(s) for s in services]
        price = Pricing.model_validate(pricing)
        slot = Scheduling.model_validate(scheduling)
    except ValidationError as e:
        raise _invalid(e, "Invalid booking details")

    booking = Booking(
        customer=snapshot,
        user_id=user_id,
        services=items,
        pricing=price,
        scheduling=slot,
        payment_mode=payment_mode,
        notes=notes,
    )
    await booking.insert()

    logger.info("Booking created: %s for %s", booking.booking_reference, snapshot.email)
    await dispatch(
        sink, customer_recipient(booking), "booking.created",
        "Booking received",
        f"Your booking {booking.booking_reference} has been received. We will assign an engineer shortly.",
        {"booking_id": str(booking.id)},
    )
    return booking


def _same_day(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return False
    return as_utc(a).date() == as_utc(b).date()


async def find_vendor_conflict(
    booking: Booking, vendor_id: str, scheduled_date: Optional[datetime], scheduled_time: Optional[str]
) -> Optional[Booking]:
    if not scheduled_date or not scheduled_time:
        return None
    others = await Booking.find({
        "_id": {"$ne": booking.id},
        "vendor.vendor_id": vendor_id,
        "scheduling.scheduled_time": scheduled_time,
        "status": {"$in": [s.value for s in ACTIVE_STATUSES]},
    }).to_list()
    for other in others:
        if _same_day(other.scheduling.scheduled_date, scheduled_date):
            return other
    return None


async def assign_vendor(
    booking: Booking,
    vendor_id: Optional[str],
    sink: NotificationSink,
    scheduled_date: Optional[datetime] = None,
    scheduled_time: Optional[str] = None,
    priority: Optional[str] = None,
    notes: Optional[str] = None,
    confirm: bool = False,
) -> Booking:
    if not vendor_id:
        raise ValidationFailed("Vendor ID is required")
    action = "assign_confirmed" if confirm else "assign"
    BOOKING.target(action, booking.status, "Cannot assign vendor to booking")

    vendor = await Vendor.find_one({"vendor_id": vendor_id})
    if not vendor or not vendor.is_active:
        raise NotFound("Vendor not found or inactive")

    date = scheduled_date or booking.scheduling.scheduled_date
    time = scheduled_time or booking.scheduling.scheduled_time
    conflict = await find_vendor_conflict(booking, vendor_id, date, time)
    if conflict is not None:
        raise ValidationFailed(
            f"Vendor is already assigned to Booking {conflict.booking_reference} "
            f"at {time} on {as_utc(date):%Y-%m-%d}"
        )

    BOOKING.apply(booking, action)
    booking.vendor = VendorAssignment(vendor_id=vendor.vendor_id)
    booking.vendor_response = VendorResponse()
    if scheduled_date:
        booking.scheduling.scheduled_date = scheduled_date
    if scheduled_time:
        booking.scheduling.scheduled_time = scheduled_time
    if priority:
        booking.priority = parse_priority(priority)
    if notes:
        booking.assignment_notes = notes
    await booking.touch()

    logger.info("Booking %s assigned to vendor %s", booking.booking_reference, vendor.vendor_id)
    await dispatch(
        sink, vendor_recipient(vendor), "booking.assigned",
        "New task assigned",
        f"Booking {booking.booking_reference} has been assigned to you.",
        {"booking_id": str(booking.id)},
    )
    await dispatch(
        sink, customer_recipient(booking), "booking.assigned",
        "Engineer assigned",
        f"{vendor.full_name} will handle your booking {booking.booking_reference}.",
        {"booking_id": str(booking.id)},
    )
    return booking


def _require_assigned(booking: Booking, vendor: Vendor) -> None:
    if booking.vendor is None:
        raise ValidationFailed("No vendor assigned to this booking")
    if booking.vendor.vendor_id != vendor.vendor_id:
        raise Forbidden("You are not assigned to this booking")


async def accept(booking: Booking, vendor: Vendor, sink: NotificationSink, note: Optional[str] = None) -> Booking:
    _require_assigned(booking, vendor)
    BOOKING.apply(booking, "accept", "Cannot accept task")
    booking.vendor_response = VendorResponse(
        status=VendorResponseStatus.accepted, responded_at=utcnow(), response_note=note
    )
    await booking.touch()

    logger.info("Vendor %s accepted booking %s", vendor.vendor_id, booking.booking_reference)
    await dispatch(
        sink, customer_recipient(booking), "booking.accepted",
        "Engineer on the way",
        f"Your booking {booking.booking_reference} has been accepted by {vendor.full_name}.",
        {"booking_id": str(booking.id)},
    )
    return booking


async def decline(booking: Booking, vendor: Vendor, sink: NotificationSink, note: Optional[str] = None) -> Booking:
    _require_assigned(booking, vendor)
    if booking.vendor_response.status == VendorResponseStatus.accepted:
        raise ValidationFailed("Cannot decline a task that has already been accepted")
    if booking.vendor_response.status == VendorResponseStatus.declined:
        raise ValidationFailed("Task has already been declined")
    BOOKING.apply(booking, "decline", "Cannot decline task")

    booking.vendor_response = VendorResponse(
        status=VendorResponseStatus.declined, responded_at=utcnow(), response_note=note
    )
    booking.vendor = None
    await booking.touch()

    logger.info("Vendor %s declined booking %s", vendor.vendor_id, booking.booking_reference)
    await dispatch(
        sink, customer_recipient(booking), "booking.declined",
        "Reassigning your booking",
        f"We are finding another engineer for booking {booking.booking_reference}.",
        {"booking_id": str(booking.id)},
    )
    return booking


def payable_amount(completion: CompletionData) -> float:
    """Billing, spare parts and travel, plus GST when the vendor charged it."""
    amount = completion.billing_amount + completion.spare_parts_total + completion.traveling_amount
    if completion.include_gst:
        amount += completion.gst_amount or round(completion.billing_amount * GST_RATE, 2)
    return round(amount, 2)


async def complete(
    booking: Booking,
    vendor: Vendor,
    completion: Optional[Dict[str, Any]],
    sink: NotificationSink,
) -> Booking:
    if not completion:
        raise ValidationFailed("Completion data is required")
    _require_assigned(booking, vendor)
    try:
        data = CompletionData.model_validate(completion)
    except ValidationError as e:
        raise _invalid(e, "Invalid completion data")

    if data.include_gst and not data.gst_amount:
        data.gst_amount = round(data.billing_amount * GST_RATE, 2)
    data.total_amount = payable_amount(data)

    cash = data.payment_method == PaymentMode.cash
    BOOKING.apply(booking, "complete_cash" if cash else "complete_online", "Cannot complete task")
    booking.completion_data = data
    booking.payment_mode = data.payment_method
    if cash:
        booking.payment.status = PaymentStatus.completed
        booking.payment.method = PaymentChannel.cash
        booking.payment.paid_at = data.completed_at
        booking.payment_status = "collected"
    else:
        booking.payment_status = "pending"
    await booking.touch()

    logger.info(
        "Booking %s completed by %s (%s, total %s)",
        booking.booking_reference, vendor.vendor_id, data.payment_method.value, data.total_amount,
    )
    if cash:
        body = f"Booking {booking.booking_reference} is complete. Amount collected: ₹{data.total_amount:.2f}."
    else:
        body = f"Booking {booking.booking_reference} is complete. Please pay ₹{data.total_amount:.2f} online."
    await dispatch(
        sink, customer_recipient(booking), "booking.completed", "Service completed", body,
        {"booking_id": str(booking.id), "amount": data.total_amount},
    )
    return booking


async def create_payment_order(booking: Booking, gateway: PaymentGateway) -> Dict[str, Any]:
    data = booking.completion_data
    if data is None or data.payment_method != PaymentMode.online:
        raise ValidationFailed("This booking is not ready for payment")
    if booking.payment.status == PaymentStatus.completed:
        raise InvalidTransition(
            f"Booking is already paid. Current status: {booking.status.value}", current=booking.status
        )
    BOOKING.target("verify_payment", booking.status, "This booking is not ready for payment")

    amount = data.total_amount or payable_amount(data)
    receipt = f"fix_{str(booking.id)[-8:]}_{int(utcnow().timestamp())}"
    order = await gateway.create_order(
        amount=amount,
        currency=PAYMENT_CURRENCY,
        receipt=receipt,
        notes={"booking_id": str(booking.id), "booking_reference": booking.booking_reference},
    )
    booking.payment.razorpay_order_id = order.get("id")
    await booking.touch()

    logger.info("Payment order %s created for booking %s", order.get("id"), booking.booking_reference)
    return {
        "order_id": order.get("id"),
        "amount": order.get("amount"),
        "currency": order.get("currency", PAYMENT_CURRENCY),
        "key": gateway.key_id,
    }


async def verify_payment(
    booking: Booking,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    gateway: PaymentGateway,
    sink: NotificationSink,
    method: Optional[PaymentChannel] = None,
) -> Booking:
    if not (order_id and payment_id and signature):
        raise ValidationFailed("Razorpay order ID, payment ID, and signature are required")
    if booking.payment.status == PaymentStatus.completed:
        raise InvalidTransition(
            f"Payment verification not allowed. Current status: {booking.status.value}", current=booking.status
        )
    BOOKING.target("verify_payment", booking.status, "Payment verification not allowed")

    expected_order = booking.payment.razorpay_order_id
    if not expected_order:
        raise ValidationFailed("No payment order found for this booking")
    if expected_order != order_id:
        logger.warning(
            "Order mismatch for booking %s: expected %s, got %s", booking.booking_reference, expected_order, order_id
        )
        raise ValidationFailed("Payment verification failed - order mismatch")

    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("Invalid payment signature for booking %s", booking.booking_reference)
        raise ValidationFailed("Payment verification failed")

    BOOKING.apply(booking, "verify_payment")
    booking.payment.status = PaymentStatus.completed
    booking.payment.method = method or booking.payment.method
    booking.payment.transaction_id = payment_id
    booking.payment.razorpay_order_id = order_id
    booking.payment.razorpay_payment_id = payment_id
    booking.payment.razorpay_signature = signature
    booking.payment.paid_at = utcnow()
    booking.payment_status = "paid"
    await booking.touch()

    logger.info("Payment %s verified for booking %s", payment_id, booking.booking_reference)
    await dispatch(
        sink, customer_recipient(booking), "booking.paid",
        "Payment received",
        f"Thank you! Payment for booking {booking.booking_reference} was successful.",
        {"booking_id": str(booking.id), "payment_id": payment_id},
    )
    return booking


def _require_owner(booking: Booking, email: str) -> None:
    if str(booking.customer.email).lower() != (email or "").lower():
        raise NotFound("Booking not found")


async def cancel_by_user(booking: Booking, customer_email: str, reason: Optional[str], sink: NotificationSink) -> Booking:
    _require_owner(booking, customer_email)
    if not (reason or "").strip():
        raise ValidationFailed("Cancellation reason is required")
    if booking.status == BookingStatus.completed:
        raise InvalidTransition("Cannot cancel a completed booking. Current status: completed", current=booking.status)
    if booking.status == BookingStatus.cancelled:
        raise InvalidTransition("Booking is already cancelled. Current status: cancelled", current=booking.status)
    BOOKING.apply(booking, "cancel", "Cannot cancel booking")

    booking.cancellation_data = CancellationRecord(cancelled_by=ActorRole.customer, reason=reason.strip())
    await booking.touch()

    logger.info("Booking %s cancelled by customer", booking.booking_reference)
    await dispatch(
        sink, customer_recipient(booking), "booking.cancelled",
        "Booking cancelled",
        f"Your booking {booking.booking_reference} has been cancelled.",
        {"booking_id": str(booking.id)},
    )
    return booking


async def reschedule_by_user(
    booking: Booking,
    customer_email: str,
    new_date: Optional[datetime],
    new_time: Optional[str],
    reason: Optional[str],
    sink: NotificationSink,
    now: Optional[datetime] = None,
) -> Booking:
    _require_owner(booking, customer_email)
    if not new_date or not (new_time or "").strip() or not (reason or "").strip():
        raise ValidationFailed("New date, new time, and reason are required")
    BOOKING.target("reschedule", booking.status, "Cannot reschedule booking")

    now = now or utcnow()
    slot = combine_slot(new_date, new_time)
    if slot < now + timedelta(hours=RESCHEDULE_MIN_LEAD_HOURS):
        raise ValidationFailed(
            f"New schedule must be at least {RESCHEDULE_MIN_LEAD_HOURS} hours from now"
        )

    s = booking.scheduling
    booking.reschedule_data = RescheduleRecord(
        original_date=s.scheduled_date or s.preferred_date,
        original_time=s.scheduled_time or s.preferred_time_slot.value,
        new_date=new_date,
        new_time=new_time.strip(),
        reason=reason.strip(),
        rescheduled_by=ActorRole.customer,
        rescheduled_at=now,
    )
    BOOKING.apply(booking, "reschedule")
    s.scheduled_date = new_date
    s.scheduled_time = new_time.strip()
    await booking.touch()

    logger.info("Booking %s rescheduled by customer to %s", booking.booking_reference, slot.isoformat())
    await dispatch(
        sink, customer_recipient(booking), "booking.rescheduled",
        "Booking rescheduled",
        f"Booking {booking.booking_reference} moved to {slot:%d %b %Y %H:%M}.",
        {"booking_id": str(booking.id)},
    )
    return booking


def combine_slot(day: datetime, time_text: str) -> datetime:
    """Merge a date with an 'HH:MM' (24h) or 'HH:MM AM/PM' time string."""
    text = (time_text or "").strip().upper()
    for fmt in ("%H:%M", "%I:%M %p", "%I:%M%p", "%I %p"):
        try:
            t = datetime.strptime(text, fmt).time()
            break
        except ValueError:
            continue
    else:
        raise ValidationFailed(f"Invalid time: {time_text}")
    base = as_utc(day)
    return base.replace(hour=t.hour, minute=t.minute, second=0, microsecond=0)


# ---------------- ADMIN / VENDOR STATUS ----------------

# vendor assignment only happens through assign_vendor()
STATUS_ACTIONS = ("confirm", "start", "cancel", "reject")


async def set_status(
    booking: Booking, status: str, actor: ActorRole, sink: NotificationSink, reason: Optional[str] = None
) -> Booking:
    try:
        wanted = BookingStatus(status)
    except ValueError:
        raise ValidationFailed(
            "Invalid status. Must be one of: " + ", ".join(s.value for s in BookingStatus)
        )
    if wanted == booking.status:
        return booking
    if wanted == BookingStatus.completed:
        raise ValidationFailed("Use the complete or payment endpoints to finish a booking")

    action = BOOKING.action_for(booking.status, wanted, allowed=STATUS_ACTIONS)
    if action is None:
        raise InvalidTransition(
            f"Cannot change booking status to {wanted.value}. Current status: {booking.status.value}",
            current=booking.status,
        )
    if action == "confirm" and booking.vendor is None:
        raise ValidationFailed("Assign a vendor before confirming the booking")
    BOOKING.apply(booking, action)
    if wanted == BookingStatus.cancelled:
        booking.cancellation_data = CancellationRecord(
            cancelled_by=actor, reason=(reason or "").strip() or f"Cancelled by {actor.value}"
        )
    await booking.touch()

    logger.info("Booking %s moved to %s by %s", booking.booking_reference, wanted.value, actor.value)
    if wanted in (BookingStatus.cancelled, BookingStatus.declined):
        await dispatch(
            sink, customer_recipient(booking), f"booking.{wanted.value}",
            f"Booking {wanted.value}",
            f"Your booking {booking.booking_reference} is now {wanted.value}.",
            {"booking_id": str(booking.id)},
        )
    return booking


def parse_priority(value: Any) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise ValidationFailed("Invalid priority. Must be one of: low, medium, high, urgent")


async def set_priority(booking: Booking, priority: Any) -> Booking:
    booking.priority = parse_priority(priority)
    await booking.touch()
    return booking


async def process_refund(
    booking: Booking,
    gateway: PaymentGateway,
    sink: NotificationSink,
    amount: Optional[float] = None,
    reason: Optional[str] = None,
) -> Booking:
    if booking.payment.status != PaymentStatus.completed or not booking.payment.razorpay_payment_id:
        raise ValidationFailed("Only completed online payments can be refunded")
    BOOKING.target("refund", booking.status, "Cannot refund booking")

    paid = booking.completion_data.total_amount if booking.completion_data else booking.pricing.total_amount
    refund_amount = round_rupees(paid if amount is None else amount)
    if refund_amount <= 0 or refund_amount > round_rupees(paid):
        raise ValidationFailed("Refund amount must be between 1 and the amount paid")

    refund = await gateway.refund(
        booking.payment.razorpay_payment_id,
        amount=refund_amount,
        notes={"booking_id": str(booking.id), "reason": reason or "Refund by admin"},
    )

    BOOKING.apply(booking, "refund")
    now = utcnow()
    booking.payment.status = PaymentStatus.refunded
    booking.payment.refund_id = refund.get("id")
    booking.payment.refund_amount = refund_amount
    booking.payment.refund_reason = reason
    booking.payment.refunded_at = now
    booking.cancellation_data = CancellationRecord(
        cancelled_by=ActorRole.admin, reason=(reason or "").strip() or "Refunded by admin", cancelled_at=now
    )
    await booking.touch()

    logger.info("Refund %s of %s issued for booking %s", refund.get("id"), refund_amount, booking.booking_reference)
    await dispatch(
        sink, customer_recipient(booking), "booking.refunded",
        "Refund initiated",
        f"A refund of ₹{refund_amount:.0f} for booking {booking.booking_reference} has been initiated.",
        {"booking_id": str(booking.id), "refund_amount": refund_amount},
    )
    return booking
