from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from api.auth.config import get_current_user, get_current_vendor, require_auth
from api.deps import clamp_limit, get_gateway, get_notifier, ok
from models.bookings import Booking
from models.enums import ActorRole, BookingStatus
from schemas.bookings import (
    BookingCreateIn,
    BookingPaymentVerifyIn,
    CompleteIn,
    CreateOrderIn,
    RescheduleIn,
    StatusIn,
    UserCancelIn,
    VendorResponseIn,
)
from services import booking_lifecycle as bookings
from services.errors import NotFound
from services.notifications import NotificationSink
from services.payments import PaymentGateway

router = APIRouter(prefix="/bookings", tags=["bookings"])

VENDOR_STATUSES = ("confirmed", "in_progress", "declined", "cancelled")


def booking_to_out(b: Booking) -> Dict[str, Any]:
    data = b.model_dump(mode="json", exclude={"id", "revision_id"})
    data["payment"].pop("razorpay_signature", None)
    data["id"] = str(b.id)
    data["booking_reference"] = b.booking_reference
    return data


def _owns(b: Booking, user) -> bool:
    return str(b.customer.email).lower() == str(user.email).lower()


async def _page(query: Dict[str, Any], skip: int, limit: int) -> Dict[str, Any]:
    limit = clamp_limit(limit)
    cursor = Booking.find(query)
    total = await cursor.count()
    items = await cursor.sort("-created_at").skip(max(int(skip), 0)).limit(limit).to_list()
    return {"items": [booking_to_out(b) for b in items], "total": int(total), "skip": int(skip), "limit": int(limit)}


@router.post("", status_code=201)
async def create_booking(
    payload: BookingCreateIn,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.create_booking(
        payload.customer,
        payload.services,
        payload.pricing,
        payload.scheduling,
        notifier,
        notes=payload.notes,
        payment_mode=payload.payment_mode,
        user_id=current_user.id if current_user else None,
    )
    return ok(booking_to_out(booking), "Booking created successfully")


@router.get("/customer/{email}")
async def customer_bookings(
    email: str,
    status: Optional[BookingStatus] = None,
    skip: int = 0,
    limit: int = 20,
    current_user=Depends(get_current_user),
):
    require_auth(current_user)
    if str(current_user.email).lower() != email.strip().lower():
        raise HTTPException(403, "Access denied")

    query: Dict[str, Any] = {"customer.email": email.strip().lower()}
    if status is not None:
        query["status"] = status.value
    return ok(await _page(query, skip, limit))


@router.get("/vendor/me")
async def vendor_bookings(
    status: Optional[BookingStatus] = None,
    skip: int = 0,
    limit: int = 20,
    vendor=Depends(get_current_vendor),
):
    query: Dict[str, Any] = {"vendor.vendor_id": vendor.vendor_id}
    if status is not None:
        query["status"] = status.value
    return ok(await _page(query, skip, limit))


# ---------------- PAYMENT ----------------

@router.post("/payment/create-order")
async def create_payment_order(
    payload: CreateOrderIn,
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    require_auth(current_user)
    booking = await bookings.get_booking(payload.booking_id)
    if not _owns(booking, current_user):
        raise NotFound("Booking not found")
    order = await bookings.create_payment_order(booking, gateway)
    return ok(order, "Payment order created successfully")


@router.post("/payment/verify")
async def verify_payment(
    payload: BookingPaymentVerifyIn,
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    booking = await bookings.get_booking(payload.booking_id)
    if not _owns(booking, current_user):
        raise NotFound("Booking not found")
    booking = await bookings.verify_payment(
        booking,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
        gateway,
        notifier,
        method=payload.method,
    )
    return ok(booking_to_out(booking), "Payment verified successfully")


# ---------------- BOOKING ----------------

@router.get("/{booking_id}")
async def get_booking(booking_id: str, current_user=Depends(get_current_user)):
    require_auth(current_user)
    booking = await bookings.get_booking(booking_id)
    if not _owns(booking, current_user):
        raise NotFound("Booking not found")
    return ok(booking_to_out(booking))


@router.patch("/{booking_id}/status")
async def vendor_set_status(
    booking_id: str,
    payload: StatusIn,
    vendor=Depends(get_current_vendor),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    if booking.vendor is None or booking.vendor.vendor_id != vendor.vendor_id:
        raise HTTPException(403, "You are not assigned to this booking")
    if payload.status not in VENDOR_STATUSES:
        raise HTTPException(400, "Invalid status. Must be one of: " + ", ".join(VENDOR_STATUSES))
    booking = await bookings.set_status(booking, payload.status, ActorRole.vendor, notifier, payload.reason)
    return ok(booking_to_out(booking), "Booking status updated successfully")


@router.patch("/{booking_id}/accept")
async def accept_task(
    booking_id: str,
    payload: Optional[VendorResponseIn] = None,
    vendor=Depends(get_current_vendor),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.accept(booking, vendor, notifier, payload.response_note if payload else None)
    return ok(booking_to_out(booking), "Task accepted successfully")


@router.patch("/{booking_id}/decline")
async def decline_task(
    booking_id: str,
    payload: Optional[VendorResponseIn] = None,
    vendor=Depends(get_current_vendor),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.decline(booking, vendor, notifier, payload.response_note if payload else None)
    return ok(booking_to_out(booking), "Task declined successfully")


@router.patch("/{booking_id}/complete")
async def complete_task(
    booking_id: str,
    payload: CompleteIn,
    vendor=Depends(get_current_vendor),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.complete(booking, vendor, payload.completion_data, notifier)
    return ok(booking_to_out(booking), "Task completed successfully")


@router.patch("/{booking_id}/cancel-by-user")
async def cancel_by_user(
    booking_id: str,
    payload: UserCancelIn,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.cancel_by_user(booking, str(current_user.email), payload.reason, notifier)
    return ok(booking_to_out(booking), "Booking cancelled successfully")


@router.patch("/{booking_id}/reschedule-by-user")
async def reschedule_by_user(
    booking_id: str,
    payload: RescheduleIn,
    current_user=Depends(get_current_user),
    notifier: NotificationSink = Depends(get_notifier),
):
    require_auth(current_user)
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.reschedule_by_user(
        booking, str(current_user.email), payload.new_date, payload.new_time, payload.reason, notifier
    )
    return ok(booking_to_out(booking), "Booking rescheduled successfully")
