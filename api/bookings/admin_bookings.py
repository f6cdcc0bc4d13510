from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.auth.config import get_current_admin
from api.bookings.bookings import booking_to_out
from api.deps import clamp_limit, get_gateway, get_notifier, ok
from models.bookings import Booking
from models.enums import ActorRole, BookingStatus, PaymentStatus, Priority
from schemas.bookings import AssignVendorIn, PriorityIn, RefundIn, StatusIn
from services import booking_lifecycle as bookings
from services.audit import record_admin_action
from services.notifications import NotificationSink
from services.payments import PaymentGateway
from services.stats import booking_stats

router = APIRouter(prefix="/admin/bookings", tags=["admin-bookings"])


@router.get("")
async def list_bookings(
    status: Optional[BookingStatus] = None,
    priority: Optional[Priority] = None,
    payment_status: Optional[PaymentStatus] = None,
    vendor_id: Optional[str] = None,
    q: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 20,
    admin=Depends(get_current_admin),
):
    limit = clamp_limit(limit)
    query: Dict[str, Any] = {}
    if status is not None:
        query["status"] = status.value
    if priority is not None:
        query["priority"] = priority.value
    if payment_status is not None:
        query["payment.status"] = payment_status.value
    if vendor_id:
        query["vendor.vendor_id"] = vendor_id.strip()
    if q:
        rx = {"$regex": q.strip(), "$options": "i"}
        query["$or"] = [{"customer.name": rx}, {"customer.email": rx}, {"customer.phone": rx}]
    if date_from or date_to:
        created: Dict[str, Any] = {}
        if date_from:
            created["$gte"] = date_from
        if date_to:
            created["$lte"] = date_to
        query["created_at"] = created

    cursor = Booking.find(query)
    total = await cursor.count()
    items = await cursor.sort("-created_at").skip(max(int(skip), 0)).limit(limit).to_list()
    return ok({"items": [booking_to_out(b) for b in items], "total": int(total), "skip": int(skip), "limit": int(limit)})


@router.get("/stats")
async def stats(period: str = Query(default="month"), admin=Depends(get_current_admin)):
    return ok(await booking_stats(period))


@router.get("/{booking_id}")
async def get_booking(booking_id: str, admin=Depends(get_current_admin)):
    booking = await bookings.get_booking(booking_id)
    return ok(booking_to_out(booking))


@router.patch("/{booking_id}/status")
async def set_status(
    booking_id: str,
    payload: StatusIn,
    admin=Depends(get_current_admin),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    previous = booking.status.value
    booking = await bookings.set_status(booking, payload.status, ActorRole.admin, notifier, payload.reason)
    await record_admin_action(
        admin, "booking.status", {"booking_id": booking_id},
        {"from": previous, "to": booking.status.value, "reason": payload.reason},
    )
    return ok(booking_to_out(booking), "Booking status updated successfully")


@router.patch("/{booking_id}/priority")
async def set_priority(booking_id: str, payload: PriorityIn, admin=Depends(get_current_admin)):
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.set_priority(booking, payload.priority)
    await record_admin_action(admin, "booking.priority", {"booking_id": booking_id}, {"priority": payload.priority})
    return ok(booking_to_out(booking), "Booking priority updated successfully")


@router.patch("/{booking_id}/assign-vendor")
async def assign_vendor(
    booking_id: str,
    payload: AssignVendorIn,
    admin=Depends(get_current_admin),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.assign_vendor(
        booking,
        payload.vendor_id,
        notifier,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        priority=payload.priority,
        notes=payload.notes,
        confirm=payload.confirm,
    )
    await record_admin_action(admin, "booking.assign_vendor", {"booking_id": booking_id}, {"vendor_id": payload.vendor_id})
    return ok(booking_to_out(booking), "Vendor assigned successfully")


@router.post("/{booking_id}/refund")
async def refund(
    booking_id: str,
    payload: Optional[RefundIn] = None,
    admin=Depends(get_current_admin),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationSink = Depends(get_notifier),
):
    payload = payload or RefundIn()
    booking = await bookings.get_booking(booking_id)
    booking = await bookings.process_refund(booking, gateway, notifier, amount=payload.amount, reason=payload.reason)
    await record_admin_action(
        admin, "booking.refund", {"booking_id": booking_id},
        {"amount": booking.payment.refund_amount, "refund_id": booking.payment.refund_id},
    )
    return ok(booking_to_out(booking), "Refund processed successfully")
