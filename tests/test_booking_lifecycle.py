from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import NOW, booking_payload, make_booking
from models.bookings import Booking
from models.enums import ActorRole, BookingStatus, PaymentStatus, VendorResponseStatus
from models.vendors import Vendor
from services import booking_lifecycle as bookings
from services.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed


def find_result(items=None):
    q = MagicMock()
    q.to_list = AsyncMock(return_value=items or [])
    return q


@pytest.fixture
def vendor_lookup(vendor):
    with patch.object(Vendor, "find_one", AsyncMock(return_value=vendor)) as m:
        yield m


def in_progress_booking(vendor, **overrides):
    return make_booking(status="in_progress", vendor={"vendor_id": vendor.vendor_id}, **overrides)


# ---------------- create / assign ----------------

async def test_create_booking_stores_pending(sink, store):
    p = booking_payload()
    booking = await bookings.create_booking(p["customer"], p["services"], p["pricing"], p["scheduling"], sink)

    assert booking.status == BookingStatus.pending
    assert booking.pricing.total_amount == 500
    assert booking.pricing.service_fee == 100
    assert booking.services[0].service_name == "Laptop repair"
    assert booking.booking_reference == ("FIX" + str(booking.id)[-8:]).upper()
    assert store.inserted == [booking]
    assert sink.events == ["booking.created"]


async def test_create_booking_requires_all_sections(sink):
    p = booking_payload()
    with pytest.raises(ValidationFailed) as exc:
        await bookings.create_booking(p["customer"], [], p["pricing"], p["scheduling"], sink)
    assert exc.value.message == "Customer, services, pricing, and scheduling information are required"

    bad = dict(p["customer"], phone="12345")
    with pytest.raises(ValidationFailed) as exc:
        await bookings.create_booking(bad, p["services"], p["pricing"], p["scheduling"], sink)
    assert exc.value.message == "Invalid customer details"


async def test_customer_email_is_lowercased(sink):
    p = booking_payload()
    customer = dict(p["customer"], email="  Asha@Example.com ")
    booking = await bookings.create_booking(customer, p["services"], p["pricing"], p["scheduling"], sink)
    assert booking.customer.email == "asha@example.com"


async def test_customer_snapshot_is_frozen():
    booking = make_booking()
    with pytest.raises(Exception):
        booking.customer.name = "Someone else"


async def test_assign_vendor_resets_response(vendor, vendor_lookup, sink):
    booking = make_booking(vendor_response={"status": "declined"})

    await bookings.assign_vendor(booking, vendor.vendor_id, sink, priority="high")

    assert booking.status == BookingStatus.waiting_for_engineer
    assert booking.vendor.vendor_id == vendor.vendor_id
    assert booking.vendor_response.status == VendorResponseStatus.pending
    assert booking.priority.value == "high"
    assert sink.events == ["booking.assigned", "booking.assigned"]


async def test_assign_vendor_confirmed(vendor, vendor_lookup, sink):
    booking = make_booking()
    await bookings.assign_vendor(booking, vendor.vendor_id, sink, confirm=True)
    assert booking.status == BookingStatus.confirmed


async def test_assign_inactive_vendor_is_not_found(vendor, sink):
    vendor.is_active = False
    with patch.object(Vendor, "find_one", AsyncMock(return_value=vendor)):
        with pytest.raises(NotFound) as exc:
            await bookings.assign_vendor(make_booking(), vendor.vendor_id, sink)
    assert exc.value.message == "Vendor not found or inactive"


async def test_assign_vendor_detects_double_booking(vendor, vendor_lookup, sink):
    day = NOW + timedelta(days=2)
    other = make_booking(
        status="confirmed",
        vendor={"vendor_id": vendor.vendor_id},
        scheduling={
            "preferredDate": day, "preferredTimeSlot": "morning",
            "scheduledDate": day.replace(hour=3), "scheduledTime": "10:00 AM",
        },
    )
    booking = make_booking()
    with patch.object(Booking, "find", MagicMock(return_value=find_result([other]))):
        with pytest.raises(ValidationFailed) as exc:
            await bookings.assign_vendor(
                booking, vendor.vendor_id, sink, scheduled_date=day, scheduled_time="10:00 AM"
            )
    assert exc.value.message == (
        f"Vendor is already assigned to Booking {other.booking_reference} at 10:00 AM on {day:%Y-%m-%d}"
    )
    assert booking.status == BookingStatus.pending


async def test_cannot_assign_closed_booking(vendor, vendor_lookup, sink):
    with pytest.raises(InvalidTransition):
        await bookings.assign_vendor(make_booking(status="completed"), vendor.vendor_id, sink)


# ---------------- vendor response ----------------

async def test_accept_moves_to_in_progress(vendor, sink):
    booking = make_booking(status="waiting_for_engineer", vendor={"vendor_id": vendor.vendor_id})
    await bookings.accept(booking, vendor, sink, "On my way")
    assert booking.status == BookingStatus.in_progress
    assert booking.vendor_response.status == VendorResponseStatus.accepted
    assert booking.vendor_response.response_note == "On my way"


async def test_only_assigned_vendor_may_respond(vendor, sink):
    booking = make_booking(status="waiting_for_engineer", vendor={"vendor_id": "VEN999999"})
    with pytest.raises(Forbidden) as exc:
        await bookings.accept(booking, vendor, sink)
    assert exc.value.status_code == 403


async def test_decline_clears_vendor(vendor, sink):
    booking = make_booking(status="confirmed", vendor={"vendor_id": vendor.vendor_id})
    await bookings.decline(booking, vendor, sink, "Too far")
    assert booking.status == BookingStatus.waiting_for_engineer
    assert booking.vendor is None
    assert booking.vendor_response.status == VendorResponseStatus.declined


async def test_cannot_decline_accepted_task(vendor, sink):
    booking = in_progress_booking(vendor, vendor_response={"status": "accepted"})
    with pytest.raises(ValidationFailed) as exc:
        await bookings.decline(booking, vendor, sink)
    assert exc.value.message == "Cannot decline a task that has already been accepted"


# ---------------- completion / payment ----------------

COMPLETION = {
    "resolutionNote": "Replaced RAM",
    "billingAmount": "₹1,000",
    "spareParts": [{"name": "RAM", "amount": "₹1,200"}],
    "travelingAmount": 100,
    "includeGst": True,
}


async def test_cash_completion_closes_booking(vendor, sink):
    booking = in_progress_booking(vendor)
    await bookings.complete(booking, vendor, {**COMPLETION, "paymentMethod": "cash"}, sink)

    data = booking.completion_data
    assert data.gst_amount == 180
    assert data.spare_parts_total == 1200
    assert data.total_amount == 2480
    assert booking.status == BookingStatus.completed
    assert booking.payment.status == PaymentStatus.completed
    assert booking.payment_status == "collected"


async def test_online_completion_waits_for_payment(vendor, sink, gateway):
    booking = in_progress_booking(vendor)
    await bookings.complete(booking, vendor, {**COMPLETION, "paymentMethod": "online"}, sink)
    assert booking.status == BookingStatus.in_progress
    assert booking.payment_status == "pending"

    order = await bookings.create_payment_order(booking, gateway)
    assert order["amount"] == 248000
    assert gateway.orders[0]["receipt"].startswith(f"fix_{str(booking.id)[-8:]}_")

    await bookings.verify_payment(
        booking, order["order_id"], "pay_1", gateway.sign(order["order_id"], "pay_1"), gateway, sink
    )
    assert booking.status == BookingStatus.completed
    assert booking.payment.status == PaymentStatus.completed
    assert booking.payment.razorpay_payment_id == "pay_1"
    assert "booking.paid" in sink.events


async def test_complete_requires_in_progress(vendor, sink):
    booking = make_booking(status="confirmed", vendor={"vendor_id": vendor.vendor_id})
    with pytest.raises(InvalidTransition):
        await bookings.complete(booking, vendor, COMPLETION, sink)


async def test_booking_payment_bad_signature(vendor, sink, gateway):
    booking = in_progress_booking(vendor, completion_data=COMPLETION, payment={"razorpayOrderId": "order_1"})
    with pytest.raises(ValidationFailed) as exc:
        await bookings.verify_payment(booking, "order_1", "pay_1", "forged", gateway, sink)
    assert exc.value.message == "Payment verification failed"
    assert booking.status == BookingStatus.in_progress


async def test_payment_for_another_order_is_rejected(vendor, sink, gateway, store):
    booking = in_progress_booking(
        vendor,
        completion_data={**COMPLETION, "billingAmount": 5000},
        payment={"razorpayOrderId": "order_A"},
    )
    signature = gateway.sign("order_B", "pay_cheap")

    with pytest.raises(ValidationFailed) as exc:
        await bookings.verify_payment(booking, "order_B", "pay_cheap", signature, gateway, sink)

    assert exc.value.message == "Payment verification failed - order mismatch"
    assert booking.status == BookingStatus.in_progress
    assert booking.payment.status == PaymentStatus.pending
    assert booking.payment.razorpay_order_id == "order_A"
    assert booking.payment.razorpay_payment_id is None
    assert store.saved == []


async def test_payment_needs_an_order(vendor, sink, gateway):
    booking = in_progress_booking(vendor, completion_data=COMPLETION)
    with pytest.raises(ValidationFailed) as exc:
        await bookings.verify_payment(
            booking, "order_1", "pay_1", gateway.sign("order_1", "pay_1"), gateway, sink
        )
    assert exc.value.message == "No payment order found for this booking"
    assert booking.status == BookingStatus.in_progress


# ---------------- customer actions ----------------

async def test_cancel_after_assignment(vendor, vendor_lookup, sink):
    booking = make_booking()
    await bookings.assign_vendor(booking, vendor.vendor_id, sink)

    await bookings.cancel_by_user(booking, "ASHA@example.com", "Fixed it myself", sink)

    assert booking.status == BookingStatus.cancelled
    assert booking.completion_data is None
    assert booking.pricing.total_amount == 500
    assert booking.cancellation_data.cancelled_by == ActorRole.customer
    assert booking.cancellation_data.reason == "Fixed it myself"


async def test_cancel_rules(sink):
    with pytest.raises(NotFound):
        await bookings.cancel_by_user(make_booking(), "someone@example.com", "x", sink)
    with pytest.raises(ValidationFailed):
        await bookings.cancel_by_user(make_booking(), "asha@example.com", " ", sink)
    with pytest.raises(InvalidTransition):
        await bookings.cancel_by_user(make_booking(status="completed"), "asha@example.com", "x", sink)


async def test_reschedule_keeps_original_slot(sink):
    booking = make_booking()
    new_day = NOW + timedelta(days=3)

    await bookings.reschedule_by_user(booking, "asha@example.com", new_day, "4:30 PM", "Travelling", sink, now=NOW)

    assert booking.status == BookingStatus.pending
    assert booking.scheduling.scheduled_time == "4:30 PM"
    assert booking.reschedule_data.original_time == "morning"
    assert booking.reschedule_data.original_date == booking.scheduling.preferred_date
    assert booking.reschedule_data.rescheduled_by == ActorRole.customer


async def test_reschedule_while_in_progress(vendor, sink):
    booking = in_progress_booking(vendor)
    await bookings.reschedule_by_user(
        booking, "asha@example.com", NOW + timedelta(days=1), "11:00", "Need spare part", sink, now=NOW
    )
    assert booking.status == BookingStatus.in_progress
    assert booking.scheduling.scheduled_time == "11:00"


async def test_reschedule_closed_booking(sink):
    with pytest.raises(InvalidTransition):
        await bookings.reschedule_by_user(
            make_booking(status="completed"), "asha@example.com", NOW + timedelta(days=1), "11:00", "Later", sink,
            now=NOW,
        )


async def test_reschedule_needs_lead_time(sink):
    with pytest.raises(ValidationFailed) as exc:
        await bookings.reschedule_by_user(make_booking(), "asha@example.com", NOW, "13:00", "Soon", sink, now=NOW)
    assert exc.value.message == "New schedule must be at least 2 hours from now"

    with pytest.raises(ValidationFailed):
        await bookings.reschedule_by_user(make_booking(), "asha@example.com", NOW, "whenever", "Soon", sink, now=NOW)


# ---------------- admin ----------------

async def test_admin_status_goes_through_table(sink):
    booking = make_booking()
    with pytest.raises(InvalidTransition) as exc:
        await bookings.set_status(booking, "confirmed", ActorRole.admin, sink)
    assert "Current status: pending" in exc.value.message

    await bookings.set_status(booking, "cancelled", ActorRole.admin, sink, "Duplicate")
    assert booking.status == BookingStatus.cancelled
    assert booking.cancellation_data.cancelled_by == ActorRole.admin

    with pytest.raises(ValidationFailed):
        await bookings.set_status(make_booking(), "bogus", ActorRole.admin, sink)
    with pytest.raises(ValidationFailed):
        await bookings.set_status(make_booking(), "completed", ActorRole.admin, sink)


async def test_status_patch_cannot_stand_in_for_assignment(sink):
    booking = make_booking()
    with pytest.raises(InvalidTransition):
        await bookings.set_status(booking, "waiting_for_engineer", ActorRole.admin, sink)
    assert booking.status == BookingStatus.pending
    assert booking.vendor is None


async def test_confirm_requires_assigned_vendor(vendor, sink):
    unassigned = make_booking(status="waiting_for_engineer")
    with pytest.raises(ValidationFailed) as exc:
        await bookings.set_status(unassigned, "confirmed", ActorRole.admin, sink)
    assert exc.value.message == "Assign a vendor before confirming the booking"
    assert unassigned.status == BookingStatus.waiting_for_engineer

    assigned = make_booking(status="waiting_for_engineer", vendor={"vendor_id": vendor.vendor_id})
    await bookings.set_status(assigned, "confirmed", ActorRole.admin, sink)
    assert assigned.status == BookingStatus.confirmed


async def test_set_priority_validates():
    booking = make_booking()
    await bookings.set_priority(booking, "urgent")
    assert booking.priority.value == "urgent"
    with pytest.raises(ValidationFailed):
        await bookings.set_priority(booking, "asap")


async def test_refund_completed_payment(vendor, sink, gateway):
    booking = make_booking(
        status="completed",
        vendor={"vendor_id": vendor.vendor_id},
        completion_data={**COMPLETION, "totalAmount": 2480},
        payment={"status": "completed", "razorpayPaymentId": "pay_7"},
    )

    await bookings.process_refund(booking, gateway, sink, reason="Poor service")

    assert gateway.refunds[0]["payment_id"] == "pay_7"
    assert gateway.refunds[0]["amount"] == 2480
    assert booking.status == BookingStatus.cancelled
    assert booking.payment.status == PaymentStatus.refunded
    assert booking.payment.refund_id == "rfnd_1"
    assert booking.payment.refund_amount == 2480


async def test_refund_requires_captured_payment(sink, gateway):
    with pytest.raises(ValidationFailed) as exc:
        await bookings.process_refund(make_booking(), gateway, sink)
    assert exc.value.message == "Only completed online payments can be refunded"
    assert gateway.refunds == []
