from types import SimpleNamespace

import pytest

from models.enums import AMCStatus, BookingStatus
from services.errors import InvalidTransition
from services.state_machine import AMC_SUBSCRIPTION, BOOKING


def test_subscription_activates_only_from_inactive():
    sub = SimpleNamespace(status=AMCStatus.inactive)
    AMC_SUBSCRIPTION.apply(sub, "verify_payment")
    assert sub.status == AMCStatus.active

    with pytest.raises(InvalidTransition) as exc:
        AMC_SUBSCRIPTION.apply(sub, "verify_payment")
    assert "Current status: active" in exc.value.message
    assert exc.value.status_code == 400
    assert exc.value.error == {"current_status": "active", "action": "verify_payment"}


@pytest.mark.parametrize("status", [AMCStatus.cancelled, AMCStatus.expired, AMCStatus.inactive])
def test_cancel_requires_active(status):
    sub = SimpleNamespace(status=status)
    with pytest.raises(InvalidTransition) as exc:
        AMC_SUBSCRIPTION.apply(sub, "cancel", "Subscription is not active")
    assert exc.value.message == f"Subscription is not active. Current status: {status.value}"
    assert sub.status == status


def test_unknown_action_is_a_programming_error():
    with pytest.raises(KeyError):
        BOOKING.target("teleport", BookingStatus.pending)


def test_booking_happy_path():
    b = SimpleNamespace(status=BookingStatus.pending)
    for action, expected in [
        ("assign", BookingStatus.waiting_for_engineer),
        ("accept", BookingStatus.in_progress),
        ("complete_online", BookingStatus.in_progress),
        ("verify_payment", BookingStatus.completed),
    ]:
        BOOKING.apply(b, action)
        assert b.status == expected


def test_decline_returns_to_waiting():
    b = SimpleNamespace(status=BookingStatus.confirmed)
    BOOKING.apply(b, "decline")
    assert b.status == BookingStatus.waiting_for_engineer


@pytest.mark.parametrize("status", [BookingStatus.completed, BookingStatus.cancelled, BookingStatus.declined])
def test_closed_bookings_cannot_be_cancelled(status):
    assert not BOOKING.can("cancel", status)


def test_completed_booking_can_still_be_refunded():
    assert BOOKING.target("refund", BookingStatus.completed) == BookingStatus.cancelled


def test_action_for_respects_allowed_actions():
    assert BOOKING.action_for(BookingStatus.pending, BookingStatus.cancelled) == "cancel"
    assert BOOKING.action_for(BookingStatus.pending, BookingStatus.cancelled, allowed=("confirm",)) is None
    assert BOOKING.action_for(BookingStatus.waiting_for_engineer, BookingStatus.confirmed) == "assign_confirmed"
    assert BOOKING.action_for(BookingStatus.pending, BookingStatus.pending) is None
