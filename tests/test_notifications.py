from unittest.mock import patch

from models.enums import ActorRole
from models.notifications import Notification
from services.notifications import (
    EmailNotificationSink,
    InboxNotificationSink,
    NoopNotificationSink,
    Recipient,
    build_notification_sink,
    dispatch,
)

ASHA = Recipient(id="u1", role=ActorRole.customer, email="asha@example.com", name="Asha")


class BrokenSink:
    async def notify(self, *args, **kwargs):
        raise RuntimeError("push service down")


async def test_dispatch_never_raises():
    assert await dispatch(BrokenSink(), ASHA, "booking.created", "Booking received") is False


async def test_dispatch_delivers(sink):
    assert await dispatch(sink, ASHA, "amc.activated", "AMC active", "Enjoy", {"x": 1}) is True
    assert sink.sent == [(ASHA, "amc.activated", "AMC active", "Enjoy", {"x": 1})]


def test_build_notification_sink():
    assert isinstance(build_notification_sink("inbox"), InboxNotificationSink)
    assert isinstance(build_notification_sink(" EMAIL "), EmailNotificationSink)
    assert isinstance(build_notification_sink("noop"), NoopNotificationSink)
    assert isinstance(build_notification_sink("carrier-pigeon"), NoopNotificationSink)
    assert isinstance(build_notification_sink(""), NoopNotificationSink)


async def test_inbox_sink_stores_notification(store):
    await InboxNotificationSink().notify(ASHA, "amc.cancelled", "Cancelled", "Refund on the way", {"refund": 265})

    [note] = store.inserted
    assert isinstance(note, Notification)
    assert note.recipient_id == "u1"
    assert note.recipient_type == ActorRole.customer
    assert note.data == {"refund": 265}


async def test_email_sink_skips_missing_address():
    with patch("services.notifications.send_email") as send:
        await EmailNotificationSink().notify(Recipient(id="v1", role=ActorRole.vendor), "booking.assigned", "New task")
        send.assert_not_called()

        await EmailNotificationSink().notify(ASHA, "booking.assigned", "Engineer assigned", "Ravi is coming")
        send.assert_called_once_with("asha@example.com", "Engineer assigned", "Hi Asha,\n\nRavi is coming")
