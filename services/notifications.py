from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from starlette.concurrency import run_in_threadpool

from models.enums import ActorRole
from models.notifications import Notification
from utils.email_sender import send_email

logger = logging.getLogger(__name__)


class Recipient(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole
    email: Optional[str] = None
    name: Optional[str] = None


class NotificationSink(Protocol):
    async def notify(
        self,
        recipient: Recipient,
        event: str,
        title: str,
        body: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class NoopNotificationSink:
    """Push delivery is disabled; events are only logged."""

    async def notify(self, recipient, event, title, body="", data=None) -> None:
        logger.debug("notification skipped (%s -> %s:%s): %s", event, recipient.role.value, recipient.id, title)


class InboxNotificationSink:
    async def notify(self, recipient, event, title, body="", data=None) -> None:
        await Notification(
            recipient_id=recipient.id,
            recipient_type=recipient.role,
            event=event,
            title=title,
            body=body,
            data=dict(data or {}),
        ).insert()


class EmailNotificationSink:
    async def notify(self, recipient, event, title, body="", data=None) -> None:
        if not recipient.email:
            logger.debug("no email for %s:%s, %s not mailed", recipient.role.value, recipient.id, event)
            return
        greeting = f"Hi {recipient.name},\n\n" if recipient.name else ""
        await run_in_threadpool(send_email, recipient.email, title, greeting + body)


def build_notification_sink(mode: str) -> NotificationSink:
    mode = (mode or "noop").strip().lower()
    if mode == "inbox":
        return InboxNotificationSink()
    if mode == "email":
        return EmailNotificationSink()
    if mode != "noop":
        logger.warning("Unknown NOTIFICATION_MODE %r, notifications disabled", mode)
    return NoopNotificationSink()


async def dispatch(
    sink: NotificationSink,
    recipient: Recipient,
    event: str,
    title: str,
    body: str = "",
    data: Optional[Dict[str, Any]] = None,
) -> bool:
    """Deliver through the sink. Delivery problems never fail the caller."""
    try:
        await sink.notify(recipient, event, title, body, data)
        return True
    except Exception:
        logger.exception("notification %s to %s:%s failed", event, recipient.role.value, recipient.id)
        return False
