from typing import Any, Optional

from fastapi import Request

from services.notifications import NotificationSink
from services.payments import PaymentGateway


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def clamp_limit(limit: int) -> int:
    return min(max(int(limit or 20), 1), 100)


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_notifier(request: Request) -> NotificationSink:
    return request.app.state.notifier
