from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, error: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error = error


class ValidationFailed(ServiceError):
    status_code = 400


class NotFound(ServiceError):
    status_code = 404


class Forbidden(ServiceError):
    status_code = 403


class LimitExceeded(ServiceError):
    status_code = 400


class InvalidTransition(ServiceError):
    """Action not allowed from the entity's current status."""

    status_code = 400

    def __init__(self, message: str, current: Any, action: Optional[str] = None):
        current_value = getattr(current, "value", current)
        super().__init__(message, error={"current_status": current_value, "action": action})
        self.current = current
        self.action = action


class GatewayError(ServiceError):
    status_code = 500
