from __future__ import annotations

from typing import Any, Dict, List, Optional

from beanie.odm.fields import PydanticObjectId
from pydantic import EmailStr, Field
from pymongo import IndexModel, ASCENDING, DESCENDING

from .base import BaseDoc


class AdminUser(BaseDoc):
    """Back-office operator. Created out of band, signs in via /auth/admin/login."""

    email: EmailStr
    password_hash: str
    name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    is_active: bool = True

    class Settings:
        name = "admin_users"
        indexes = [
            IndexModel([("email", ASCENDING)], unique=True),
        ]


class AdminAuditLog(BaseDoc):
    admin_id: PydanticObjectId
    admin_email: Optional[str] = None
    action: str  # e.g. "booking.refund", "amc.plan.delete"

    # "booking" / "subscription" / "plan", None for bulk actions
    entity: Optional[str] = None
    entity_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "admin_audit_logs"
        indexes = [
            IndexModel([("admin_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("entity", ASCENDING), ("entity_id", ASCENDING), ("created_at", DESCENDING)]),
        ]
