from __future__ import annotations

from datetime import datetime
from typing import Optional

from beanie.odm.fields import PydanticObjectId
from pymongo import IndexModel, ASCENDING, DESCENDING

from .base import BaseDoc
from .enums import ActorRole


class AuthSession(BaseDoc):
    subject_id: PydanticObjectId
    subject_type: ActorRole = ActorRole.user
    refresh_token_hash: str

    ip: Optional[str] = None
    user_agent: Optional[str] = None

    expires_at: datetime
    revoked_at: Optional[datetime] = None

    class Settings:
        name = "auth_sessions"
        indexes = [
            IndexModel([("subject_id", ASCENDING), ("expires_at", DESCENDING)]),
            IndexModel([("refresh_token_hash", ASCENDING)], unique=True),
            IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0),
        ]
