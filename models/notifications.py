from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import Field
from pymongo import IndexModel, ASCENDING, DESCENDING

from .base import BaseDoc
from .enums import ActorRole


class Notification(BaseDoc):
    recipient_id: str
    recipient_type: ActorRole
    event: str

    title: str
    body: str = ""
    data: Dict[str, object] = Field(default_factory=dict)

    read_at: Optional[datetime] = None

    class Settings:
        name = "notifications"
        indexes = [
            IndexModel([("recipient_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("read_at", ASCENDING)]),
        ]
