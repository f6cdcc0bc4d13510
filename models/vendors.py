from __future__ import annotations

import secrets
from typing import List, Optional

from pydantic import EmailStr, Field
from pymongo import IndexModel, ASCENDING

from .base import BaseDoc


def new_vendor_id() -> str:
    return "VEN" + "".join(secrets.choice("0123456789") for _ in range(6))


class Vendor(BaseDoc):
    vendor_id: str = Field(default_factory=new_vendor_id)
    first_name: str
    last_name: str = ""
    email: EmailStr
    phone: Optional[str] = None
    password_hash: Optional[str] = None
    service_categories: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_approved: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    class Settings:
        name = "vendors"
        indexes = [
            IndexModel([("vendor_id", ASCENDING)], unique=True),
            IndexModel([("email", ASCENDING)], unique=True),
        ]
