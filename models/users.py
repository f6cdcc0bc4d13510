from __future__ import annotations

from typing import Optional

from pydantic import EmailStr
from pymongo import IndexModel, ASCENDING

from .base import BaseDoc


class User(BaseDoc):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    password_hash: Optional[str] = None  # bcrypt hash
    is_active: bool = True

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("email", ASCENDING)], unique=True),
            IndexModel([("phone", ASCENDING)], sparse=True),
        ]
