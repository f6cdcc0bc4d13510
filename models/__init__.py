from __future__ import annotations

from beanie import init_beanie
from pymongo.asynchronous.database import AsyncDatabase

from .db import db, client
from .users import User
from .vendors import Vendor
from .auth import AuthSession
from .admin import AdminUser, AdminAuditLog
from .amc import AMCPlan, AMCSubscription
from .bookings import Booking
from .notifications import Notification

ALL_MODELS = [
    User,
    Vendor,
    AuthSession,
    AdminUser, AdminAuditLog,
    AMCPlan, AMCSubscription,
    Booking,
    Notification,
]


async def init_models(database: AsyncDatabase) -> None:
    await init_beanie(database=database, document_models=ALL_MODELS)
