from __future__ import annotations
from enum import Enum


class PlanStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    draft = "draft"


class PlanPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class SupportLevel(str, Enum):
    unlimited = "unlimited"
    limited = "limited"
    none = "none"


class AMCStatus(str, Enum):
    inactive = "inactive"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentMode(str, Enum):
    online = "online"
    cash = "cash"


class PaymentChannel(str, Enum):
    card = "card"
    upi = "upi"
    netbanking = "netbanking"
    wallet = "wallet"
    cash = "cash"


class RefundStatus(str, Enum):
    none = "none"
    pending = "pending"
    processed = "processed"


class AMCServiceType(str, Enum):
    home_visit = "home_visit"
    remote_support = "remote_support"
    call_support = "call_support"
    warranty_claim = "warranty_claim"


class ServiceRecordStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"


class BookingStatus(str, Enum):
    pending = "pending"
    waiting_for_engineer = "waiting_for_engineer"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    declined = "declined"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class VendorResponseStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class TimeSlot(str, Enum):
    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"


class ActorRole(str, Enum):
    user = "user"
    vendor = "vendor"
    admin = "admin"
    customer = "customer"
    system = "system"


class StatsPeriod(str, Enum):
    week = "week"
    month = "month"
    year = "year"
    all = "all"
