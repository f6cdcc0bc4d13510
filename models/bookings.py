from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from beanie.odm.fields import PydanticObjectId
from pydantic import ConfigDict, EmailStr, Field, field_validator
from pymongo import IndexModel, ASCENDING, DESCENDING

from config import DEFAULT_SERVICE_FEE
from .base import BaseDoc, EmbeddedModel, utcnow
from .enums import (
    ActorRole,
    BookingStatus,
    PaymentChannel,
    PaymentMode,
    PaymentStatus,
    Priority,
    TimeSlot,
    VendorResponseStatus,
)

_AMOUNT_JUNK_RE = re.compile(r"[^\d.\-]")


def parse_amount(value) -> float:
    """Accept numbers or display strings such as '₹1,200'."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _AMOUNT_JUNK_RE.sub("", str(value))
    if cleaned in ("", "-", ".", "-."):
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(f"Invalid amount: {value!r}")


class Address(EmbeddedModel):
    model_config = ConfigDict(frozen=True)

    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pincode: str = Field(pattern=r"^\d{6}$")
    landmark: Optional[str] = None


class CustomerSnapshot(EmbeddedModel):
    """Customer contact details copied onto the booking when it is placed."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(pattern=r"^\d{10}$")
    address: Address

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        # bookings are listed and owned by lowercased email
        return v.strip().lower() if isinstance(v, str) else v


class BookedService(EmbeddedModel):
    service_id: str
    service_name: str
    price: float = Field(ge=0)


class Pricing(EmbeddedModel):
    subtotal: float = Field(ge=0)
    service_fee: float = Field(default=DEFAULT_SERVICE_FEE, ge=0)
    total_amount: float = Field(ge=0)
    discount_amount: Optional[float] = Field(default=None, ge=0)
    discount_label: Optional[str] = None
    is_first_time_user: bool = False


class Scheduling(EmbeddedModel):
    preferred_date: datetime
    preferred_time_slot: TimeSlot
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None


class BookingPayment(EmbeddedModel):
    status: PaymentStatus = PaymentStatus.pending
    method: Optional[PaymentChannel] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None

    refund_id: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None


class VendorAssignment(EmbeddedModel):
    vendor_id: str
    assigned_at: datetime = Field(default_factory=utcnow)


class VendorResponse(EmbeddedModel):
    status: VendorResponseStatus = VendorResponseStatus.pending
    responded_at: Optional[datetime] = None
    response_note: Optional[str] = None


class SparePart(EmbeddedModel):
    name: str
    amount: float = 0
    photo: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def parse_display_amount(cls, v):
        return parse_amount(v)


class CompletionData(EmbeddedModel):
    resolution_note: str = ""
    billing_amount: float = Field(default=0, ge=0)
    spare_parts: List[SparePart] = Field(default_factory=list)
    traveling_amount: float = Field(default=0, ge=0)
    payment_method: PaymentMode = PaymentMode.online
    include_gst: bool = False
    gst_amount: float = Field(default=0, ge=0)
    total_amount: float = Field(default=0, ge=0)
    completed_at: datetime = Field(default_factory=utcnow)

    @field_validator("billing_amount", "traveling_amount", "gst_amount", mode="before")
    @classmethod
    def parse_money(cls, v):
        return parse_amount(v)

    @property
    def spare_parts_total(self) -> float:
        return sum(p.amount for p in self.spare_parts)


class RescheduleRecord(EmbeddedModel):
    original_date: Optional[datetime] = None
    original_time: Optional[str] = None
    new_date: datetime
    new_time: str
    reason: str
    rescheduled_by: ActorRole = ActorRole.customer
    rescheduled_at: datetime = Field(default_factory=utcnow)


class CancellationRecord(EmbeddedModel):
    cancelled_by: ActorRole
    reason: str
    cancelled_at: datetime = Field(default_factory=utcnow)


class Booking(BaseDoc):
    customer: CustomerSnapshot
    user_id: Optional[PydanticObjectId] = None

    services: List[BookedService] = Field(min_length=1)
    pricing: Pricing
    scheduling: Scheduling

    status: BookingStatus = BookingStatus.pending
    priority: Priority = Priority.medium

    payment: BookingPayment = Field(default_factory=BookingPayment)
    payment_mode: PaymentMode = PaymentMode.online
    payment_status: Optional[str] = None

    vendor: Optional[VendorAssignment] = None
    vendor_response: VendorResponse = Field(default_factory=VendorResponse)

    completion_data: Optional[CompletionData] = None
    reschedule_data: Optional[RescheduleRecord] = None
    cancellation_data: Optional[CancellationRecord] = None

    notes: Optional[str] = Field(default=None, max_length=1000)
    assignment_notes: Optional[str] = None

    @property
    def booking_reference(self) -> str:
        if self.id is None:
            return ""
        return ("FIX" + str(self.id)[-8:]).upper()

    class Settings:
        name = "bookings"
        indexes = [
            IndexModel([("customer.email", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("vendor.vendor_id", ASCENDING), ("scheduling.scheduled_date", ASCENDING)]),
            IndexModel([("status", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("payment.razorpay_order_id", ASCENDING)], sparse=True),
        ]
