from datetime import datetime
from typing import Any, Dict, List, Optional

from models.base import EmbeddedModel
from models.enums import PaymentChannel, PaymentMode


class BookingCreateIn(EmbeddedModel):
    customer: Optional[Dict[str, Any]] = None
    services: Optional[List[Dict[str, Any]]] = None
    pricing: Optional[Dict[str, Any]] = None
    scheduling: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.online


class StatusIn(EmbeddedModel):
    status: str
    reason: Optional[str] = None


class PriorityIn(EmbeddedModel):
    priority: str


class VendorResponseIn(EmbeddedModel):
    response_note: Optional[str] = None


class CompleteIn(EmbeddedModel):
    completion_data: Optional[Dict[str, Any]] = None


class UserCancelIn(EmbeddedModel):
    reason: Optional[str] = None


class RescheduleIn(EmbeddedModel):
    new_date: Optional[datetime] = None
    new_time: Optional[str] = None
    reason: Optional[str] = None


class AssignVendorIn(EmbeddedModel):
    vendor_id: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    confirm: bool = False


class CreateOrderIn(EmbeddedModel):
    booking_id: str


class BookingPaymentVerifyIn(EmbeddedModel):
    booking_id: str
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    method: Optional[PaymentChannel] = None


class RefundIn(EmbeddedModel):
    amount: Optional[float] = None
    reason: Optional[str] = None
