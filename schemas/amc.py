from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from models.base import EmbeddedModel
from models.enums import PaymentMode


class SubscriptionCreateIn(EmbeddedModel):
    plan_id: Optional[str] = None
    devices: Optional[List[Dict[str, Any]]] = None
    payment_method: PaymentMode = PaymentMode.online
    auto_renewal: bool = False
    checkout_meta: Optional[Dict[str, Any]] = None


class PaymentVerifyIn(EmbeddedModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class SubscriptionUpdateIn(EmbeddedModel):
    auto_renewal: Optional[bool] = None
    devices: Optional[List[Dict[str, Any]]] = None


class CancelIn(EmbeddedModel):
    reason: Optional[str] = None


class RenewIn(EmbeddedModel):
    period_days: int = Field(default=365, ge=1)


class ServiceRequestIn(EmbeddedModel):
    service_type: Optional[str] = None
    device_id: Optional[str] = None
    description: Optional[str] = None
    preferred_date: Optional[datetime] = None
    preferred_time: Optional[str] = None
    address: Optional[str] = None


class AdminStatusIn(EmbeddedModel):
    status: str
    reason: Optional[str] = None


class AdminUsageIn(EmbeddedModel):
    usage: Dict[str, Any] = Field(default_factory=dict)


class AdminServiceIn(EmbeddedModel):
    service_type: Optional[str] = None
    device_id: Optional[str] = None
    description: Optional[str] = None
    cost: float = Field(default=0, ge=0)
    technician: Optional[str] = None
    notes: str = ""
