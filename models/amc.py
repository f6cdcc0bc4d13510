from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from beanie.odm.fields import PydanticObjectId
from pydantic import AliasChoices, ConfigDict, Field
from pymongo import IndexModel, ASCENDING, DESCENDING

from .base import BaseDoc, EmbeddedModel, utcnow
from .enums import (
    AMCServiceType,
    AMCStatus,
    PaymentMode,
    PaymentStatus,
    PlanPeriod,
    PlanStatus,
    RefundStatus,
    ServiceRecordStatus,
    SupportLevel,
)

UNLIMITED = "unlimited"


# ---------------- PLAN ----------------

class PlanItem(EmbeddedModel):
    title: str = Field(max_length=100)
    description: str = Field(default="", max_length=200)


class HomeVisitsBenefit(EmbeddedModel):
    count: int = Field(default=0, ge=0)
    description: str = ""


class AntivirusBenefit(EmbeddedModel):
    included: bool = False
    name: str = ""


class IncludedBenefit(EmbeddedModel):
    included: bool = False


class SparePartsDiscountBenefit(EmbeddedModel):
    percentage: float = Field(default=0, ge=0, le=100)


class FreeSparePartsBenefit(EmbeddedModel):
    amount: float = Field(default=0, ge=0)


class PlanBenefits(EmbeddedModel):
    call_support: SupportLevel = SupportLevel.none
    remote_support: SupportLevel = SupportLevel.none
    call_support_sessions: int = Field(default=0, ge=0)
    remote_support_sessions: int = Field(default=0, ge=0)
    home_visits: HomeVisitsBenefit = Field(default_factory=HomeVisitsBenefit)
    warranty_claims: int = Field(default=3, ge=0)
    antivirus: AntivirusBenefit = Field(default_factory=AntivirusBenefit)
    software_installation: IncludedBenefit = Field(default_factory=IncludedBenefit)
    spare_parts_discount: SparePartsDiscountBenefit = Field(default_factory=SparePartsDiscountBenefit)
    free_spare_parts: FreeSparePartsBenefit = Field(default_factory=FreeSparePartsBenefit)
    labor_cost: IncludedBenefit = Field(default_factory=IncludedBenefit)


class AMCPlan(BaseDoc):
    name: str = Field(max_length=100)
    price: float = Field(ge=0)
    period: PlanPeriod = PlanPeriod.yearly
    description: str = Field(max_length=500)
    short_description: str = Field(default="", max_length=200)

    features: List[PlanItem] = Field(default_factory=list)
    limitations: List[PlanItem] = Field(default_factory=list)
    benefits: PlanBenefits = Field(default_factory=PlanBenefits)

    status: PlanStatus = PlanStatus.active
    is_popular: bool = False
    is_recommended: bool = False
    sort_order: int = 0
    image: Optional[str] = None
    validity_period: int = Field(default=365, ge=1)
    tags: List[str] = Field(default_factory=list)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None

    created_by: Optional[PydanticObjectId] = None
    last_modified_by: Optional[PydanticObjectId] = None

    class Settings:
        name = "amc_plans"
        indexes = [
            IndexModel([("name", ASCENDING)], unique=True),
            IndexModel([("status", ASCENDING), ("sort_order", ASCENDING)]),
        ]


# ---------------- SUBSCRIPTION ----------------

def new_subscription_id() -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"AMC{utcnow():%y%m%d}{suffix}"


class UserSnapshot(EmbeddedModel):
    """Customer details as they were at checkout."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None


class CoveredDevice(EmbeddedModel):
    device_type: str = Field(validation_alias=AliasChoices("device_type", "deviceType", "type"))
    serial_number: str = Field(validation_alias=AliasChoices("serial_number", "serialNumber", "serial"))
    model_number: str = Field(validation_alias=AliasChoices("model_number", "modelNumber", "model"))
    brand: Optional[str] = None
    purchase_date: Optional[datetime] = None


class SupportCounter(EmbeddedModel):
    used: int = Field(default=0, ge=0)
    limit: Union[int, Literal["unlimited"]] = 0

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> Union[int, str]:
        if self.unlimited:
            return UNLIMITED
        return max(0, int(self.limit) - self.used)


class MeteredCounter(EmbeddedModel):
    used: int = Field(default=0, ge=0)
    limit: int = Field(default=0, ge=0)
    remaining: int = Field(default=0, ge=0)


class AntivirusUsage(EmbeddedModel):
    activated: bool = False
    activation_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None


class AmountCounter(EmbeddedModel):
    used: float = Field(default=0, ge=0)
    limit: float = Field(default=0, ge=0)
    remaining: float = Field(default=0, ge=0)


class AMCUsage(EmbeddedModel):
    call_support: SupportCounter = Field(default_factory=SupportCounter)
    remote_support: SupportCounter = Field(default_factory=SupportCounter)
    home_visits: MeteredCounter = Field(default_factory=MeteredCounter)
    warranty_claims: MeteredCounter = Field(default_factory=MeteredCounter)
    antivirus: AntivirusUsage = Field(default_factory=AntivirusUsage)
    spare_parts_discount: AmountCounter = Field(default_factory=AmountCounter)
    free_spare_parts: AmountCounter = Field(default_factory=AmountCounter)


class ServiceRecord(EmbeddedModel):
    service_type: AMCServiceType
    device_id: str
    description: str
    status: ServiceRecordStatus = ServiceRecordStatus.pending
    requested_at: datetime = Field(default_factory=utcnow)
    preferred_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: str = ""
    cost: float = Field(default=0, ge=0)
    technician: Optional[str] = None


class AutoRenewal(EmbeddedModel):
    enabled: bool = False
    next_renewal_date: Optional[datetime] = None


class SubscriptionCancellation(EmbeddedModel):
    reason: str
    requested_at: datetime
    cancelled_at: datetime
    refund_amount: float = 0
    refund_status: RefundStatus = RefundStatus.none


class AMCSubscription(BaseDoc):
    subscription_id: str = Field(default_factory=new_subscription_id)

    user_id: PydanticObjectId
    user: UserSnapshot

    plan_id: PydanticObjectId
    plan_name: str
    plan_price: float

    amount: float = Field(ge=0)
    status: AMCStatus = AMCStatus.inactive
    payment_status: PaymentStatus = PaymentStatus.pending
    payment_method: PaymentMode = PaymentMode.online

    devices: List[CoveredDevice] = Field(default_factory=list)
    usage: AMCUsage = Field(default_factory=AMCUsage)

    validity_days: int = Field(default=365, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    auto_renewal: AutoRenewal = Field(default_factory=AutoRenewal)
    renewal_count: int = 0
    last_renewed_at: Optional[datetime] = None

    service_history: List[ServiceRecord] = Field(default_factory=list)
    cancellation: Optional[SubscriptionCancellation] = None

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    payment_details: Dict[str, Any] = Field(default_factory=dict)

    checkout_meta: Dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "amc_subscriptions"
        indexes = [
            IndexModel([("subscription_id", ASCENDING)], unique=True),
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("plan_id", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("status", ASCENDING), ("end_date", ASCENDING)]),
        ]
