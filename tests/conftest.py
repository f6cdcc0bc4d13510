import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from beanie import Document
from beanie.odm.fields import PydanticObjectId

from models.amc import AMCPlan, AMCSubscription
from models.base import BaseDoc
from models.bookings import Booking
from models.users import User
from models.vendors import Vendor
from services.amc_lifecycle import initial_usage, user_snapshot
from services.payments import razorpay_signature

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_collection():
    # documents can be built without init_beanie
    with patch.object(Document, "get_pymongo_collection", MagicMock()):
        yield


class Store:
    """Records writes that would have gone to Mongo."""

    def __init__(self):
        self.inserted = []
        self.saved = []
        self.deleted = []


@pytest.fixture(autouse=True)
def store():
    s = Store()

    async def insert(self, *args, **kwargs):
        if self.id is None:
            self.id = PydanticObjectId()
        s.inserted.append(self)
        return self

    async def save(self, *args, **kwargs):
        s.saved.append(self)
        return self

    async def delete(self, *args, **kwargs):
        s.deleted.append(self)

    with patch.object(BaseDoc, "insert", insert), \
         patch.object(BaseDoc, "save", save), \
         patch.object(BaseDoc, "delete", delete):
        yield s


class FakeSink:
    def __init__(self):
        self.sent = []

    async def notify(self, recipient, event, title, body="", data=None):
        self.sent.append((recipient, event, title, body, data))

    @property
    def events(self):
        return [e for _, e, _, _, _ in self.sent]


class FakeGateway:
    key_id = "rzp_test_key"
    secret = "test_secret"

    def __init__(self, fail_orders=False):
        self.fail_orders = fail_orders
        self.orders = []
        self.refunds = []

    async def create_order(self, amount, currency="INR", receipt="", notes=None):
        from services.errors import GatewayError

        if self.fail_orders:
            raise GatewayError("Payment gateway request failed")
        order = {"id": f"order_{len(self.orders) + 1}", "amount": int(round(amount * 100)), "currency": currency}
        self.orders.append({"amount": amount, "receipt": receipt, "notes": notes})
        return order

    def verify_signature(self, order_id, payment_id, signature):
        return signature == razorpay_signature(order_id, payment_id, self.secret)

    async def get_payment_details(self, payment_id):
        return {"id": payment_id, "method": "upi"}

    async def refund(self, payment_id, amount=None, notes=None):
        self.refunds.append({"payment_id": payment_id, "amount": amount, "notes": notes})
        return {"id": f"rfnd_{len(self.refunds)}", "amount": amount}

    def sign(self, order_id, payment_id):
        return razorpay_signature(order_id, payment_id, self.secret)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def user():
    return User(id=PydanticObjectId(), name="Asha Rao", email="asha@example.com", phone="9876543210")


@pytest.fixture
def vendor():
    return Vendor(
        id=PydanticObjectId(),
        vendor_id="VEN100001",
        first_name="Ravi",
        last_name="Kumar",
        email="ravi@example.com",
        is_approved=True,
    )


def make_plan(**overrides):
    data = {
        "id": PydanticObjectId(),
        "name": "CARE PLAN",
        "price": 59,
        "description": "Comprehensive care",
        "benefits": {
            "call_support": "unlimited",
            "remote_support": "limited",
            "remote_support_sessions": 2,
            "home_visits": {"count": 1},
            "antivirus": {"included": True, "name": "Quick Heal Pro"},
        },
    }
    data.update(overrides)
    return AMCPlan(**data)


def make_subscription(user, plan, **overrides):
    data = {
        "id": PydanticObjectId(),
        "user_id": user.id,
        "user": user_snapshot(user),
        "plan_id": plan.id,
        "plan_name": plan.name,
        "plan_price": plan.price,
        "amount": plan.price,
        "devices": [{"device_type": "laptop", "serial_number": "SN-1", "model_number": "X1"}],
        "usage": initial_usage(plan),
        "razorpay_order_id": "order_1",
    }
    data.update(overrides)
    return AMCSubscription(**data)


def make_active_subscription(user, plan, start=NOW, days=365, **overrides):
    return make_subscription(
        user,
        plan,
        status="active",
        payment_status="completed",
        start_date=start,
        end_date=start + timedelta(days=days),
        **overrides,
    )


def booking_payload():
    return {
        "customer": {
            "name": "Asha Rao",
            "email": "asha@example.com",
            "phone": "9876543210",
            "address": {"street": "12 MG Road", "city": "Pune", "state": "MH", "pincode": "411001"},
        },
        "services": [{"serviceId": "svc-1", "serviceName": "Laptop repair", "price": 400}],
        "pricing": {"subtotal": 400, "serviceFee": 100, "totalAmount": 500},
        "scheduling": {"preferredDate": "2025-03-12T00:00:00Z", "preferredTimeSlot": "morning"},
    }


def make_booking(**overrides):
    data = booking_payload()
    data["id"] = PydanticObjectId()
    data.update(overrides)
    return Booking(**data)
