from unittest.mock import patch

from beanie.odm.fields import PydanticObjectId

from models.admin import AdminAuditLog, AdminUser
from models.base import BaseDoc
from services.audit import record_admin_action


def make_admin():
    return AdminUser(id=PydanticObjectId(), email="ops@fixfly.in", password_hash="x", name="Ops")


async def test_audit_entry_names_the_entity(store):
    admin = make_admin()
    await record_admin_action(admin, "booking.refund", {"booking_id": "abc123"}, {"amount": 500})

    [entry] = store.inserted
    assert isinstance(entry, AdminAuditLog)
    assert entry.entity == "booking"
    assert entry.entity_id == "abc123"
    assert entry.admin_email == "ops@fixfly.in"
    assert entry.details == {"amount": 500}


async def test_bulk_action_has_no_entity(store):
    await record_admin_action(make_admin(), "amc.subscriptions.expire", meta={"expired": 3})
    assert store.inserted[0].entity is None


async def test_audit_failure_is_swallowed():
    async def boom(self, *args, **kwargs):
        raise RuntimeError("mongo down")

    with patch.object(BaseDoc, "insert", boom):
        await record_admin_action(make_admin(), "amc.plan.delete", {"plan_id": "p1"})


def test_admin_roles_default_empty():
    assert make_admin().roles == []
    admin = AdminUser(email="lead@fixfly.in", password_hash="x", roles=["bookings", "amc"])
    assert admin.roles == ["bookings", "amc"]
