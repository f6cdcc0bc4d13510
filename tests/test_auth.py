from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from api.auth.config import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from main import app
from models.auth import AuthSession
from models.enums import ActorRole
from models.users import User
from models.vendors import Vendor


@pytest.fixture
def client():
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def test_password_hashing():
    h = hash_password("s3cret-pass")
    assert h != "s3cret-pass"
    assert verify_password("s3cret-pass", h)
    assert not verify_password("wrong", h)
    assert not verify_password("s3cret-pass", "not-a-bcrypt-hash")


def test_tokens_carry_role_and_type():
    access = decode_token(create_access_token("abc", ActorRole.vendor))
    refresh = decode_token(create_refresh_token("abc"))
    assert access["role"] == "vendor" and access["type"] == "access"
    assert refresh["role"] == "user" and refresh["type"] == "refresh"
    assert access["jti"] != refresh["jti"]
    assert decode_token("garbage") is None


def test_register_issues_tokens(client, store):
    with patch.object(User, "find_one", AsyncMock(return_value=None)):
        r = client.post("/api/v1/auth/register", json={
            "name": " Asha Rao ", "email": "Asha@Example.com", "phone": "9876543210", "password": "password123",
        })
    body = r.json()
    assert r.status_code == 201
    assert body["data"]["role"] == "user"

    user, session = store.inserted
    assert user.email == "asha@example.com"
    assert user.name == "Asha Rao"
    assert isinstance(session, AuthSession)
    assert session.subject_id == user.id
    assert decode_token(body["data"]["access_token"])["sub"] == str(user.id)


def test_register_rejects_duplicate_email(client, user):
    with patch.object(User, "find_one", AsyncMock(return_value=user)):
        r = client.post("/api/v1/auth/register", json={
            "name": "Asha", "email": "asha@example.com", "phone": "9876543210", "password": "password123",
        })
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email already exists"


def test_register_validates_phone(client):
    r = client.post("/api/v1/auth/register", json={
        "name": "Asha", "email": "asha@example.com", "phone": "12345", "password": "password123",
    })
    assert r.status_code == 400
    assert r.json()["error"][0]["field"] == "phone"


def test_login_wrong_password(client, user):
    user.password_hash = hash_password("password123")
    with patch.object(User, "find_one", AsyncMock(return_value=user)):
        r = client.post("/api/v1/auth/login", json={"email": "asha@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid credentials"


def test_disabled_account(client, user, store):
    user.password_hash = hash_password("password123")
    user.is_active = False
    with patch.object(User, "find_one", AsyncMock(return_value=user)):
        r = client.post("/api/v1/auth/login", json={"email": "asha@example.com", "password": "password123"})
    assert r.status_code == 403
    assert store.inserted == []


def test_unapproved_vendor_cannot_log_in(client, vendor):
    vendor.password_hash = hash_password("password123")
    vendor.is_approved = False
    with patch.object(Vendor, "find_one", AsyncMock(return_value=vendor)):
        r = client.post("/api/v1/auth/vendor/login", json={"email": "ravi@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json()["message"] == "Vendor account is pending approval"


def test_vendor_login_issues_vendor_token(client, vendor, store):
    vendor.password_hash = hash_password("password123")
    with patch.object(Vendor, "find_one", AsyncMock(return_value=vendor)):
        r = client.post("/api/v1/auth/vendor/login", json={"email": "ravi@example.com", "password": "password123"})
    data = r.json()["data"]
    assert r.status_code == 200
    assert data["role"] == "vendor"
    assert decode_token(data["access_token"])["role"] == "vendor"
    assert store.inserted[0].subject_type == ActorRole.vendor
