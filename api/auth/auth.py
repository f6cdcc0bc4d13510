import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm

from schemas.auth import LoginIn, LogoutIn, MeOut, RefreshIn, RegisterIn, TokenOut
from models import User, Vendor, AdminUser, AuthSession
from models.base import as_utc, utcnow
from models.enums import ActorRole
from api.auth.config import (
    decode_token,
    hash_password,
    issue_tokens,
    load_subject,
    oauth2_scheme,
    require_auth,
    revoke_session,
    sha256,
    verify_password,
)
from api.deps import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _check_credentials(subject, password: str):
    if not subject or not subject.password_hash:
        raise HTTPException(401, "Invalid credentials")
    if not verify_password(password, subject.password_hash):
        raise HTTPException(401, "Invalid credentials")
    if not subject.is_active:
        raise HTTPException(403, "Account is disabled")


# ---------------- AUTH ----------------

@router.post("/register", status_code=201)
async def register(payload: RegisterIn, request: Request):
    email = payload.email.lower().strip()
    if await User.find_one({"email": email}):
        raise HTTPException(400, "User with this email already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
    )
    await user.insert()
    logger.info("User registered: %s", email)

    tokens = await issue_tokens(user.id, ActorRole.user, request)
    return ok(tokens.model_dump(), "Registration successful")


@router.post("/token", response_model=TokenOut)
async def token(form: OAuth2PasswordRequestForm = Depends(), request: Request = None):
    user = await User.find_one({"email": form.username.strip().lower()})
    _check_credentials(user, form.password)
    return await issue_tokens(user.id, ActorRole.user, request)


@router.post("/login")
async def login(payload: LoginIn, request: Request):
    user = await User.find_one({"email": payload.email.lower().strip()})
    _check_credentials(user, payload.password)
    tokens = await issue_tokens(user.id, ActorRole.user, request)
    return ok(tokens.model_dump(), "Login successful")


@router.post("/vendor/login")
async def vendor_login(payload: LoginIn, request: Request):
    vendor = await Vendor.find_one({"email": payload.email.lower().strip()})
    _check_credentials(vendor, payload.password)
    if not vendor.is_approved:
        raise HTTPException(403, "Vendor account is pending approval")
    tokens = await issue_tokens(vendor.id, ActorRole.vendor, request)
    return ok({**tokens.model_dump(), "vendor_id": vendor.vendor_id}, "Login successful")


@router.post("/admin/login")
async def admin_login(payload: LoginIn, request: Request):
    admin = await AdminUser.find_one({"email": payload.email.lower().strip()})
    _check_credentials(admin, payload.password)
    tokens = await issue_tokens(admin.id, ActorRole.admin, request)
    logger.info("Admin signed in: %s", admin.email)
    return ok(tokens.model_dump(), "Login successful")


@router.post("/refresh-token")
async def refresh_token(payload: RefreshIn, request: Request):
    decoded = decode_token(payload.refresh_token)
    if not decoded or decoded.get("type") != "refresh":
        raise HTTPException(401, "Invalid refresh token")

    session = await AuthSession.find_one({"refresh_token_hash": sha256(decoded["jti"])})
    if not session or session.revoked_at is not None:
        raise HTTPException(401, "Refresh token revoked")

    if as_utc(session.expires_at) < utcnow():
        raise HTTPException(401, "Refresh token expired")

    session.revoked_at = utcnow()
    await session.save()

    tokens = await issue_tokens(session.subject_id, session.subject_type, request)
    return ok(tokens.model_dump())


@router.post("/logout", status_code=200)
async def logout(payload: LogoutIn):
    await revoke_session(payload.refresh_token)
    return ok(message="Logged out")


@router.get("/me")
async def me(token: Optional[str] = Depends(oauth2_scheme)):
    decoded = decode_token(token) if token else None
    if not decoded or decoded.get("type") != "access":
        raise HTTPException(401, "Unauthorized")

    try:
        role = ActorRole(decoded.get("role", ActorRole.user.value))
    except ValueError:
        raise HTTPException(401, "Invalid token")
    subject = await load_subject(token, role)
    require_auth(subject)

    if role == ActorRole.vendor:
        name, vendor_id = subject.full_name, subject.vendor_id
    else:
        name, vendor_id = subject.name or "", None
    out = MeOut(
        id=str(subject.id),
        role=role,
        name=name,
        email=subject.email,
        phone=getattr(subject, "phone", None),
        vendor_id=vendor_id,
    )
    return ok(out.model_dump())
