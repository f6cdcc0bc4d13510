import os
import secrets
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional, Any, Dict

import bcrypt
import jwt
from beanie.odm.fields import PydanticObjectId
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer

from schemas.auth import TokenOut
from models import User, Vendor, AdminUser, AuthSession
from models.base import utcnow
from models.enums import ActorRole

JWT_SECRET = (os.getenv("JWT_SECRET") or "").strip()
JWT_ALGORITHM = (os.getenv("JWT_ALGORITHM", "HS256") or "HS256").strip()
ACCESS_MINUTES = int(os.getenv("JWT_ACCESS_MINUTES", "30"))
REFRESH_MINUTES = int(os.getenv("JWT_REFRESH_MINUTES", "43200"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is missing in .env")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

SUBJECT_MODELS = {
    ActorRole.user: User,
    ActorRole.vendor: Vendor,
    ActorRole.admin: AdminUser,
}


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except Exception:
        return False


def _create_token(sub: str, role: ActorRole, token_type: str, minutes: int) -> str:
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": sub,
        "role": role.value,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_access_token(sub: str, role: ActorRole = ActorRole.user) -> str:
    return _create_token(sub, role, "access", ACCESS_MINUTES)


def create_refresh_token(sub: str, role: ActorRole = ActorRole.user) -> str:
    return _create_token(sub, role, "refresh", REFRESH_MINUTES)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def _unauthorized(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def load_subject(token: Optional[str], role: ActorRole):
    if not token:
        return None

    decoded = decode_token(token)
    if not decoded or decoded.get("type") != "access":
        raise _unauthorized()
    if decoded.get("role", ActorRole.user.value) != role.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    try:
        subject_id = PydanticObjectId(decoded.get("sub"))
    except Exception:
        raise _unauthorized()

    model = SUBJECT_MODELS.get(role)
    if model is None:
        raise _unauthorized()
    subject = await model.get(subject_id)
    if not subject or not subject.is_active:
        raise _unauthorized(f"{role.value.capitalize()} not found")
    return subject


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[User]:
    """Signed-in customer, or None for anonymous requests."""
    return await load_subject(token, ActorRole.user)


async def get_current_vendor(token: Optional[str] = Depends(oauth2_scheme)) -> Vendor:
    vendor = await load_subject(token, ActorRole.vendor)
    if not vendor:
        raise _unauthorized("Unauthorized")
    return vendor


async def get_current_admin(token: Optional[str] = Depends(oauth2_scheme)) -> AdminUser:
    admin = await load_subject(token, ActorRole.admin)
    if not admin:
        raise _unauthorized("Unauthorized")
    return admin


def require_auth(user):
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")


async def issue_tokens(subject_id: PydanticObjectId, role: ActorRole, request: Optional[Request]) -> TokenOut:
    sub = str(subject_id)

    refresh = create_refresh_token(sub, role)
    dec = decode_token(refresh)
    if not dec or dec.get("type") != "refresh" or not dec.get("jti") or not dec.get("exp"):
        raise HTTPException(status_code=500, detail="Failed to create refresh token")

    await AuthSession(
        subject_id=subject_id,
        subject_type=role,
        refresh_token_hash=sha256(str(dec["jti"])),
        expires_at=datetime.fromtimestamp(int(dec["exp"]), tz=timezone.utc),
        user_agent=(request.headers.get("user-agent") if request else None),
        ip=(request.client.host if (request and request.client) else None),
    ).insert()

    access = create_access_token(sub, role)
    return TokenOut(access_token=access, refresh_token=refresh, role=role)


async def revoke_session(refresh_token: str) -> Optional[AuthSession]:
    decoded = decode_token(refresh_token)
    if not decoded or decoded.get("type") != "refresh":
        raise HTTPException(401, "Invalid refresh token")

    session = await AuthSession.find_one({"refresh_token_hash": sha256(decoded["jti"])})
    if session and session.revoked_at is None:
        session.revoked_at = utcnow()
        await session.save()
    return session
