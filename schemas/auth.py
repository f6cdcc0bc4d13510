from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from models.enums import ActorRole


class RegisterIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, pattern=r"^\d{10}$")
    password: str = Field(min_length=8)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: ActorRole = ActorRole.user


class RefreshIn(BaseModel):
    refresh_token: str


class LogoutIn(BaseModel):
    refresh_token: str


class MeOut(BaseModel):
    id: str
    role: ActorRole
    name: str
    email: str
    phone: Optional[str] = None
    vendor_id: Optional[str] = None
