"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.

Partial updates (``UserProfileUpdate``, ``DeviceRenameRequest``) rely on
``model_fields_set``: a field that was not sent is absent, which is
different from a field sent as ``null``.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from netgate.core.security import MAX_PASSWORD_BYTES


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    # Email or username.
    identifier: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1)
    # Hardware address reported by the portal page; used only when the
    # network confirms it.
    mac_address: str | None = None


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)

    @field_validator("new_password")
    @classmethod
    def _fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"new_password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    refresh_expires_at: datetime


class LoginResponse(TokenResponse):
    user_id: uuid.UUID
    device_id: uuid.UUID
    new_device: bool
    network_enforced: bool


# ── User ─────────────────────────────────────────────────────────────
class UserOut(BaseModel):
    id: uuid.UUID
    email: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool
    is_admin: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserProfileUpdate(BaseModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, max_length=50)
    last_name: str | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def _email_not_null(self) -> "UserProfileUpdate":
        if "email" in self.model_fields_set and self.email is None:
            raise ValueError("email cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(include=self.model_fields_set)


# ── Devices ──────────────────────────────────────────────────────────
class DeviceOut(BaseModel):
    id: uuid.UUID
    mac_address: str
    ip_address: str | None = None
    device_name: str
    user_agent: str | None = None
    is_active: bool
    last_seen: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class DeviceRenameRequest(BaseModel):
    device_name: str | None = Field(default=None, max_length=100)

    @field_validator("device_name")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @model_validator(mode="after")
    def _name_present(self) -> "DeviceRenameRequest":
        if "device_name" not in self.model_fields_set or not self.device_name:
            raise ValueError("device_name is required")
        return self


class ConnectionOut(BaseModel):
    id: uuid.UUID
    ip_address: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    is_active: bool
    bytes_total: int
    packets_total: int

    model_config = {"from_attributes": True}


class ConnectionPageOut(BaseModel):
    items: list[ConnectionOut]
    total: int
    page: int
    limit: int
    pages: int


class DeviceTrafficOut(BaseModel):
    device_id: uuid.UUID
    ip_address: str | None = None
    is_active: bool
    bytes: int
    packets: int

    model_config = {"from_attributes": True}


class DeviceRevocationOut(BaseModel):
    device_id: uuid.UUID
    firewall_revoked: bool
    sessions_revoked: int
    connections_closed: int

    model_config = {"from_attributes": True}


# ── Admin ────────────────────────────────────────────────────────────
class DeactivationReportOut(BaseModel):
    user_id: uuid.UUID
    devices: int
    firewall_failures: list[str]
    failure_count: int
    sessions_revoked: int
    connections_closed: int

    model_config = {"from_attributes": True}


class GrantOut(BaseModel):
    mac_address: str
    ip_address: str | None = None


class DisconnectAllOut(BaseModel):
    revoked: int
    failed: int
    devices_deactivated: int
    connections_closed: int
    firewall_error: str | None = None


class NetworkInitOut(BaseModel):
    regranted: int
    failed: list[str]

    model_config = {"from_attributes": True}


class UsageReportOut(BaseModel):
    open_connections: int
    updated: int

    model_config = {"from_attributes": True}


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str
