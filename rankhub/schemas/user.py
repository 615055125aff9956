"""Pydantic schemas for User records."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_MAX_PASSWORD_BYTES = 72  # bcrypt ignores anything past this


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code keeps snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def normalise_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("Invalid email address")
    if len(v) > 320:
        raise ValueError("Email must not exceed 320 characters")
    return v


def check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if len(v.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must not exceed {_MAX_PASSWORD_BYTES} bytes")
    return v


class UserRead(CamelModel):
    """Public view of a user; never carries hashes or one-time tokens."""

    id: int
    email: str
    name: str
    role: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class RegisteredUser(CamelModel):
    email: str


class RegisterResponse(CamelModel):
    user: RegisteredUser


class RoleUpdate(CamelModel):
    role: Literal["user", "admin"]


class AdminUserResponse(CamelModel):
    message: str
    user: UserRead
