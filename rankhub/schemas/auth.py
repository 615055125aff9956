"""Pydantic schemas for the /auth endpoints."""

from __future__ import annotations

from pydantic import field_validator

from rankhub.schemas.user import (
    CamelModel,
    UserRead,
    check_password_strength,
    normalise_email,
)


class RegisterRequest(CamelModel):
    email: str
    name: str
    password: str
    captcha_token: str | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalise_email(v)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        if len(v) > 200:
            raise ValueError("Name must not exceed 200 characters")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return check_password_strength(v)


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class RefreshRequest(CamelModel):
    refresh_token: str

    @field_validator("refresh_token")
    @classmethod
    def _token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Refresh token is required")
        return v


class LogoutRequest(RefreshRequest):
    pass


class AuthResponse(CamelModel):
    user: UserRead
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class PasswordResetRequest(CamelModel):
    email: str
    captcha_token: str | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalise_email(v)


class PasswordResetConfirm(CamelModel):
    token: str
    password: str

    @field_validator("token")
    @classmethod
    def _token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reset token is required")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return check_password_strength(v)


class MessageResponse(CamelModel):
    message: str
