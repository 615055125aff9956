"""
Auth endpoints: registration, email confirmation, login, token refresh,
logout and password reset.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from rankhub.api.v1.deps import client_ip, get_auth_service
from rankhub.core.exceptions import AuthError, ErrorKind
from rankhub.schemas.auth import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
)
from rankhub.schemas.user import RegisteredUser, RegisterResponse
from rankhub.services.auth_service import AuthService, AuthTokens
from rankhub.services.email import EmailDeliveryError


def rate_limit_key(request: Request) -> str:
    """Client IP, namespaced by the app serving the request."""
    return f"{request.app.state.rate_limit_scope}:{get_remote_address(request)}"


def rate_limit_exempt(request: Request) -> bool:
    return not request.app.state.settings.RATE_LIMIT_ENABLED


# Routes bind to this instance at import time; counters and the on/off switch
# are per app through the key function and exempt_when.
limiter = Limiter(key_func=rate_limit_key)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = (
    "If an account exists with this email, a password reset link has been sent."
)


def _auth_response(tokens: AuthTokens) -> AuthResponse:
    return AuthResponse(
        user=AuthService.to_safe_user(tokens.user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
@limiter.limit("10/minute", exempt_when=rate_limit_exempt)
async def register(
    request: Request,
    body: RegisterRequest,
    auth: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """Create an inactive account and send the confirmation email."""
    try:
        user = await auth.register(body, client_ip(request))
    except AuthError as exc:
        logger.warning("Registration failed for %s: %s", body.email, exc.kind.value)
        raise
    except EmailDeliveryError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Confirmation email could not be sent. Please try again later.",
        ) from exc
    return RegisterResponse(user=RegisteredUser(email=user.email))


@router.get("/confirm", response_model=MessageResponse)
async def confirm_email(
    token: str = Query(default=""),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    if not await auth.confirm(token.strip()):
        raise HTTPException(status_code=400, detail="Invalid or expired confirmation token")
    return MessageResponse(message="Email confirmed. You can now log in.")


@router.post("/login", response_model=AuthResponse)
@limiter.limit("5/minute", exempt_when=rate_limit_exempt)
async def login(
    request: Request,
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email + password and open a new session."""
    try:
        user = await auth.login(body)
    except AuthError as exc:
        logger.warning("Login failed for %s: %s", body.email, exc.kind.value)
        raise
    tokens = await auth.issue_tokens(
        user,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    return _auth_response(tokens)


@router.post("/refresh", response_model=AuthResponse)
@limiter.limit("10/minute", exempt_when=rate_limit_exempt)
async def refresh(
    request: Request,
    body: RefreshRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Rotate a refresh token: the presented one is revoked, a new pair issued."""
    try:
        user = await auth.refresh_token(body.refresh_token)
    except AuthError as exc:
        logger.warning("Token refresh failed: %s", exc.kind.value)
        if exc.kind is ErrorKind.USER_NOT_FOUND:
            raise exc.to_http(status.HTTP_401_UNAUTHORIZED) from exc
        raise
    tokens = await auth.issue_tokens(
        user,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    return _auth_response(tokens)


@router.post("/logout", status_code=204)
async def logout(
    body: LogoutRequest,
    auth: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke the given refresh token.  Unknown or revoked tokens are fine."""
    await auth.logout(body.refresh_token)
    return Response(status_code=204)


@router.post("/password-reset/request", response_model=MessageResponse)
@limiter.limit("5/minute", exempt_when=rate_limit_exempt)
async def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    # Same answer whether or not the account exists, or the email went out.
    try:
        await auth.request_password_reset(body.email, body.captcha_token, client_ip(request))
    except EmailDeliveryError:
        logger.exception("Password reset email could not be sent")
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(
    body: PasswordResetConfirm,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await auth.reset_password(body.token, body.password)
    except AuthError as exc:
        logger.warning("Password reset failed: %s", exc.kind.value)
        if exc.kind is ErrorKind.TOKEN_INVALID_OR_EXPIRED:
            raise exc.to_http(status.HTTP_400_BAD_REQUEST) from exc
        raise
    return MessageResponse(message="Password reset successful")
