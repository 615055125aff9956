"""
User management endpoints (admin only): list, inspect, disable / enable,
change role.  Super admin accounts cannot be modified through this API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from rankhub.api.v1.deps import (
    get_refresh_token_repository,
    get_user_repository,
    require_admin,
)
from rankhub.core.exceptions import AuthError, ErrorKind
from rankhub.models.user import User
from rankhub.repositories.refresh_tokens import RefreshTokenRepository
from rankhub.repositories.users import UserRepository
from rankhub.schemas.user import AdminUserResponse, RoleUpdate, UserRead

router = APIRouter(prefix="/auth/admin", tags=["admin"])
logger = logging.getLogger(__name__)


async def _get_target(users: UserRepository, user_id: int) -> User:
    user = await users.find_by_id(user_id)
    if user is None:
        raise AuthError(ErrorKind.USER_NOT_FOUND, "User not found")
    return user


def _ensure_mutable(user: User) -> None:
    if user.role == "super_admin":
        raise AuthError(ErrorKind.FORBIDDEN, "Super admin accounts cannot be modified")


@router.get("/users", response_model=list[UserRead])
async def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    users: UserRepository = Depends(get_user_repository),
    _admin: User = Depends(require_admin),
) -> list[User]:
    return await users.list_all(skip=skip, limit=limit)


@router.get("/users/{user_id}", response_model=UserRead)
async def get_user(
    user_id: int,
    users: UserRepository = Depends(get_user_repository),
    _admin: User = Depends(require_admin),
) -> User:
    return await _get_target(users, user_id)


@router.patch("/users/{user_id}/disable", response_model=AdminUserResponse)
async def disable_user(
    user_id: int,
    users: UserRepository = Depends(get_user_repository),
    refresh_tokens: RefreshTokenRepository = Depends(get_refresh_token_repository),
    admin: User = Depends(require_admin),
) -> AdminUserResponse:
    """Deactivate an account and end all of its sessions."""
    user = await _get_target(users, user_id)
    _ensure_mutable(user)

    user = await users.set_active(user, False)
    # Deactivation alone leaves refresh tokens live; end them here.
    revoked = await refresh_tokens.revoke_all_for_user(user.id)
    logger.info(
        "User id=%s disabled by admin id=%s (%d sessions revoked)", user.id, admin.id, revoked
    )
    return AdminUserResponse(message="User disabled successfully", user=UserRead.model_validate(user))


@router.patch("/users/{user_id}/enable", response_model=AdminUserResponse)
async def enable_user(
    user_id: int,
    users: UserRepository = Depends(get_user_repository),
    admin: User = Depends(require_admin),
) -> AdminUserResponse:
    user = await _get_target(users, user_id)
    user = await users.set_active(user, True)
    logger.info("User id=%s enabled by admin id=%s", user.id, admin.id)
    return AdminUserResponse(message="User enabled successfully", user=UserRead.model_validate(user))


@router.patch("/users/{user_id}/role", response_model=AdminUserResponse)
async def update_user_role(
    user_id: int,
    body: RoleUpdate,
    users: UserRepository = Depends(get_user_repository),
    admin: User = Depends(require_admin),
) -> AdminUserResponse:
    user = await _get_target(users, user_id)
    _ensure_mutable(user)

    user = await users.set_role(user, body.role)
    logger.info("User id=%s role set to %s by admin id=%s", user.id, body.role, admin.id)
    return AdminUserResponse(message="User role updated successfully", user=UserRead.model_validate(user))
