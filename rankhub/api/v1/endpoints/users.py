"""Current-user endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rankhub.api.v1.deps import get_current_user
from rankhub.models.user import User
from rankhub.schemas.user import UserRead

router = APIRouter(tags=["users"])


@router.get("/current-user", response_model=UserRead)
async def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    """Return profile of the currently authenticated user."""
    return current_user
