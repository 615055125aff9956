"""
V1 API router aggregator: wires all endpoint modules together.
"""

from fastapi import APIRouter

from rankhub.api.v1.endpoints import admin, auth, users

api_router = APIRouter()

# Auth (register, login, refresh, password reset)
api_router.include_router(auth.router)

# Admin user management
api_router.include_router(admin.router)

# Current user
api_router.include_router(users.router)
