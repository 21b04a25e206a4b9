"""API v1 routes."""

from fastapi import APIRouter, Depends

from studio.api.deps import rate_limit_auth, rate_limit_general
from studio.api.v1 import admin, auth, health, users

router = APIRouter(dependencies=[Depends(rate_limit_general)])
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(
    auth.router, prefix="/auth", tags=["auth"], dependencies=[Depends(rate_limit_auth)]
)
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
