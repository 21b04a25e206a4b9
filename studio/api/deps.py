"""FastAPI dependencies: per-request store and services, the auth gate, role and permission guards, rate limits.

Long-lived collaborators (settings, token codec, mailer, limiters) are built once
in ``create_app`` and kept on ``app.state``; everything touching the store is
built per request so that one request shares one store (and one transaction).
"""

import logging
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from studio.core.clock import Clock
from studio.core.config import Settings
from studio.core.exceptions import Forbidden, RateLimited
from studio.core.permissions import Permission, Role, has_all_permissions, has_any_permission, has_role
from studio.core.security import SecretBox, TokenCodec
from studio.services.admin import AdminService
from studio.services.auth import AuthService
from studio.services.email import Mailer
from studio.services.gate import AuthGate, Identity
from studio.services.rate_limit import FixedWindowRateLimiter
from studio.services.secret_tokens import SecretTokenManager
from studio.services.sessions import ClientContext, SessionManager
from studio.services.users import UsersService
from studio.storage.base import Store

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_codec(request: Request) -> TokenCodec:
    return request.app.state.codec


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_secret_box(request: Request) -> SecretBox:
    return request.app.state.secret_box


async def get_store(request: Request) -> AsyncIterator[Store]:
    """Dependency that yields a request-scoped store; uncommitted writes are discarded on error."""
    async with request.app.state.store_factory() as store:
        try:
            yield store
        except Exception:
            await store.rollback()
            raise


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ClockDep = Annotated[Clock, Depends(get_clock)]
CodecDep = Annotated[TokenCodec, Depends(get_codec)]
StoreDep = Annotated[Store, Depends(get_store)]


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=request.client.host if request.client else None,
        device_info=(request.headers.get("user-agent") or "")[:512] or None,
    )


def get_session_manager(
    store: StoreDep, codec: CodecDep, settings: SettingsDep, clock: ClockDep
) -> SessionManager:
    return SessionManager(store, codec, settings, clock)


def get_secret_tokens(store: StoreDep, clock: ClockDep) -> SecretTokenManager:
    return SecretTokenManager(store, clock)


def get_auth_service(
    store: StoreDep,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    secret_tokens: Annotated[SecretTokenManager, Depends(get_secret_tokens)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
    settings: SettingsDep,
    clock: ClockDep,
) -> AuthService:
    return AuthService(store, sessions, secret_tokens, mailer, settings, clock)


def get_users_service(
    store: StoreDep,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    clock: ClockDep,
) -> UsersService:
    return UsersService(store, sessions, clock)


def get_admin_service(
    store: StoreDep,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    secret_box: Annotated[SecretBox, Depends(get_secret_box)],
    clock: ClockDep,
) -> AdminService:
    return AdminService(store, sessions, secret_box, clock)


def get_gate(store: StoreDep, codec: CodecDep) -> AuthGate:
    return AuthGate(store, codec)


# -- authentication ----------------------------------------------------------


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    gate: Annotated[AuthGate, Depends(get_gate)],
) -> Identity:
    """Dependency: require a valid Bearer access token for a live, active, unbanned user."""
    token = credentials.credentials if credentials else None
    return await gate.authenticate(token)


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    gate: Annotated[AuthGate, Depends(get_gate)],
) -> Identity | None:
    """Dependency: the caller's identity if the token checks out, otherwise None. Never raises."""
    token = credentials.credentials if credentials else None
    return await gate.authenticate_optional(token)


CurrentUser = Annotated[Identity, Depends(get_current_user)]


def require_role(*roles: Role):
    """Dependency factory: 403 unless the caller holds one of ``roles``."""

    async def guard(identity: CurrentUser) -> Identity:
        if not has_role(identity.role, roles):
            raise Forbidden()
        return identity

    return guard


def require_permission(*permissions: Permission):
    """Dependency factory: 403 unless the caller's role grants every one of ``permissions``."""

    async def guard(identity: CurrentUser) -> Identity:
        if not has_all_permissions(identity.role, permissions):
            raise Forbidden()
        return identity

    return guard


def require_any_permission(*permissions: Permission):
    """Dependency factory: 403 unless the caller's role grants at least one of ``permissions``."""

    async def guard(identity: CurrentUser) -> Identity:
        if not has_any_permission(identity.role, permissions):
            raise Forbidden()
        return identity

    return guard


require_admin = require_role(Role.ADMIN, Role.SUPER_ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)

AdminUser = Annotated[Identity, Depends(require_admin)]


# -- admission control -------------------------------------------------------


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _enforce(limiter: FixedWindowRateLimiter | None, request: Request, message: str) -> None:
    if limiter is None:
        return
    allowed, retry_after = limiter.hit(_client_key(request))
    if not allowed:
        logger.warning("Rate limit exceeded for %s on %s", _client_key(request), request.url.path)
        raise RateLimited(message, retry_after=retry_after)


def rate_limit_general(request: Request) -> None:
    _enforce(request.app.state.general_limiter, request, "Too many requests, please try again later")


def rate_limit_auth(request: Request) -> None:
    _enforce(
        request.app.state.auth_limiter,
        request,
        "Too many authentication attempts, please try again later",
    )