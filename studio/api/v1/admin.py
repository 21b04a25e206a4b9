"""Admin routes (ADMIN or SUPER_ADMIN): dashboard, user moderation, provider API keys, audit log."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from studio.api.deps import (
    get_admin_service,
    require_admin,
    require_any_permission,
    require_permission,
    require_super_admin,
)
from studio.core.permissions import Permission
from studio.schemas.admin import (
    AdminUserOut,
    ApiKeyCreateRequest,
    ApiKeyOut,
    ApiKeyUpdateRequest,
    AuditLogOut,
    AuditLogQuery,
    DashboardOut,
    UserListQuery,
    UserUpdateRequest,
)
from studio.schemas.common import Envelope, PaginatedEnvelope, PaginationOut
from studio.services.admin import AdminService
from studio.services.gate import Identity

router = APIRouter(dependencies=[Depends(require_admin)])

AdminServiceDep = Annotated[AdminService, Depends(get_admin_service)]


def _ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("/dashboard", response_model=Envelope[DashboardOut])
async def dashboard(
    _actor: Annotated[
        Identity,
        Depends(require_any_permission(Permission.VIEW_ADMIN_DASHBOARD, Permission.VIEW_ANALYTICS)),
    ],
    admin: AdminServiceDep,
) -> Envelope[DashboardOut]:
    return Envelope(data=DashboardOut.from_stats(await admin.dashboard_stats()))


@router.get("/users", response_model=PaginatedEnvelope[AdminUserOut])
async def list_users(
    query: Annotated[UserListQuery, Query()],
    _actor: Annotated[Identity, Depends(require_permission(Permission.VIEW_ALL_USERS))],
    admin: AdminServiceDep,
) -> PaginatedEnvelope[AdminUserOut]:
    page = await admin.list_users(
        page=query.page,
        limit=query.limit,
        search=query.search,
        role=query.role,
        is_active=query.is_active,
    )
    return PaginatedEnvelope(
        data=[AdminUserOut.from_view(v) for v in page.items],
        pagination=PaginationOut.from_page(page),
    )


@router.get("/users/{user_id}", response_model=Envelope[AdminUserOut])
async def get_user(
    user_id: str,
    _actor: Annotated[Identity, Depends(require_permission(Permission.VIEW_ALL_USERS))],
    admin: AdminServiceDep,
) -> Envelope[AdminUserOut]:
    return Envelope(data=AdminUserOut.from_view(await admin.get_user(user_id)))


@router.put("/users/{user_id}", response_model=Envelope[AdminUserOut])
async def update_user(
    user_id: str,
    body: UserUpdateRequest,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.EDIT_USERS))],
    admin: AdminServiceDep,
) -> Envelope[AdminUserOut]:
    """Change role, active or banned state. Granting admin roles requires SUPER_ADMIN."""
    view = await admin.update_user(
        user_id, body.model_dump(exclude_unset=True), actor, ip_address=_ip(request)
    )
    return Envelope(data=AdminUserOut.from_view(view))


@router.delete("/users/{user_id}", response_model=Envelope[dict])
async def delete_user(
    user_id: str,
    request: Request,
    actor: Annotated[Identity, Depends(require_super_admin)],
    admin: AdminServiceDep,
) -> Envelope[dict]:
    await admin.delete_user(user_id, actor, ip_address=_ip(request))
    return Envelope(message="User deleted successfully")


@router.get("/api-keys", response_model=Envelope[list[ApiKeyOut]])
async def list_api_keys(
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_API_KEYS))],
    admin: AdminServiceDep,
) -> Envelope[list[ApiKeyOut]]:
    keys = await admin.list_api_keys(actor)
    return Envelope(data=[ApiKeyOut.from_record(k) for k in keys])


@router.post("/api-keys", response_model=Envelope[ApiKeyOut], status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreateRequest,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_API_KEYS))],
    admin: AdminServiceDep,
) -> Envelope[ApiKeyOut]:
    """Store a provider key encrypted; the response only carries its preview."""
    key = await admin.create_api_key(
        actor,
        body.name,
        body.provider,
        body.key,
        is_default=body.is_default,
        monthly_limit=body.monthly_limit,
        ip_address=_ip(request),
    )
    return Envelope(data=ApiKeyOut.from_record(key))


@router.put("/api-keys/{key_id}", response_model=Envelope[ApiKeyOut])
async def update_api_key(
    key_id: str,
    body: ApiKeyUpdateRequest,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_API_KEYS))],
    admin: AdminServiceDep,
) -> Envelope[ApiKeyOut]:
    key = await admin.update_api_key(
        key_id, actor, body.model_dump(exclude_unset=True), ip_address=_ip(request)
    )
    return Envelope(data=ApiKeyOut.from_record(key))


@router.delete("/api-keys/{key_id}", response_model=Envelope[dict])
async def delete_api_key(
    key_id: str,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_API_KEYS))],
    admin: AdminServiceDep,
) -> Envelope[dict]:
    await admin.delete_api_key(key_id, actor, ip_address=_ip(request))
    return Envelope(message="API key deleted successfully")


@router.get("/audit-logs", response_model=PaginatedEnvelope[AuditLogOut])
async def list_audit_logs(
    query: Annotated[AuditLogQuery, Query()],
    _actor: Annotated[Identity, Depends(require_permission(Permission.VIEW_AUDIT_LOGS))],
    admin: AdminServiceDep,
) -> PaginatedEnvelope[AuditLogOut]:
    page = await admin.list_audit_logs(
        page=query.page,
        limit=query.limit,
        user_id=query.user_id,
        action=query.action,
        start=query.start_date,
        end=query.end_date,
    )
    return PaginatedEnvelope(
        data=[AuditLogOut.from_record(log) for log in page.items],
        pagination=PaginationOut.from_page(page),
    )
