"""Self-service routes for the signed-in user: profile, photo library, account deletion."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from studio.api.deps import CurrentUser, SettingsDep, get_users_service, require_permission
from studio.api.v1.auth import REFRESH_COOKIE
from studio.core.permissions import Permission
from studio.schemas.auth import UserOut
from studio.schemas.common import Envelope, PaginatedEnvelope, PaginationOut
from studio.schemas.users import PhotoOut, PhotoQuery, ProfileUpdateRequest
from studio.services.gate import Identity
from studio.services.users import UsersService

router = APIRouter()

UsersServiceDep = Annotated[UsersService, Depends(get_users_service)]


@router.get("/profile", response_model=Envelope[UserOut])
async def get_profile(identity: CurrentUser, users: UsersServiceDep) -> Envelope[UserOut]:
    return Envelope(data=UserOut.from_view(await users.get_profile(identity.id)))


@router.put("/profile", response_model=Envelope[UserOut])
async def update_profile(
    body: ProfileUpdateRequest,
    identity: Annotated[Identity, Depends(require_permission(Permission.EDIT_OWN_PROFILE))],
    users: UsersServiceDep,
) -> Envelope[UserOut]:
    view = await users.update_profile(identity.id, body.changes())
    return Envelope(data=UserOut.from_view(view))


@router.get("/photos", response_model=PaginatedEnvelope[PhotoOut])
async def list_photos(
    query: Annotated[PhotoQuery, Query()],
    identity: Annotated[Identity, Depends(require_permission(Permission.VIEW_OWN_PHOTOS))],
    users: UsersServiceDep,
) -> PaginatedEnvelope[PhotoOut]:
    page = await users.list_photos(
        identity.id,
        page=query.page,
        limit=query.limit,
        favorite=query.favorite,
        search=query.search,
    )
    return PaginatedEnvelope(
        data=[PhotoOut.from_record(p) for p in page.items],
        pagination=PaginationOut.from_page(page),
    )


@router.delete("/account", response_model=Envelope[dict])
async def delete_account(
    identity: CurrentUser,
    response: Response,
    users: UsersServiceDep,
    settings: SettingsDep,
) -> Envelope[dict]:
    """Deactivate and anonymise the caller's account; every session ends."""
    await users.delete_account(identity.id)
    response.delete_cookie(REFRESH_COOKIE, path=settings.auth_cookie_path)
    return Envelope(message="Account deleted successfully")
