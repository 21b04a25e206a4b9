"""SQLAlchemy-backed store operating on one AsyncSession per request.

Writes are flushed immediately and made durable by ``commit()``; callers own
the transaction boundary.
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import String, cast, delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.clock import Clock, utc_now
from studio.core.permissions import Role
from studio.models import ApiKey, AuditLog, Photo, Profile, RefreshToken, SecretToken, User
from studio.models.base import new_uuid
from studio.storage.base import (
    API_KEY_UPDATABLE_FIELDS,
    PROFILE_FIELDS,
    USER_UPDATABLE_FIELDS,
    Store,
    check_fields,
)
from studio.storage.errors import ConstraintViolation
from studio.storage.records import (
    ApiKeyRecord,
    AuditLogRecord,
    PhotoRecord,
    ProfileRecord,
    RefreshTokenRecord,
    SecretTokenRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


LIKE_ESCAPE = "\\"


def _like_literal(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally (use with escape=LIKE_ESCAPE)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        is_active=bool(row.is_active),
        is_banned=bool(row.is_banned),
        created_at=_aware(row.created_at),
        banned_reason=row.banned_reason,
        banned_at=_aware(row.banned_at),
        email_verified_at=_aware(row.email_verified_at),
        last_login_at=_aware(row.last_login_at),
        login_count=row.login_count or 0,
    )


def _profile_record(row: Profile) -> ProfileRecord:
    return ProfileRecord(
        user_id=row.user_id,
        first_name=row.first_name,
        last_name=row.last_name,
        display_name=row.display_name,
        avatar_url=row.avatar_url,
        bio=row.bio,
        preferred_api=row.preferred_api,
        default_quality=row.default_quality,
        notifications_enabled=bool(row.notifications_enabled),
        updated_at=_aware(row.updated_at),
    )


def _photo_record(row: Photo) -> PhotoRecord:
    return PhotoRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        prompt=row.prompt,
        image_url=row.image_url,
        provider=row.provider,
        is_favorite=bool(row.is_favorite),
        created_at=_aware(row.created_at),
        tags=tuple(row.tags or ()),
    )


def _api_key_record(row: ApiKey) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        provider=row.provider,
        encrypted_key=row.encrypted_key,
        key_preview=row.key_preview,
        is_active=bool(row.is_active),
        is_default=bool(row.is_default),
        usage_count=row.usage_count or 0,
        created_at=_aware(row.created_at),
        last_used_at=_aware(row.last_used_at),
        monthly_limit=row.monthly_limit,
    )


def _audit_record(row: AuditLog) -> AuditLogRecord:
    return AuditLogRecord(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        created_at=_aware(row.created_at),
        resource=row.resource,
        resource_id=row.resource_id,
        details=row.details,
        ip_address=row.ip_address,
    )


class SQLStore(Store):
    """Store implementation over a SQLAlchemy AsyncSession (PostgreSQL or SQLite)."""

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        self._session = session
        self._clock = clock

    async def _flush_or_conflict(self, message: str, detail: dict[str, Any] | None = None) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            logger.info("Constraint violation: %s (%s)", message, e.orig)
            raise ConstraintViolation(message, detail) from e

    async def _user_row(self, user_id: str) -> User | None:
        return await self._session.get(User, user_id, populate_existing=True)

    # -- users ---------------------------------------------------------------

    async def create_user(
        self,
        email: str,
        password_hash: str | None,
        role: Role = Role.USER,
        *,
        email_verified: bool = False,
    ) -> UserRecord:
        now = self._clock()
        row = User(
            id=new_uuid(),
            email=email.lower(),
            password_hash=password_hash,
            role=Role(role).value,
            email_verified=email_verified,
            email_verified_at=now if email_verified else None,
            is_active=True,
            is_banned=False,
            login_count=0,
            created_at=now,
        )
        self._session.add(row)
        await self._flush_or_conflict("email already exists", {"field": "email"})
        return _user_record(row)

    async def get_user(self, user_id: str) -> UserRecord | None:
        row = await self._user_row(user_id)
        return _user_record(row) if row else None

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        stmt = (
            select(User)
            .where(User.email == email.lower())
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _user_record(row) if row else None

    async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
        check_fields(fields, USER_UPDATABLE_FIELDS)
        row = await self._user_row(user_id)
        if row is None:
            return None
        if "email" in fields:
            fields["email"] = fields["email"].lower()
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        for name, value in fields.items():
            setattr(row, name, value)
        await self._flush_or_conflict("email already exists", {"field": "email"})
        return _user_record(row)

    async def record_login(self, user_id: str, at: datetime) -> None:
        await self._session.execute(
            update(User)
            .where(User.id == user_id)
            .values(last_login_at=at, login_count=User.login_count + 1)
            .execution_options(synchronize_session=False)
        )

    async def delete_user(self, user_id: str) -> bool:
        for model in (Profile, RefreshToken, SecretToken, Photo):
            await self._session.execute(
                delete(model)
                .where(model.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
        await self._session.execute(
            delete(ApiKey)
            .where(ApiKey.owner_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(
            update(AuditLog)
            .where(AuditLog.user_id == user_id)
            .values(user_id=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(
            delete(User)
            .where(User.id == user_id)
            .returning(User.id)
            .execution_options(synchronize_session=False)
        )
        deleted = result.first() is not None
        self._session.expunge_all()
        return deleted

    async def list_users(
        self,
        *,
        search: str | None = None,
        role: Role | None = None,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[UserRecord], int]:
        stmt = select(User).outerjoin(Profile, Profile.user_id == User.id)
        if search:
            pattern = f"%{_like_literal(search)}%"
            stmt = stmt.where(
                or_(
                    User.email.ilike(pattern, escape=LIKE_ESCAPE),
                    Profile.first_name.ilike(pattern, escape=LIKE_ESCAPE),
                    Profile.last_name.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        if role is not None:
            stmt = stmt.where(User.role == Role(role).value)
        if is_active is not None:
            stmt = stmt.where(User.is_active == is_active)

        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        page = stmt.order_by(User.created_at.desc()).offset(offset).limit(limit)
        rows = (await self._session.execute(page)).scalars().all()
        return [_user_record(r) for r in rows], int(total or 0)

    async def count_users(
        self, *, active_only: bool = False, created_since: datetime | None = None
    ) -> int:
        stmt = select(func.count()).select_from(User)
        if active_only:
            stmt = stmt.where(User.is_active.is_(True), User.is_banned.is_(False))
        if created_since is not None:
            stmt = stmt.where(User.created_at >= created_since)
        return int(await self._session.scalar(stmt) or 0)

    # -- profiles ------------------------------------------------------------

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        row = await self._session.get(Profile, user_id, populate_existing=True)
        return _profile_record(row) if row else None

    async def upsert_profile(self, user_id: str, **fields: Any) -> ProfileRecord:
        check_fields(fields, PROFILE_FIELDS)
        row = await self._session.get(Profile, user_id, populate_existing=True)
        if row is None:
            if await self._user_row(user_id) is None:
                raise ConstraintViolation("user does not exist", {"field": "user_id"})
            row = Profile(user_id=user_id, notifications_enabled=True)
            self._session.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = self._clock()
        await self._flush_or_conflict("profile update failed")
        return _profile_record(row)

    # -- refresh tokens ------------------------------------------------------

    async def add_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        *,
        ip_address: str | None = None,
        device_info: str | None = None,
    ) -> RefreshTokenRecord:
        row = RefreshToken(
            id=new_uuid(),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            ip_address=ip_address,
            device_info=device_info,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._flush_or_conflict("refresh token already stored")
        return RefreshTokenRecord(
            id=row.id,
            user_id=row.user_id,
            token_hash=row.token_hash,
            expires_at=_aware(row.expires_at),
            created_at=_aware(row.created_at),
            ip_address=row.ip_address,
            device_info=row.device_info,
        )

    async def consume_refresh_token(self, token_hash: str, now: datetime) -> RefreshTokenRecord | None:
        # DELETE ... RETURNING: of two concurrent callers only one sees the row.
        result = await self._session.execute(
            delete(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .returning(
                RefreshToken.id,
                RefreshToken.user_id,
                RefreshToken.token_hash,
                RefreshToken.expires_at,
                RefreshToken.created_at,
                RefreshToken.ip_address,
                RefreshToken.device_info,
            )
            .execution_options(synchronize_session=False)
        )
        row = result.mappings().first()
        if row is None:
            return None
        expires_at = _aware(row["expires_at"])
        if expires_at <= now:
            return None
        return RefreshTokenRecord(
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            expires_at=expires_at,
            created_at=_aware(row["created_at"]),
            ip_address=row["ip_address"],
            device_info=row["device_info"],
        )

    async def delete_refresh_tokens(self, user_id: str, token_hash: str | None = None) -> int:
        stmt = delete(RefreshToken).where(RefreshToken.user_id == user_id)
        if token_hash is not None:
            stmt = stmt.where(RefreshToken.token_hash == token_hash)
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def count_refresh_tokens(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user_id)
        return int(await self._session.scalar(stmt) or 0)

    async def purge_expired_refresh_tokens(self, now: datetime) -> int:
        result = await self._session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # -- one-time secret tokens ----------------------------------------------

    async def add_secret_token(
        self, user_id: str, purpose: str, token_hash: str, expires_at: datetime
    ) -> SecretTokenRecord:
        row = SecretToken(
            id=new_uuid(),
            user_id=user_id,
            purpose=purpose,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._flush_or_conflict("secret token could not be stored")
        return SecretTokenRecord(
            id=row.id,
            user_id=row.user_id,
            purpose=row.purpose,
            token_hash=row.token_hash,
            expires_at=_aware(row.expires_at),
            created_at=_aware(row.created_at),
        )

    async def consume_secret_token(self, token_hash: str, purpose: str, now: datetime) -> str | None:
        # Conditional UPDATE ... RETURNING: the row lock serialises racing redeemers.
        result = await self._session.execute(
            update(SecretToken)
            .where(
                SecretToken.token_hash == token_hash,
                SecretToken.purpose == purpose,
                SecretToken.used_at.is_(None),
                SecretToken.expires_at > now,
            )
            .values(used_at=now)
            .returning(SecretToken.user_id)
            .execution_options(synchronize_session=False)
        )
        return result.scalars().first()

    async def delete_secret_tokens(self, user_id: str, purpose: str) -> int:
        result = await self._session.execute(
            delete(SecretToken)
            .where(SecretToken.user_id == user_id, SecretToken.purpose == purpose)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def purge_secret_tokens(self, now: datetime) -> int:
        result = await self._session.execute(
            delete(SecretToken)
            .where(or_(SecretToken.used_at.is_not(None), SecretToken.expires_at <= now))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # -- photos --------------------------------------------------------------

    async def create_photo(
        self,
        user_id: str,
        image_url: str,
        *,
        title: str | None = None,
        prompt: str | None = None,
        provider: str | None = None,
        is_favorite: bool = False,
        tags: tuple[str, ...] = (),
    ) -> PhotoRecord:
        row = Photo(
            id=new_uuid(),
            user_id=user_id,
            title=title,
            prompt=prompt,
            image_url=image_url,
            provider=provider,
            is_favorite=is_favorite,
            tags=list(tags),
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._flush_or_conflict("photo owner does not exist", {"field": "user_id"})
        return _photo_record(row)

    async def list_photos(
        self,
        user_id: str,
        *,
        favorite: bool | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[PhotoRecord], int]:
        stmt = select(Photo).where(Photo.user_id == user_id)
        if favorite is not None:
            stmt = stmt.where(Photo.is_favorite == favorite)
        if search:
            literal = _like_literal(search)
            # Tags are a JSON array of strings; match one element by its quoted form.
            stmt = stmt.where(
                or_(
                    Photo.title.ilike(f"%{literal}%", escape=LIKE_ESCAPE),
                    cast(Photo.tags, String).like(f'%"{literal}"%', escape=LIKE_ESCAPE),
                )
            )
        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        page = stmt.order_by(Photo.created_at.desc()).offset(offset).limit(limit)
        rows = (await self._session.execute(page)).scalars().all()
        return [_photo_record(r) for r in rows], int(total or 0)

    async def count_photos(self, *, created_since: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(Photo)
        if created_since is not None:
            stmt = stmt.where(Photo.created_at >= created_since)
        return int(await self._session.scalar(stmt) or 0)

    # -- provider API keys ---------------------------------------------------

    async def create_api_key(
        self,
        owner_id: str,
        name: str,
        provider: str,
        encrypted_key: str,
        key_preview: str,
        *,
        is_default: bool = False,
        monthly_limit: int | None = None,
    ) -> ApiKeyRecord:
        row = ApiKey(
            id=new_uuid(),
            owner_id=owner_id,
            name=name,
            provider=provider,
            encrypted_key=encrypted_key,
            key_preview=key_preview,
            is_active=True,
            is_default=is_default,
            usage_count=0,
            monthly_limit=monthly_limit,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._flush_or_conflict("api key owner does not exist", {"field": "owner_id"})
        return _api_key_record(row)

    async def list_api_keys(self, owner_id: str) -> list[ApiKeyRecord]:
        stmt = (
            select(ApiKey)
            .where(ApiKey.owner_id == owner_id)
            .order_by(ApiKey.created_at.desc())
            .execution_options(populate_existing=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_api_key_record(r) for r in rows]

    async def get_api_key(self, key_id: str, owner_id: str) -> ApiKeyRecord | None:
        row = await self._session.get(ApiKey, key_id, populate_existing=True)
        if row is None or row.owner_id != owner_id:
            return None
        return _api_key_record(row)

    async def update_api_key(self, key_id: str, **fields: Any) -> ApiKeyRecord | None:
        check_fields(fields, API_KEY_UPDATABLE_FIELDS)
        row = await self._session.get(ApiKey, key_id, populate_existing=True)
        if row is None:
            return None
        for name, value in fields.items():
            setattr(row, name, value)
        await self._flush_or_conflict("api key update failed")
        return _api_key_record(row)

    async def delete_api_key(self, key_id: str) -> bool:
        result = await self._session.execute(
            delete(ApiKey)
            .where(ApiKey.id == key_id)
            .returning(ApiKey.id)
            .execution_options(synchronize_session=False)
        )
        return result.first() is not None

    async def clear_default_api_keys(
        self, owner_id: str, provider: str, except_id: str | None = None
    ) -> int:
        stmt = update(ApiKey).where(
            ApiKey.owner_id == owner_id,
            ApiKey.provider == provider,
            ApiKey.is_default.is_(True),
        )
        if except_id is not None:
            stmt = stmt.where(ApiKey.id != except_id)
        result = await self._session.execute(
            stmt.values(is_default=False).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def find_active_api_key(self, provider: str, owner_id: str | None = None) -> ApiKeyRecord | None:
        stmt = select(ApiKey).where(ApiKey.provider == provider, ApiKey.is_active.is_(True))
        if owner_id is not None:
            stmt = stmt.where(ApiKey.owner_id == owner_id)
        stmt = (
            stmt.order_by(ApiKey.is_default.desc(), ApiKey.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalars().first()
        return _api_key_record(row) if row else None

    async def record_api_key_usage(self, key_id: str, at: datetime) -> None:
        await self._session.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(usage_count=ApiKey.usage_count + 1, last_used_at=at)
            .execution_options(synchronize_session=False)
        )

    # -- audit log -----------------------------------------------------------

    async def add_audit_log(
        self,
        action: str,
        *,
        user_id: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> AuditLogRecord:
        row = AuditLog(
            id=new_uuid(),
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details,
            ip_address=ip_address,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._flush_or_conflict("audit log could not be written")
        return _audit_record(row)

    async def list_audit_logs(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditLogRecord], int]:
        stmt = select(AuditLog)
        if user_id is not None:
            stmt = stmt.where(AuditLog.user_id == user_id)
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        if start is not None:
            stmt = stmt.where(AuditLog.created_at >= start)
        if end is not None:
            stmt = stmt.where(AuditLog.created_at <= end)
        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        page = stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit)
        rows = (await self._session.execute(page)).scalars().all()
        return [_audit_record(r) for r in rows], int(total or 0)

    # -- unit of work --------------------------------------------------------

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def ping(self) -> bool:
        try:
            await self._session.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("Database ping failed", exc_info=True)
            return False


def sql_store_provider(
    session_factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now
) -> Callable[[], Any]:
    """Return a factory of ``async with`` blocks that yield a request-scoped SQLStore."""

    @asynccontextmanager
    async def provide() -> AsyncIterator[SQLStore]:
        async with session_factory() as session:
            yield SQLStore(session, clock)

    return provide
