"""Session lifecycle: login, refresh with rotation, logout and revocation."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from studio.core.clock import Clock, utc_now
from studio.core.config import Settings
from studio.core.exceptions import (
    AccountBanned,
    AccountDeactivated,
    EmailNotVerified,
    InvalidCredentials,
    InvalidToken,
)
from studio.core.security import (
    REFRESH_TOKEN,
    AuthTokens,
    TokenCodec,
    TokenPayload,
    hash_password,
    hash_token,
    verify_password,
)
from studio.storage.base import Store
from studio.storage.records import UserRecord

logger = logging.getLogger(__name__)

# Compared against when the email is unknown, so both failure paths cost one bcrypt check.
_DUMMY_PASSWORD_HASH = hash_password("studio-dummy-password")


@dataclass(frozen=True)
class ClientContext:
    ip_address: str | None = None
    device_info: str | None = None


@dataclass(frozen=True)
class LoginResult:
    user: UserRecord
    tokens: AuthTokens


class SessionManager:
    """
    Owns refresh-token records. A session moves from Authenticated through any
    number of refreshes (each one rotating the stored hash) to Revoked.
    Users may hold any number of concurrent sessions.
    """

    def __init__(
        self,
        store: Store,
        codec: TokenCodec,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._codec = codec
        self._settings = settings
        self._clock = clock

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._codec.refresh_ttl_seconds

    async def start_session(
        self, user: UserRecord, client: ClientContext | None = None
    ) -> AuthTokens:
        """Mint a token pair for ``user`` and persist the refresh token hash."""
        client = client or ClientContext()
        tokens = self._codec.issue_pair(
            TokenPayload(user_id=user.id, email=user.email, role=user.role)
        )
        await self._store.add_refresh_token(
            user.id,
            hash_token(tokens.refresh_token),
            self._clock() + timedelta(seconds=self._codec.refresh_ttl_seconds),
            ip_address=client.ip_address,
            device_info=client.device_info,
        )
        return tokens

    async def login(
        self, email: str, password: str, client: ClientContext | None = None
    ) -> LoginResult:
        """
        Authenticate by email and password.

        Unknown email and wrong password raise the same InvalidCredentials.
        Account state is only revealed to callers who know the password.
        """
        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None or user.password_hash is None:
            verify_password(password, _DUMMY_PASSWORD_HASH)
            logger.info("Login failed: unknown account")
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        if user.is_banned:
            logger.warning("Login refused: user %s is banned", user.id)
            raise AccountBanned()
        if not user.is_active:
            raise AccountDeactivated()
        if self._settings.REQUIRE_EMAIL_VERIFICATION and not user.email_verified:
            raise EmailNotVerified()

        tokens = await self.start_session(user, client)
        now = self._clock()
        await self._store.record_login(user.id, now)
        await self._store.commit()
        logger.info("User %s logged in", user.id)
        user = await self._store.get_user(user.id) or user
        return LoginResult(user=user, tokens=tokens)

    async def refresh(self, raw_refresh_token: str, client: ClientContext | None = None) -> AuthTokens:
        """
        Exchange a refresh token for a new pair, invalidating the presented one.

        Of two concurrent calls with the same token at most one succeeds; the
        other, like any later replay, raises InvalidToken.
        """
        if not raw_refresh_token:
            raise InvalidToken()
        payload = self._codec.verify(raw_refresh_token, expected_type=REFRESH_TOKEN)

        record = await self._store.consume_refresh_token(hash_token(raw_refresh_token), self._clock())
        if record is None:
            await self._store.commit()
            logger.warning("Refresh token reuse or unknown session for user %s", payload.user_id)
            raise InvalidToken()
        if record.user_id != payload.user_id:
            await self._store.commit()
            logger.warning("Refresh token owner mismatch for user %s", payload.user_id)
            raise InvalidToken()

        user = await self._store.get_user(record.user_id)
        if user is None or not user.is_active or user.is_banned:
            await self._store.commit()
            logger.info("Refresh refused: user %s missing or disabled", record.user_id)
            raise InvalidToken()

        if client is None:
            client = ClientContext(ip_address=record.ip_address, device_info=record.device_info)
        tokens = await self.start_session(user, client)
        await self._store.commit()
        return tokens

    async def logout(self, user_id: str, raw_refresh_token: str | None = None) -> int:
        """End one session, or every session of the user when no token is given. Idempotent."""
        token_hash = hash_token(raw_refresh_token) if raw_refresh_token else None
        removed = await self._store.delete_refresh_tokens(user_id, token_hash)
        await self._store.commit()
        logger.info("User %s logged out (%s session(s) removed)", user_id, removed)
        return removed

    async def revoke_all(self, user_id: str) -> int:
        """Delete every refresh token of the user. Does not commit."""
        removed = await self._store.delete_refresh_tokens(user_id)
        if removed:
            logger.info("Revoked %s session(s) for user %s", removed, user_id)
        return removed
