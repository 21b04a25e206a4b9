"""Account flows: signup, email verification, password reset and change."""

import logging
from dataclasses import dataclass

from studio.core.clock import Clock, utc_now
from studio.core.config import Settings
from studio.core.exceptions import Conflict, InvalidOrExpiredToken, NotFound, ValidationFailed
from studio.core.permissions import Role
from studio.core.security import AuthTokens, hash_password, verify_password
from studio.services.email import Mailer
from studio.services.secret_tokens import SecretTokenManager, TokenPurpose
from studio.services.sessions import ClientContext, SessionManager
from studio.services.views import UserView
from studio.storage.base import Store
from studio.storage.errors import ConstraintViolation
from studio.storage.records import UserRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignupResult:
    user: UserRecord
    tokens: AuthTokens
    requires_verification: bool


def _display_name(email: str, first_name: str | None, last_name: str | None) -> str:
    name = " ".join(part for part in (first_name, last_name) if part)
    return name or email.split("@", 1)[0]


class AuthService:
    """
    Orchestrates the store, sessions, one-time tokens and the mailer.

    forgot_password and resend_verification never reveal whether an account
    exists: they return normally and simply skip the email when there is
    nothing to send.
    """

    def __init__(
        self,
        store: Store,
        sessions: SessionManager,
        secret_tokens: SecretTokenManager,
        mailer: Mailer,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._secret_tokens = secret_tokens
        self._mailer = mailer
        self._settings = settings
        self._clock = clock

    async def signup(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        client: ClientContext | None = None,
    ) -> SignupResult:
        """Create a USER account, open its first session and email a verification link."""
        email = email.strip().lower()
        if await self._store.get_user_by_email(email) is not None:
            raise Conflict("An account with this email already exists")
        try:
            user = await self._store.create_user(email, hash_password(password), Role.USER)
        except ConstraintViolation as e:
            raise Conflict("An account with this email already exists") from e

        await self._store.upsert_profile(
            user.id,
            first_name=first_name,
            last_name=last_name,
            display_name=_display_name(email, first_name, last_name),
        )
        raw_token = await self._secret_tokens.issue(user.id, TokenPurpose.EMAIL_VERIFICATION)
        tokens = await self._sessions.start_session(user, client)
        await self._store.commit()
        logger.info("User %s signed up", user.id)

        if not await self._mailer.send_verification_email(email, raw_token):
            logger.warning("Verification email for user %s was not delivered", user.id)
        return SignupResult(
            user=user,
            tokens=tokens,
            requires_verification=self._settings.REQUIRE_EMAIL_VERIFICATION,
        )

    async def verify_email(self, raw_token: str) -> UserRecord:
        user_id = await self._secret_tokens.consume(raw_token, TokenPurpose.EMAIL_VERIFICATION)
        user = await self._store.update_user(
            user_id, email_verified=True, email_verified_at=self._clock()
        )
        if user is None:
            await self._store.rollback()
            raise InvalidOrExpiredToken()
        await self._store.commit()
        logger.info("User %s verified their email", user_id)
        return user

    async def resend_verification(self, email: str) -> None:
        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None or user.email_verified or not user.is_active:
            return
        raw_token = await self._secret_tokens.issue(user.id, TokenPurpose.EMAIL_VERIFICATION)
        await self._store.commit()
        if not await self._mailer.send_verification_email(user.email, raw_token):
            logger.warning("Verification email for user %s was not delivered", user.id)

    async def forgot_password(self, email: str) -> None:
        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None or not user.is_active:
            return
        raw_token = await self._secret_tokens.issue(user.id, TokenPurpose.PASSWORD_RESET)
        await self._store.commit()
        logger.info("Password reset requested for user %s", user.id)
        if not await self._mailer.send_password_reset_email(user.email, raw_token):
            logger.warning("Password reset email for user %s was not delivered", user.id)

    async def reset_password(self, raw_token: str, new_password: str) -> None:
        """Set a new password from a reset link. Every existing session ends."""
        user_id = await self._secret_tokens.consume(raw_token, TokenPurpose.PASSWORD_RESET)
        user = await self._store.update_user(user_id, password_hash=hash_password(new_password))
        if user is None:
            await self._store.rollback()
            raise InvalidOrExpiredToken()
        await self._sessions.revoke_all(user_id)
        await self._store.commit()
        logger.info("Password reset completed for user %s", user_id)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.password_hash is None or not verify_password(current_password, user.password_hash):
            raise ValidationFailed(
                "Current password is incorrect",
                {"currentPassword": ["Current password is incorrect"]},
            )
        await self._store.update_user(user_id, password_hash=hash_password(new_password))
        await self._sessions.revoke_all(user_id)
        await self._store.commit()
        logger.info("User %s changed their password", user_id)

    async def get_current_user(self, user_id: str) -> UserView:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return UserView(user=user, profile=await self._store.get_profile(user_id))
