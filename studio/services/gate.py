"""Request authentication: turn a bearer token into a live identity."""

import logging
from dataclasses import dataclass

from studio.core.exceptions import AccountBanned, AppError, TokenError, Unauthenticated
from studio.core.permissions import Role
from studio.core.security import ACCESS_TOKEN, TokenCodec
from studio.storage.base import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: Role


class AuthGate:
    """
    Verifies access tokens and re-reads the user from the store on every call,
    so a ban, deactivation or role change applies before the token expires.
    """

    def __init__(self, store: Store, codec: TokenCodec) -> None:
        self._store = store
        self._codec = codec

    async def authenticate(self, token: str | None) -> Identity:
        """Raise Unauthenticated (401) or AccountBanned (403); otherwise return the identity."""
        if not token:
            raise Unauthenticated("No token provided")
        try:
            payload = self._codec.verify(token, expected_type=ACCESS_TOKEN)
        except TokenError as e:
            # Signature and expiry failures look the same from the outside.
            raise TokenError() from e

        user = await self._store.get_user(payload.user_id)
        if user is None:
            raise Unauthenticated("User not found")
        if not user.is_active:
            raise Unauthenticated("Account is deactivated")
        if user.is_banned:
            raise AccountBanned()
        return Identity(id=user.id, email=user.email, role=user.role)

    async def authenticate_optional(self, token: str | None) -> Identity | None:
        """Like authenticate, but any credential problem yields None instead of an error."""
        if not token:
            return None
        try:
            return await self.authenticate(token)
        except AppError as e:
            logger.debug("Optional authentication ignored: %s", e.message)
            return None
