"""Single-use email verification and password reset tokens.

The raw token only ever exists in the emailed link; the store keeps its
SHA-256 hash, purpose, expiry and used_at.
"""

import logging
from datetime import timedelta
from enum import Enum

from studio.core.clock import Clock, utc_now
from studio.core.exceptions import InvalidOrExpiredToken
from studio.core.security import generate_random_token, hash_token
from studio.storage.base import Store

logger = logging.getLogger(__name__)


class TokenPurpose(str, Enum):
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


DEFAULT_TTLS = {
    TokenPurpose.EMAIL_VERIFICATION: timedelta(hours=24),
    TokenPurpose.PASSWORD_RESET: timedelta(hours=1),
}


class SecretTokenManager:
    """Issue and redeem one-time tokens, parameterised by purpose and TTL."""

    def __init__(self, store: Store, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def issue(
        self,
        user_id: str,
        purpose: TokenPurpose,
        ttl: timedelta | None = None,
        replace: bool = True,
    ) -> str:
        """
        Create a token for ``user_id`` and return the raw value.

        With ``replace`` (the default), earlier tokens of the same purpose for
        this user are deleted first, so only the newest emailed link works.
        """
        purpose = TokenPurpose(purpose)
        if replace:
            await self._store.delete_secret_tokens(user_id, purpose.value)
        raw = generate_random_token()
        expires_at = self._clock() + (ttl or DEFAULT_TTLS[purpose])
        await self._store.add_secret_token(user_id, purpose.value, hash_token(raw), expires_at)
        logger.info("Issued %s token for user %s", purpose.value, user_id)
        return raw

    async def consume(self, raw_token: str, purpose: TokenPurpose) -> str:
        """
        Redeem ``raw_token`` and return the owning user id.

        Raises InvalidOrExpiredToken when the token is unknown, already used,
        expired or issued for another purpose.
        """
        purpose = TokenPurpose(purpose)
        if not raw_token:
            raise InvalidOrExpiredToken()
        user_id = await self._store.consume_secret_token(
            hash_token(raw_token), purpose.value, self._clock()
        )
        if user_id is None:
            logger.info("Rejected %s token (unknown, used or expired)", purpose.value)
            raise InvalidOrExpiredToken()
        return user_id
