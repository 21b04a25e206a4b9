"""Token retention: delete expired sessions and spent one-time tokens."""

import logging

from studio.core.clock import Clock, utc_now
from studio.storage.base import Store

logger = logging.getLogger(__name__)


async def run_cleanup(store: Store, clock: Clock = utc_now) -> tuple[int, int]:
    """
    Delete expired refresh tokens and expired or used secret tokens.

    Returns (refresh_tokens_deleted, secret_tokens_deleted). Idempotent: safe to run repeatedly.
    """
    now = clock()
    refresh_deleted = await store.purge_expired_refresh_tokens(now)
    secret_deleted = await store.purge_secret_tokens(now)
    await store.commit()

    if refresh_deleted or secret_deleted:
        logger.info(
            "Cleanup run: now=%s, refresh_tokens_deleted=%s, secret_tokens_deleted=%s",
            now.isoformat(),
            refresh_deleted,
            secret_deleted,
        )
    return refresh_deleted, secret_deleted
