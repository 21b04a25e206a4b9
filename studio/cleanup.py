"""
CLI entrypoint for the token cleanup job. Run from cron, e.g.:

  python -m studio.cleanup

Or hourly: 0 * * * * cd /path/to/studio-ai && .venv/bin/python -m studio.cleanup
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

from studio.core.config import get_settings
from studio.core.database import build_engine, build_session_factory
from studio.services.cleanup import run_cleanup
from studio.storage.sql import SQLStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


async def _run() -> tuple[int, int]:
    engine = build_engine(get_settings())
    try:
        async with build_session_factory(engine)() as session:
            return await run_cleanup(SQLStore(session))
    finally:
        await engine.dispose()


def main() -> int:
    """Delete expired refresh tokens and spent verification/reset tokens."""
    load_dotenv()
    try:
        refresh_deleted, secret_deleted = asyncio.run(_run())
    except Exception as e:
        logger.exception("Cleanup job failed: %s", e)
        return 1
    logger.info(
        "Cleanup completed: refresh_tokens_deleted=%s, secret_tokens_deleted=%s",
        refresh_deleted,
        secret_deleted,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
