"""
Create a user (e.g. the first super admin). Run from project root:
  python -m studio.scripts.create_user EMAIL PASSWORD [ROLE]
Example:
  python -m studio.scripts.create_user admin@studioai.com 'Your-Secure-Pass1' SUPER_ADMIN

The account is created active and with its email already verified.
"""
import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from studio.core.config import get_settings
from studio.core.database import build_engine, build_session_factory
from studio.core.permissions import Role
from studio.core.security import EMAIL_MAX_LEN, hash_password, password_problems
from studio.storage.errors import ConstraintViolation
from studio.storage.sql import SQLStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


async def create_user(email: str, password: str, role: Role) -> str:
    """Insert the user and a profile; returns the new user id. Raises ConstraintViolation on duplicates."""
    engine = build_engine(get_settings())
    try:
        async with build_session_factory(engine)() as session:
            store = SQLStore(session)
            user = await store.create_user(email, hash_password(password), role, email_verified=True)
            await store.upsert_profile(user.id, display_name=email.split("@", 1)[0])
            await store.commit()
            return user.id
    finally:
        await engine.dispose()


def main() -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Create a Studio AI user (bootstrap accounts).")
    parser.add_argument("email", help=f"Email address (at most {EMAIL_MAX_LEN} chars)")
    parser.add_argument("password", help="Password (8-100 chars, upper, lower and digit)")
    parser.add_argument(
        "role",
        nargs="?",
        default=Role.USER.value,
        choices=[r.value for r in Role],
    )
    args = parser.parse_args()

    email = args.email.strip().lower()
    if not email or "@" not in email or len(email) > EMAIL_MAX_LEN:
        print("Invalid email address.", file=sys.stderr)
        return 1
    problems = password_problems(args.password)
    if problems:
        print("; ".join(problems), file=sys.stderr)
        return 1

    try:
        user_id = asyncio.run(create_user(email, args.password, Role(args.role)))
    except ConstraintViolation:
        print(f"User '{email}' already exists.", file=sys.stderr)
        return 1
    print(f"Created user '{email}' ({user_id}) with role '{args.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
