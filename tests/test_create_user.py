"""Bootstrap command: argument validation and duplicate handling."""

import unittest
from unittest.mock import AsyncMock, patch

from studio.core.permissions import Role
from studio.scripts import create_user as script
from studio.storage.errors import ConstraintViolation


def _main(*argv: str) -> int:
    with patch("sys.argv", ["create_user", *argv]):
        return script.main()


class TestCreateUserCommand(unittest.TestCase):
    def test_creates_with_role(self) -> None:
        insert = AsyncMock(return_value="user-1")
        with patch.object(script, "create_user", insert):
            self.assertEqual(_main("Root@Example.com", "Passw0rdOK", "SUPER_ADMIN"), 0)
        insert.assert_awaited_once_with("root@example.com", "Passw0rdOK", Role.SUPER_ADMIN)

    def test_role_defaults_to_user(self) -> None:
        insert = AsyncMock(return_value="user-1")
        with patch.object(script, "create_user", insert):
            self.assertEqual(_main("a@example.com", "Passw0rdOK"), 0)
        self.assertEqual(insert.await_args.args[2], Role.USER)

    def test_rejects_weak_password(self) -> None:
        insert = AsyncMock()
        with patch.object(script, "create_user", insert):
            self.assertEqual(_main("a@example.com", "weakpass"), 1)
        insert.assert_not_awaited()

    def test_rejects_bad_email(self) -> None:
        with patch.object(script, "create_user", AsyncMock()):
            self.assertEqual(_main("not-an-email", "Passw0rdOK"), 1)

    def test_duplicate(self) -> None:
        insert = AsyncMock(side_effect=ConstraintViolation("email already exists"))
        with patch.object(script, "create_user", insert):
            self.assertEqual(_main("a@example.com", "Passw0rdOK"), 1)


if __name__ == "__main__":
    unittest.main()
