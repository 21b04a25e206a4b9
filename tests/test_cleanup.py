"""Token retention: expired sessions and spent one-time tokens are purged."""

import unittest
from unittest.mock import AsyncMock, patch

from factories import PASSWORD, add_user, build_services, run
from studio import cleanup as cleanup_cli
from studio.services.cleanup import run_cleanup
from studio.services.secret_tokens import TokenPurpose


class TestRunCleanup(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.user = run(add_user(self.svc.store))

    def test_nothing_to_delete(self) -> None:
        run(self.svc.sessions.login("alice@example.com", PASSWORD))
        self.assertEqual(run(run_cleanup(self.svc.store, self.svc.clock)), (0, 0))

    def test_purges_expired_and_used(self) -> None:
        run(self.svc.sessions.login("alice@example.com", PASSWORD))
        used = run(self.svc.secret_tokens.issue(self.user.id, TokenPurpose.EMAIL_VERIFICATION))
        run(self.svc.secret_tokens.consume(used, TokenPurpose.EMAIL_VERIFICATION))
        run(self.svc.secret_tokens.issue(self.user.id, TokenPurpose.PASSWORD_RESET))

        self.assertEqual(run(run_cleanup(self.svc.store, self.svc.clock)), (0, 1))

        self.svc.clock.advance(days=8)
        self.assertEqual(run(run_cleanup(self.svc.store, self.svc.clock)), (1, 1))
        self.assertEqual(self.svc.store.refresh_tokens, {})
        self.assertEqual(self.svc.store.secret_tokens, {})

    def test_idempotent(self) -> None:
        run(self.svc.sessions.login("alice@example.com", PASSWORD))
        self.svc.clock.advance(days=8)
        run(run_cleanup(self.svc.store, self.svc.clock))
        self.assertEqual(run(run_cleanup(self.svc.store, self.svc.clock)), (0, 0))


class TestCleanupCommand(unittest.TestCase):
    def test_main_reports_failure(self) -> None:
        with patch.object(cleanup_cli, "_run", AsyncMock(side_effect=OSError("db down"))):
            self.assertEqual(cleanup_cli.main(), 1)

    def test_main_success(self) -> None:
        with patch.object(cleanup_cli, "_run", AsyncMock(return_value=(2, 3))):
            self.assertEqual(cleanup_cli.main(), 0)


if __name__ == "__main__":
    unittest.main()
