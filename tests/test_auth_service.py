"""Account flows: signup, verification, password reset and change."""

import unittest

from factories import PASSWORD, add_user, build_services, run
from studio.core.exceptions import (
    Conflict,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    NotFound,
    ValidationFailed,
)
from studio.core.permissions import Role
from studio.core.security import hash_token


class TestSignup(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()

    def test_signup_then_login(self) -> None:
        result = run(self.svc.auth.signup("New@Example.com", PASSWORD, "Ada", "Lovelace"))
        self.assertEqual(result.user.email, "new@example.com")
        self.assertEqual(result.user.role, Role.USER)
        self.assertFalse(result.user.email_verified)
        self.assertFalse(result.requires_verification)
        self.assertIn(hash_token(result.tokens.refresh_token), self.svc.store.refresh_tokens)

        login = run(self.svc.sessions.login("new@example.com", PASSWORD))
        self.assertEqual(login.user.id, result.user.id)
        self.assertEqual(login.user.role, Role.USER)

    def test_profile_and_display_name(self) -> None:
        result = run(self.svc.auth.signup("ada@example.com", PASSWORD, "Ada", "Lovelace"))
        profile = run(self.svc.store.get_profile(result.user.id))
        self.assertEqual(profile.display_name, "Ada Lovelace")

        bare = run(self.svc.auth.signup("grace@example.com", PASSWORD))
        self.assertEqual(run(self.svc.store.get_profile(bare.user.id)).display_name, "grace")

    def test_password_is_hashed(self) -> None:
        result = run(self.svc.auth.signup("ada@example.com", PASSWORD))
        self.assertNotEqual(result.user.password_hash, PASSWORD)

    def test_duplicate_email_conflicts(self) -> None:
        run(self.svc.auth.signup("ada@example.com", PASSWORD))
        with self.assertRaises(Conflict) as ctx:
            run(self.svc.auth.signup("ADA@example.com", PASSWORD))
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(len(self.svc.store.users), 1)

    def test_verification_email_sent(self) -> None:
        run(self.svc.auth.signup("ada@example.com", PASSWORD))
        self.assertEqual(len(self.svc.mailer.verification), 1)
        self.assertEqual(self.svc.mailer.verification[0][0], "ada@example.com")

    def test_requires_verification_reflects_setting(self) -> None:
        strict = build_services(REQUIRE_EMAIL_VERIFICATION=True)
        self.assertTrue(run(strict.auth.signup("ada@example.com", PASSWORD)).requires_verification)


class TestVerifyEmail(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.user = run(self.svc.auth.signup("ada@example.com", PASSWORD)).user
        self.token = self.svc.mailer.verification[-1][1]

    def test_verify_marks_user(self) -> None:
        verified = run(self.svc.auth.verify_email(self.token))
        self.assertTrue(verified.email_verified)
        self.assertEqual(verified.email_verified_at, self.svc.clock.now)

    def test_token_is_single_use(self) -> None:
        run(self.svc.auth.verify_email(self.token))
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.verify_email(self.token))

    def test_expired_after_a_day(self) -> None:
        self.svc.clock.advance(hours=24, seconds=1)
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.verify_email(self.token))

    def test_resend_replaces_token(self) -> None:
        run(self.svc.auth.resend_verification("ada@example.com"))
        fresh = self.svc.mailer.verification[-1][1]
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.verify_email(self.token))
        run(self.svc.auth.verify_email(fresh))

    def test_resend_is_silent(self) -> None:
        run(self.svc.auth.resend_verification("nobody@example.com"))
        run(self.svc.auth.verify_email(self.token))
        run(self.svc.auth.resend_verification("ada@example.com"))
        self.assertEqual(len(self.svc.mailer.verification), 1)


class TestPasswordReset(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.user = run(add_user(self.svc.store))
        self.session = run(self.svc.sessions.login("alice@example.com", PASSWORD)).tokens

    def _request_reset(self) -> str:
        run(self.svc.auth.forgot_password("alice@example.com"))
        return self.svc.mailer.password_reset[-1][1]

    def test_forgot_password_is_silent_for_unknown_email(self) -> None:
        run(self.svc.auth.forgot_password("nobody@example.com"))
        self.assertEqual(self.svc.mailer.password_reset, [])

    def test_reset_changes_password_and_ends_sessions(self) -> None:
        token = self._request_reset()
        run(self.svc.auth.reset_password(token, "N3wPassword"))

        with self.assertRaises(InvalidToken):
            run(self.svc.sessions.refresh(self.session.refresh_token))
        with self.assertRaises(InvalidCredentials):
            run(self.svc.sessions.login("alice@example.com", PASSWORD))
        run(self.svc.sessions.login("alice@example.com", "N3wPassword"))

    def test_reset_token_single_use_and_expiring(self) -> None:
        token = self._request_reset()
        run(self.svc.auth.reset_password(token, "N3wPassword"))
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.reset_password(token, "An0therPass"))

        late = self._request_reset()
        self.svc.clock.advance(hours=1, seconds=1)
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.reset_password(late, "An0therPass"))

    def test_verification_token_cannot_reset_password(self) -> None:
        run(self.svc.auth.signup("ada@example.com", PASSWORD))
        verification = self.svc.mailer.verification[-1][1]
        with self.assertRaises(InvalidOrExpiredToken):
            run(self.svc.auth.reset_password(verification, "N3wPassword"))


class TestChangePassword(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.user = run(add_user(self.svc.store))
        self.session = run(self.svc.sessions.login("alice@example.com", PASSWORD)).tokens

    def test_wrong_current_password(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            run(self.svc.auth.change_password(self.user.id, "Wr0ngPassword", "N3wPassword"))
        self.assertIn("currentPassword", ctx.exception.details)
        run(self.svc.sessions.refresh(self.session.refresh_token))

    def test_change_ends_sessions(self) -> None:
        run(self.svc.auth.change_password(self.user.id, PASSWORD, "N3wPassword"))
        self.assertEqual(run(self.svc.store.count_refresh_tokens(self.user.id)), 0)
        run(self.svc.sessions.login("alice@example.com", "N3wPassword"))

    def test_current_user_view(self) -> None:
        view = run(self.svc.auth.get_current_user(self.user.id))
        self.assertEqual(view.user.id, self.user.id)
        self.assertIsNone(view.profile)
        with self.assertRaises(NotFound):
            run(self.svc.auth.get_current_user("missing"))


if __name__ == "__main__":
    unittest.main()
