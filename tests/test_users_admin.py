"""Self-service profile and account deletion; admin moderation, API keys, stats and audit trail."""

import unittest

from factories import PASSWORD, add_user, build_services, identity, run
from studio.core.exceptions import Forbidden, InternalError, NotFound
from studio.core.permissions import Role
from studio.core.security import SecretBox
from studio.services.admin import AuditAction, Provider


class TestUsersService(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.user = run(add_user(self.svc.store))

    def test_update_profile_creates_then_patches(self) -> None:
        view = run(self.svc.users.update_profile(self.user.id, {"first_name": "Alice", "bio": "hi"}))
        self.assertEqual(view.profile.first_name, "Alice")
        view = run(self.svc.users.update_profile(self.user.id, {"bio": "updated"}))
        self.assertEqual((view.profile.first_name, view.profile.bio), ("Alice", "updated"))

    def test_get_profile_of_missing_user(self) -> None:
        with self.assertRaises(NotFound):
            run(self.svc.users.get_profile("missing"))

    def test_list_photos_paginates_and_filters(self) -> None:
        for i in range(5):
            self.svc.clock.advance(seconds=1)
            run(
                self.svc.store.create_photo(
                    self.user.id,
                    f"https://cdn.example/{i}.png",
                    title=f"Sunset {i}" if i % 2 else f"Portrait {i}",
                    is_favorite=i == 4,
                    tags=("beach",) if i == 1 else (),
                )
            )
        page = run(self.svc.users.list_photos(self.user.id, page=1, limit=2))
        self.assertEqual(page.total, 5)
        self.assertEqual(page.total_pages, 3)
        self.assertTrue(page.has_more)
        self.assertEqual(page.items[0].image_url, "https://cdn.example/4.png")

        last = run(self.svc.users.list_photos(self.user.id, page=3, limit=2))
        self.assertFalse(last.has_more)
        self.assertEqual(len(last.items), 1)

        self.assertEqual(run(self.svc.users.list_photos(self.user.id, favorite=True)).total, 1)
        self.assertEqual(run(self.svc.users.list_photos(self.user.id, search="sunset")).total, 2)
        self.assertEqual(run(self.svc.users.list_photos(self.user.id, search="beach")).total, 1)

    def test_delete_account_anonymises_and_ends_sessions(self) -> None:
        tokens = run(self.svc.sessions.login("alice@example.com", PASSWORD)).tokens
        run(self.svc.users.delete_account(self.user.id))

        user = run(self.svc.store.get_user(self.user.id))
        self.assertFalse(user.is_active)
        self.assertTrue(user.email.startswith("deleted_"))
        self.assertTrue(user.email.endswith("@deleted.com"))
        self.assertEqual(run(self.svc.store.count_refresh_tokens(self.user.id)), 0)
        self.assertIsNone(run(self.svc.gate.authenticate_optional(tokens.access_token)))
        # The address is free for a new account.
        run(self.svc.auth.signup("alice@example.com", PASSWORD))


class TestAdminUserModeration(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.root = run(add_user(self.svc.store, "root@example.com", Role.SUPER_ADMIN))
        self.admin = run(add_user(self.svc.store, "admin@example.com", Role.ADMIN))
        self.user = run(add_user(self.svc.store, "user@example.com"))

    def test_admin_cannot_grant_admin_roles(self) -> None:
        with self.assertRaises(Forbidden) as ctx:
            run(self.svc.admin.update_user(self.user.id, {"role": Role.ADMIN}, identity(self.admin)))
        self.assertEqual(ctx.exception.message, "Only Super Admins can create admin accounts")

    def test_admin_cannot_touch_super_admin(self) -> None:
        with self.assertRaises(Forbidden) as ctx:
            run(self.svc.admin.update_user(self.root.id, {"is_active": False}, identity(self.admin)))
        self.assertEqual(ctx.exception.message, "Cannot modify Super Admin accounts")

    def test_super_admin_promotes(self) -> None:
        view = run(self.svc.admin.update_user(self.user.id, {"role": Role.ADMIN}, identity(self.root)))
        self.assertEqual(view.user.role, Role.ADMIN)
        self.assertEqual(view.photo_count, 0)

    def test_ban_stamps_and_ends_sessions(self) -> None:
        run(self.svc.sessions.login("user@example.com", PASSWORD))
        view = run(
            self.svc.admin.update_user(
                self.user.id,
                {"is_banned": True, "banned_reason": "spam"},
                identity(self.admin),
                ip_address="10.0.0.1",
            )
        )
        self.assertTrue(view.user.is_banned)
        self.assertEqual(view.user.banned_reason, "spam")
        self.assertEqual(view.user.banned_at, self.svc.clock.now)
        self.assertEqual(run(self.svc.store.count_refresh_tokens(self.user.id)), 0)

        logs, total = run(self.svc.store.list_audit_logs(action=AuditAction.USER_UPDATE.value))
        self.assertEqual(total, 1)
        self.assertEqual(logs[0].user_id, self.admin.id)
        self.assertEqual(logs[0].resource_id, self.user.id)
        self.assertEqual(logs[0].ip_address, "10.0.0.1")

    def test_unban_clears_stamp(self) -> None:
        run(self.svc.admin.update_user(self.user.id, {"is_banned": True}, identity(self.admin)))
        view = run(self.svc.admin.update_user(self.user.id, {"is_banned": False}, identity(self.admin)))
        self.assertFalse(view.user.is_banned)
        self.assertIsNone(view.user.banned_at)

    def test_delete_rules(self) -> None:
        with self.assertRaises(Forbidden) as ctx:
            run(self.svc.admin.delete_user(self.user.id, identity(self.admin)))
        self.assertEqual(ctx.exception.message, "Only Super Admins can delete users")

        other_root = run(add_user(self.svc.store, "root2@example.com", Role.SUPER_ADMIN))
        with self.assertRaises(Forbidden) as ctx:
            run(self.svc.admin.delete_user(other_root.id, identity(self.root)))
        self.assertEqual(ctx.exception.message, "Cannot delete Super Admin accounts")

        run(self.svc.admin.delete_user(self.user.id, identity(self.root)))
        self.assertIsNone(run(self.svc.store.get_user(self.user.id)))
        with self.assertRaises(NotFound):
            run(self.svc.admin.delete_user(self.user.id, identity(self.root)))

    def test_list_users_search_and_filters(self) -> None:
        run(self.svc.store.upsert_profile(self.user.id, first_name="Zelda"))
        page = run(self.svc.admin.list_users(search="zelda"))
        self.assertEqual([v.user.id for v in page.items], [self.user.id])
        self.assertEqual(run(self.svc.admin.list_users(role=Role.ADMIN)).total, 1)
        self.assertEqual(run(self.svc.admin.list_users(limit=2)).total, 3)

    def test_dashboard_stats(self) -> None:
        run(self.svc.store.update_user(self.user.id, is_banned=True))
        run(self.svc.store.create_photo(self.user.id, "https://cdn.example/a.png"))
        stats = run(self.svc.admin.dashboard_stats())
        self.assertEqual(stats.users_total, 3)
        self.assertEqual(stats.users_active, 2)
        self.assertEqual(stats.users_new_today, 3)
        self.assertEqual(stats.photos_total, 1)
        self.assertEqual(stats.photos_this_month, 1)


class TestAdminApiKeys(unittest.TestCase):
    def setUp(self) -> None:
        self.svc = build_services()
        self.admin = identity(run(add_user(self.svc.store, "admin@example.com", Role.ADMIN)))

    def _create(self, name: str, key: str, **kwargs):
        self.svc.clock.advance(seconds=1)
        return run(self.svc.admin.create_api_key(self.admin, name, Provider.OPENAI, key, **kwargs))

    def test_key_is_encrypted_with_preview(self) -> None:
        record = self._create("main", "sk-abcdefghijklmnop")
        self.assertNotIn("sk-abcdefghijklmnop", record.encrypted_key)
        self.assertEqual(record.key_preview, "sk-a...mnop")
        self.assertEqual(self.svc.secret_box.decrypt(record.encrypted_key), "sk-abcdefghijklmnop")

    def test_single_default_per_provider(self) -> None:
        first = self._create("first", "sk-1111111111", is_default=True)
        second = self._create("second", "sk-2222222222", is_default=True)
        keys = {k.id: k for k in run(self.svc.admin.list_api_keys(self.admin))}
        self.assertFalse(keys[first.id].is_default)
        self.assertTrue(keys[second.id].is_default)

        run(self.svc.admin.update_api_key(first.id, self.admin, {"is_default": True}))
        keys = {k.id: k for k in run(self.svc.admin.list_api_keys(self.admin))}
        self.assertTrue(keys[first.id].is_default)
        self.assertFalse(keys[second.id].is_default)

    def test_resolve_prefers_default_then_newest(self) -> None:
        self._create("old", "sk-old-00000000")
        self._create("new", "sk-new-00000000")
        self.assertEqual(run(self.svc.admin.resolve_api_key(Provider.OPENAI)), "sk-new-00000000")

        default = self._create("pinned", "sk-default-0000", is_default=True)
        self._create("newest", "sk-newest-00000")
        self.assertEqual(run(self.svc.admin.resolve_api_key(Provider.OPENAI)), "sk-default-0000")
        self.assertEqual(self.svc.store.api_keys[default.id].usage_count, 1)
        self.assertIsNone(run(self.svc.admin.resolve_api_key(Provider.GEMINI)))

    def test_inactive_keys_are_skipped(self) -> None:
        key = self._create("only", "sk-only-0000000")
        run(self.svc.admin.update_api_key(key.id, self.admin, {"is_active": False}))
        self.assertIsNone(run(self.svc.admin.resolve_api_key(Provider.OPENAI)))

    def test_undecryptable_key(self) -> None:
        self._create("main", "sk-abcdefghijklmnop")
        self.svc.admin._secret_box = SecretBox("rotated key material")
        with self.assertRaises(InternalError):
            run(self.svc.admin.resolve_api_key(Provider.OPENAI))

    def test_rotate_key_material(self) -> None:
        key = self._create("main", "sk-abcdefghijklmnop")
        updated = run(self.svc.admin.update_api_key(key.id, self.admin, {"key": "sk-zyxwvutsrqpo"}))
        self.assertEqual(updated.key_preview, "sk-z...rqpo")
        self.assertEqual(run(self.svc.admin.resolve_api_key(Provider.OPENAI)), "sk-zyxwvutsrqpo")

    def test_keys_are_scoped_to_owner(self) -> None:
        key = self._create("main", "sk-abcdefghijklmnop")
        other = identity(run(add_user(self.svc.store, "other@example.com", Role.ADMIN)))
        self.assertEqual(run(self.svc.admin.list_api_keys(other)), [])
        with self.assertRaises(NotFound):
            run(self.svc.admin.delete_api_key(key.id, other))

    def test_mutations_are_audited(self) -> None:
        key = self._create("main", "sk-abcdefghijklmnop")
        self.svc.clock.advance(seconds=1)
        run(self.svc.admin.update_api_key(key.id, self.admin, {"name": "renamed"}))
        self.svc.clock.advance(seconds=1)
        run(self.svc.admin.delete_api_key(key.id, self.admin))
        page = run(self.svc.admin.list_audit_logs(user_id=self.admin.id))
        self.assertEqual(
            [log.action for log in page.items],
            ["API_KEY_DELETE", "API_KEY_UPDATE", "API_KEY_CREATE"],
        )
        for log in page.items:
            self.assertNotIn("sk-abcdefghijklmnop", str(log.details))


if __name__ == "__main__":
    unittest.main()
