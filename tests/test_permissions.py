"""Unit tests for the static role -> permission table."""

import unittest

from studio.core.permissions import (
    ROLE_PERMISSIONS,
    Permission,
    Role,
    has_all_permissions,
    has_any_permission,
    has_permission,
    has_role,
    permissions_for,
)


class TestRoleTable(unittest.TestCase):
    def test_every_role_has_an_entry(self) -> None:
        self.assertEqual(set(ROLE_PERMISSIONS), set(Role))

    def test_each_role_strictly_extends_the_one_below(self) -> None:
        ordered = sorted(Role, key=lambda r: r.rank)
        for lower, higher in zip(ordered, ordered[1:]):
            with self.subTest(lower=lower, higher=higher):
                self.assertLess(ROLE_PERMISSIONS[lower], ROLE_PERMISSIONS[higher])

    def test_boundaries(self) -> None:
        self.assertTrue(has_permission(Role.USER, Permission.EDIT_OWN_PROFILE))
        self.assertFalse(has_permission(Role.USER, Permission.VIEW_ADMIN_DASHBOARD))
        self.assertTrue(has_permission(Role.ADMIN, Permission.BAN_USERS))
        self.assertFalse(has_permission(Role.ADMIN, Permission.DELETE_USERS))
        self.assertTrue(has_permission(Role.SUPER_ADMIN, Permission.CREATE_ADMINS))
        self.assertFalse(has_permission(Role.GUEST, Permission.GENERATE_PHOTOS))

    def test_unknown_values_denied(self) -> None:
        self.assertFalse(has_permission("ROOT", Permission.VIEW_LANDING))
        self.assertFalse(has_permission(Role.SUPER_ADMIN, "launch:missiles"))
        self.assertEqual(permissions_for("ROOT"), frozenset())

    def test_accepts_plain_strings(self) -> None:
        self.assertTrue(has_permission("ADMIN", "view:audit_logs"))


class TestRoleChecks(unittest.TestCase):
    def test_has_role(self) -> None:
        self.assertTrue(has_role(Role.ADMIN, [Role.ADMIN, Role.SUPER_ADMIN]))
        self.assertFalse(has_role(Role.USER, [Role.ADMIN, Role.SUPER_ADMIN]))
        self.assertFalse(has_role("ROOT", [Role.ADMIN]))
        self.assertTrue(has_role("SUPER_ADMIN", ["SUPER_ADMIN"]))

    def test_all_and_any(self) -> None:
        perms = [Permission.VIEW_ADMIN_DASHBOARD, Permission.DELETE_USERS]
        self.assertFalse(has_all_permissions(Role.ADMIN, perms))
        self.assertTrue(has_any_permission(Role.ADMIN, perms))
        self.assertTrue(has_all_permissions(Role.SUPER_ADMIN, perms))
        self.assertFalse(has_any_permission(Role.USER, perms))


if __name__ == "__main__":
    unittest.main()
