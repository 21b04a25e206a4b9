"""Roles, permissions and the static role -> permission table.

Pure functions only; the FastAPI guards built on top live in ``studio.api.deps``.
"""

from collections.abc import Iterable
from enum import Enum


class Role(str, Enum):
    """Coarse privilege tier, totally ordered by increasing privilege."""

    GUEST = "GUEST"
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)


_ROLE_ORDER = (Role.GUEST, Role.USER, Role.ADMIN, Role.SUPER_ADMIN)

ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


class Permission(str, Enum):
    """Fine-grained capability strings."""

    VIEW_LANDING = "view:landing"
    USE_DEMO = "use:demo"
    GENERATE_PHOTOS = "generate:photos"
    VIEW_OWN_PHOTOS = "view:own_photos"
    DELETE_OWN_PHOTOS = "delete:own_photos"
    EDIT_OWN_PROFILE = "edit:own_profile"
    VIEW_ADMIN_DASHBOARD = "view:admin_dashboard"
    MANAGE_API_KEYS = "manage:api_keys"
    VIEW_ALL_USERS = "view:all_users"
    EDIT_USERS = "edit:users"
    BAN_USERS = "ban:users"
    VIEW_AUDIT_LOGS = "view:audit_logs"
    VIEW_ANALYTICS = "view:analytics"
    CREATE_ADMINS = "create:admins"
    DELETE_USERS = "delete:users"
    MANAGE_SYSTEM_SETTINGS = "manage:system_settings"


_GUEST = frozenset({Permission.VIEW_LANDING, Permission.USE_DEMO})
_USER = _GUEST | {
    Permission.GENERATE_PHOTOS,
    Permission.VIEW_OWN_PHOTOS,
    Permission.DELETE_OWN_PHOTOS,
    Permission.EDIT_OWN_PROFILE,
}
_ADMIN = _USER | {
    Permission.VIEW_ADMIN_DASHBOARD,
    Permission.MANAGE_API_KEYS,
    Permission.VIEW_ALL_USERS,
    Permission.EDIT_USERS,
    Permission.BAN_USERS,
    Permission.VIEW_AUDIT_LOGS,
    Permission.VIEW_ANALYTICS,
}
_SUPER_ADMIN = _ADMIN | {
    Permission.CREATE_ADMINS,
    Permission.DELETE_USERS,
    Permission.MANAGE_SYSTEM_SETTINGS,
}

# Every role has an entry; each set is a strict superset of the one below it.
ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.GUEST: _GUEST,
    Role.USER: frozenset(_USER),
    Role.ADMIN: frozenset(_ADMIN),
    Role.SUPER_ADMIN: frozenset(_SUPER_ADMIN),
}


def _coerce_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def has_permission(role: Role | str, permission: Permission | str) -> bool:
    """Table lookup; unknown roles or permissions are denied."""
    resolved = _coerce_role(role)
    if resolved is None:
        return False
    try:
        perm = Permission(permission)
    except ValueError:
        return False
    return perm in ROLE_PERMISSIONS[resolved]


def has_role(role: Role | str, allowed_roles: Iterable[Role | str]) -> bool:
    """Set membership of ``role`` in ``allowed_roles``."""
    resolved = _coerce_role(role)
    if resolved is None:
        return False
    return resolved in {_coerce_role(r) for r in allowed_roles}


def has_all_permissions(role: Role | str, permissions: Iterable[Permission | str]) -> bool:
    return all(has_permission(role, p) for p in permissions)


def has_any_permission(role: Role | str, permissions: Iterable[Permission | str]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def permissions_for(role: Role | str) -> frozenset[Permission]:
    resolved = _coerce_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS[resolved]
