"""
Role based authorization.

The policy is a matrix of role -> action -> resource -> (any, own):
``any`` grants the action on every resource of that kind, ``own`` only on
resources the caller owns.
"""
from typing import NamedTuple, Optional

from listings.models.user import UserRole, canonical_role

ACTIONS = ("create", "read", "update", "delete")
RESOURCES = ("property", "user", "profile", "media", "admin")


class Permission(NamedTuple):
    any: bool
    own: bool


class Decision(NamedTuple):
    allowed: bool
    reason: str


_NONE = Permission(False, False)
_OWN = Permission(False, True)
_ANY = Permission(True, False)
_ALL = Permission(True, True)

POLICY: dict[UserRole, dict[str, dict[str, Permission]]] = {
    UserRole.USER: {
        "create": {"property": _NONE, "user": _NONE, "profile": _OWN, "media": _NONE, "admin": _NONE},
        "read": {"property": _ANY, "user": _OWN, "profile": _OWN, "media": _ANY, "admin": _NONE},
        "update": {"property": _NONE, "user": _OWN, "profile": _OWN, "media": _NONE, "admin": _NONE},
        "delete": {"property": _NONE, "user": _NONE, "profile": _NONE, "media": _NONE, "admin": _NONE},
    },
    UserRole.AGENT: {
        "create": {"property": _OWN, "user": _NONE, "profile": _OWN, "media": _OWN, "admin": _NONE},
        "read": {"property": _ANY, "user": _OWN, "profile": _OWN, "media": _ANY, "admin": _NONE},
        "update": {"property": _OWN, "user": _OWN, "profile": _OWN, "media": _OWN, "admin": _NONE},
        "delete": {"property": _OWN, "user": _NONE, "profile": _NONE, "media": _OWN, "admin": _NONE},
    },
    UserRole.SUPERADMIN: {
        action: {resource: _ALL for resource in RESOURCES} for action in ACTIONS
    },
}


def permission(role: str, action: str, resource: str) -> Permission:
    return POLICY[canonical_role(role)][action][resource]


def is_allowed(
    *,
    role: str,
    action: str,
    resource: str,
    user_id: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> Decision:
    perm = permission(role, action, resource)
    if perm.any:
        return Decision(True, f"{canonical_role(role).value} may {action} any {resource}")
    if perm.own:
        if owner_id is None or user_id is None:
            return Decision(False, f"{action} on {resource} requires ownership")
        if str(owner_id) == str(user_id):
            return Decision(True, f"owner may {action} own {resource}")
        return Decision(False, f"not the owner of this {resource}")
    return Decision(False, f"{canonical_role(role).value} may not {action} {resource}")


def accessible_resources(role: str, action: str) -> list[str]:
    return [r for r, p in POLICY[canonical_role(role)][action].items() if p.any or p.own]
