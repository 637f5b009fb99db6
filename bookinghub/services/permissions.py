"""
Permission resolver: role -> capability set.
Pure lookups; unknown roles resolve to nothing.
"""
from typing import FrozenSet, Optional

from ..config import settings


CALENDAR_VIEW = "calendar:view"
CALENDAR_EDIT = "calendar:edit"
CALENDAR_EDIT_OWN = "calendar:edit_own"
USERS_READ = "users:read"
USERS_WRITE = "users:write"
USERS_ROLES = "users:roles"
USERS_DELETE = "users:delete"
TALENT_MANAGE = "talent:manage"
BUSINESS_MANAGE = "business:manage"
REPORTS_EXPORT = "reports:export"


_STAFF = frozenset({
    CALENDAR_VIEW,
    CALENDAR_EDIT,
    USERS_READ,
    USERS_WRITE,
    TALENT_MANAGE,
    BUSINESS_MANAGE,
    REPORTS_EXPORT,
})

ROLE_CAPABILITIES = {
    "admin": _STAFF | {USERS_ROLES, USERS_DELETE},
    "staff": _STAFF,
    "talent": frozenset({CALENDAR_VIEW, CALENDAR_EDIT_OWN}),
    "business": frozenset({CALENDAR_VIEW, CALENDAR_EDIT_OWN}),
}

# Capabilities a role only has while a feature flag is on
_FLAGGED = {
    ("business", CALENDAR_VIEW): "calendar_for_business",
    ("business", CALENDAR_EDIT_OWN): "calendar_for_business",
}


def resolve_capabilities(role: Optional[str]) -> FrozenSet[str]:
    key = (role or "").lower()
    caps = ROLE_CAPABILITIES.get(key)
    if not caps:
        return frozenset()
    return frozenset(
        c for c in caps
        if (key, c) not in _FLAGGED or settings.feature_enabled(_FLAGGED[(key, c)])
    )


def has_capability(profile, capability: str) -> bool:
    if profile is None or not getattr(profile, "active", False):
        return False
    return capability in resolve_capabilities(profile.role)


def can_manage(profile) -> bool:
    """Admin and staff: global calendar editing."""
    return has_capability(profile, CALENDAR_EDIT)
