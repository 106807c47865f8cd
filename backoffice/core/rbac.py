"""Role-Based Access Control helpers.

Pure functions only: no network access, no session lookups. Callers pass
the identity they already hold.
"""
from __future__ import annotations
from typing import Iterable, Optional

from .api.exceptions import Forbidden, Unauthenticated
from .models import Identity, Role

BACKOFFICE_ROLES = frozenset({Role.ADMIN, Role.STAFF})
ADMIN_ONLY = frozenset({Role.ADMIN})


def _normalize_roles(roles: Iterable) -> frozenset:
    return frozenset(r if isinstance(r, Role) else Role(str(r).lower()) for r in roles)


def authorize(identity: Optional[Identity], required_roles: Iterable) -> bool:
    """Check if identity holds one of the required roles."""
    if identity is None:
        return False
    return identity.role in _normalize_roles(required_roles)


def require_role(identity: Optional[Identity], required_roles: Iterable) -> Identity:
    """Return identity if it may proceed.

    Raises:
        Unauthenticated: No identity at all (caller should log in)
        Forbidden: Identity present but role not allowed
    """
    if identity is None:
        raise Unauthenticated("Authentication required")
    allowed = _normalize_roles(required_roles)
    if identity.role not in allowed:
        raise Forbidden(identity.role.value, [r.value for r in allowed])
    return identity


def is_backoffice_identity(identity: Optional[Identity]) -> bool:
    """Check if identity may hold a back-office session (active Admin or Staff)."""
    return identity is not None and identity.is_active and identity.role in BACKOFFICE_ROLES
