"""
Capability checks for resolved identities.

The dashboard has a single capability, "is admin". Every service takes the
caller's Identity explicitly and calls one of these guards before touching
another user's records.
"""
from typing import Optional

import structlog

from dashboard.schemas import Identity
from shared.errors import ForbiddenError, UnauthenticatedError

logger = structlog.get_logger()


def is_admin(identity: Optional[Identity]) -> bool:
    """Return True if the identity holds the admin role."""
    return identity is not None and identity.role == 'admin'


def require_identity(identity: Optional[Identity]) -> Identity:
    """Raise UnauthenticatedError unless an identity was resolved."""
    if identity is None:
        raise UnauthenticatedError()
    return identity


def require_admin(identity: Optional[Identity]) -> Identity:
    """Raise unless the caller is an authenticated admin."""
    identity = require_identity(identity)
    if not is_admin(identity):
        logger.warning("permission_denied", user_id=identity.id, user_role=identity.role,
                       required_role='admin')
        raise ForbiddenError()
    return identity


def require_self_or_admin(identity: Optional[Identity], owner_id: str) -> Identity:
    """Allow access to the caller's own records, or to anyone's for admins."""
    identity = require_identity(identity)
    if identity.id != owner_id:
        require_admin(identity)
    return identity
