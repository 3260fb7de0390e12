# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Role and branch-ownership checks for the acting principal.

Three roles exist (see models.auth):
- user: customer
- admin_sucursal: branch admin, only acts on their own branch
- admin_central: central admin, unrestricted

DESIGN PRINCIPLES:
- Fail closed: a missing or unknown role is treated as the least privileged
- Checks raise ForbiddenError / UnauthorizedError instead of returning flags
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ForbiddenError, UnauthorizedError
from ..models.auth import ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN, ROLE_USER, ROLES
from .stock_engine import FulfillmentMode


@dataclass(frozen=True)
class Principal:
    """Identity context of the caller; anonymous callers have no user_id."""

    user_id: int | None
    role: str = ROLE_USER
    branch_id: int | None = None

    @classmethod
    def from_user(cls, user) -> "Principal":
        role = user.role if user.role in ROLES else ROLE_USER
        return cls(user_id=user.id, role=role, branch_id=user.branch_id)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_central_admin(self) -> bool:
        return self.role == ROLE_CENTRAL_ADMIN

    @property
    def is_branch_admin(self) -> bool:
        return self.role == ROLE_BRANCH_ADMIN

    @property
    def is_privileged(self) -> bool:
        return self.role in (ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN)

    @property
    def fulfillment_mode(self) -> FulfillmentMode:
        return FulfillmentMode.DIRECT if self.is_privileged else FulfillmentMode.RESERVED


ANONYMOUS = Principal(user_id=None)


def require_authenticated(principal: Principal) -> None:
    if principal is None or not principal.is_authenticated:
        raise UnauthorizedError()


def require_central_admin(principal: Principal) -> None:
    require_authenticated(principal)
    if not principal.is_central_admin:
        raise ForbiddenError("Central admin role required")


def require_branch_admin_of(principal: Principal, branch_id: int) -> None:
    """Only the admin of this very branch passes (central admins do not)."""
    require_authenticated(principal)
    if not principal.is_branch_admin:
        raise ForbiddenError("Branch admin role required")
    if principal.branch_id != branch_id:
        raise ForbiddenError(
            "Branch admins may only act on their own branch",
            details={"branch_id": branch_id},
        )


def require_branch_access(principal: Principal, branch_id: int) -> None:
    """Central admin, or the admin of ``branch_id``."""
    require_authenticated(principal)
    if principal.is_central_admin:
        return
    require_branch_admin_of(principal, branch_id)


def scoped_branch_id(principal: Principal, requested_branch_id: int | None) -> int | None:
    """
    Branch filter to use for a read.

    Branch admins are pinned to their own branch whatever they ask for;
    everyone else gets what they asked for.
    """
    if principal is not None and principal.is_branch_admin:
        return principal.branch_id
    return requested_branch_id
