# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
User accounts.

Every action must be attributable, so each person gets their own user. Roles
are fixed (see models.auth); a branch admin must be bound to a branch.
"""

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, User
from ..models.auth import ROLE_BRANCH_ADMIN, ROLE_USER, ROLES


def create_user(
    username: str,
    role: str = ROLE_USER,
    branch_id: int | None = None,
    email: str | None = None,
    fullname: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create a user.

    Raises:
        ValidationError: unknown role, blank username, branch admin without branch
        NotFoundError: branch_id does not exist
        ConflictError: username or email already taken
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"allowed": list(ROLES)})
    if role == ROLE_BRANCH_ADMIN and branch_id is None:
        raise ValidationError("Branch admins must belong to a branch")

    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise NotFoundError("Branch not found", details={"branch_id": branch_id})

    clauses = [User.username == username]
    if email:
        clauses.append(User.email == email)
    if db.session.query(User).filter(db.or_(*clauses)).first():
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        role=role,
        branch_id=branch_id,
        email=email or None,
        fullname=fullname,
        phone=phone,
    )
    db.session.add(user)
    db.session.commit()
    return user


def get_user_by_username(username: str) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if user is None:
        raise NotFoundError("User not found", details={"username": username})
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.id.asc()).all()
