from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ROLE_USER = "user"
ROLE_BRANCH_ADMIN = "admin_sucursal"
ROLE_CENTRAL_ADMIN = "admin_central"
ROLES = (ROLE_USER, ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN)


class User(db.Model):
    """
    Account that acts on the system.

    ``role`` drives every authorization decision:
    - user: customer, may place orders (reserved until approved)
    - admin_sucursal: branch admin, scoped to ``branch_id``
    - admin_central: central admin, unrestricted

    Credentials are not managed here: access is granted through session tokens.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True, unique=True)
    fullname = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(32), nullable=False, default=ROLE_USER)

    # Branch association (required for branch admins)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", foreign_keys=[branch_id])

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "fullname": self.fullname,
            "phone": self.phone,
            "role": self.role,
            "branch_id": self.branch_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session token.

    Only the SHA-256 hash of the token is stored. Tokens expire after an
    absolute timeout and can be revoked.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
            "revoked_reason": self.revoked_reason,
        }
