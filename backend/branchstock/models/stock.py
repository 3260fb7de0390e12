from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_APPROVED = "approved"
REQUEST_STATUS_REJECTED = "rejected"
REQUEST_STATUS_DELIVERED_UNPAID = "delivered_unpaid"
REQUEST_STATUS_FULFILLED = "fulfilled"

REQUEST_STATUSES = (
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_REJECTED,
    REQUEST_STATUS_DELIVERED_UNPAID,
    REQUEST_STATUS_FULFILLED,
)

MOVEMENT_SOURCE_CENTRAL = "central"
MOVEMENT_SOURCE_MANUAL = "manual"
MOVEMENT_SOURCE_OTHER = "other"
MOVEMENT_SOURCES = (MOVEMENT_SOURCE_CENTRAL, MOVEMENT_SOURCE_MANUAL, MOVEMENT_SOURCE_OTHER)


class StockRequest(db.Model):
    """
    Replenishment request from a branch to the central warehouse.

    Lifecycle:
    - pending -> approved -> fulfilled
    - pending | approved -> delivered_unpaid -> fulfilled
    - pending -> rejected

    Stock only moves on the transitions into delivered_unpaid or fulfilled
    (from approved). Creation only checks central availability, it does not
    reserve anything.
    """
    __tablename__ = "stock_requests"
    __table_args__ = (
        db.Index("ix_stock_requests_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=REQUEST_STATUS_PENDING)
    notes = db.Column(db.Text, nullable=True)

    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch")
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])
    items = db.relationship(
        "StockRequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="StockRequestItem.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requested_by_user_id": self.requested_by_user_id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "status": self.status,
            "notes": self.notes,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "items": [item.to_dict() for item in self.items],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockRequestItem(db.Model):
    __tablename__ = "stock_request_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_stock_request_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("stock_requests.id"), nullable=False, index=True)
    # No FK: products may be hard-deleted while still referenced here
    product_id = db.Column(db.Integer, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    request = db.relationship("StockRequest", back_populates="items")
    product = db.relationship(
        "Product",
        primaryjoin="foreign(StockRequestItem.product_id) == Product.id",
        viewonly=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
        }


class StockMovement(db.Model):
    """
    Append-only audit record of stock entering a branch.

    Rows are never updated or deleted. Writes are best-effort: a failed insert
    is logged and does not undo the stock change it describes.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_branch_created", "to_branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    source = db.Column(db.String(16), nullable=False, default=MOVEMENT_SOURCE_CENTRAL)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User")
    to_branch = db.relationship("Branch")
    product = db.relationship(
        "Product",
        primaryjoin="foreign(StockMovement.product_id) == Product.id",
        viewonly=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.fullname if self.user else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "source": self.source,
            "to_branch_id": self.to_branch_id,
            "to_branch_name": self.to_branch.name if self.to_branch else None,
            "quantity": self.quantity,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
