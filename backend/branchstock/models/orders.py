from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_APPROVED = "approved"
ORDER_STATUS_REJECTED = "rejected"
ORDER_STATUS_RETURNED = "devolucion"
ORDER_STATUS_MODIFIED = "modificado"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_RETURNED,
    ORDER_STATUS_MODIFIED,
)

ITEM_STATUS_NORMAL = "normal"
ITEM_STATUS_RETURNED = "devolucion"
ITEM_STATUSES = (ITEM_STATUS_NORMAL, ITEM_STATUS_RETURNED)

PAYMENT_METHODS = ("efectivo", "débito", "billetera virtual")
PAYMENT_CASH = "efectivo"

DELIVERY_METHODS = ("pickup", "delivery")
DELIVERY_PICKUP = "pickup"
DELIVERY_DELIVERY = "delivery"


class Order(db.Model):
    """
    Customer order placed against one branch.

    Lifecycle: pending -> approved | rejected; approved orders may later be
    edited (modificado) or returned (devolucion) through update_order.

    ``user_id`` is null for anonymous or manual sales. ``total_cents`` is either
    the caller-supplied custom total or the sum of non-returned line amounts.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_branch_status", "branch_id", "status"),
        db.Index("ix_orders_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_PENDING)

    payment_method = db.Column(db.String(32), nullable=False)
    delivery_method = db.Column(db.String(16), nullable=False, default=DELIVERY_PICKUP)

    # Delivery address (required for delivery orders)
    delivery_address = db.Column(db.String(255), nullable=True)
    delivery_city = db.Column(db.String(120), nullable=True)
    delivery_postal_code = db.Column(db.String(16), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch")
    user = db.relationship("User")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} branch_id={self.branch_id} status={self.status!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "branch_id": self.branch_id,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "delivery_method": self.delivery_method,
            "delivery_address": {
                "address": self.delivery_address,
                "city": self.delivery_city,
                "postal_code": self.delivery_postal_code,
            } if self.delivery_method == DELIVERY_DELIVERY else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # No FK: products may be hard-deleted while still referenced here
    product_id = db.Column(db.Integer, nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # Cost basis captured at sale time; null for rows written before it existed
    base_price_at_sale_cents = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_NORMAL)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship(
        "Product",
        primaryjoin="foreign(OrderItem.product_id) == Product.id",
        viewonly=True,
    )

    @property
    def is_returned(self) -> bool:
        return self.status == ITEM_STATUS_RETURNED

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "base_price_at_sale_cents": self.base_price_at_sale_cents,
            "status": self.status,
            "line_total_cents": self.line_total_cents,
        }
