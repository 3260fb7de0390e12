from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog product.

    Prices are stored in cents in the catalog currency. ``central_quantity`` is
    warehouse stock not yet allocated to any branch and must never go negative.

    Branch-specific prices live in ``BranchPriceOverride`` (at most one per
    branch). Deleting a product is a hard delete; order items that referenced it
    keep a dangling product_id.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.CheckConstraint("central_quantity >= 0", name="ck_products_central_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(120), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Base catalog price (cents)
    price_cents = db.Column(db.Integer, nullable=False)

    central_quantity = db.Column(db.Integer, nullable=False, default=0)

    image_url = db.Column(db.String(512), nullable=True)
    image_public_id = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch_prices = db.relationship(
        "BranchPriceOverride",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="BranchPriceOverride.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def override_for(self, branch_id: int) -> "BranchPriceOverride | None":
        for override in self.branch_prices:
            if override.branch_id == branch_id:
                return override
        return None

    def to_dict(self, include_branch_prices: bool = True) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "description": self.description,
            "price_cents": self.price_cents,
            "central_quantity": self.central_quantity,
            "image_url": self.image_url,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_branch_prices:
            data["branch_prices"] = [bp.to_dict() for bp in self.branch_prices]
        return data


class BranchPriceOverride(db.Model):
    """
    Per-branch sale price for a product.

    ``price_cents`` and ``markup`` are independently optional on update. A
    numeric ``markup`` marks the entry as "managed": bulk exchange-rate
    recalculation only touches managed entries unless forced.
    """
    __tablename__ = "branch_price_overrides"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_branch_price_product_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    price_cents = db.Column(db.Integer, nullable=True)
    # Percentage, e.g. 20 for +20%
    markup = db.Column(db.Numeric(8, 2), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", back_populates="branch_prices")
    branch = db.relationship("Branch")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "price_cents": self.price_cents,
            "markup": float(self.markup) if self.markup is not None else None,
            "updated_at": to_utc_z(self.updated_at),
        }
