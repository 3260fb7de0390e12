from __future__ import annotations

from ..extensions import db
from ..services.stock_engine import StockLevels
from ..time_utils import to_utc_z, utcnow


class Branch(db.Model):
    """
    Retail location with its own stock ledger and price settings.

    ``exchange_rate`` converts catalog prices to the branch currency;
    ``default_markup`` is the percentage applied to new branch prices.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    # Contact number, also the destination of order notifications
    number = db.Column(db.String(32), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    province = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    admin_user_id = db.Column(db.Integer, nullable=True)

    exchange_rate = db.Column(db.Numeric(14, 4), nullable=False, default=1)
    default_markup = db.Column(db.Numeric(8, 2), nullable=False, default=20)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    stock = db.relationship(
        "BranchStock",
        back_populates="branch",
        cascade="all, delete-orphan",
        order_by="BranchStock.id",
        lazy=True,
    )
    product_prices = db.relationship(
        "BranchProductPrice",
        back_populates="branch",
        cascade="all, delete-orphan",
        order_by="BranchProductPrice.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self, include_stock: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "address": self.address,
            "city": self.city,
            "province": self.province,
            "phone": self.phone,
            "admin_user_id": self.admin_user_id,
            "exchange_rate": float(self.exchange_rate) if self.exchange_rate is not None else None,
            "default_markup": float(self.default_markup) if self.default_markup is not None else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_stock:
            data["stock"] = [entry.to_dict() for entry in self.stock]
        return data


class BranchStock(db.Model):
    """
    Stock ledger entry for one (branch, product) pair.

    ``quantity`` is the canonical available quantity. Rows written before the
    schema was unified may carry the value in ``available_quantity`` instead;
    ``available`` reads either shape and ``apply_levels`` always writes the
    canonical column and clears the legacy one.
    """
    __tablename__ = "branch_stock"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_stock_branch_product"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_branch_stock_reserved_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=True)
    # Legacy shape of the available quantity; migrated by `flask stock migrate-legacy`
    available_quantity = db.Column(db.Integer, nullable=True)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch", back_populates="stock")
    product = db.relationship("Product")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available(self) -> int:
        if self.quantity is not None:
            return self.quantity
        if self.available_quantity is not None:
            return self.available_quantity
        return 0

    @property
    def reserved(self) -> int:
        return self.reserved_quantity or 0

    @property
    def levels(self) -> StockLevels:
        return StockLevels(available=self.available, reserved=self.reserved)

    def apply_levels(self, levels: StockLevels) -> None:
        self.quantity = levels.available
        self.available_quantity = None
        self.reserved_quantity = levels.reserved

    def __repr__(self) -> str:
        return (
            f"<BranchStock branch_id={self.branch_id} product_id={self.product_id} "
            f"available={self.available} reserved={self.reserved}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "quantity": self.available,
            "reserved_quantity": self.reserved,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class BranchProductPrice(db.Model):
    """
    Legacy per-branch pricing (profit margin + final price).

    Superseded by BranchPriceOverride; kept so older clients can still read and
    replace the list.
    """
    __tablename__ = "branch_product_prices"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_product_prices_branch_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    profit_margin = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    final_price_cents = db.Column(db.Integer, nullable=False, default=0)

    branch = db.relationship("Branch", back_populates="product_prices")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "profit_margin": float(self.profit_margin) if self.profit_margin is not None else 0,
            "final_price_cents": self.final_price_cents,
        }
