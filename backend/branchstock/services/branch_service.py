# Overview: Service-layer operations for branches; encapsulates business logic and database work.

"""
Branch Service

Branch CRUD, direct stock operations (central -> branch transfer, manual
load), exchange rate and the legacy product price list.

Stock ledger entries are looked up through ``find_stock_entry`` so every caller
gets the same legacy-tolerant view of a (branch, product) pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ValidationError, ConflictError
from ..extensions import db
from ..models import Branch, BranchProductPrice, BranchStock, Product
from ..models.stock import MOVEMENT_SOURCE_CENTRAL, MOVEMENT_SOURCE_MANUAL
from ..validation import (
    ModelValidationPolicy,
    coerce_decimal,
    coerce_int,
    coerce_positive_int,
    enforce_price_cents,
    enforce_rules_branch,
    validate_payload,
)
from . import ledger_service, permission_service, stock_engine
from .concurrency import lock_for_update, run_with_retry
from .permission_service import Principal


logger = logging.getLogger(__name__)

BRANCH_POLICY = ModelValidationPolicy(
    writable_fields={"name", "number", "address", "city", "province", "phone", "admin_user_id", "default_markup", "exchange_rate"},
    required_on_create={"name", "number"},
)

# Fields an existing branch may change through update_branch
BRANCH_MUTABLE_FIELDS = {"name", "number", "address", "city", "province", "phone", "default_markup"}

MANUAL_LOAD_DEFAULT_NOTES = "Manual stock load"


@dataclass
class ManualLoadResult:
    """Outcome of a manual multi-product load; ``errors`` holds per-line failures."""

    branch: Branch
    movements: list = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    success_count: int = 0

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def require_branch(branch_id: int, *, for_update: bool = False) -> Branch:
    query = db.session.query(Branch).filter(Branch.id == branch_id)
    if for_update:
        query = lock_for_update(query)
    branch = query.first()
    if branch is None:
        raise NotFoundError("Branch not found", details={"branch_id": branch_id})
    return branch


def require_product(product_id: int, *, for_update: bool = False) -> Product:
    query = db.session.query(Product).filter(Product.id == product_id)
    if for_update:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def find_stock_entry(branch_id: int, product_id: int, *, for_update: bool = False) -> BranchStock | None:
    query = db.session.query(BranchStock).filter(
        BranchStock.branch_id == branch_id,
        BranchStock.product_id == product_id,
    )
    if for_update:
        query = lock_for_update(query)
    return query.first()


def ensure_stock_entry(branch_id: int, product_id: int) -> BranchStock:
    """Existing entry for the pair, or a new empty one added to the session."""
    entry = find_stock_entry(branch_id, product_id, for_update=True)
    if entry is None:
        entry = BranchStock(branch_id=branch_id, product_id=product_id, quantity=0, reserved_quantity=0)
        db.session.add(entry)
    return entry


def credit_branch(branch_id: int, product_id: int, qty: int) -> BranchStock:
    entry = ensure_stock_entry(branch_id, product_id)
    entry.apply_levels(stock_engine.transfer_in(entry.levels, qty))
    return entry


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def list_branches() -> list[Branch]:
    return db.session.query(Branch).order_by(Branch.name.asc(), Branch.id.asc()).all()


def get_branch(branch_id: int) -> Branch:
    return require_branch(branch_id)


def create_branch(payload: dict, principal: Principal) -> Branch:
    permission_service.require_central_admin(principal)
    patch = validate_payload(model=Branch, payload=payload, policy=BRANCH_POLICY, partial=False)
    enforce_rules_branch(patch)

    def _op():
        branch = Branch(**patch)
        db.session.add(branch)
        db.session.commit()
        return branch

    branch = run_with_retry(_op)
    logger.info("branch created id=%s name=%s", branch.id, branch.name)
    return branch


def update_branch(branch_id: int, payload: dict, principal: Principal) -> Branch:
    permission_service.require_branch_access(principal, branch_id)
    patch = validate_payload(model=Branch, payload=payload, policy=BRANCH_POLICY, partial=True)
    enforce_rules_branch(patch)

    def _op():
        branch = require_branch(branch_id, for_update=True)
        for key, value in patch.items():
            if key in BRANCH_MUTABLE_FIELDS:
                setattr(branch, key, value)
        db.session.commit()
        return branch

    return run_with_retry(_op)


def delete_branch(branch_id: int, principal: Principal) -> None:
    permission_service.require_central_admin(principal)

    def _op():
        branch = require_branch(branch_id, for_update=True)
        db.session.delete(branch)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("Branch is still referenced and cannot be deleted", details={"branch_id": branch_id}) from exc

    run_with_retry(_op)
    logger.info("branch deleted id=%s", branch_id)


def update_exchange_rate(branch_id: int, rate, principal: Principal) -> Branch:
    permission_service.require_branch_access(principal, branch_id)
    rate = coerce_decimal(rate, "exchange_rate")
    if rate <= 0:
        raise ValidationError("exchange_rate must be a positive number")

    def _op():
        branch = require_branch(branch_id, for_update=True)
        branch.exchange_rate = rate
        db.session.commit()
        return branch

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Direct stock operations
# ---------------------------------------------------------------------------

def transfer_stock(
    branch_id: int,
    product_id: int,
    quantity,
    principal: Principal,
    notes: str | None = None,
) -> tuple[BranchStock, object]:
    """
    Move stock from the central warehouse into a branch.

    Returns (stock_entry, movement). ``movement`` is None when the audit row
    could not be written; the transfer itself still stands.
    """
    branch_id = coerce_positive_int(branch_id, "branch_id")
    product_id = coerce_positive_int(product_id, "product_id")
    permission_service.require_branch_access(principal, branch_id)
    qty = coerce_positive_int(quantity, "quantity")

    def _op():
        branch = db.session.get(Branch, branch_id)
        product = db.session.query(Product).filter(Product.id == product_id)
        product = lock_for_update(product).first()
        if branch is None or product is None:
            raise NotFoundError("Branch or product not found", details={"branch_id": branch_id, "product_id": product_id})

        product.central_quantity = stock_engine.transfer_out(product.central_quantity, qty, product_id=product_id)
        entry = credit_branch(branch_id, product_id, qty)

        movement = ledger_service.append_stock_movement(
            product_id=product_id,
            to_branch_id=branch_id,
            quantity=qty,
            user_id=principal.user_id,
            source=MOVEMENT_SOURCE_CENTRAL,
            notes=notes or "",
        )
        db.session.commit()
        return entry, movement

    entry, movement = run_with_retry(_op)
    logger.info("central transfer product_id=%s branch_id=%s qty=%s", product_id, branch_id, qty)
    return entry, movement


def load_stock_manual(branch_id: int, lines, principal: Principal, notes: str | None = None) -> ManualLoadResult:
    """
    Add stock to a branch from outside the central warehouse.

    Invalid lines (bad quantity, unknown product) are collected into
    ``errors`` and skipped; the remaining lines are applied. This is the one
    operation that commits a partial result on purpose.
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one product is required")
    branch_id = coerce_positive_int(branch_id, "branch_id")
    permission_service.require_branch_access(principal, branch_id)

    def _op():
        branch = require_branch(branch_id)
        result = ManualLoadResult(branch=branch)

        for line in lines:
            line = line if isinstance(line, dict) else {}
            product_id = line.get("product_id")
            try:
                qty = coerce_positive_int(line.get("quantity"), "quantity")
            except ValidationError:
                result.errors.append(f"Product {product_id}: invalid quantity")
                continue
            try:
                product_id = coerce_int(product_id, "product_id")
            except ValidationError:
                result.errors.append(f"Product {product_id}: invalid product id")
                continue

            if db.session.get(Product, product_id) is None:
                result.errors.append(f"Product {product_id}: not found")
                continue

            credit_branch(branch_id, product_id, qty)
            result.success_count += 1

            movement = ledger_service.append_stock_movement(
                product_id=product_id,
                to_branch_id=branch_id,
                quantity=qty,
                user_id=principal.user_id,
                source=MOVEMENT_SOURCE_MANUAL,
                notes=notes or MANUAL_LOAD_DEFAULT_NOTES,
            )
            if movement is not None:
                result.movements.append(movement)

        db.session.commit()
        return result

    result = run_with_retry(_op)
    if result.is_partial:
        logger.warning("manual stock load partially applied branch_id=%s errors=%s", branch_id, result.errors)
    return result


def list_branch_products(branch_id: int) -> list[dict]:
    """Products stocked in a branch with their quantities and resolved price."""
    from .pricing_service import resolve_price

    require_branch(branch_id)
    entries = (
        db.session.query(BranchStock)
        .filter(BranchStock.branch_id == branch_id)
        .order_by(BranchStock.id.asc())
        .all()
    )
    items = []
    for entry in entries:
        product = entry.product
        if product is None:
            continue
        data = product.to_dict(include_branch_prices=False)
        data["quantity"] = entry.available
        data["reserved_quantity"] = entry.reserved
        data["branch_price_cents"] = resolve_price(product, branch_id)
        items.append(data)
    return items


def stock_report() -> dict:
    """Per-branch availability snapshot."""
    from ..time_utils import to_utc_z, utcnow

    report = []
    for branch in list_branches():
        report.append({
            "branch_id": branch.id,
            "name": branch.name,
            "city": branch.city,
            "total_products": len(branch.stock),
            "products": [
                {
                    "product_id": entry.product_id,
                    "name": entry.product.name if entry.product else None,
                    "available_quantity": entry.available,
                    "reserved_quantity": entry.reserved,
                }
                for entry in branch.stock
            ],
        })
    return {"generated_at": to_utc_z(utcnow()), "report": report}


# ---------------------------------------------------------------------------
# Legacy product prices
# ---------------------------------------------------------------------------

def get_branch_product_prices(branch_id: int, principal: Principal) -> list[BranchProductPrice]:
    permission_service.require_branch_access(principal, branch_id)
    return require_branch(branch_id).product_prices


def replace_branch_product_prices(branch_id: int, prices, principal: Principal) -> list[BranchProductPrice]:
    """Replace the whole legacy price list of a branch."""
    permission_service.require_branch_access(principal, branch_id)
    if not isinstance(prices, list):
        raise ValidationError("product_prices must be a list")

    rows = []
    seen: set[int] = set()
    for raw in prices:
        if not isinstance(raw, dict):
            raise ValidationError("Each product price must be an object")
        product_id = coerce_positive_int(raw.get("product_id"), "product_id")
        if product_id in seen:
            raise ValidationError("Duplicate product in price list", details={"product_id": product_id})
        seen.add(product_id)
        margin = coerce_decimal(raw.get("profit_margin", 0), "profit_margin")
        final_price = enforce_price_cents(raw.get("final_price_cents", 0), "final_price_cents")
        rows.append((product_id, margin, final_price))

    def _op():
        branch = require_branch(branch_id, for_update=True)
        branch.product_prices.clear()
        db.session.flush()
        for product_id, margin, final_price in rows:
            branch.product_prices.append(BranchProductPrice(
                product_id=product_id,
                profit_margin=Decimal(margin),
                final_price_cents=final_price,
            ))
        db.session.commit()
        return branch.product_prices

    return run_with_retry(_op)
