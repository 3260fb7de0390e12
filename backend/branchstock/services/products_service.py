# Overview: Service-layer operations for products; encapsulates business logic and database work.

"""
Products Service

Catalog CRUD (central admin only), central warehouse stock and the
branch-aware catalog view.

Deleting a product is a hard delete. Its branch stock entries, price
overrides and legacy branch prices go with it; orders and stock requests
that referenced it keep the dangling product id and render it with a null
name.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError
from ..extensions import db
from ..models import BranchProductPrice, BranchStock, Product
from ..validation import ModelValidationPolicy, coerce_positive_int, enforce_rules_product, validate_payload
from . import permission_service
from .branch_service import require_branch, require_product
from .concurrency import run_with_retry
from .permission_service import Principal
from .pricing_service import resolve_price


logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "brand", "category", "description",
        "price_cents", "central_quantity", "image_url", "image_public_id",
    },
    required_on_create={"sku", "name", "price_cents"},
)

PRODUCT_MUTABLE_FIELDS = PRODUCT_POLICY.writable_fields


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def list_products(branch_id: int | None = None) -> list[dict]:
    """
    Whole catalog. With ``branch_id`` each product also carries the branch
    view: branch_available, base_price_cents, the resolved price and markup.
    """
    products = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()
    if branch_id is None:
        return [p.to_dict() for p in products]

    require_branch(branch_id)
    stock = {
        entry.product_id: entry.available
        for entry in db.session.query(BranchStock).filter(BranchStock.branch_id == branch_id)
    }

    items = []
    for p in products:
        data = p.to_dict()
        override = p.override_for(branch_id)
        data["branch_available"] = stock.get(p.id, 0)
        data["base_price_cents"] = p.price_cents
        data["price_cents"] = resolve_price(p, branch_id)
        data["markup"] = float(override.markup) if override is not None and override.markup is not None else None
        items.append(data)
    return items


def get_product(product_id: int) -> Product:
    return require_product(product_id)


def create_product(payload: dict, principal: Principal) -> Product:
    permission_service.require_central_admin(principal)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        if _sku_taken(patch["sku"]):
            raise ConflictError("SKU already exists", details={"sku": patch["sku"]})
        product = Product(central_quantity=0)
        apply_product_patch(product, patch)
        db.session.add(product)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("SKU already exists", details={"sku": patch["sku"]}) from exc
        return product

    product = run_with_retry(_op)
    logger.info("product created id=%s sku=%s", product.id, product.sku)
    return product


def update_product(product_id: int, payload: dict, principal: Principal) -> Product:
    permission_service.require_central_admin(principal)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        product = require_product(product_id, for_update=True)
        if "sku" in patch and _sku_taken(patch["sku"], exclude_id=product.id):
            raise ConflictError("SKU already exists", details={"sku": patch["sku"]})
        apply_product_patch(product, patch)
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int, principal: Principal) -> dict:
    """Hard delete. Returns the product as it was before deletion."""
    permission_service.require_central_admin(principal)

    def _op():
        product = require_product(product_id, for_update=True)
        snapshot = product.to_dict()
        db.session.query(BranchStock).filter(BranchStock.product_id == product_id).delete(synchronize_session=False)
        db.session.query(BranchProductPrice).filter(BranchProductPrice.product_id == product_id).delete(synchronize_session=False)
        db.session.delete(product)
        db.session.commit()
        return snapshot

    snapshot = run_with_retry(_op)
    logger.info("product deleted id=%s sku=%s", snapshot["id"], snapshot["sku"])
    return snapshot


def add_central_stock(product_id: int, quantity, principal: Principal) -> Product:
    """Add to central warehouse stock (never replaces the current value)."""
    permission_service.require_central_admin(principal)
    qty = coerce_positive_int(quantity, "quantity")

    def _op():
        product = require_product(product_id, for_update=True)
        product.central_quantity = (product.central_quantity or 0) + qty
        db.session.commit()
        return product

    return run_with_retry(_op)
