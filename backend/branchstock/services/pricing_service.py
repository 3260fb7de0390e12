# Overview: Service-layer operations for pricing; encapsulates business logic and database work.

"""
Pricing Resolver

A product sells at its base price unless the branch has an override entry.

- resolve_price: override price for the branch, else base price
- set_branch_price / clear_branch_price: one override per (product, branch)
- recalculate_all_for_branch: bulk reprice from base price, exchange rate
  and markup

Only the admin of the branch itself may change its prices.

Recalculation runs as a single transaction: either every touched override is
written or none is.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from ..errors import ValidationError
from ..extensions import db
from ..models import BranchPriceOverride, Product
from ..validation import coerce_decimal, enforce_price_cents
from . import permission_service
from .branch_service import require_branch, require_product
from .concurrency import lock_for_update, run_with_retry
from .permission_service import Principal


logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_price(product: Product, branch_id: int) -> int:
    """Price in cents this product sells at in ``branch_id``."""
    override = product.override_for(branch_id)
    if override is not None and override.price_cents is not None:
        return override.price_cents
    return product.price_cents


def compute_branch_price_cents(base_price_cents: int, rate: Decimal, markup: Decimal) -> int:
    """base x rate x (1 + markup/100), rounded half-up to whole cents."""
    raw = Decimal(base_price_cents) * rate * (Decimal(1) + markup / Decimal(100))
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def set_branch_price(product_id: int, branch_id: int, principal: Principal, *, price_cents=_MISSING, markup=_MISSING) -> BranchPriceOverride:
    """
    Upsert the override for (product, branch).

    Only the fields actually passed change; omitted ones keep their stored
    value. ``markup=None`` explicitly unmanages the entry.
    """
    permission_service.require_branch_admin_of(principal, branch_id)

    if price_cents is not _MISSING and price_cents is not None:
        price_cents = enforce_price_cents(price_cents)
    if markup is not _MISSING and markup is not None:
        markup = coerce_decimal(markup, "markup")

    def _op():
        require_branch(branch_id)
        product = require_product(product_id, for_update=True)
        override = product.override_for(branch_id)
        if override is None:
            override = BranchPriceOverride(branch_id=branch_id)
            product.branch_prices.append(override)
        if price_cents is not _MISSING:
            override.price_cents = price_cents
        if markup is not _MISSING:
            override.markup = markup
        db.session.commit()
        return override

    return run_with_retry(_op)


def clear_branch_price(product_id: int, branch_id: int, principal: Principal) -> Product:
    """Drop the override so the product reverts to its base price in this branch."""
    permission_service.require_branch_admin_of(principal, branch_id)

    def _op():
        product = require_product(product_id, for_update=True)
        override = product.override_for(branch_id)
        if override is not None:
            product.branch_prices.remove(override)
        db.session.commit()
        return product

    return run_with_retry(_op)


def recalculate_all_for_branch(branch_id: int, rate, principal: Principal, force: bool = False) -> int:
    """
    Reprice every product with a positive base price for one branch.

    An override is touched when it has a numeric markup ("managed") or when
    ``force`` is set; under ``force`` products without an override get one
    with markup 0. Returns the number of overrides written.
    """
    permission_service.require_branch_admin_of(principal, branch_id)
    try:
        rate = coerce_decimal(rate, "rate")
    except ValidationError:
        raise ValidationError("Invalid rate", details={"rate": rate})
    if rate <= 0:
        raise ValidationError("Invalid rate", details={"rate": str(rate)})
    force = bool(force)

    def _op():
        require_branch(branch_id)
        products = lock_for_update(
            db.session.query(Product).filter(Product.price_cents > 0).order_by(Product.id.asc())
        ).all()

        touched = 0
        for product in products:
            override = product.override_for(branch_id)
            if override is None:
                if not force:
                    continue
                override = BranchPriceOverride(branch_id=branch_id, markup=Decimal(0))
                product.branch_prices.append(override)
            elif override.markup is None:
                if not force:
                    continue
                override.markup = Decimal(0)

            override.price_cents = compute_branch_price_cents(product.price_cents, rate, Decimal(override.markup))
            touched += 1

        db.session.commit()
        return touched

    touched = run_with_retry(_op)
    logger.info("branch prices recalculated branch_id=%s rate=%s force=%s touched=%s", branch_id, rate, force, touched)
    return touched
