"""Pricing resolver tests: branch overrides and bulk recalculation."""

from decimal import Decimal

import pytest

from branchstock.errors import ForbiddenError, ValidationError
from branchstock.extensions import db
from branchstock.models import BranchPriceOverride, Product
from branchstock.services import pricing_service


def _fresh(product):
    db.session.expire_all()
    return db.session.get(Product, product.id)


class TestResolvePrice:

    def test_base_price_without_override(self, branch, product):
        assert pricing_service.resolve_price(product, branch.id) == 1000

    def test_override_price_wins(self, branch, product, branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=1250)
        assert pricing_service.resolve_price(_fresh(product), branch.id) == 1250

    def test_override_for_other_branch_ignored(self, branch, other_branch, product, branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=1250)
        assert pricing_service.resolve_price(_fresh(product), other_branch.id) == 1000

    def test_override_without_price_falls_back(self, branch, product, branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, markup=30)
        assert pricing_service.resolve_price(_fresh(product), branch.id) == 1000


class TestSetAndClear:

    def test_set_is_an_upsert(self, db_session, branch, product, branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=1100, markup=10)
        override = pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=1200)

        assert db_session.query(BranchPriceOverride).count() == 1
        assert override.price_cents == 1200
        assert override.markup == Decimal("10")

    def test_clear_reverts_to_base(self, branch, product, branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=1100)
        pricing_service.clear_branch_price(product.id, branch.id, branch_principal)
        assert pricing_service.resolve_price(_fresh(product), branch.id) == 1000

    def test_central_admin_cannot_set(self, branch, product, central_principal):
        with pytest.raises(ForbiddenError):
            pricing_service.set_branch_price(product.id, branch.id, central_principal, price_cents=1)

    def test_other_branch_admin_cannot_set(self, branch, product, other_branch_principal):
        with pytest.raises(ForbiddenError):
            pricing_service.set_branch_price(product.id, branch.id, other_branch_principal, price_cents=1)

    def test_negative_price_rejected(self, branch, product, branch_principal):
        with pytest.raises(ValidationError):
            pricing_service.set_branch_price(product.id, branch.id, branch_principal, price_cents=-5)


class TestRecalculate:

    def test_compute_rounds_half_up(self):
        # 1000 x 1.5 x 1.2 = 1800
        assert pricing_service.compute_branch_price_cents(1000, Decimal("1.5"), Decimal("20")) == 1800
        # 333 x 1 x 1.015 = 337.995
        assert pricing_service.compute_branch_price_cents(333, Decimal("1"), Decimal("1.5")) == 338

    def test_only_managed_overrides_are_touched(self, db_session, branch, product, second_product,
                                                branch_principal):
        pricing_service.set_branch_price(product.id, branch.id, branch_principal, markup=20)
        pricing_service.set_branch_price(second_product.id, branch.id, branch_principal, price_cents=999)

        touched = pricing_service.recalculate_all_for_branch(branch.id, "1.5", branch_principal)

        assert touched == 1
        assert pricing_service.resolve_price(_fresh(product), branch.id) == 1800
        assert pricing_service.resolve_price(_fresh(second_product), branch.id) == 999

    def test_force_touches_everything(self, db_session, branch, product, second_product, branch_principal):
        pricing_service.set_branch_price(second_product.id, branch.id, branch_principal, price_cents=999)

        touched = pricing_service.recalculate_all_for_branch(branch.id, 2, branch_principal, force=True)

        assert touched == 2
        assert pricing_service.resolve_price(_fresh(product), branch.id) == 2000
        assert pricing_service.resolve_price(_fresh(second_product), branch.id) == 5000
        markups = {o.product_id: o.markup for o in db_session.query(BranchPriceOverride)}
        assert markups == {product.id: Decimal("0"), second_product.id: Decimal("0")}

    def test_products_without_base_price_skipped(self, db_session, branch, branch_principal):
        free = Product(sku="FREE", name="Bolsa", price_cents=0, central_quantity=0)
        db_session.add(free)
        db_session.commit()

        assert pricing_service.recalculate_all_for_branch(branch.id, 1, branch_principal, force=True) == 0

    @pytest.mark.parametrize("rate", [0, -1, "abc", None])
    def test_invalid_rate(self, branch, branch_principal, rate):
        with pytest.raises(ValidationError):
            pricing_service.recalculate_all_for_branch(branch.id, rate, branch_principal)

    def test_central_admin_cannot_recalculate(self, branch, central_principal):
        with pytest.raises(ForbiddenError):
            pricing_service.recalculate_all_for_branch(branch.id, 1, central_principal)
