"""
Order lifecycle tests: creation per fulfillment mode, approve/reject,
edits reconciled against the branch ledger, and returns.
"""

import pytest

from branchstock.errors import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    StateConflictError,
    StockEntryNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from branchstock.models import BranchStock, Order
from branchstock.services import order_service
from branchstock.services.permission_service import ANONYMOUS

from conftest import stock_of


def _items(product, qty, price=1500, **extra):
    item = {"product_id": product.id, "quantity": qty, "unit_price_cents": price}
    item.update(extra)
    return [item]


def _create(branch, items, principal=ANONYMOUS, payment="efectivo", delivery="pickup", **kwargs):
    return order_service.create_order(branch.id, items, payment, delivery, principal, **kwargs)


class TestCreateOrder:

    def test_anonymous_order_reserves_and_is_pending(self, branch, product, set_stock):
        set_stock(branch, product, 10)

        order = _create(branch, _items(product, 3))

        assert order.status == "pending"
        assert order.user_id is None
        assert order.total_cents == 4500
        assert stock_of(branch, product) == (7, 3)

    def test_customer_order_is_pending(self, branch, product, set_stock, customer_principal):
        set_stock(branch, product, 10)

        order = _create(branch, _items(product, 2), customer_principal)

        assert order.status == "pending"
        assert order.user_id == customer_principal.user_id
        assert stock_of(branch, product) == (8, 2)

    def test_privileged_order_consumes_and_is_approved(self, branch, product, set_stock, branch_principal):
        set_stock(branch, product, 10)

        order = _create(branch, _items(product, 3), branch_principal)

        assert order.status == "approved"
        assert stock_of(branch, product) == (7, 0)

    def test_base_price_defaults_to_product_price(self, branch, product, set_stock):
        set_stock(branch, product, 10)

        order = _create(branch, _items(product, 1))

        assert order.items[0].base_price_at_sale_cents == product.price_cents

    def test_custom_total_overrides_calculated_total(self, branch, product, set_stock, branch_principal):
        set_stock(branch, product, 10)

        order = _create(branch, _items(product, 2), branch_principal, custom_total_cents=2800,
                        customer={"name": "Mostrador"})

        assert order.total_cents == 2800
        assert order.customer_name == "Mostrador"

    def test_insufficient_stock_writes_nothing(self, db_session, branch, product, second_product, set_stock):
        set_stock(branch, product, 10)
        set_stock(branch, second_product, 1)
        items = _items(product, 2) + _items(second_product, 2)

        with pytest.raises(InsufficientStockError) as exc:
            _create(branch, items)

        assert exc.value.available == 1
        assert exc.value.requested == 2
        assert stock_of(branch, product) == (10, 0)
        assert db_session.query(Order).count() == 0

    def test_missing_stock_entry_is_insufficient(self, branch, product):
        with pytest.raises(InsufficientStockError) as exc:
            _create(branch, _items(product, 1))
        assert exc.value.available == 0

    def test_unknown_branch(self, product):
        with pytest.raises(NotFoundError):
            order_service.create_order(9999, _items(product, 1), "efectivo", "pickup")

    def test_delivery_requires_address(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        with pytest.raises(ValidationError):
            _create(branch, _items(product, 1), payment="débito", delivery="delivery")

    def test_cash_not_allowed_for_delivery(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        address = {"address": "Mitre 100", "city": "Rosario", "postal_code": "2000"}
        with pytest.raises(ValidationError):
            _create(branch, _items(product, 1), payment="efectivo", delivery="delivery", delivery_address=address)
        assert stock_of(branch, product) == (10, 0)

    def test_delivery_order_keeps_address(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        address = {"address": "Mitre 100", "city": "Rosario", "postal_code": "2000"}

        order = _create(branch, _items(product, 1), payment="billetera virtual", delivery="delivery",
                        delivery_address=address)

        assert order.to_dict()["delivery_address"] == address

    @pytest.mark.parametrize("bad_items", [
        [],
        None,
        [{"product_id": 1, "quantity": 0, "unit_price_cents": 100}],
        [{"quantity": 1, "unit_price_cents": 100}],
    ])
    def test_invalid_items(self, branch, bad_items):
        with pytest.raises(ValidationError):
            _create(branch, bad_items)

    def test_duplicate_products_rejected(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        with pytest.raises(ValidationError):
            _create(branch, _items(product, 1) + _items(product, 2))

    def test_legacy_entry_is_read_and_migrated_on_write(self, db_session, branch, product, set_stock):
        entry = set_stock(branch, product, 0)
        entry.quantity = None
        entry.available_quantity = 6
        db_session.commit()

        _create(branch, _items(product, 2))

        db_session.refresh(entry)
        assert entry.quantity == 4
        assert entry.available_quantity is None
        assert entry.reserved_quantity == 2


class TestApproveReject:

    @pytest.fixture
    def pending(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        return _create(branch, _items(product, 3))

    def test_approve_confirms_reservation(self, pending, branch, product, branch_principal):
        order = order_service.approve_order(pending.id, branch_principal)
        assert order.status == "approved"
        assert stock_of(branch, product) == (7, 0)

    def test_reject_releases_reservation(self, pending, branch, product, central_principal):
        order = order_service.reject_order(pending.id, central_principal)
        assert order.status == "rejected"
        assert stock_of(branch, product) == (10, 0)

    def test_second_approve_is_state_conflict(self, pending, branch, product, branch_principal):
        order_service.approve_order(pending.id, branch_principal)
        with pytest.raises(StateConflictError):
            order_service.approve_order(pending.id, branch_principal)
        assert stock_of(branch, product) == (7, 0)

    def test_reject_after_approve_is_state_conflict(self, pending, branch_principal):
        order_service.approve_order(pending.id, branch_principal)
        with pytest.raises(StateConflictError):
            order_service.reject_order(pending.id, branch_principal)

    def test_other_branch_admin_forbidden(self, pending, branch, product, other_branch_principal):
        with pytest.raises(ForbiddenError):
            order_service.approve_order(pending.id, other_branch_principal)
        assert stock_of(branch, product) == (7, 3)

    def test_customer_forbidden(self, pending, customer_principal):
        with pytest.raises(ForbiddenError):
            order_service.reject_order(pending.id, customer_principal)

    def test_foreign_admin_forbidden_even_when_not_pending(self, pending, branch_principal, other_branch_principal):
        order_service.approve_order(pending.id, branch_principal)

        with pytest.raises(ForbiddenError):
            order_service.approve_order(pending.id, other_branch_principal)
        with pytest.raises(ForbiddenError):
            order_service.reject_order(pending.id, other_branch_principal)

    def test_anonymous_unauthorized(self, pending):
        with pytest.raises(UnauthorizedError):
            order_service.approve_order(pending.id, ANONYMOUS)

    def test_missing_order(self, db_session, central_principal):
        with pytest.raises(NotFoundError):
            order_service.approve_order(12345, central_principal)

    def test_missing_entry_is_skipped_on_approve(self, db_session, pending, branch, product, branch_principal):
        db_session.query(BranchStock).delete()
        db_session.commit()

        order = order_service.approve_order(pending.id, branch_principal)

        assert order.status == "approved"


class TestUpdateOrder:

    @pytest.fixture
    def pending(self, branch, product, set_stock):
        set_stock(branch, product, 10)
        return _create(branch, _items(product, 3))

    @pytest.fixture
    def approved(self, branch, product, set_stock, branch_principal):
        set_stock(branch, product, 10)
        return _create(branch, _items(product, 3), branch_principal)

    def test_increase_on_pending_reserves_delta(self, pending, branch, product, branch_principal):
        order = order_service.update_order(pending.id, branch_principal, items=_items(product, 5))

        assert stock_of(branch, product) == (5, 5)
        assert order.items[0].quantity == 5
        assert order.total_cents == 7500

    def test_decrease_on_pending_releases_delta(self, pending, branch, product, branch_principal):
        order_service.update_order(pending.id, branch_principal, items=_items(product, 1))
        assert stock_of(branch, product) == (9, 1)

    def test_increase_on_approved_consumes_delta(self, approved, branch, product, branch_principal):
        order_service.update_order(approved.id, branch_principal, items=_items(product, 5))
        assert stock_of(branch, product) == (5, 0)

    def test_decrease_on_approved_restores_available(self, approved, branch, product, branch_principal):
        order_service.update_order(approved.id, branch_principal, items=_items(product, 1))
        assert stock_of(branch, product) == (9, 0)

    def test_removed_item_gives_stock_back(self, pending, branch, product, second_product, set_stock,
                                           branch_principal):
        set_stock(branch, second_product, 4)

        order = order_service.update_order(pending.id, branch_principal, items=_items(second_product, 2, price=3000))

        assert stock_of(branch, product) == (10, 0)
        assert stock_of(branch, second_product) == (2, 2)
        assert [i.product_id for i in order.items] == [second_product.id]
        assert order.total_cents == 6000

    def test_increase_beyond_available_rolls_back(self, pending, branch, product, branch_principal):
        with pytest.raises(InsufficientStockError):
            order_service.update_order(pending.id, branch_principal, items=_items(product, 20))
        assert stock_of(branch, product) == (7, 3)

    def test_new_product_without_entry(self, pending, branch, product, second_product, branch_principal):
        items = _items(product, 3) + _items(second_product, 1)
        with pytest.raises(StockEntryNotFoundError):
            order_service.update_order(pending.id, branch_principal, items=items)
        assert stock_of(branch, product) == (7, 3)

    def test_status_only_leaves_items(self, pending, branch, product, branch_principal):
        order = order_service.update_order(pending.id, branch_principal, status="modificado")

        assert order.status == "modificado"
        assert order.items[0].quantity == 3
        assert stock_of(branch, product) == (7, 3)

    def test_status_approved_confirms_reservation(self, pending, branch, product, branch_principal):
        order = order_service.update_order(pending.id, branch_principal, status="approved")

        assert order.status == "approved"
        assert stock_of(branch, product) == (7, 0)

    def test_status_rejected_releases_reservation(self, pending, branch, product, branch_principal):
        order = order_service.update_order(pending.id, branch_principal, status="rejected")

        assert order.status == "rejected"
        assert stock_of(branch, product) == (10, 0)

    def test_status_changes_leave_no_stray_reservation(self, branch, product, set_stock, central_principal):
        set_stock(branch, product, 5)
        first = _create(branch, _items(product, 2))
        order_service.update_order(first.id, central_principal, status="approved")
        second = _create(branch, _items(product, 1))
        order_service.update_order(second.id, central_principal, status="rejected")

        assert stock_of(branch, product) == (3, 0)

    def test_modified_order_approved_with_new_items(self, pending, branch, product, branch_principal):
        order_service.update_order(pending.id, branch_principal, status="modificado")

        order_service.update_order(pending.id, branch_principal, status="approved", items=_items(product, 4))

        assert stock_of(branch, product) == (6, 0)

    def test_return_without_items_marks_everything_returned(self, approved, branch, product, branch_principal):
        order = order_service.update_order(approved.id, branch_principal, status="devolucion")

        assert order.status == "devolucion"
        assert all(item.status == "devolucion" for item in order.items)
        # Returned goods are not put back on sale
        assert stock_of(branch, product) == (7, 0)

    def test_return_with_items_marks_supplied_items(self, approved, branch, product, branch_principal):
        order = order_service.update_order(approved.id, branch_principal, status="devolucion",
                                           items=_items(product, 3))

        assert order.items[0].status == "devolucion"
        assert order.total_cents == 0
        assert stock_of(branch, product) == (7, 0)

    def test_returned_item_changes_no_stock(self, approved, branch, product, branch_principal):
        items = _items(product, 3, status="devolucion")
        order = order_service.update_order(approved.id, branch_principal, items=items)

        assert order.items[0].is_returned
        assert stock_of(branch, product) == (7, 0)

    def test_base_price_carries_over(self, pending, product, branch_principal):
        order = order_service.update_order(pending.id, branch_principal, items=_items(product, 4))
        assert order.items[0].base_price_at_sale_cents == product.price_cents

    def test_invalid_status(self, pending, branch_principal):
        with pytest.raises(ValidationError):
            order_service.update_order(pending.id, branch_principal, status="shipped")

    def test_customer_cannot_update(self, pending, product, customer_principal):
        with pytest.raises(ForbiddenError):
            order_service.update_order(pending.id, customer_principal, items=_items(product, 1))


class TestReads:

    def test_customer_sees_only_own_orders(self, branch, product, set_stock, customer_principal, central_principal):
        set_stock(branch, product, 10)
        mine = _create(branch, _items(product, 1), customer_principal)
        _create(branch, _items(product, 1))

        orders = order_service.list_orders(customer_principal)

        assert [o.id for o in orders] == [mine.id]

    def test_branch_admin_pinned_to_branch(self, branch, other_branch, product, set_stock, branch_principal):
        set_stock(branch, product, 10)
        set_stock(other_branch, product, 10)
        own = _create(branch, _items(product, 1))
        _create(other_branch, _items(product, 1))

        orders = order_service.list_orders(branch_principal, branch_id=other_branch.id)

        assert [o.id for o in orders] == [own.id]

    def test_customer_cannot_view_foreign_order(self, branch, product, set_stock, customer_principal):
        set_stock(branch, product, 10)
        order = _create(branch, _items(product, 1))
        with pytest.raises(ForbiddenError):
            order_service.get_order(order.id, customer_principal)

    def test_anonymous_cannot_list(self, db_session):
        with pytest.raises(UnauthorizedError):
            order_service.list_orders(ANONYMOUS)
