# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Lifecycle Manager

Lifecycle:
- create_order: pending (stock reserved) or approved (stock consumed),
  depending on the FulfillmentMode of the acting principal
- approve_order: pending -> approved, reservations become final
- reject_order: pending -> rejected, reservations go back to available
- update_order: item-level diff against the stored order, any status

Every operation loads the order and the touched ledger entries, computes new
levels through stock_engine, and commits order and stock together. Any
failure rolls the whole unit back: no stock movement survives a failed call.

Returns (devolucion) never move stock. Marking an item or the whole order as
returned only changes what reporting counts as sold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    StateConflictError,
    StockEntryNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem
from ..models.orders import (
    DELIVERY_DELIVERY,
    DELIVERY_METHODS,
    ITEM_STATUS_NORMAL,
    ITEM_STATUS_RETURNED,
    ITEM_STATUSES,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_MODIFIED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_RETURNED,
    ORDER_STATUSES,
    PAYMENT_CASH,
    PAYMENT_METHODS,
)
from ..validation import coerce_positive_int, enforce_price_cents
from . import permission_service, stock_engine
from .branch_service import find_stock_entry, require_branch, require_product
from .concurrency import lock_for_update, run_with_retry
from .permission_service import ANONYMOUS, Principal
from .stock_engine import FulfillmentMode


logger = logging.getLogger(__name__)

PENDING_LIKE = (ORDER_STATUS_PENDING, ORDER_STATUS_MODIFIED)


@dataclass(frozen=True)
class ItemSnapshot:
    """One side of the update diff for a product."""

    quantity: int = 0
    unit_price_cents: int = 0
    base_price_at_sale_cents: int | None = None
    status: str = ITEM_STATUS_NORMAL

    @property
    def is_returned(self) -> bool:
        return self.status == ITEM_STATUS_RETURNED


EMPTY_SNAPSHOT = ItemSnapshot()


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------

def _optional_cents(value, field: str) -> int | None:
    if value is None:
        return None
    return enforce_price_cents(value, field)


def _normalize_create_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items are required")

    normalized = []
    seen: set[int] = set()
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index}: must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"Item {index}: product_id is required")
        try:
            product_id = coerce_positive_int(raw.get("product_id"), "product_id")
            quantity = coerce_positive_int(raw.get("quantity"), "quantity")
            unit_price = coerce_positive_int(raw.get("unit_price_cents"), "unit_price_cents")
            enforce_price_cents(unit_price, "unit_price_cents")
            base_price = _optional_cents(raw.get("base_price_at_sale_cents"), "base_price_at_sale_cents")
        except ValidationError as exc:
            raise ValidationError(f"Item {index}: {exc.message}", details={"item": index}) from exc
        if product_id in seen:
            raise ValidationError(f"Item {index}: duplicate product {product_id}", details={"product_id": product_id})
        seen.add(product_id)
        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "base_price_at_sale_cents": base_price,
        })
    return normalized


def _normalize_update_items(items) -> dict[int, ItemSnapshot] | None:
    """Ordered product_id -> snapshot map, or None when no item payload was sent."""
    if items is None:
        return None
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    normalized: dict[int, ItemSnapshot] = {}
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index}: must be an object")
        try:
            product_id = coerce_positive_int(raw.get("product_id"), "product_id")
            quantity = coerce_positive_int(raw.get("quantity"), "quantity")
            unit_price = coerce_positive_int(raw.get("unit_price_cents"), "unit_price_cents")
            enforce_price_cents(unit_price, "unit_price_cents")
            base_price = _optional_cents(raw.get("base_price_at_sale_cents"), "base_price_at_sale_cents")
        except ValidationError as exc:
            raise ValidationError(f"Item {index}: {exc.message}", details={"item": index}) from exc
        status = raw.get("status") or ITEM_STATUS_NORMAL
        if status not in ITEM_STATUSES:
            raise ValidationError(f"Item {index}: invalid status {status!r}", details={"allowed": list(ITEM_STATUSES)})
        if product_id in normalized:
            raise ValidationError(f"Item {index}: duplicate product {product_id}", details={"product_id": product_id})
        normalized[product_id] = ItemSnapshot(
            quantity=quantity,
            unit_price_cents=unit_price,
            base_price_at_sale_cents=base_price,
            status=status,
        )
    return normalized


def _validate_delivery(payment_method, delivery_method, delivery_address) -> dict | None:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"allowed": list(PAYMENT_METHODS)})
    if delivery_method not in DELIVERY_METHODS:
        raise ValidationError("Invalid delivery method", details={"allowed": list(DELIVERY_METHODS)})

    if delivery_method != DELIVERY_DELIVERY:
        return None

    address = delivery_address if isinstance(delivery_address, dict) else {}
    missing = [k for k in ("address", "city", "postal_code") if not str(address.get(k) or "").strip()]
    if missing:
        raise ValidationError("Delivery address is required for home delivery", details={"missing": missing})
    if payment_method == PAYMENT_CASH:
        raise ValidationError("Cash payment is not available for home delivery")
    return {k: str(address[k]).strip() for k in ("address", "city", "postal_code")}


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

def check_order_branch(principal: Principal, order: Order) -> None:
    """Central admin, or the admin of the order's branch."""
    permission_service.require_authenticated(principal)
    if principal.is_central_admin:
        return
    if not principal.is_branch_admin:
        raise ForbiddenError("Admin role required to manage orders")
    if principal.branch_id != order.branch_id:
        raise ForbiddenError("No permission for this branch", details={"branch_id": order.branch_id})


def _can_view(principal: Principal, order: Order) -> bool:
    if principal.is_central_admin:
        return True
    if principal.is_branch_admin:
        return principal.branch_id == order.branch_id
    return principal.user_id is not None and principal.user_id == order.user_id


def _require_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_order(order_id: int, principal: Principal) -> Order:
    permission_service.require_authenticated(principal)
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    if not _can_view(principal, order):
        raise ForbiddenError("No permission for this order")
    return order


def list_orders(principal: Principal, branch_id: int | None = None, status: str | None = None) -> list[Order]:
    """Newest first. Branch admins only see their branch; customers only their own orders."""
    permission_service.require_authenticated(principal)
    query = db.session.query(Order)

    if principal.is_privileged:
        branch_id = permission_service.scoped_branch_id(principal, branch_id)
        if branch_id is not None:
            query = query.filter(Order.branch_id == branch_id)
    else:
        query = query.filter(Order.user_id == principal.user_id)
        if branch_id is not None:
            query = query.filter(Order.branch_id == branch_id)

    if status is not None:
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status", details={"allowed": list(ORDER_STATUSES)})
        query = query.filter(Order.status == status)

    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def create_order(
    branch_id: int,
    items,
    payment_method: str,
    delivery_method: str,
    principal: Principal = ANONYMOUS,
    *,
    delivery_address: dict | None = None,
    customer: dict | None = None,
    custom_total_cents=None,
    notes: str | None = None,
) -> Order:
    """
    Place an order against a branch.

    Privileged principals (branch or central admins) sell directly: stock is
    consumed and the order starts approved. Everyone else, anonymous callers
    included, reserves stock and the order starts pending.

    Raises InsufficientStockError (with available/requested) when any line
    cannot be covered; nothing is written in that case.
    """
    principal = principal or ANONYMOUS
    if branch_id is None:
        raise ValidationError("branch_id is required")
    branch_id = coerce_positive_int(branch_id, "branch_id")
    lines = _normalize_create_items(items)
    if custom_total_cents is not None:
        custom_total_cents = enforce_price_cents(custom_total_cents, "custom_total_cents")
    customer = customer if isinstance(customer, dict) else {}

    mode = principal.fulfillment_mode

    def _op():
        require_branch(branch_id)
        address = _validate_delivery(payment_method, delivery_method, delivery_address)

        order_items = []
        for position, line in enumerate(lines):
            product_id = line["product_id"]
            product = require_product(product_id)

            entry = find_stock_entry(branch_id, product_id, for_update=True)
            if entry is None:
                raise InsufficientStockError(0, line["quantity"], product_id=product_id,
                                             message=f"Insufficient stock for {product.name}. Available: 0, requested: {line['quantity']}")
            entry.apply_levels(stock_engine.take_for_order(entry.levels, line["quantity"], mode, product_id=product_id))

            base_price = line["base_price_at_sale_cents"]
            if base_price is None:
                base_price = product.price_cents

            order_items.append(OrderItem(
                product_id=product_id,
                position=position,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                base_price_at_sale_cents=base_price,
                status=ITEM_STATUS_NORMAL,
            ))

        calculated_total = sum(item.line_total_cents for item in order_items)
        order = Order(
            user_id=principal.user_id,
            branch_id=branch_id,
            items=order_items,
            total_cents=custom_total_cents if custom_total_cents is not None else calculated_total,
            status=ORDER_STATUS_APPROVED if mode is FulfillmentMode.DIRECT else ORDER_STATUS_PENDING,
            payment_method=payment_method,
            delivery_method=delivery_method,
            delivery_address=address["address"] if address else None,
            delivery_city=address["city"] if address else None,
            delivery_postal_code=address["postal_code"] if address else None,
            customer_name=customer.get("name"),
            customer_email=customer.get("email"),
            customer_phone=customer.get("phone"),
            notes=notes or None,
        )
        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("order created id=%s branch_id=%s status=%s mode=%s", order.id, branch_id, order.status, mode.value)
    return order


def _settle_reservations(order: Order, new_status: str) -> None:
    """Confirm (approved) or release (rejected) the reserved quantity of every item."""
    settle = stock_engine.confirm_reservation if new_status == ORDER_STATUS_APPROVED else stock_engine.release
    for item in order.items:
        entry = find_stock_entry(order.branch_id, item.product_id, for_update=True)
        if entry is None:
            logger.warning("%s order %s: no stock entry for product %s, skipped", new_status, order.id, item.product_id)
            continue
        entry.apply_levels(settle(entry.levels, item.quantity, product_id=item.product_id))


def approve_order(order_id: int, principal: Principal) -> Order:
    """pending -> approved. Reservations become final; missing ledger entries are skipped."""

    def _op():
        order = _require_order(order_id)
        check_order_branch(principal, order)
        if order.status != ORDER_STATUS_PENDING:
            raise StateConflictError("Order is not pending", details={"status": order.status})

        _settle_reservations(order, ORDER_STATUS_APPROVED)

        order.status = ORDER_STATUS_APPROVED
        db.session.commit()
        return order

    return run_with_retry(_op)


def reject_order(order_id: int, principal: Principal) -> Order:
    """pending -> rejected. Reserved quantities go back to available."""

    def _op():
        order = _require_order(order_id)
        check_order_branch(principal, order)
        if order.status != ORDER_STATUS_PENDING:
            raise StateConflictError("Order is not pending", details={"status": order.status})

        _settle_reservations(order, ORDER_STATUS_REJECTED)

        order.status = ORDER_STATUS_REJECTED
        db.session.commit()
        return order

    return run_with_retry(_op)


def _stock_mode_for_update(old_status: str, new_status: str | None) -> FulfillmentMode | None:
    """Pending-like wins over approved; any other status leaves stock alone."""
    if old_status in PENDING_LIKE or new_status in PENDING_LIKE:
        return FulfillmentMode.RESERVED
    if old_status == ORDER_STATUS_APPROVED or new_status == ORDER_STATUS_APPROVED:
        return FulfillmentMode.DIRECT
    return None


def update_order(order_id: int, principal: Principal, *, items=None, status: str | None = None) -> Order:
    """
    Reconcile an order with a new item list and/or status.

    Diff per product id between the stored items and ``items``:
    - a side marked devolucion, or no quantity change: no stock touched
    - increase: reserve (pending/modificado) or consume (approved)
    - decrease: release (pending/modificado) or restore available (approved)

    ``status='devolucion'`` without items marks every stored item returned.
    With items, every supplied item is marked returned. Omitting ``items``
    leaves the stored items as they are.

    Moving a pending/modificado order to approved or rejected settles its
    reservations the way approve_order and reject_order do.
    """
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError("Invalid status", details={"allowed": list(ORDER_STATUSES)})
    new_map = _normalize_update_items(items)

    def _op():
        order = _require_order(order_id)
        check_order_branch(principal, order)
        require_branch(order.branch_id)

        if new_map is None and status == ORDER_STATUS_RETURNED:
            for item in order.items:
                item.status = ITEM_STATUS_RETURNED
            order.status = ORDER_STATUS_RETURNED
            db.session.commit()
            return order

        if new_map is not None:
            incoming = new_map
            if status == ORDER_STATUS_RETURNED:
                incoming = {pid: _returned(snap) for pid, snap in new_map.items()}
            _reconcile_items(order, incoming, status)

        # Leaving pending/modificado for approved or rejected settles the reservations
        if order.status in PENDING_LIKE and status in (ORDER_STATUS_APPROVED, ORDER_STATUS_REJECTED):
            _settle_reservations(order, status)

        if status is not None:
            order.status = status
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("order updated id=%s status=%s", order.id, order.status)
    return order


def _returned(snapshot: ItemSnapshot) -> ItemSnapshot:
    return ItemSnapshot(
        quantity=snapshot.quantity,
        unit_price_cents=snapshot.unit_price_cents,
        base_price_at_sale_cents=snapshot.base_price_at_sale_cents,
        status=ITEM_STATUS_RETURNED,
    )


def _reconcile_items(order: Order, new_map: dict[int, ItemSnapshot], new_status: str | None) -> None:
    old_map = {
        item.product_id: ItemSnapshot(
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            base_price_at_sale_cents=item.base_price_at_sale_cents,
            status=item.status or ITEM_STATUS_NORMAL,
        )
        for item in order.items
    }
    mode = _stock_mode_for_update(order.status, new_status)

    product_ids = list(old_map) + [pid for pid in new_map if pid not in old_map]
    for product_id in product_ids:
        old = old_map.get(product_id, EMPTY_SNAPSHOT)
        new = new_map.get(product_id, EMPTY_SNAPSHOT)
        delta = new.quantity - old.quantity
        if delta == 0 or old.is_returned or new.is_returned:
            continue

        entry = find_stock_entry(order.branch_id, product_id, for_update=True)
        if entry is None:
            raise StockEntryNotFoundError(order.branch_id, product_id)
        if mode is None:
            continue

        if delta > 0:
            levels = stock_engine.take_for_order(entry.levels, delta, mode, product_id=product_id)
        else:
            levels = stock_engine.give_back_for_order(entry.levels, -delta, mode, product_id=product_id)
        entry.apply_levels(levels)

    order.items.clear()
    db.session.flush()
    for position, (product_id, snap) in enumerate(new_map.items()):
        base_price = snap.base_price_at_sale_cents
        if base_price is None:
            base_price = old_map.get(product_id, EMPTY_SNAPSHOT).base_price_at_sale_cents
        order.items.append(OrderItem(
            product_id=product_id,
            position=position,
            quantity=snap.quantity,
            unit_price_cents=snap.unit_price_cents,
            base_price_at_sale_cents=base_price,
            status=snap.status,
        ))

    order.total_cents = sum(
        snap.quantity * snap.unit_price_cents
        for snap in new_map.values()
        if not snap.is_returned
    )
