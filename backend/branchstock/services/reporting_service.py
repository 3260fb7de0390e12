# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

"""
Sales Analytics

Read-only aggregation over orders. Returned items (devolucion) never count
as sold; they are reported separately.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.orders import (
    ITEM_STATUS_RETURNED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_MODIFIED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_RETURNED,
    PAYMENT_METHODS,
)
from ..time_utils import end_of_day, month_bounds, parse_day, start_of_day, utcnow, year_bounds
from . import permission_service
from .branch_service import require_branch
from .permission_service import Principal


STATS_STATUSES = (ORDER_STATUS_APPROVED, ORDER_STATUS_PENDING, ORDER_STATUS_RETURNED, ORDER_STATUS_MODIFIED)
DETAIL_STATUSES = STATS_STATUSES + (ORDER_STATUS_REJECTED,)
# Orders whose amounts count as sold
SOLD_STATUSES = (ORDER_STATUS_APPROVED, ORDER_STATUS_MODIFIED)

MOST_SOLD_DEFAULT_DAYS = 30
MOST_SOLD_DEFAULT_LIMIT = 50

# A cost basis this many times the unit price is treated as corrupt
IMPLAUSIBLE_BASE_FACTOR = 100


def _check_payment_method(payment_method: str | None) -> None:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"allowed": list(PAYMENT_METHODS)})


def _branch_orders(branch_id: int, statuses, payment_method: str | None):
    query = db.session.query(Order).filter(
        Order.branch_id == branch_id,
        Order.status.in_(statuses),
    )
    if payment_method:
        query = query.filter(Order.payment_method == payment_method)
    return query


def get_sales_stats(branch_id: int, principal: Principal, payment_method: str | None = None) -> list[dict]:
    """Sold and returned quantity per product, best sellers first."""
    permission_service.require_branch_access(principal, branch_id)
    _check_payment_method(payment_method)
    require_branch(branch_id)

    stats: dict[int, dict] = {}
    for order in _branch_orders(branch_id, STATS_STATUSES, payment_method).all():
        for item in order.items:
            row = stats.get(item.product_id)
            if row is None:
                row = stats[item.product_id] = {
                    "product_id": item.product_id,
                    "name": item.product.name if item.product else "Unknown product",
                    "sku": item.product.sku if item.product else "",
                    "sold": 0,
                    "returned": 0,
                }
            if item.is_returned:
                row["returned"] += item.quantity
            else:
                row["sold"] += item.quantity

    return sorted(stats.values(), key=lambda r: r["sold"], reverse=True)


def resolve_date_range(
    start_date: str | None = None,
    end_date: str | None = None,
    month: str | None = None,
    year: str | int | None = None,
) -> tuple[datetime | None, datetime | None]:
    """
    Inclusive created_at bounds for a sales query.

    ``month`` (YYYY-MM) overrides start/end; ``year`` only applies when no
    month is given. Day bounds cover the whole day.
    """
    start_dt = end_dt = None
    try:
        if start_date:
            start_dt = start_of_day(parse_day(start_date))
        if end_date:
            end_dt = end_of_day(parse_day(end_date))
    except ValueError:
        raise ValidationError("Dates must be YYYY-MM-DD")

    if month:
        try:
            month_year, month_num = (int(part) for part in str(month).split("-"))
            return month_bounds(month_year, month_num)
        except ValueError:
            raise ValidationError("month must be YYYY-MM")
    if year:
        try:
            return year_bounds(int(year))
        except ValueError:
            raise ValidationError("year must be a number")
    return start_dt, end_dt


def _item_cost_basis(item: OrderItem) -> int:
    if item.base_price_at_sale_cents is not None:
        return item.base_price_at_sale_cents
    return item.product.price_cents if item.product else 0


def _order_profit_cents(order: Order) -> int:
    kept = [item for item in order.items if not item.is_returned]

    # Manual sales (customer named at the counter) may carry a custom total
    if order.customer_name:
        cost = sum(_item_cost_basis(item) * item.quantity for item in kept)
        return (order.total_cents or 0) - cost

    profit = 0
    for item in kept:
        base = _item_cost_basis(item)
        if base > item.unit_price_cents * IMPLAUSIBLE_BASE_FACTOR:
            base = item.product.price_cents if item.product else 0
        profit += (item.unit_price_cents - base) * item.quantity
    return profit


def get_sales_detail(
    branch_id: int,
    principal: Principal,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    month: str | None = None,
    year: str | int | None = None,
    payment_method: str | None = None,
) -> dict:
    """
    Orders of a branch (newest first) plus sales metrics.

    Metrics only count approved and modificado orders, excluding returned
    items; ``total_returned`` counts returned items across every order.
    """
    permission_service.require_branch_access(principal, branch_id)
    _check_payment_method(payment_method)
    require_branch(branch_id)
    start_dt, end_dt = resolve_date_range(start_date, end_date, month, year)

    query = _branch_orders(branch_id, DETAIL_STATUSES, payment_method)
    if start_dt is not None:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt is not None:
        query = query.filter(Order.created_at <= end_dt)
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    sold_orders = [o for o in orders if o.status in SOLD_STATUSES]
    total_quantity = sum(i.quantity for o in sold_orders for i in o.items if not i.is_returned)
    total_amount = sum(i.line_total_cents for o in sold_orders for i in o.items if not i.is_returned)
    total_returned = sum(i.quantity for o in orders for i in o.items if i.is_returned)
    total_profit = sum(_order_profit_cents(o) for o in sold_orders)

    average = 0
    if sold_orders:
        average = int((Decimal(total_amount) / Decimal(len(sold_orders))).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    return {
        "orders": orders,
        "metrics": {
            "total_orders": len(sold_orders),
            "total_quantity": total_quantity,
            "total_returned": total_returned,
            "total_amount_cents": total_amount,
            "total_profit_cents": total_profit,
            "average_order_cents": average,
        },
    }


def most_sold_products(
    principal: Principal,
    *,
    days: int | None = None,
    branch_id: int | None = None,
    limit: int | None = None,
) -> list[dict]:
    """
    Best sellers over approved orders of the last ``days`` days.

    Branch admins may only ask about their own branch. Products deleted since
    the sale are left out.
    """
    permission_service.require_authenticated(principal)
    if branch_id is not None and principal.is_branch_admin and principal.branch_id != branch_id:
        permission_service.require_branch_admin_of(principal, branch_id)

    days = days or MOST_SOLD_DEFAULT_DAYS
    limit = limit or MOST_SOLD_DEFAULT_LIMIT
    if days < 0 or limit < 0:
        raise ValidationError("days and limit must be positive")
    since = utcnow() - timedelta(days=days)

    total_sold = func.sum(OrderItem.quantity).label("total_sold")
    query = (
        db.session.query(OrderItem.product_id, total_sold)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.status == ORDER_STATUS_APPROVED,
            Order.created_at >= since,
            OrderItem.status != ITEM_STATUS_RETURNED,
        )
    )
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)
    rows = query.group_by(OrderItem.product_id).order_by(total_sold.desc(), OrderItem.product_id.asc()).limit(limit).all()

    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_([r.product_id for r in rows])).all()
    } if rows else {}

    results = []
    for row in rows:
        product = products.get(row.product_id)
        if product is None:
            continue
        results.append({
            "product_id": row.product_id,
            "total_sold": int(row.total_sold or 0),
            "name": product.name,
            "sku": product.sku,
            "brand": product.brand,
        })
    return results
