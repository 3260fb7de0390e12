# Overview: Service-layer operations for stock requests; encapsulates business logic and database work.

"""
Stock Request Lifecycle Manager

Lifecycle:
- pending -> approved -> fulfilled
- pending | approved -> delivered_unpaid -> fulfilled
- pending -> rejected

Only branch admins create requests (for their own branch); every transition
after that is central-admin only.

Central stock moves exactly once per request: on fulfil (from approved) or on
deliver-unpaid (from pending/approved). The status precondition is what makes
a repeated call harmless: the second call finds a status that no longer
permits the transfer and raises StateConflictError.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from ..errors import ForbiddenError, InsufficientCentralStockError, NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Product, StockRequest, StockRequestItem
from ..models.stock import (
    MOVEMENT_SOURCE_CENTRAL,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_DELIVERED_UNPAID,
    REQUEST_STATUS_FULFILLED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
)
from ..time_utils import utcnow
from ..validation import coerce_positive_int
from . import ledger_service, permission_service, stock_engine
from .branch_service import credit_branch, require_branch
from .concurrency import lock_for_update, run_with_retry
from .permission_service import Principal


logger = logging.getLogger(__name__)

NOTES_FULFILLED = "Request fulfilled and stock transferred"
NOTES_DELIVERED_UNPAID = "Stock delivered, payment pending"
NOTES_PAYMENT_RECEIVED = "Payment received, request completed"


def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    normalized = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index}: must be an object")
        try:
            normalized.append({
                "product_id": coerce_positive_int(raw.get("product_id"), "product_id"),
                "quantity": coerce_positive_int(raw.get("quantity"), "quantity"),
            })
        except ValidationError as exc:
            raise ValidationError(f"Item {index}: {exc.message}", details={"item": index}) from exc
    return normalized


def _requested_totals(items) -> "OrderedDict[int, int]":
    """Requested quantity per product, lines for the same product summed."""
    totals: OrderedDict[int, int] = OrderedDict()
    for item in items:
        totals[item["product_id"]] = totals.get(item["product_id"], 0) + item["quantity"]
    return totals


def _load_products(product_ids, *, for_update: bool = False) -> dict[int, Product]:
    query = db.session.query(Product).filter(Product.id.in_(list(product_ids)))
    if for_update:
        query = lock_for_update(query)
    return {p.id: p for p in query.all()}


def _check_central(totals, products: dict[int, Product]) -> None:
    for product_id, qty in totals.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        central = product.central_quantity or 0
        if central < qty:
            raise InsufficientCentralStockError(
                central, qty, product_id=product_id,
                message=f"Insufficient central stock for {product.name}. Available: {central}, requested: {qty}",
            )


def _require_request(request_id: int) -> StockRequest:
    request = lock_for_update(db.session.query(StockRequest).filter(StockRequest.id == request_id)).first()
    if request is None:
        raise NotFoundError("Stock request not found", details={"request_id": request_id})
    return request


def _require_status(request: StockRequest, allowed: tuple[str, ...], message: str) -> None:
    if request.status not in allowed:
        raise StateConflictError(message, details={"status": request.status, "allowed": list(allowed)})


def _mark_processed(request: StockRequest, principal: Principal, status: str, notes: str | None) -> None:
    request.status = status
    request.processed_by_user_id = principal.user_id
    request.processed_at = utcnow()
    if notes:
        request.notes = notes


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_stock_requests(principal: Principal, status: str | None = None) -> list[StockRequest]:
    """Central admins see every request, branch admins their own branch's."""
    permission_service.require_authenticated(principal)
    query = db.session.query(StockRequest)
    if principal.is_branch_admin:
        query = query.filter(StockRequest.branch_id == principal.branch_id)
    elif not principal.is_central_admin:
        raise ForbiddenError("Not allowed to view stock requests")
    if status is not None:
        query = query.filter(StockRequest.status == status)
    return query.order_by(StockRequest.created_at.desc(), StockRequest.id.desc()).all()


def get_stock_request(request_id: int, principal: Principal) -> StockRequest:
    permission_service.require_authenticated(principal)
    request = db.session.get(StockRequest, request_id)
    if request is None:
        raise NotFoundError("Stock request not found", details={"request_id": request_id})
    if principal.is_branch_admin and request.branch_id != principal.branch_id:
        raise ForbiddenError("Not allowed to view this request")
    if not principal.is_privileged:
        raise ForbiddenError("Not allowed to view this request")
    return request


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def create_stock_request(principal: Principal, items, notes: str | None = None, branch_id: int | None = None) -> StockRequest:
    """
    Open a replenishment request for the branch admin's own branch.

    Central availability is checked but not reserved: approval may still
    fail later if central stock has moved in the meantime.
    """
    permission_service.require_authenticated(principal)
    if not principal.is_branch_admin:
        raise ForbiddenError("Only branch admins can request stock")
    target_branch_id = principal.branch_id if branch_id is None else branch_id
    permission_service.require_branch_admin_of(principal, target_branch_id)
    lines = _normalize_items(items)

    def _op():
        require_branch(target_branch_id)
        totals = _requested_totals(lines)
        _check_central(totals, _load_products(totals.keys()))

        request = StockRequest(
            requested_by_user_id=principal.user_id,
            branch_id=target_branch_id,
            status=REQUEST_STATUS_PENDING,
            notes=notes or None,
            items=[StockRequestItem(product_id=l["product_id"], quantity=l["quantity"]) for l in lines],
        )
        db.session.add(request)
        db.session.commit()
        return request

    request = run_with_retry(_op)
    logger.info("stock request created id=%s branch_id=%s", request.id, request.branch_id)
    return request


def approve_stock_request(request_id: int, principal: Principal, notes: str | None = None) -> StockRequest:
    permission_service.require_central_admin(principal)

    def _op():
        request = _require_request(request_id)
        _require_status(request, (REQUEST_STATUS_PENDING,), "Only pending requests can be approved")
        _mark_processed(request, principal, REQUEST_STATUS_APPROVED, notes)
        db.session.commit()
        return request

    return run_with_retry(_op)


def reject_stock_request(request_id: int, principal: Principal, notes: str | None = None) -> StockRequest:
    permission_service.require_central_admin(principal)

    def _op():
        request = _require_request(request_id)
        _require_status(request, (REQUEST_STATUS_PENDING,), "Only pending requests can be rejected")
        _mark_processed(request, principal, REQUEST_STATUS_REJECTED, notes)
        db.session.commit()
        return request

    return run_with_retry(_op)


def _transfer_request_stock(request: StockRequest, principal: Principal) -> None:
    """
    Move every line of the request from central into the branch.

    All lines are verified before any quantity changes, so a shortfall on the
    last line leaves central and branch untouched.
    """
    require_branch(request.branch_id)
    totals = _requested_totals([{"product_id": i.product_id, "quantity": i.quantity} for i in request.items])
    products = _load_products(totals.keys(), for_update=True)
    _check_central(totals, products)

    for item in request.items:
        product = products[item.product_id]
        product.central_quantity = stock_engine.transfer_out(product.central_quantity, item.quantity, product_id=item.product_id)
        credit_branch(request.branch_id, item.product_id, item.quantity)
        ledger_service.append_stock_movement(
            product_id=item.product_id,
            to_branch_id=request.branch_id,
            quantity=item.quantity,
            user_id=principal.user_id,
            source=MOVEMENT_SOURCE_CENTRAL,
            notes=f"Stock request #{request.id}",
        )


def fulfill_stock_request(request_id: int, principal: Principal) -> StockRequest:
    """approved -> fulfilled, transferring stock."""
    permission_service.require_central_admin(principal)

    def _op():
        request = _require_request(request_id)
        _require_status(request, (REQUEST_STATUS_APPROVED,), "Only approved requests can be fulfilled")
        _transfer_request_stock(request, principal)
        _mark_processed(request, principal, REQUEST_STATUS_FULFILLED, NOTES_FULFILLED)
        db.session.commit()
        return request

    request = run_with_retry(_op)
    logger.info("stock request fulfilled id=%s branch_id=%s", request.id, request.branch_id)
    return request


def mark_delivered_unpaid(request_id: int, principal: Principal) -> StockRequest:
    """pending | approved -> delivered_unpaid, transferring stock."""
    permission_service.require_central_admin(principal)

    def _op():
        request = _require_request(request_id)
        _require_status(
            request,
            (REQUEST_STATUS_PENDING, REQUEST_STATUS_APPROVED),
            "Only pending or approved requests can be marked delivered unpaid",
        )
        _transfer_request_stock(request, principal)
        _mark_processed(request, principal, REQUEST_STATUS_DELIVERED_UNPAID, NOTES_DELIVERED_UNPAID)
        db.session.commit()
        return request

    request = run_with_retry(_op)
    logger.info("stock request delivered unpaid id=%s branch_id=%s", request.id, request.branch_id)
    return request


def mark_request_fulfilled(request_id: int, principal: Principal) -> StockRequest:
    """delivered_unpaid -> fulfilled; payment received, no stock moves."""
    permission_service.require_central_admin(principal)

    def _op():
        request = _require_request(request_id)
        _require_status(request, (REQUEST_STATUS_DELIVERED_UNPAID,), "Only delivered unpaid requests can be completed")
        _mark_processed(request, principal, REQUEST_STATUS_FULFILLED, NOTES_PAYMENT_RECEIVED)
        db.session.commit()
        return request

    return run_with_retry(_op)
