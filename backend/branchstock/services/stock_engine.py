# Overview: Pure stock accounting operations over a single branch ledger entry.

"""
Stock Accounting Engine

Every function takes the current levels of one (branch, product) ledger entry
and returns NEW levels; nothing here touches the database. Callers load the
entry, compute the new levels, then write them back with
``BranchStock.apply_levels`` inside the same transaction as the order or
request that caused the movement.

Quantities:
- available: sellable stock at the branch
- reserved: taken out of available by a pending order, not yet final
- central: warehouse stock on the product, not allocated to any branch

Floor-at-zero on reserved and central is kept, but it is never silent: any
clamp that actually changes the result is logged at WARNING because it means
an earlier movement was not accounted for.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from ..errors import InsufficientCentralStockError, InsufficientStockError, ValidationError


logger = logging.getLogger(__name__)


class FulfillmentMode(enum.Enum):
    """How an order takes stock out of a branch, decided once per order."""

    RESERVED = "reserved"  # non-privileged: reserve now, confirm on approval
    DIRECT = "direct"      # privileged: consume immediately, order approved


@dataclass(frozen=True)
class StockLevels:
    available: int = 0
    reserved: int = 0

    @property
    def total(self) -> int:
        return self.available + self.reserved


def _require_quantity(qty: int) -> None:
    if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": qty})


def _clamped_reserved(levels: StockLevels, qty: int, operation: str, product_id: int | None) -> int:
    if qty > levels.reserved:
        logger.warning(
            "stock clamp: %s of %s exceeds reserved %s (product_id=%s); reserved floored at 0",
            operation, qty, levels.reserved, product_id,
        )
        return 0
    return levels.reserved - qty


def reserve(levels: StockLevels, qty: int, *, product_id: int | None = None) -> StockLevels:
    """Move ``qty`` from available to reserved. Raises InsufficientStockError when short."""
    _require_quantity(qty)
    if levels.available < qty:
        raise InsufficientStockError(levels.available, qty, product_id=product_id)
    return StockLevels(available=levels.available - qty, reserved=levels.reserved + qty)


def consume_direct(levels: StockLevels, qty: int, *, product_id: int | None = None) -> StockLevels:
    """Take ``qty`` out of available without reserving (final sale)."""
    _require_quantity(qty)
    if levels.available < qty:
        raise InsufficientStockError(levels.available, qty, product_id=product_id)
    return StockLevels(available=levels.available - qty, reserved=levels.reserved)


def release(levels: StockLevels, qty: int, *, product_id: int | None = None) -> StockLevels:
    """Return a reservation to available; reserved is floored at 0."""
    _require_quantity(qty)
    reserved = _clamped_reserved(levels, qty, "release", product_id)
    return StockLevels(available=levels.available + qty, reserved=reserved)


def restore_available(levels: StockLevels, qty: int) -> StockLevels:
    """Put ``qty`` back into available without touching reserved (approved-order reduction)."""
    _require_quantity(qty)
    return StockLevels(available=levels.available + qty, reserved=levels.reserved)


def confirm_reservation(levels: StockLevels, qty: int, *, product_id: int | None = None) -> StockLevels:
    """Make a reservation final: reserved drops, available stays where reserve left it."""
    _require_quantity(qty)
    reserved = _clamped_reserved(levels, qty, "confirm", product_id)
    return StockLevels(available=levels.available, reserved=reserved)


def transfer_out(central: int, qty: int, *, product_id: int | None = None) -> int:
    """Take ``qty`` from the central warehouse. Returns the new central quantity."""
    _require_quantity(qty)
    if central < qty:
        raise InsufficientCentralStockError(central, qty, product_id=product_id)
    return central - qty


def transfer_in(levels: StockLevels | None, qty: int) -> StockLevels:
    """Add ``qty`` to branch available; a missing entry starts at (0, 0)."""
    _require_quantity(qty)
    current = levels or StockLevels()
    return StockLevels(available=current.available + qty, reserved=current.reserved)


def take_for_order(levels: StockLevels, qty: int, mode: FulfillmentMode, *, product_id: int | None = None) -> StockLevels:
    if mode is FulfillmentMode.DIRECT:
        return consume_direct(levels, qty, product_id=product_id)
    return reserve(levels, qty, product_id=product_id)


def give_back_for_order(levels: StockLevels, qty: int, mode: FulfillmentMode, *, product_id: int | None = None) -> StockLevels:
    if mode is FulfillmentMode.DIRECT:
        return restore_available(levels, qty)
    return release(levels, qty, product_id=product_id)
