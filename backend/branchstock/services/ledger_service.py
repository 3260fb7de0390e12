# Overview: Service-layer operations for ledger; encapsulates business logic and database work.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StockMovement
from ..models.stock import MOVEMENT_SOURCE_CENTRAL, MOVEMENT_SOURCES


"""
Stock movement log invariants

- Append-only: rows are never updated or deleted.
- Written inside the caller's transaction, in a SAVEPOINT, so a failed insert
  rolls back only the audit row and never the stock change it describes.
- The caller commits; this module never commits.
"""

logger = logging.getLogger(__name__)

MOVEMENT_LIST_LIMIT = 200


def _insert_movement(movement: StockMovement) -> None:
    db.session.add(movement)
    db.session.flush()


def append_stock_movement(
    *,
    product_id: int,
    to_branch_id: int,
    quantity: int,
    user_id: int | None = None,
    source: str = MOVEMENT_SOURCE_CENTRAL,
    notes: str | None = None,
) -> StockMovement | None:
    """Best-effort insert. Returns None (and logs) when the row could not be written."""
    if source not in MOVEMENT_SOURCES:
        source = MOVEMENT_SOURCE_CENTRAL

    movement = StockMovement(
        user_id=user_id,
        product_id=product_id,
        to_branch_id=to_branch_id,
        quantity=quantity,
        source=source,
        notes=notes,
    )
    try:
        with db.session.begin_nested():
            _insert_movement(movement)
    except SQLAlchemyError as exc:
        logger.warning(
            "stock movement not recorded (product_id=%s, branch_id=%s, qty=%s): %s",
            product_id, to_branch_id, quantity, exc,
        )
        return None
    return movement


def list_movements(branch_id: int | None = None, limit: int = MOVEMENT_LIST_LIMIT) -> list[StockMovement]:
    """Most recent movements first, optionally for one destination branch."""
    query = db.session.query(StockMovement)
    if branch_id is not None:
        query = query.filter(StockMovement.to_branch_id == branch_id)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()
