# Overview: Service-layer operations for notifications; encapsulates business logic and database work.

"""
Order notification payload.

Builds the message a customer sends to the branch to confirm an order, and a
wa.me deep link carrying it. Nothing is sent from here.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

from ..models import Branch, Order
from ..models.orders import DELIVERY_DELIVERY, DELIVERY_PICKUP


logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
DEEP_LINK_BASE = "https://wa.me/"

DELIVERY_LABELS = {
    DELIVERY_PICKUP: "Store pickup",
    DELIVERY_DELIVERY: "Home delivery",
}


def phone_digits(number: str | None) -> str | None:
    """Digits of a phone number, or None when fewer than MIN_PHONE_DIGITS remain."""
    digits = re.sub(r"\D", "", number or "")
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def order_summary(order: Order, branch: Branch) -> str:
    lines = [
        "Hello! I would like to confirm my order:",
        "",
        f"Order number: {order.id}",
        f"Customer: {order.customer_name or ''}",
        f"Email: {order.customer_email or ''}",
        f"Phone: {order.customer_phone or ''}",
        "",
        f"Branch: {branch.name}",
        f"Contact: {branch.number}",
        "",
        "Products:",
    ]
    for item in order.items:
        if item.product is None:
            continue
        lines.append(f"- {item.quantity} x {item.product.name} - ${format_cents(item.unit_price_cents)}")

    lines.append("")
    lines.append(f"Total: {format_cents(order.total_cents)}")
    lines.append(f"Payment method: {order.payment_method}")
    lines.append(f"Delivery method: {DELIVERY_LABELS.get(order.delivery_method, order.delivery_method)}")
    if order.delivery_method == DELIVERY_DELIVERY and order.delivery_address:
        lines.append(
            f"Delivery address: {order.delivery_address}, {order.delivery_city}, ZIP: {order.delivery_postal_code}"
        )
    if branch.address:
        lines.append(f"Branch address: {branch.address}")
    lines.append(f"City: {branch.city or ''}")
    return "\n".join(lines)


def build_order_notification(order: Order, branch: Branch) -> dict | None:
    """
    Recipient, summary and deep link for a freshly created order.

    Returns None (and logs) when the branch contact number is not usable;
    the order itself is already persisted and stays valid.
    """
    phone = phone_digits(branch.number)
    if phone is None:
        logger.warning("order %s: branch %s has no usable contact number %r", order.id, branch.id, branch.number)
        return None

    message = order_summary(order, branch)
    return {
        "phone": phone,
        "message": message,
        "link": f"{DEEP_LINK_BASE}{phone}?text={quote(message, safe='')}",
        "branch_number": branch.number,
        "branch_name": branch.name,
        "branch_address": branch.address,
    }
