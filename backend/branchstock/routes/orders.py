# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order API routes.

Creating an order is open to anonymous customers (the order is reserved and
pending). Everything else requires a token; approve, reject and update are
limited to the admin of the order's branch or a central admin.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BranchStockError
from ..decorators import require_auth, optional_auth
from ..services import order_service, notification_service, reporting_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@optional_auth
def create_order_route():
    """
    Create an order.

    Body:
    {
      "branch_id": 1,
      "items": [{"product_id": 3, "quantity": 2, "unit_price_cents": 1500,
                 "base_price_at_sale_cents": 900}],
      "payment_method": "débito",
      "delivery_method": "delivery",
      "delivery_address": {"address": "...", "city": "...", "postal_code": "..."},
      "customer": {"name": "...", "email": "...", "phone": "..."},
      "custom_total_cents": 2800,
      "notes": "..."
    }

    Response includes a ``notification`` deep-link payload for the branch, or
    null when the branch contact number is unusable.
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.create_order(
            data.get("branch_id"),
            data.get("items"),
            data.get("payment_method"),
            data.get("delivery_method"),
            g.principal,
            delivery_address=data.get("delivery_address"),
            customer=data.get("customer"),
            custom_total_cents=data.get("custom_total_cents"),
            notes=data.get("notes"),
        )
        notification = notification_service.build_order_notification(order, order.branch)
        return jsonify({"order": order.to_dict(), "notification": notification}), 201

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    branch_id = request.args.get("branch_id", type=int)
    status = request.args.get("status")
    try:
        orders = order_service.list_orders(g.principal, branch_id=branch_id, status=status)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/stats/sales")
@require_auth
def sales_stats_route():
    """Sold/returned quantity per product. Query: branch_id (required), payment_method."""
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        return jsonify({"error": "branch_id is required"}), 400
    try:
        stats = reporting_service.get_sales_stats(
            branch_id,
            g.principal,
            payment_method=request.args.get("payment_method") or None,
        )
        return jsonify({"stats": stats}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute sales stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/detail/sales")
@require_auth
def sales_detail_route():
    """
    Orders and sales metrics of a branch.

    Query: branch_id (required), start_date / end_date (YYYY-MM-DD, inclusive),
    month (YYYY-MM, overrides the dates), year (ignored when month is set),
    payment_method.
    """
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        return jsonify({"error": "branch_id is required"}), 400
    try:
        detail = reporting_service.get_sales_detail(
            branch_id,
            g.principal,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            month=request.args.get("month"),
            year=request.args.get("year"),
            payment_method=request.args.get("payment_method") or None,
        )
        return jsonify({
            "orders": [o.to_dict() for o in detail["orders"]],
            "metrics": detail["metrics"],
        }), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute sales detail")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.principal)
        return jsonify({"order": order.to_dict()}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/approve")
@require_auth
def approve_order_route(order_id: int):
    try:
        order = order_service.approve_order(order_id, g.principal)
        return jsonify({"order": order.to_dict()}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reject")
@require_auth
def reject_order_route(order_id: int):
    try:
        order = order_service.reject_order(order_id, g.principal)
        return jsonify({"order": order.to_dict()}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    """
    Edit items and/or status.

    Body: {"items": [{"product_id", "quantity", "unit_price_cents",
    "base_price_at_sale_cents"?, "status"?}], "status": "modificado"}
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.update_order(
            order_id,
            g.principal,
            items=data.get("items"),
            status=data.get("status"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500
