# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes.

Reads are public (the storefront lists the catalog, optionally in the
view of one branch). Catalog writes and central stock are central-admin
only; branch price overrides belong to the admin of that branch.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BranchStockError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_CENTRAL_ADMIN
from ..services import products_service, pricing_service, reporting_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _error_response(e: BranchStockError):
    return jsonify(e.to_dict()), e.status_code


@products_bp.get("")
def list_products():
    """
    List the catalog.

    Query params:
    - branch_id: int (optional) - add branch_available, base_price_cents,
      the branch price and markup to every product
    """
    branch_id = request.args.get("branch_id", type=int)
    try:
        items = products_service.list_products(branch_id=branch_id)
        return jsonify({"products": items, "count": len(items)}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/most-sold")
@require_auth
def most_sold_route():
    """Query params: days (default 30), branch_id, limit (default 50)."""
    try:
        items = reporting_service.most_sold_products(
            g.principal,
            days=request.args.get("days", type=int),
            branch_id=request.args.get("branch_id", type=int),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"products": items, "count": len(items)}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute most sold products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def create_product():
    try:
        product = products_service.create_product(request.get_json(silent=True) or {}, g.principal)
        return jsonify({"product": product.to_dict()}), 201

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def update_product(product_id: int):
    try:
        product = products_service.update_product(product_id, request.get_json(silent=True) or {}, g.principal)
        return jsonify({"product": product.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def delete_product(product_id: int):
    try:
        snapshot = products_service.delete_product(product_id, g.principal)
        return jsonify({"deleted": True, "product": snapshot}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/stock")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def add_central_stock(product_id: int):
    """Body: {"quantity": 10}. Adds to central stock."""
    data = request.get_json(silent=True) or {}
    try:
        product = products_service.add_central_stock(product_id, data.get("quantity"), g.principal)
        return jsonify({"product": product.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add central stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/branch-price/<int:branch_id>")
@require_auth
def set_branch_price(product_id: int, branch_id: int):
    """
    Body: {"price_cents": 1800, "markup": 25}

    Keys that are absent keep their stored value; "markup": null unmanages
    the override so recalculation skips it.
    """
    data = request.get_json(silent=True) or {}
    kwargs = {key: data[key] for key in ("price_cents", "markup") if key in data}
    try:
        override = pricing_service.set_branch_price(product_id, branch_id, g.principal, **kwargs)
        return jsonify({"branch_price": override.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set branch price")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>/branch-price/<int:branch_id>")
@require_auth
def clear_branch_price(product_id: int, branch_id: int):
    try:
        product = pricing_service.clear_branch_price(product_id, branch_id, g.principal)
        return jsonify({"product": product.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear branch price")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/branch-prices/recalculate/<int:branch_id>")
@require_auth
def recalculate_branch_prices(branch_id: int):
    """Body: {"rate": 1.15, "force": false}"""
    data = request.get_json(silent=True) or {}
    try:
        touched = pricing_service.recalculate_all_for_branch(
            branch_id,
            data.get("rate"),
            g.principal,
            force=data.get("force", False),
        )
        return jsonify({"branch_id": branch_id, "updated": touched}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recalculate branch prices")
        return jsonify({"error": "Internal server error"}), 500
