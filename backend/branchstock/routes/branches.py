# Overview: Flask API routes for branches operations; parses input and returns JSON responses.

"""
Branch API routes: CRUD, central -> branch transfers, manual stock loads,
exchange rate and the legacy product price list.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BranchStockError
from ..decorators import require_auth
from ..services import branch_service


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


def _error_response(e: BranchStockError):
    return jsonify(e.to_dict()), e.status_code


@branches_bp.get("")
def list_branches_route():
    try:
        branches = branch_service.list_branches()
        return jsonify({"branches": [b.to_dict() for b in branches], "count": len(branches)}), 200
    except Exception:
        current_app.logger.exception("Failed to list branches")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.get("/<int:branch_id>")
def get_branch_route(branch_id: int):
    try:
        branch = branch_service.get_branch(branch_id)
        return jsonify({"branch": branch.to_dict(include_stock=True)}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.get("/<int:branch_id>/products")
@require_auth
def list_branch_products_route(branch_id: int):
    """Products stocked in the branch, with quantities and branch price."""
    try:
        items = branch_service.list_branch_products(branch_id)
        return jsonify({"products": items, "count": len(items)}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list branch products")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.post("")
@require_auth
def create_branch_route():
    try:
        branch = branch_service.create_branch(request.get_json(silent=True) or {}, g.principal)
        return jsonify({"branch": branch.to_dict()}), 201

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.put("/<int:branch_id>")
@require_auth
def update_branch_route(branch_id: int):
    try:
        branch = branch_service.update_branch(branch_id, request.get_json(silent=True) or {}, g.principal)
        return jsonify({"branch": branch.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.delete("/<int:branch_id>")
@require_auth
def delete_branch_route(branch_id: int):
    try:
        branch_service.delete_branch(branch_id, g.principal)
        return jsonify({"deleted": True, "branch_id": branch_id}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.post("/transfer")
@require_auth
def transfer_stock_route():
    """Body: {"branch_id": 1, "product_id": 2, "quantity": 10, "notes": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        entry, movement = branch_service.transfer_stock(
            data.get("branch_id"),
            data.get("product_id"),
            data.get("quantity"),
            g.principal,
            notes=data.get("notes"),
        )
        response = {"stock": entry.to_dict(), "movement": movement.to_dict() if movement else None}
        if movement is None:
            response["warning"] = "Stock transferred but the movement could not be recorded"
        return jsonify(response), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.post("/update-stock-manual")
@require_auth
def load_stock_manual_route():
    """
    Body: {"branch_id": 1, "products": [{"product_id": 2, "quantity": 5}], "notes": "..."}

    Returns 207 when some lines failed; ``errors`` lists them.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = branch_service.load_stock_manual(
            data.get("branch_id"),
            data.get("products"),
            g.principal,
            notes=data.get("notes"),
        )
        body = {
            "branch": result.branch.to_dict(include_stock=True),
            "movements": [m.to_dict() for m in result.movements],
            "success_count": result.success_count,
        }
        if result.is_partial:
            body["errors"] = result.errors
            return jsonify(body), 207
        return jsonify(body), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock manually")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.put("/<int:branch_id>/exchange-rate")
@require_auth
def update_exchange_rate_route(branch_id: int):
    data = request.get_json(silent=True) or {}
    try:
        branch = branch_service.update_exchange_rate(branch_id, data.get("exchange_rate"), g.principal)
        return jsonify({"branch": branch.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update exchange rate")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.get("/<int:branch_id>/product-prices")
@require_auth
def get_product_prices_route(branch_id: int):
    try:
        prices = branch_service.get_branch_product_prices(branch_id, g.principal)
        return jsonify({"product_prices": [p.to_dict() for p in prices]}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get branch product prices")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.put("/<int:branch_id>/product-prices")
@require_auth
def replace_product_prices_route(branch_id: int):
    data = request.get_json(silent=True) or {}
    try:
        prices = branch_service.replace_branch_product_prices(branch_id, data.get("product_prices"), g.principal)
        return jsonify({"product_prices": [p.to_dict() for p in prices]}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update branch product prices")
        return jsonify({"error": "Internal server error"}), 500
