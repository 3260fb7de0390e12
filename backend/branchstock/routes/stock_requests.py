# Overview: Flask API routes for stock request operations; parses input and returns JSON responses.

"""Stock request API routes (branch replenishment from the central warehouse)."""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BranchStockError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN
from ..services import stock_request_service


stock_requests_bp = Blueprint("stock_requests", __name__, url_prefix="/api/stock-requests")


def _error_response(e: BranchStockError):
    return jsonify(e.to_dict()), e.status_code


@stock_requests_bp.post("")
@require_auth
@require_role(ROLE_BRANCH_ADMIN)
def create_stock_request_route():
    """Body: {"items": [{"product_id": 1, "quantity": 5}], "notes": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        stock_request = stock_request_service.create_stock_request(
            g.principal,
            data.get("items"),
            notes=data.get("notes"),
        )
        return jsonify({"stock_request": stock_request.to_dict()}), 201

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock request")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.get("")
@require_auth
@require_role(ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN)
def list_stock_requests_route():
    try:
        requests_ = stock_request_service.list_stock_requests(g.principal, status=request.args.get("status"))
        return jsonify({"stock_requests": [r.to_dict() for r in requests_], "count": len(requests_)}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock requests")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.get("/<int:request_id>")
@require_auth
def get_stock_request_route(request_id: int):
    try:
        stock_request = stock_request_service.get_stock_request(request_id, g.principal)
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get stock request")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.put("/<int:request_id>/approve")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def approve_stock_request_route(request_id: int):
    data = request.get_json(silent=True) or {}
    try:
        stock_request = stock_request_service.approve_stock_request(request_id, g.principal, notes=data.get("notes"))
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve stock request")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.put("/<int:request_id>/reject")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def reject_stock_request_route(request_id: int):
    data = request.get_json(silent=True) or {}
    try:
        stock_request = stock_request_service.reject_stock_request(request_id, g.principal, notes=data.get("notes"))
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject stock request")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.put("/<int:request_id>/fulfill")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def fulfill_stock_request_route(request_id: int):
    try:
        stock_request = stock_request_service.fulfill_stock_request(request_id, g.principal)
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to fulfill stock request")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.put("/<int:request_id>/delivered-unpaid")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def delivered_unpaid_route(request_id: int):
    try:
        stock_request = stock_request_service.mark_delivered_unpaid(request_id, g.principal)
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark stock request delivered unpaid")
        return jsonify({"error": "Internal server error"}), 500


@stock_requests_bp.put("/<int:request_id>/mark-fulfilled")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def mark_fulfilled_route(request_id: int):
    try:
        stock_request = stock_request_service.mark_request_fulfilled(request_id, g.principal)
        return jsonify({"stock_request": stock_request.to_dict()}), 200

    except BranchStockError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark stock request fulfilled")
        return jsonify({"error": "Internal server error"}), 500
