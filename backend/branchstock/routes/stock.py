# Overview: Flask API routes for stock reporting; parses input and returns JSON responses.

"""Stock movement history and the per-branch stock report (admins only)."""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BranchStockError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN
from ..services import branch_service, ledger_service, permission_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/movements")
@require_auth
@require_role(ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN)
def list_movements_route():
    """Latest movements; branch admins only ever see their own branch."""
    try:
        branch_id = permission_service.scoped_branch_id(g.principal, request.args.get("branch_id", type=int))
        movements = ledger_service.list_movements(branch_id=branch_id)
        return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200

    except BranchStockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/reports/stock")
@require_auth
@require_role(ROLE_CENTRAL_ADMIN)
def stock_report_route():
    try:
        return jsonify(branch_service.stock_report()), 200
    except Exception:
        current_app.logger.exception("Failed to build stock report")
        return jsonify({"error": "Internal server error"}), 500
