# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Session API routes.

Tokens are issued out of band (``flask users token``). These routes let a
client check who a token belongs to and revoke it.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _header_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        token = _header_token()
        if token is None:
            return jsonify({"error": "Authorization header required"}), 401

        revoked = session_service.revoke_session(token, reason="User logout")

        if not revoked:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/validate")
def validate_route():
    """
    Validate session token and return the user with its role and branch.

    Returns:
        - user: id, username, fullname, role, branch_id
        - role / branch_id: the principal the token acts as
        - message: Status message
    """
    try:
        token = _header_token()
        if token is None:
            return jsonify({"error": "Authorization header required"}), 401

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({
            "user": context.user.to_dict(),
            "role": context.principal.role,
            "branch_id": context.principal.branch_id,
            "message": "Token valid"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to validate session")
        return jsonify({"error": "Internal server error"}), 500
