# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.permission_service import ANONYMOUS


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _is_authenticated() -> bool:
    return getattr(g, 'current_user', None) is not None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.principal: Principal(user_id, role, branch_id) for service calls
    - g.session_context: The full SessionContext object

    Returns 401 if the header is missing, or the token is invalid, expired,
    revoked or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.principal = context.principal
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Authenticate when a token is sent, fall back to the anonymous principal
    otherwise. A token that is sent but invalid is still a 401.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            g.current_user = None
            g.principal = ANONYMOUS
            return f(*args, **kwargs)

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.principal = context.principal
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Restrict a route to the given roles. Must be applied after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.principal.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
