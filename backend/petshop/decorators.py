# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import auth_service


def require_auth(f):
    """
    Require a valid bearer token.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.company_id: the user's company (tenant context)
    - g.performed_by: the opaque actor id passed to the services
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED", "details": {}}), 401

        token = auth_header.split(" ", 1)[1]
        user = auth_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token", "code": "UNAUTHORIZED", "details": {}}), 401

        g.current_user = user
        g.company_id = user.company_id
        g.performed_by = user.id
        g.auth_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require any of the given roles. Must be stacked under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED", "details": {}}), 401
            if not user.has_any_role(*roles):
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "details": {"required_roles": list(roles)},
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
