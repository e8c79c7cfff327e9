# Overview: Flask API routes for login, logout and the current user.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth
from ..errors import ServiceError
from ..services import auth_service
from . import error_response, internal_error, json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Exchange username/password for a bearer token.

    The token goes in the Authorization header of every other request.
    """
    try:
        data = json_body()
        username = data.get("username")
        password = data.get("password")
        if not username or not password:
            return jsonify({"error": "username and password required", "code": "VALIDATION_ERROR", "details": {}}), 400

        user, token = auth_service.login(username=username, password=password, company_id=data.get("company_id"))
        return jsonify({"user": user.to_dict(), "token": token}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Login failed")
        return internal_error()


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        auth_service.logout(g.auth_token)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Logout failed")
        return internal_error()


@auth_bp.get("/me")
@require_auth
def me_route():
    try:
        return jsonify({"user": g.current_user.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load current user")
        return internal_error()
