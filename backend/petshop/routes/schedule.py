# Overview: Flask API routes for store opening hours and staff working hours.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth, require_role
from ..errors import ServiceError, ValidationError
from ..models.auth import ROLE_MANAGER, ROLE_OWNER
from ..services import schedule_service
from . import error_response, internal_error, json_body

schedule_bp = Blueprint("schedule", __name__, url_prefix="/api")


def _hours_from_body(key: str):
    data = json_body()
    if key not in data:
        raise ValidationError(f"{key} is required (null clears it)")
    return data[key]


@schedule_bp.put("/stores/<store_id>/opening-hours")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def set_opening_hours_route(store_id: str):
    """Body: {"opening_hours": {"monday": {"open": "09:00", "close": "19:00"}, ...} | null}"""
    try:
        store = schedule_service.set_store_opening_hours(
            store_id,
            _hours_from_body("opening_hours"),
            company_id=g.company_id,
            performed_by=g.performed_by,
        )
        return jsonify({"store": store.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set store opening hours")
        return internal_error()


@schedule_bp.put("/users/<user_id>/working-hours")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def set_working_hours_route(user_id: str):
    """Body: {"working_hours": {"monday": {"start": "09:00", "end": "17:00"}, ...} | null}"""
    try:
        user = schedule_service.set_staff_working_hours(
            user_id,
            _hours_from_body("working_hours"),
            company_id=g.company_id,
            performed_by=g.performed_by,
        )
        return jsonify({"user": user.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set staff working hours")
        return internal_error()
