# Overview: Flask API routes for the appointment lifecycle.

"""
Appointment API routes.

complete and cancel answer 200 with the lifecycle result when the transition
went through. When a step failed part way they answer 409 with code
PARTIAL_FAILURE; details carries the per-step outcomes and the reservation ids
still pending, and repeating the same request resumes with those only.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError
from ..extensions import db
from ..models import Store
from ..models.auth import ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from ..services import appointment_service
from . import error_response, int_arg, internal_error, json_body

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")

APPOINTMENT_ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_OWNER)


def _require_store(store_id):
    store = db.session.query(Store).filter_by(id=store_id).first() if store_id else None
    if store is None or store.company_id != g.company_id:
        raise NotFoundError("Store not found", details={"store_id": store_id})
    return store


def _own_appointment(appointment_id: str):
    appointment = appointment_service.get_appointment(appointment_id)
    store = db.session.query(Store).filter_by(id=appointment.store_id).first()
    if store is None or store.company_id != g.company_id:
        raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})
    return appointment


def _lifecycle_response(result):
    if result.is_partial:
        return jsonify({
            "error": "Transition stopped part way; retry to resume",
            "code": "PARTIAL_FAILURE",
            "details": result.to_dict(),
        }), 409
    return jsonify(result.to_dict()), 200


@appointments_bp.post("")
@require_auth
@require_role(*APPOINTMENT_ROLES)
def create_appointment_route():
    """
    Body: store_id, customer_id, pet_id, staff_id, start_at, end_at,
    service_lines [{service_id, quantity, price_override_cents}], notes,
    reservation_expires_at.
    """
    try:
        data = json_body()
        _require_store(data.get("store_id"))
        appointment = appointment_service.create_appointment(
            store_id=data["store_id"],
            customer_id=data.get("customer_id"),
            pet_id=data.get("pet_id"),
            staff_id=data.get("staff_id"),
            start_at=data.get("start_at"),
            end_at=data.get("end_at"),
            service_lines=data.get("service_lines"),
            notes=data.get("notes"),
            reservation_expires_at=data.get("reservation_expires_at"),
            performed_by=g.performed_by,
        )
        return jsonify({"appointment": appointment.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create appointment")
        return internal_error()


@appointments_bp.get("")
@require_auth
def search_appointments_route():
    try:
        store_id = request.args.get("store_id")
        _require_store(store_id)
        appointments = appointment_service.search_appointments(
            store_id=store_id,
            staff_id=request.args.get("staff_id"),
            customer_id=request.args.get("customer_id"),
            pet_id=request.args.get("pet_id"),
            status=request.args.get("status"),
            start_from=request.args.get("from"),
            start_to=request.args.get("to"),
            limit=min(int_arg("limit", 200), 500),
        )
        return jsonify({"items": [a.to_dict() for a in appointments], "count": len(appointments)}), 200
    except ValueError:
        return jsonify({"error": "from/to must be ISO-8601 datetimes", "code": "VALIDATION_ERROR", "details": {}}), 400
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search appointments")
        return internal_error()


@appointments_bp.get("/<appointment_id>")
@require_auth
def get_appointment_route(appointment_id: str):
    try:
        return jsonify({"appointment": _own_appointment(appointment_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get appointment")
        return internal_error()


@appointments_bp.post("/<appointment_id>/confirm")
@require_auth
@require_role(*APPOINTMENT_ROLES)
def confirm_appointment_route(appointment_id: str):
    try:
        _own_appointment(appointment_id)
        appointment = appointment_service.confirm_appointment(appointment_id, performed_by=g.performed_by)
        return jsonify({"appointment": appointment.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm appointment")
        return internal_error()


@appointments_bp.post("/<appointment_id>/complete")
@require_auth
@require_role(*APPOINTMENT_ROLES)
def complete_appointment_route(appointment_id: str):
    """Optional body: consumed_items [{product_id, quantity}] to override planned usage."""
    try:
        _own_appointment(appointment_id)
        data = json_body()
        result = appointment_service.complete_appointment(
            appointment_id,
            performed_by=g.performed_by,
            consumed_items=data.get("consumed_items"),
        )
        return _lifecycle_response(result)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete appointment")
        return internal_error()


@appointments_bp.post("/<appointment_id>/cancel")
@require_auth
@require_role(*APPOINTMENT_ROLES)
def cancel_appointment_route(appointment_id: str):
    try:
        _own_appointment(appointment_id)
        data = json_body()
        result = appointment_service.cancel_appointment(
            appointment_id,
            performed_by=g.performed_by,
            reason=data.get("reason"),
            no_show=data.get("no_show") is True,
        )
        return _lifecycle_response(result)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel appointment")
        return internal_error()
