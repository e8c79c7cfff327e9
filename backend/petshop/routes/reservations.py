# Overview: Flask API routes for inventory reservations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError, ValidationError
from ..models.auth import ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from ..models.inventory import OwnerRef
from ..services import reservation_service, stock_service
from . import error_response, int_arg, internal_error, json_body

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/inventory-reservations")

RESERVATION_ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_OWNER)


def _owner_from(data) -> OwnerRef:
    try:
        return OwnerRef(data.get("reserved_for_type"), data.get("reserved_for_id"))
    except ValueError as e:
        raise ValidationError(str(e))


def _own_reservation(reservation_id: str):
    reservation = reservation_service.get_reservation(reservation_id)
    product = stock_service.load_product(reservation.product_id)
    if product.company_id != g.company_id:
        raise NotFoundError("Reservation not found", details={"reservation_id": reservation_id})
    return reservation


@reservations_bp.post("")
@require_auth
@require_role(*RESERVATION_ROLES)
def create_reservation_route():
    """
    Body: product_id, quantity, reserved_for_type (appointment | transaction),
    reserved_for_id, optional expires_at.
    """
    try:
        data = json_body()
        owner = _owner_from(data)
        product = stock_service.load_product(data.get("product_id") or "")
        if product.company_id != g.company_id:
            raise NotFoundError("Product not found", details={"product_id": product.id})
        reservation = reservation_service.create_reservation(
            product_id=product.id,
            quantity=data.get("quantity"),
            owner=owner,
            performed_by=g.performed_by,
            expires_at=data.get("expires_at"),
        )
        return jsonify({"reservation": reservation.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create reservation")
        return internal_error()


@reservations_bp.get("")
@require_auth
def list_reservations_route():
    try:
        owner = None
        if request.args.get("reserved_for_id"):
            owner = _owner_from(request.args)
        reservations = reservation_service.list_reservations(
            product_id=request.args.get("product_id"),
            owner=owner,
            status=request.args.get("status"),
            limit=min(int_arg("limit", 200), 500),
        )
        # Products of other companies are filtered out of the listing
        visible = [r for r in reservations if stock_service.load_product(r.product_id).company_id == g.company_id]
        return jsonify({"items": [r.to_dict() for r in visible], "count": len(visible)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list reservations")
        return internal_error()


@reservations_bp.get("/<reservation_id>")
@require_auth
def get_reservation_route(reservation_id: str):
    try:
        return jsonify({"reservation": _own_reservation(reservation_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get reservation")
        return internal_error()


@reservations_bp.post("/<reservation_id>/release")
@require_auth
@require_role(*RESERVATION_ROLES)
def release_reservation_route(reservation_id: str):
    try:
        _own_reservation(reservation_id)
        data = json_body()
        reservation = reservation_service.release_reservation(
            reservation_id, performed_by=g.performed_by, note=data.get("note")
        )
        return jsonify({"reservation": reservation.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to release reservation")
        return internal_error()


@reservations_bp.post("/<reservation_id>/consume")
@require_auth
@require_role(*RESERVATION_ROLES)
def consume_reservation_route(reservation_id: str):
    try:
        _own_reservation(reservation_id)
        reservation = reservation_service.consume_reservation(reservation_id, performed_by=g.performed_by)
        return jsonify({"reservation": reservation.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to consume reservation")
        return internal_error()
