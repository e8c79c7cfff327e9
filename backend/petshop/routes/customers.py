# Overview: Flask API routes for customers and pets.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import NotFoundError, ServiceError
from ..services import customer_service
from . import error_response, int_arg, internal_error, json_body

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")
pets_bp = Blueprint("pets", __name__, url_prefix="/api/pets")


def _own_customer(customer_id: str):
    customer = customer_service.get_customer(customer_id)
    if customer.company_id != g.company_id:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


@customers_bp.get("")
@require_auth
def search_customers_route():
    try:
        customers = customer_service.search_customers(
            company_id=g.company_id, search=request.args.get("q"), limit=int_arg("limit", 50)
        )
        return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search customers")
        return internal_error()


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        customer = customer_service.create_customer(company_id=g.company_id, data=json_body())
        return jsonify({"customer": customer.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return internal_error()


@customers_bp.get("/<customer_id>")
@require_auth
def get_customer_route(customer_id: str):
    try:
        return jsonify({"customer": _own_customer(customer_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return internal_error()


@customers_bp.patch("/<customer_id>")
@require_auth
def update_customer_route(customer_id: str):
    try:
        _own_customer(customer_id)
        customer = customer_service.update_customer(customer_id, data=json_body())
        return jsonify({"customer": customer.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return internal_error()


@customers_bp.get("/<customer_id>/pets")
@require_auth
def list_pets_route(customer_id: str):
    try:
        _own_customer(customer_id)
        pets = customer_service.list_pets(customer_id)
        return jsonify({"items": [p.to_dict() for p in pets], "count": len(pets)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pets")
        return internal_error()


@customers_bp.post("/<customer_id>/pets")
@require_auth
def create_pet_route(customer_id: str):
    try:
        _own_customer(customer_id)
        pet = customer_service.create_pet(customer_id=customer_id, data=json_body())
        return jsonify({"pet": pet.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create pet")
        return internal_error()


@pets_bp.get("/<pet_id>")
@require_auth
def get_pet_route(pet_id: str):
    try:
        pet = customer_service.get_pet(pet_id)
        _own_customer(pet.customer_id)
        return jsonify({"pet": pet.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get pet")
        return internal_error()
