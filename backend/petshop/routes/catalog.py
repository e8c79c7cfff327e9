# Overview: Flask API routes for products, services and suppliers.

"""
Catalog API routes.

Reads are open to every authenticated user; writes require manager or owner.
Every lookup is scoped to the caller's company: another company's record
answers 404.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError
from ..models.auth import ROLE_MANAGER, ROLE_OWNER
from ..services import catalog_service
from . import error_response, int_arg, internal_error, json_body

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
services_bp = Blueprint("services", __name__, url_prefix="/api/services")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _scoped(entity, label: str):
    if entity.company_id != g.company_id:
        raise NotFoundError(f"{label} not found", details={"id": entity.id})
    return entity


@products_bp.get("")
@require_auth
def list_products_route():
    try:
        result = catalog_service.list_products(
            company_id=g.company_id,
            search=request.args.get("q"),
            active_only=request.args.get("active") == "true",
            page=int_arg("page"),
            per_page=int_arg("per_page"),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return internal_error()


@products_bp.post("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def create_product_route():
    try:
        product = catalog_service.create_product(
            company_id=g.company_id, data=json_body(), performed_by=g.performed_by
        )
        return jsonify({"product": product.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return internal_error()


@products_bp.get("/<product_id>")
@require_auth
def get_product_route(product_id: str):
    try:
        product = _scoped(catalog_service.get_product(product_id), "Product")
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return internal_error()


@products_bp.patch("/<product_id>")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def update_product_route(product_id: str):
    try:
        _scoped(catalog_service.get_product(product_id), "Product")
        product = catalog_service.update_product(product_id, data=json_body(), performed_by=g.performed_by)
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return internal_error()


@services_bp.get("")
@require_auth
def list_services_route():
    try:
        services = catalog_service.list_services(
            company_id=g.company_id, active_only=request.args.get("active") == "true"
        )
        return jsonify({"items": [s.to_dict() for s in services], "count": len(services)}), 200
    except Exception:
        current_app.logger.exception("Failed to list services")
        return internal_error()


@services_bp.post("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def create_service_route():
    """Body: service fields plus an optional consumed_items list."""
    try:
        data = dict(json_body())
        consumed_items = data.pop("consumed_items", None)
        service = catalog_service.create_service(
            company_id=g.company_id,
            data=data,
            consumed_items=consumed_items,
            performed_by=g.performed_by,
        )
        return jsonify({"service": service.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create service")
        return internal_error()


@services_bp.get("/<service_id>")
@require_auth
def get_service_route(service_id: str):
    try:
        service = _scoped(catalog_service.get_service(service_id), "Service")
        return jsonify({"service": service.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get service")
        return internal_error()


@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    try:
        suppliers = catalog_service.list_suppliers(company_id=g.company_id)
        return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}), 200
    except Exception:
        current_app.logger.exception("Failed to list suppliers")
        return internal_error()


@suppliers_bp.post("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def create_supplier_route():
    try:
        supplier = catalog_service.create_supplier(
            company_id=g.company_id, data=json_body(), performed_by=g.performed_by
        )
        return jsonify({"supplier": supplier.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return internal_error()
