# backend/petshop/routes/inventory.py
"""
Inventory management routes.

- Summary, movements and low-stock are open to every authenticated user
- Receive, adjust and reconcile require manager or owner

Quantities are integers; location_id is the store the stock sits in.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError
from ..models.auth import ROLE_MANAGER, ROLE_OWNER
from ..services import stock_service
from . import error_response, int_arg, internal_error, json_body

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _own_product(product_id):
    product = stock_service.load_product(product_id) if product_id else None
    if product is None or product.company_id != g.company_id:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


@inventory_bp.post("/receive")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def receive_route():
    try:
        data = json_body()
        _own_product(data.get("product_id"))
        movement = stock_service.receive_stock(
            product_id=data["product_id"],
            quantity=data.get("quantity"),
            performed_by=g.performed_by,
            location_id=data.get("location_id"),
            reference_id=data.get("reference_id"),
            note=data.get("note"),
        )
        summary = stock_service.get_stock_summary(data["product_id"])
        return jsonify({"movement": movement.to_dict(), "summary": summary}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return internal_error()


@inventory_bp.post("/adjust")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def adjust_route():
    """Manual correction; a note is mandatory."""
    try:
        data = json_body()
        _own_product(data.get("product_id"))
        movement = stock_service.adjust_stock(
            product_id=data["product_id"],
            quantity_change=data.get("quantity_change"),
            performed_by=g.performed_by,
            note=data.get("note") or "",
            location_id=data.get("location_id"),
        )
        summary = stock_service.get_stock_summary(data["product_id"])
        return jsonify({"movement": movement.to_dict(), "summary": summary}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return internal_error()


@inventory_bp.post("/reconcile")
@require_auth
@require_role(ROLE_MANAGER, ROLE_OWNER)
def reconcile_route():
    try:
        data = json_body()
        _own_product(data.get("product_id"))
        movement = stock_service.reconcile_stock(
            product_id=data["product_id"],
            counted_quantity=data.get("counted_quantity"),
            performed_by=g.performed_by,
            location_id=data.get("location_id"),
            note=data.get("note"),
            force=data.get("force") is True,
        )
        summary = stock_service.get_stock_summary(data["product_id"])
        return jsonify({"movement": movement.to_dict() if movement else None, "summary": summary}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return internal_error()


@inventory_bp.get("/<product_id>/summary")
@require_auth
def summary_route(product_id: str):
    try:
        _own_product(product_id)
        return jsonify(stock_service.get_stock_summary(product_id)), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock summary")
        return internal_error()


@inventory_bp.get("/<product_id>/movements")
@require_auth
def movements_route(product_id: str):
    try:
        _own_product(product_id)
        movements = stock_service.list_stock_movements(
            product_id=product_id,
            reference_id=request.args.get("reference_id"),
            reason=request.args.get("reason"),
            limit=min(int_arg("limit", 200), 500),
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return internal_error()


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        products = stock_service.list_low_stock_products(g.company_id)
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except Exception:
        current_app.logger.exception("Failed to list low-stock products")
        return internal_error()
