# Overview: Flask API routes for point-of-sale transactions.

"""Transaction API routes with role enforcement."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError
from ..extensions import db
from ..models import Store
from ..models.auth import ROLE_ACCOUNTANT, ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from ..services import transaction_service
from . import error_response, int_arg, internal_error, json_body

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

SETTLE_ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_ACCOUNTANT, ROLE_OWNER)
VOID_ROLES = (ROLE_MANAGER, ROLE_ACCOUNTANT, ROLE_OWNER)


def _require_store(store_id):
    store = db.session.query(Store).filter_by(id=store_id).first() if store_id else None
    if store is None or store.company_id != g.company_id:
        raise NotFoundError("Store not found", details={"store_id": store_id})
    return store


def _own_transaction(transaction_id: str):
    transaction = transaction_service.get_transaction(transaction_id)
    store = db.session.query(Store).filter_by(id=transaction.store_id).first()
    if store is None or store.company_id != g.company_id:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    return transaction


@transactions_bp.post("")
@require_auth
@require_role(*SETTLE_ROLES)
def create_transaction_route():
    """Body: store_id, lines, optional customer_id and create_invoice."""
    try:
        data = json_body()
        _require_store(data.get("store_id"))
        transaction = transaction_service.create_transaction(
            store_id=data["store_id"],
            lines=data.get("lines"),
            customer_id=data.get("customer_id"),
            create_invoice=data.get("create_invoice") is True,
            performed_by=g.performed_by,
        )
        return jsonify({"transaction": transaction.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return internal_error()


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    try:
        store_id = request.args.get("store_id")
        _require_store(store_id)
        transactions = transaction_service.list_transactions(
            store_id=store_id,
            customer_id=request.args.get("customer_id"),
            payment_status=request.args.get("payment_status"),
            limit=min(int_arg("limit", 200), 500),
        )
        return jsonify({"items": [t.to_dict() for t in transactions], "count": len(transactions)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return internal_error()


@transactions_bp.get("/<transaction_id>")
@require_auth
def get_transaction_route(transaction_id: str):
    try:
        return jsonify({"transaction": _own_transaction(transaction_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return internal_error()


@transactions_bp.post("/<transaction_id>/complete")
@require_auth
@require_role(*SETTLE_ROLES)
def complete_transaction_route(transaction_id: str):
    try:
        _own_transaction(transaction_id)
        data = json_body()
        transaction = transaction_service.complete_transaction(
            transaction_id,
            performed_by=g.performed_by,
            payment_method=data.get("payment_method"),
            paid_at=data.get("paid_at"),
            external_reference=data.get("external_reference"),
        )
        return jsonify({"transaction": transaction.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete transaction")
        return internal_error()


@transactions_bp.post("/<transaction_id>/void")
@require_auth
@require_role(*VOID_ROLES)
def void_transaction_route(transaction_id: str):
    try:
        _own_transaction(transaction_id)
        data = json_body()
        transaction = transaction_service.void_transaction(
            transaction_id, performed_by=g.performed_by, reason=data.get("reason")
        )
        return jsonify({"transaction": transaction.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return internal_error()
