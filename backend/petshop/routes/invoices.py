# Overview: Flask API routes for invoices.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import NotFoundError, ServiceError
from ..models.auth import ROLE_ACCOUNTANT, ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from ..services import invoice_service
from . import error_response, int_arg, internal_error, json_body

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

ISSUE_ROLES = (ROLE_MANAGER, ROLE_ACCOUNTANT, ROLE_OWNER)
PAY_ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_ACCOUNTANT, ROLE_OWNER)
CREDIT_NOTE_ROLES = (ROLE_MANAGER, ROLE_ACCOUNTANT, ROLE_OWNER)


def _own_invoice(invoice_id: str):
    invoice = invoice_service.get_invoice(invoice_id)
    if invoice.company_id != g.company_id:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


@invoices_bp.post("")
@require_auth
@require_role(*ISSUE_ROLES)
def create_invoice_route():
    try:
        data = json_body()
        invoice = invoice_service.create_invoice_draft(
            company_id=g.company_id,
            store_id=data.get("store_id"),
            lines=data.get("lines"),
            customer_id=data.get("customer_id"),
            performed_by=g.performed_by,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return internal_error()


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    try:
        invoices = [
            i for i in invoice_service.list_invoices(
                store_id=request.args.get("store_id"),
                customer_id=request.args.get("customer_id"),
                status=request.args.get("status"),
                limit=min(int_arg("limit", 200), 500),
            )
            if i.company_id == g.company_id
        ]
        return jsonify({"items": [i.to_dict() for i in invoices], "count": len(invoices)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return internal_error()


@invoices_bp.get("/<invoice_id>")
@require_auth
def get_invoice_route(invoice_id: str):
    try:
        return jsonify({"invoice": _own_invoice(invoice_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return internal_error()


@invoices_bp.post("/<invoice_id>/issue")
@require_auth
@require_role(*ISSUE_ROLES)
def issue_invoice_route(invoice_id: str):
    try:
        _own_invoice(invoice_id)
        invoice = invoice_service.issue_invoice(invoice_id, performed_by=g.performed_by)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to issue invoice")
        return internal_error()


@invoices_bp.post("/<invoice_id>/pay")
@require_auth
@require_role(*PAY_ROLES)
def pay_invoice_route(invoice_id: str):
    try:
        _own_invoice(invoice_id)
        data = json_body()
        invoice = invoice_service.mark_invoice_paid(
            invoice_id,
            performed_by=g.performed_by,
            payment_method=data.get("payment_method"),
            paid_at=data.get("paid_at"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice paid")
        return internal_error()


@invoices_bp.post("/<invoice_id>/void")
@require_auth
@require_role(*ISSUE_ROLES)
def void_invoice_route(invoice_id: str):
    try:
        _own_invoice(invoice_id)
        data = json_body()
        invoice = invoice_service.void_invoice(invoice_id, performed_by=g.performed_by, reason=data.get("reason"))
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return internal_error()


@invoices_bp.post("/<invoice_id>/credit-notes")
@require_auth
@require_role(*CREDIT_NOTE_ROLES)
def create_credit_note_route(invoice_id: str):
    """Body: {"amount_cents": int, "reason": str}"""
    try:
        _own_invoice(invoice_id)
        data = json_body()
        credit_note = invoice_service.create_credit_note(
            invoice_id,
            amount_cents=data.get("amount_cents"),
            reason=data.get("reason"),
            performed_by=g.performed_by,
        )
        return jsonify({"credit_note": credit_note.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return internal_error()


@invoices_bp.get("/<invoice_id>/credit-notes")
@require_auth
@require_role(*CREDIT_NOTE_ROLES)
def list_credit_notes_route(invoice_id: str):
    try:
        _own_invoice(invoice_id)
        credit_notes = invoice_service.list_credit_notes(invoice_id)
        return jsonify({"items": [cn.to_dict() for cn in credit_notes], "count": len(credit_notes)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list credit notes")
        return internal_error()
