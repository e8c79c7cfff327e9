# Overview: Invoice documents; totals, numbering and the draft -> issued -> paid | void lifecycle.

from __future__ import annotations

from sqlalchemy import func

from ..errors import BusinessRuleViolationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Company, CreditNote, Customer, Invoice, InvoiceLine, Product, Service, Store
from ..models.financial import PAYMENT_METHODS, InvoiceStatus
from ..time_utils import is_in_future, normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_document_number

INVOICE_DOCUMENT_TYPE = "invoice"
INVOICE_PREFIX = "FT"
CREDIT_NOTE_DOCUMENT_TYPE = "credit_note"
CREDIT_NOTE_PREFIX = "NC"
CREDIT_NOTE_REASON_MAX = 500


def vat_for(subtotal_cents: int, vat_rate_bps: int) -> int:
    """VAT in cents, rounded half-up (2300 bps = 23%)."""
    return (subtotal_cents * vat_rate_bps + 5000) // 10000


def calculate_totals(lines) -> dict:
    """
    Works on InvoiceLine rows or plain dicts with quantity, unit_price_cents
    and vat_rate_bps.
    """
    out_lines = []
    subtotal = 0
    vat_total = 0
    for line in lines:
        if isinstance(line, dict):
            quantity = line["quantity"]
            unit_price = line["unit_price_cents"]
            bps = line.get("vat_rate_bps", 0) or 0
        else:
            quantity = line.quantity
            unit_price = line.unit_price_cents
            bps = line.vat_rate_bps or 0

        line_subtotal = quantity * unit_price
        line_vat = vat_for(line_subtotal, bps)
        out_lines.append(
            {
                "line_subtotal_cents": line_subtotal,
                "line_vat_cents": line_vat,
                "line_total_cents": line_subtotal + line_vat,
            }
        )
        subtotal += line_subtotal
        vat_total += line_vat

    return {
        "lines": out_lines,
        "subtotal_cents": subtotal,
        "vat_total_cents": vat_total,
        "total_cents": subtotal + vat_total,
    }


def normalize_lines(lines, *, company_id: str) -> list[dict]:
    """
    Validate document lines. Product and service lines default their
    description, unit price and VAT rate from the catalog.
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one line is required")

    cleaned = []
    for i, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{i}] must be an object")
        product_id = raw.get("product_id")
        service_id = raw.get("service_id")
        if product_id and service_id:
            raise ValidationError(f"lines[{i}] cannot reference both a product and a service")

        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"lines[{i}].quantity must be a positive integer")

        description = raw.get("description")
        unit_price = raw.get("unit_price_cents")
        bps = raw.get("vat_rate_bps")

        if product_id:
            product = db.session.query(Product).filter_by(id=product_id).first()
            if product is None or product.company_id != company_id:
                raise NotFoundError("Product not found", details={"product_id": product_id})
            if not product.is_active:
                raise ValidationError("Product is inactive", details={"product_id": product_id})
            description = description or product.name
            unit_price = product.unit_price_cents if unit_price is None else unit_price
            bps = product.vat_rate_bps if bps is None else bps
        elif service_id:
            service = db.session.query(Service).filter_by(id=service_id).first()
            if service is None or service.company_id != company_id:
                raise NotFoundError("Service not found", details={"service_id": service_id})
            description = description or service.name
            unit_price = service.price_cents if unit_price is None else unit_price
            bps = service.vat_rate_bps if bps is None else bps

        if not description:
            raise ValidationError(f"lines[{i}].description is required")
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
            raise ValidationError(f"lines[{i}].unit_price_cents must be an integer >= 0")
        bps = 0 if bps is None else bps
        if isinstance(bps, bool) or not isinstance(bps, int) or not 0 <= bps <= 10000:
            raise ValidationError(f"lines[{i}].vat_rate_bps must be between 0 and 10000")

        cleaned.append(
            {
                "product_id": product_id,
                "service_id": service_id,
                "description": description,
                "quantity": quantity,
                "unit_price_cents": unit_price,
                "vat_rate_bps": bps,
            }
        )
    return cleaned


def _resolve_store(store_id: str, company_id: str | None = None) -> Store:
    store = db.session.query(Store).filter_by(id=store_id).first()
    if store is None or (company_id and store.company_id != company_id):
        raise NotFoundError("Store not found", details={"store_id": store_id})
    return store


def _create_invoice_draft_inner(
    *,
    store: Store,
    lines: list[dict],
    performed_by: str,
    customer_id: str | None = None,
    transaction_id: str | None = None,
) -> Invoice:
    """Lines must already be normalized. Does not commit."""
    invoice = Invoice(
        company_id=store.company_id,
        store_id=store.id,
        customer_id=customer_id,
        transaction_id=transaction_id,
        status=InvoiceStatus.DRAFT,
        created_by=performed_by,
    )
    for position, line in enumerate(lines):
        invoice.lines.append(InvoiceLine(position=position, **line))
    db.session.add(invoice)
    db.session.flush()
    return invoice


def create_invoice_draft(
    *,
    company_id: str,
    store_id: str,
    lines: list[dict],
    performed_by: str,
    customer_id: str | None = None,
    transaction_id: str | None = None,
) -> Invoice:
    def _op():
        store = _resolve_store(store_id, company_id)
        if customer_id:
            customer = db.session.query(Customer).filter_by(id=customer_id).first()
            if customer is None or customer.company_id != company_id:
                raise NotFoundError("Customer not found", details={"customer_id": customer_id})
        cleaned = normalize_lines(lines, company_id=company_id)
        invoice = _create_invoice_draft_inner(
            store=store,
            lines=cleaned,
            performed_by=performed_by,
            customer_id=customer_id,
            transaction_id=transaction_id,
        )
        append_audit_event(
            event_type="invoice.drafted",
            entity_type="invoice",
            entity_id=invoice.id,
            performed_by=performed_by,
            store_id=store.id,
        )
        return invoice

    return run_in_transaction(_op)


def get_invoice(invoice_id: str) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def _lock_invoice(invoice_id: str) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def issue_invoice(invoice_id: str, *, performed_by: str) -> Invoice:
    """
    draft -> issued. Number and totals are computed here, once; they are
    never recomputed afterwards.
    """
    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise BusinessRuleViolationError(
                f"Cannot issue invoice with status: {invoice.status}",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        if not invoice.lines:
            raise BusinessRuleViolationError("Cannot issue an invoice without lines", details={"invoice_id": invoice.id})

        company = db.session.query(Company).filter_by(id=invoice.company_id).first()
        if company is None or not company.nif:
            raise BusinessRuleViolationError(
                "Company tax id (NIF) is required to issue invoices",
                details={"company_id": invoice.company_id},
            )
        store = _resolve_store(invoice.store_id)

        totals = calculate_totals(invoice.lines)
        for line, computed in zip(invoice.lines, totals["lines"]):
            line.line_subtotal_cents = computed["line_subtotal_cents"]
            line.line_vat_cents = computed["line_vat_cents"]
            line.line_total_cents = computed["line_total_cents"]

        invoice.subtotal_cents = totals["subtotal_cents"]
        invoice.vat_total_cents = totals["vat_total_cents"]
        invoice.total_cents = totals["total_cents"]
        invoice.invoice_number = next_document_number(
            store_id=store.id,
            document_type=INVOICE_DOCUMENT_TYPE,
            prefix=INVOICE_PREFIX,
            store_code=store.code,
        )
        invoice.status = InvoiceStatus.ISSUED
        invoice.issued_at = utcnow()
        invoice.issued_by = performed_by

        append_audit_event(
            event_type="invoice.issued",
            entity_type="invoice",
            entity_id=invoice.id,
            performed_by=performed_by,
            store_id=invoice.store_id,
            payload={"invoice_number": invoice.invoice_number, "total_cents": invoice.total_cents},
        )
        return invoice

    return run_in_transaction(_op)


def mark_invoice_paid(invoice_id: str, *, performed_by: str, payment_method: str, paid_at=None) -> Invoice:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            details={"payment_method": payment_method, "allowed": sorted(PAYMENT_METHODS)},
        )
    try:
        paid_dt = normalize_datetime(paid_at) or utcnow()
    except ValueError:
        raise ValidationError("paid_at must be an ISO-8601 datetime")
    if is_in_future(paid_dt):
        raise ValidationError("paid_at cannot be in the future")

    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status != InvoiceStatus.ISSUED:
            raise BusinessRuleViolationError(
                f"Cannot mark invoice as paid with status: {invoice.status}",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = paid_dt
        invoice.payment_method = payment_method

        append_audit_event(
            event_type="invoice.paid",
            entity_type="invoice",
            entity_id=invoice.id,
            performed_by=performed_by,
            store_id=invoice.store_id,
            payload={"payment_method": payment_method},
        )
        return invoice

    return run_in_transaction(_op)


def void_invoice(invoice_id: str, *, performed_by: str, reason: str) -> Invoice:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Void reason is required")

    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status not in (InvoiceStatus.ISSUED, InvoiceStatus.PAID):
            raise BusinessRuleViolationError(
                f"Cannot void invoice with status: {invoice.status}",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        invoice.status = InvoiceStatus.VOID
        invoice.voided_at = utcnow()
        invoice.voided_by = performed_by
        invoice.void_reason = reason

        append_audit_event(
            event_type="invoice.voided",
            entity_type="invoice",
            entity_id=invoice.id,
            performed_by=performed_by,
            store_id=invoice.store_id,
            note=reason,
        )
        return invoice

    return run_in_transaction(_op)


def credited_total(invoice_id: str) -> int:
    q = db.session.query(func.coalesce(func.sum(CreditNote.amount_cents), 0)).filter(
        CreditNote.invoice_id == invoice_id
    )
    return int(q.scalar() or 0)


def create_credit_note(invoice_id: str, *, amount_cents: int, reason: str, performed_by: str) -> CreditNote:
    """
    Credit part or all of an issued or paid invoice.

    The outstanding amount (total minus earlier credit notes) is read with the
    invoice row locked, so concurrent credit notes cannot over-credit it.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Credit note reason is required")
    if len(reason) > CREDIT_NOTE_REASON_MAX:
        raise ValidationError(f"Credit note reason cannot exceed {CREDIT_NOTE_REASON_MAX} characters")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Credit note amount must be greater than zero")

    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status not in (InvoiceStatus.ISSUED, InvoiceStatus.PAID):
            raise ValidationError(
                "Credit notes can only be created for issued or paid invoices",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        if amount_cents > invoice.total_cents:
            raise ValidationError(
                "Credit note amount cannot exceed the invoice total",
                details={"amount_cents": amount_cents, "total_cents": invoice.total_cents},
            )
        outstanding = invoice.total_cents - credited_total(invoice.id)
        if amount_cents > outstanding:
            raise ValidationError(
                "Credit note amount cannot exceed the outstanding amount",
                details={"amount_cents": amount_cents, "outstanding_cents": outstanding},
            )

        store = _resolve_store(invoice.store_id)
        credit_note = CreditNote(
            company_id=invoice.company_id,
            store_id=store.id,
            invoice_id=invoice.id,
            credit_note_number=next_document_number(
                store_id=store.id,
                document_type=CREDIT_NOTE_DOCUMENT_TYPE,
                prefix=CREDIT_NOTE_PREFIX,
                store_code=store.code,
            ),
            amount_cents=amount_cents,
            reason=reason,
            created_by=performed_by,
            issued_at=utcnow(),
        )
        db.session.add(credit_note)
        db.session.flush()

        append_audit_event(
            event_type="invoice.credit_note_created",
            entity_type="invoice",
            entity_id=invoice.id,
            performed_by=performed_by,
            store_id=invoice.store_id,
            note=reason[:255],
            payload={
                "credit_note_id": credit_note.id,
                "credit_note_number": credit_note.credit_note_number,
                "amount_cents": amount_cents,
                "outstanding_after_cents": outstanding - amount_cents,
            },
        )
        return credit_note

    return run_in_transaction(_op)


def list_credit_notes(invoice_id: str) -> list[CreditNote]:
    return (
        db.session.query(CreditNote)
        .filter(CreditNote.invoice_id == invoice_id)
        .order_by(CreditNote.created_at, CreditNote.credit_note_number)
        .all()
    )


def list_invoices(
    *,
    store_id: str | None = None,
    customer_id: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[Invoice]:
    q = db.session.query(Invoice)
    if store_id:
        q = q.filter(Invoice.store_id == store_id)
    if customer_id:
        q = q.filter(Invoice.customer_id == customer_id)
    if status:
        q = q.filter(Invoice.status == status)
    return q.order_by(Invoice.created_at.desc()).limit(limit).all()
