from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import new_id


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    VOIDED = "voided"


class InvoiceStatus:
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    VOID = "void"


PAYMENT_METHODS = frozenset({"cash", "card", "mbway", "transfer", "other"})


class Transaction(db.Model):
    """
    Point-of-sale transaction.

    Sales are instantaneous: stock is decremented directly at completion, no
    reservation phase. total_amount_cents = sum(quantity * unit_price_cents).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_store_status_created", "store_id", "payment_status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=True, index=True)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    external_reference = db.Column(db.String(128), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)

    # Void audit trail
    voided_by = db.Column(db.String(64), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionLine.position",
    )
    invoice = db.relationship("Invoice", foreign_keys=[invoice_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "lines": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "external_reference": self.external_reference,
            "completed_by": self.completed_by,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class TransactionLine(db.Model):
    __tablename__ = "transaction_lines"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=True)
    service_id = db.Column(db.String(36), db.ForeignKey("services.id"), nullable=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "service_id": self.service_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "vat_rate_bps": self.vat_rate_bps,
            "line_total_cents": self.line_total_cents,
        }


class Invoice(db.Model):
    """
    Invoice document.

    draft -> issued -> paid | void

    invoice_number and the totals are computed once by issue_invoice and never
    recomputed; afterwards only payment and void metadata may change.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_invoices_company_number"),
        db.Index("ix_invoices_store_status", "store_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=False)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=True, index=True)
    transaction_id = db.Column(db.String(36), nullable=True, index=True)

    invoice_number = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=InvoiceStatus.DRAFT, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=True)
    vat_total_cents = db.Column(db.Integer, nullable=True)
    total_cents = db.Column(db.Integer, nullable=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_by = db.Column(db.String(64), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.String(64), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceLine.position",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "vat_total_cents": self.vat_total_cents,
            "total_cents": self.total_cents,
            "credited_cents": sum(cn.amount_cents for cn in self.credit_notes),
            "issued_at": to_utc_z(self.issued_at) if self.issued_at else None,
            "issued_by": self.issued_by,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "payment_method": self.payment_method,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=True)
    service_id = db.Column(db.String(36), db.ForeignKey("services.id"), nullable=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    # Frozen at issue time
    line_subtotal_cents = db.Column(db.Integer, nullable=True)
    line_vat_cents = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "service_id": self.service_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "vat_rate_bps": self.vat_rate_bps,
            "line_subtotal_cents": self.line_subtotal_cents,
            "line_vat_cents": self.line_vat_cents,
            "line_total_cents": self.line_total_cents,
        }


class CreditNote(db.Model):
    """
    Credit against an issued or paid invoice. Issued on creation; the sum of
    an invoice's credit notes never exceeds its total.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("company_id", "credit_note_number", name="uq_credit_notes_company_number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=False)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=False, index=True)

    credit_note_number = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(500), nullable=False)

    created_by = db.Column(db.String(64), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    invoice = db.relationship("Invoice", backref=db.backref("credit_notes", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "invoice_id": self.invoice_id,
            "credit_note_number": self.credit_note_number,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "created_by": self.created_by,
            "issued_at": to_utc_z(self.issued_at),
            "created_at": to_utc_z(self.created_at),
        }
