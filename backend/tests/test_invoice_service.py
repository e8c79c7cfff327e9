"""
Invoice tests.

Verifies:
- VAT rounding (half-up per line) and totals
- Gapless per-store numbering FT-<store>-NNNNNN
- draft -> issued -> paid | void transitions
- Credit notes never exceed the outstanding amount
"""

import pytest

from petshop.errors import BusinessRuleViolationError, NotFoundError, ValidationError
from petshop.models import Company, Store
from petshop.models.financial import InvoiceStatus
from petshop.services import document_service, invoice_service


@pytest.fixture
def draft(company, store, accountant):
    def _draft(lines=None, **kwargs):
        return invoice_service.create_invoice_draft(
            company_id=company.id,
            store_id=store.id,
            lines=lines or [{"description": "Grooming", "quantity": 1, "unit_price_cents": 2500, "vat_rate_bps": 2300}],
            performed_by=accountant.id,
            **kwargs,
        )

    return _draft


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:

    def test_vat_rounds_half_up(self):
        assert invoice_service.vat_for(1000, 2300) == 230
        # 0.5 cent rounds up
        assert invoice_service.vat_for(50, 1000) == 5
        assert invoice_service.vat_for(45, 1000) == 5
        assert invoice_service.vat_for(44, 1000) == 4
        assert invoice_service.vat_for(1000, 0) == 0

    def test_totals_are_summed_per_line(self):
        totals = invoice_service.calculate_totals([
            {"quantity": 3, "unit_price_cents": 333, "vat_rate_bps": 2300},
            {"quantity": 1, "unit_price_cents": 1999, "vat_rate_bps": 600},
        ])

        # 999 * 23% = 229.77 -> 230 ; 1999 * 6% = 119.94 -> 120
        assert [l["line_vat_cents"] for l in totals["lines"]] == [230, 120]
        assert totals["subtotal_cents"] == 999 + 1999
        assert totals["vat_total_cents"] == 350
        assert totals["total_cents"] == 999 + 1999 + 350

    def test_catalog_defaults_fill_product_lines(self, company, make_product):
        food = make_product(0, price=1499, vat=600, name="Dry Food 2kg")
        lines = invoice_service.normalize_lines([{"product_id": food.id, "quantity": 2}], company_id=company.id)

        assert lines[0]["description"] == "Dry Food 2kg"
        assert lines[0]["unit_price_cents"] == 1499
        assert lines[0]["vat_rate_bps"] == 600

    @pytest.mark.parametrize("line", [
        {"description": "x", "quantity": 0, "unit_price_cents": 100},
        {"description": "x", "quantity": 1, "unit_price_cents": -1},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "vat_rate_bps": 10001},
        {"quantity": 1, "unit_price_cents": 100},
    ])
    def test_invalid_lines_are_rejected(self, company, line):
        with pytest.raises(ValidationError):
            invoice_service.normalize_lines([line], company_id=company.id)


# =============================================================================
# NUMBERING
# =============================================================================


class TestNumbering:

    def test_numbers_are_sequential_per_store(self, draft, accountant):
        first = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        second = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)

        assert first.invoice_number == "FT-LIS01-000001"
        assert second.invoice_number == "FT-LIS01-000002"

    def test_each_store_has_its_own_sequence(self, db_session, company, store):
        porto = Store(company_id=company.id, name="Porto", code="POR01")
        db_session.add(porto)
        db_session.commit()

        assert document_service.next_document_number(
            store_id=store.id, document_type="invoice", prefix="FT", store_code="LIS01"
        ) == "FT-LIS01-000001"
        assert document_service.next_document_number(
            store_id=porto.id, document_type="invoice", prefix="FT", store_code="POR01"
        ) == "FT-POR01-000001"
        db_session.commit()

    def test_failed_issue_does_not_consume_a_number(self, draft, accountant, db_session, company):
        company_row = db_session.get(Company, company.id)
        company_row.nif = None
        db_session.commit()

        invoice = draft()
        with pytest.raises(BusinessRuleViolationError):
            invoice_service.issue_invoice(invoice.id, performed_by=accountant.id)

        company_row.nif = "509999990"
        db_session.commit()
        issued = invoice_service.issue_invoice(invoice.id, performed_by=accountant.id)
        assert issued.invoice_number == "FT-LIS01-000001"


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestInvoiceLifecycle:

    def test_issue_freezes_totals(self, draft, accountant):
        invoice = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)

        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.issued_by == accountant.id
        assert invoice.subtotal_cents == 2500
        assert invoice.vat_total_cents == 575
        assert invoice.total_cents == 3075
        assert invoice.lines[0].line_total_cents == 3075

    def test_draft_has_no_number(self, draft):
        invoice = draft()
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.invoice_number is None
        assert invoice.total_cents is None

    def test_issue_twice_is_rejected(self, draft, accountant):
        invoice = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        with pytest.raises(BusinessRuleViolationError):
            invoice_service.issue_invoice(invoice.id, performed_by=accountant.id)

    def test_mark_paid(self, draft, accountant):
        invoice = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        paid = invoice_service.mark_invoice_paid(invoice.id, performed_by=accountant.id, payment_method="transfer")

        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_method == "transfer"
        assert paid.paid_at is not None

    def test_draft_cannot_be_paid(self, draft, accountant):
        with pytest.raises(BusinessRuleViolationError):
            invoice_service.mark_invoice_paid(draft().id, performed_by=accountant.id, payment_method="cash")

    def test_paid_invoice_can_be_voided(self, draft, accountant):
        invoice = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        invoice_service.mark_invoice_paid(invoice.id, performed_by=accountant.id, payment_method="card")

        voided = invoice_service.void_invoice(invoice.id, performed_by=accountant.id, reason="refunded")
        assert voided.status == InvoiceStatus.VOID
        assert voided.void_reason == "refunded"
        # Number and totals survive the void
        assert voided.invoice_number == "FT-LIS01-000001"
        assert voided.total_cents == 3075

    def test_draft_cannot_be_voided(self, draft, accountant):
        with pytest.raises(BusinessRuleViolationError):
            invoice_service.void_invoice(draft().id, performed_by=accountant.id, reason="oops")

    def test_void_requires_reason(self, draft, accountant):
        invoice = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        with pytest.raises(ValidationError):
            invoice_service.void_invoice(invoice.id, performed_by=accountant.id, reason=" ")

    def test_draft_for_store_of_other_company_is_not_found(self, company, other_store, accountant):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice_draft(
                company_id=company.id,
                store_id=other_store.id,
                lines=[{"description": "x", "quantity": 1, "unit_price_cents": 100}],
                performed_by=accountant.id,
            )


# =============================================================================
# CREDIT NOTES
# =============================================================================


class TestCreditNotes:
    """The default draft issues at 3075 cents."""

    @pytest.fixture
    def issued(self, draft, accountant):
        return invoice_service.issue_invoice(draft().id, performed_by=accountant.id)

    def test_credit_note_is_numbered_and_issued(self, issued, accountant):
        credit_note = invoice_service.create_credit_note(
            issued.id, amount_cents=1000, reason="Service shortened", performed_by=accountant.id
        )

        assert credit_note.credit_note_number == "NC-LIS01-000001"
        assert credit_note.amount_cents == 1000
        assert credit_note.issued_at is not None
        assert credit_note.invoice_id == issued.id
        assert invoice_service.credited_total(issued.id) == 1000
        assert invoice_service.get_invoice(issued.id).to_dict()["credited_cents"] == 1000

    def test_credit_notes_cannot_exceed_outstanding(self, issued, accountant):
        invoice_service.create_credit_note(issued.id, amount_cents=2000, reason="partial refund",
                                           performed_by=accountant.id)

        with pytest.raises(ValidationError) as exc_info:
            invoice_service.create_credit_note(issued.id, amount_cents=1076, reason="rest",
                                               performed_by=accountant.id)
        assert exc_info.value.details["outstanding_cents"] == 1075

        last = invoice_service.create_credit_note(issued.id, amount_cents=1075, reason="rest",
                                                  performed_by=accountant.id)
        assert last.credit_note_number == "NC-LIS01-000002"
        assert [cn.amount_cents for cn in invoice_service.list_credit_notes(issued.id)] == [2000, 1075]

    def test_amount_cannot_exceed_invoice_total(self, issued, accountant):
        with pytest.raises(ValidationError):
            invoice_service.create_credit_note(issued.id, amount_cents=3076, reason="too much",
                                               performed_by=accountant.id)
        assert invoice_service.list_credit_notes(issued.id) == []

    def test_paid_invoice_can_be_credited(self, issued, accountant):
        invoice_service.mark_invoice_paid(issued.id, performed_by=accountant.id, payment_method="card")
        credit_note = invoice_service.create_credit_note(
            issued.id, amount_cents=3075, reason="full refund", performed_by=accountant.id
        )
        assert credit_note.amount_cents == 3075

    def test_draft_and_void_invoices_cannot_be_credited(self, draft, issued, accountant):
        with pytest.raises(ValidationError):
            invoice_service.create_credit_note(draft().id, amount_cents=100, reason="x", performed_by=accountant.id)

        invoice_service.void_invoice(issued.id, performed_by=accountant.id, reason="wrong customer")
        with pytest.raises(ValidationError):
            invoice_service.create_credit_note(issued.id, amount_cents=100, reason="x", performed_by=accountant.id)

    @pytest.mark.parametrize("amount,reason", [
        (0, "zero"),
        (-5, "negative"),
        ("100", "string amount"),
        (100, ""),
        (100, "x" * 501),
    ])
    def test_invalid_input_is_rejected(self, issued, accountant, amount, reason):
        with pytest.raises(ValidationError):
            invoice_service.create_credit_note(issued.id, amount_cents=amount, reason=reason,
                                               performed_by=accountant.id)

    def test_credit_note_numbering_is_separate_from_invoices(self, draft, issued, accountant):
        invoice_service.create_credit_note(issued.id, amount_cents=100, reason="goodwill",
                                           performed_by=accountant.id)
        second = invoice_service.issue_invoice(draft().id, performed_by=accountant.id)
        assert second.invoice_number == "FT-LIS01-000002"
