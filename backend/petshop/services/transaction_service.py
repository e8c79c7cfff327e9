# Overview: Point-of-sale transactions; settlement decrements stock directly at completion.

from __future__ import annotations

from ..errors import BusinessRuleViolationError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Store, Transaction, TransactionLine
from ..models.financial import PAYMENT_METHODS, PaymentStatus
from ..models.inventory import MovementReason, OwnerRef
from ..time_utils import is_in_future, normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .invoice_service import _create_invoice_draft_inner, normalize_lines
from .reservation_service import _release_reservation_inner, lock_active_reservations_for
from .stock_service import _apply_stock_change, load_product
"""
Transaction Settlement

    pending -> completed -> voided
    pending -> voided

Sales are instantaneous: there is no reservation phase. Completion checks every
stock-tracked line against current_stock before the first write, so an
insufficient line fails the whole completion with no partial decrement.

Reservations a caller explicitly placed with a transaction owner are released
at completion (the sale decrement replaces them) and at void.

Voiding a completed sale writes compensating ADJUSTMENT movements that put the
sold quantity back, in the same unit of work as the status change.
"""


def get_transaction(transaction_id: str) -> Transaction:
    transaction = db.session.query(Transaction).filter_by(id=transaction_id).first()
    if transaction is None:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    return transaction


def _lock_transaction(transaction_id: str) -> Transaction:
    transaction = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
    if transaction is None:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    return transaction


def create_transaction(
    *,
    store_id: str,
    lines: list[dict],
    performed_by: str,
    customer_id: str | None = None,
    create_invoice: bool = False,
) -> Transaction:
    """Record a pending sale. Stock is untouched until completion."""
    def _op():
        store = db.session.query(Store).filter_by(id=store_id).first()
        if store is None or not store.is_active:
            raise NotFoundError("Store not found", details={"store_id": store_id})
        if customer_id:
            customer = db.session.query(Customer).filter_by(id=customer_id).first()
            if customer is None or customer.company_id != store.company_id:
                raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        cleaned = normalize_lines(lines, company_id=store.company_id)

        transaction = Transaction(
            store_id=store.id,
            customer_id=customer_id,
            payment_status=PaymentStatus.PENDING,
            created_by=performed_by,
        )
        for position, line in enumerate(cleaned):
            transaction.lines.append(TransactionLine(position=position, **line))
        transaction.total_amount_cents = sum(l["quantity"] * l["unit_price_cents"] for l in cleaned)
        db.session.add(transaction)
        db.session.flush()

        if create_invoice:
            invoice = _create_invoice_draft_inner(
                store=store,
                lines=cleaned,
                performed_by=performed_by,
                customer_id=customer_id,
                transaction_id=transaction.id,
            )
            transaction.invoice_id = invoice.id

        append_audit_event(
            event_type="transaction.created",
            entity_type="transaction",
            entity_id=transaction.id,
            performed_by=performed_by,
            store_id=store.id,
            payload={"total_amount_cents": transaction.total_amount_cents, "invoice_id": transaction.invoice_id},
        )
        return transaction

    return run_in_transaction(_op)


def _quantities_by_product(transaction: Transaction) -> dict[str, int]:
    totals: dict[str, int] = {}
    for line in transaction.lines:
        if line.product_id:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def complete_transaction(
    transaction_id: str,
    *,
    performed_by: str,
    payment_method: str,
    paid_at=None,
    external_reference: str | None = None,
) -> Transaction:
    """
    pending -> completed, decrementing stock for every stock-tracked line.

    All-or-nothing: either every line is decremented and the payment recorded,
    or nothing changes.
    """
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
        transaction = _lock_transaction(transaction_id)
        if transaction.payment_status != PaymentStatus.PENDING:
            raise BusinessRuleViolationError(
                f"Cannot complete transaction with status: {transaction.payment_status}",
                details={"transaction_id": transaction.id, "status": transaction.payment_status},
            )

        # Products first (sorted), reservations after, same order as the reservation engine
        requested = _quantities_by_product(transaction)
        products = {}
        for product_id in sorted(requested):
            product = load_product(product_id, lock=True)
            if product.stock_tracked:
                products[product_id] = product

        owned = lock_active_reservations_for(OwnerRef.transaction(transaction.id))

        for product_id, product in products.items():
            if product.current_stock < requested[product_id]:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name} ({product.sku}). "
                    f"Available: {product.current_stock}, Required: {requested[product_id]}",
                    product_id=product.id,
                    requested=requested[product_id],
                    available=product.current_stock,
                )

        for reservation in owned:
            _release_reservation_inner(reservation, performed_by=performed_by, note="transaction completed")

        movements = []
        for product_id, product in products.items():
            movement = _apply_stock_change(
                product,
                quantity_change=-requested[product_id],
                reason=MovementReason.SALE,
                performed_by=performed_by,
                location_id=transaction.store_id,
                reference_id=transaction.id,
            )
            movements.append(movement.id)

        transaction.payment_status = PaymentStatus.COMPLETED
        transaction.payment_method = payment_method
        transaction.paid_at = paid_dt
        transaction.external_reference = external_reference
        transaction.completed_by = performed_by

        append_audit_event(
            event_type="transaction.completed",
            entity_type="transaction",
            entity_id=transaction.id,
            performed_by=performed_by,
            store_id=transaction.store_id,
            payload={
                "payment_method": payment_method,
                "total_amount_cents": transaction.total_amount_cents,
                "movement_ids": movements,
            },
        )
        return transaction

    return run_in_transaction(_op)


def void_transaction(transaction_id: str, *, performed_by: str, reason: str) -> Transaction:
    """
    pending | completed -> voided.

    A completed sale gets its stock back through compensating ADJUSTMENT
    movements referencing the transaction.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Void reason is required")

    def _op():
        transaction = _lock_transaction(transaction_id)
        if transaction.payment_status == PaymentStatus.VOIDED:
            raise BusinessRuleViolationError(
                "Transaction is already voided",
                details={"transaction_id": transaction.id},
            )
        was_completed = transaction.payment_status == PaymentStatus.COMPLETED

        returned = {}
        if was_completed:
            requested = _quantities_by_product(transaction)
            for product_id in sorted(requested):
                product = load_product(product_id, lock=True)
                if not product.stock_tracked:
                    continue
                _apply_stock_change(
                    product,
                    quantity_change=requested[product_id],
                    reason=MovementReason.ADJUSTMENT,
                    performed_by=performed_by,
                    location_id=transaction.store_id,
                    reference_id=transaction.id,
                    note=f"Void of transaction {transaction.id}: {reason}",
                )
                returned[product_id] = requested[product_id]

        owned = lock_active_reservations_for(OwnerRef.transaction(transaction.id))
        for reservation in owned:
            _release_reservation_inner(reservation, performed_by=performed_by, note="transaction voided")

        transaction.payment_status = PaymentStatus.VOIDED
        transaction.voided_by = performed_by
        transaction.voided_at = utcnow()
        transaction.void_reason = reason

        append_audit_event(
            event_type="transaction.voided",
            entity_type="transaction",
            entity_id=transaction.id,
            performed_by=performed_by,
            store_id=transaction.store_id,
            note=reason,
            payload={"was_completed": was_completed, "returned": returned},
        )
        return transaction

    return run_in_transaction(_op)


def list_transactions(
    *,
    store_id: str | None = None,
    customer_id: str | None = None,
    payment_status: str | None = None,
    limit: int = 200,
) -> list[Transaction]:
    q = db.session.query(Transaction)
    if store_id:
        q = q.filter(Transaction.store_id == store_id)
    if customer_id:
        q = q.filter(Transaction.customer_id == customer_id)
    if payment_status:
        q = q.filter(Transaction.payment_status == payment_status)
    return q.order_by(Transaction.created_at.desc()).limit(limit).all()
