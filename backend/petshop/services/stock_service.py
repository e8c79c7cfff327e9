# Overview: Service-layer operations for stock levels; the single read-modify-write path for Product.current_stock.

# backend/petshop/services/stock_service.py

from __future__ import annotations

from sqlalchemy import func

from ..errors import BusinessRuleViolationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryReservation, Product, StockMovement
from ..models.inventory import MovementReason, ReservationStatus
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
"""
Stock Invariants (authoritative)

Stock model:
- Product.current_stock is a maintained counter for stock-tracked products.
- Every change to it goes through _apply_stock_change() on a locked product row
  and appends exactly one StockMovement (signed quantity_change, reason,
  resulting_stock). The movement ledger is append-only.

Availability:
- available = current_stock - SUM(quantity of ACTIVE reservations).
- Reservations never touch current_stock; only consumption does.
- Expired-but-active reservations still count: expiry is advisory.

Business invariants:
- current_stock may never go negative after a committed operation.
- RECEIPT requires quantity > 0.
- ADJUSTMENT requires a non-zero change and a note.
- RECONCILIATION records the delta between the counted and recorded quantity.
"""


def _require_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value


def load_product(product_id: str, *, lock: bool = False, require_tracked: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if require_tracked and not product.stock_tracked:
        raise ValidationError(
            f"Product {product.name} ({product.sku}) is not stock-tracked",
            details={"product_id": product_id},
        )
    return product


def get_reserved_quantity(product_id: str) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryReservation.quantity), 0)
    ).filter(
        InventoryReservation.product_id == product_id,
        InventoryReservation.status == ReservationStatus.ACTIVE,
    )
    return int(q.scalar() or 0)


def get_available_stock(product_id: str) -> int:
    product = load_product(product_id)
    return product.current_stock - get_reserved_quantity(product_id)


def _apply_stock_change(
    product: Product,
    *,
    quantity_change: int,
    reason: str,
    performed_by: str,
    location_id: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Core stock mutation without locking or commit.

    Callers must hold the product row lock inside an open unit of work.
    """
    if reason not in MovementReason.ALL:
        raise ValidationError(f"unknown stock movement reason: {reason}")
    if not product.stock_tracked:
        raise ValidationError(f"Product {product.sku} is not stock-tracked")

    new_level = product.current_stock + quantity_change
    if new_level < 0:
        raise BusinessRuleViolationError(
            "Stock change would make current stock negative",
            details={
                "product_id": product.id,
                "current_stock": product.current_stock,
                "quantity_change": quantity_change,
            },
        )

    product.current_stock = new_level
    movement = StockMovement(
        product_id=product.id,
        quantity_change=quantity_change,
        reason=reason,
        location_id=location_id,
        performed_by=performed_by,
        reference_id=reference_id,
        note=note,
        resulting_stock=new_level,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def receive_stock(
    *,
    product_id: str,
    quantity: int,
    performed_by: str,
    location_id: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Goods in (supplier delivery, purchase order receipt)."""
    _require_positive_int(quantity, "quantity")

    def _op():
        product = load_product(product_id, lock=True, require_tracked=True)
        movement = _apply_stock_change(
            product,
            quantity_change=quantity,
            reason=MovementReason.RECEIPT,
            performed_by=performed_by,
            location_id=location_id,
            reference_id=reference_id,
            note=note,
        )
        append_audit_event(
            event_type="stock.received",
            entity_type="product",
            entity_id=product.id,
            performed_by=performed_by,
            store_id=location_id,
            payload={"quantity": quantity, "movement_id": movement.id},
        )
        return movement

    return run_in_transaction(_op)


def adjust_stock(
    *,
    product_id: str,
    quantity_change: int,
    performed_by: str,
    note: str,
    location_id: str | None = None,
) -> StockMovement:
    """Manual correction (damage, shrink, found stock). A note is mandatory."""
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change must be non-zero for adjustments")
    if not note or not note.strip():
        raise ValidationError("note is required for adjustments")

    def _op():
        product = load_product(product_id, lock=True, require_tracked=True)
        movement = _apply_stock_change(
            product,
            quantity_change=quantity_change,
            reason=MovementReason.ADJUSTMENT,
            performed_by=performed_by,
            location_id=location_id,
            note=note.strip(),
        )
        append_audit_event(
            event_type="stock.adjusted",
            entity_type="product",
            entity_id=product.id,
            performed_by=performed_by,
            store_id=location_id,
            note=note.strip(),
            payload={"quantity_change": quantity_change, "movement_id": movement.id},
        )
        return movement

    return run_in_transaction(_op)


def reconcile_stock(
    *,
    product_id: str,
    counted_quantity: int,
    performed_by: str,
    location_id: str | None = None,
    note: str | None = None,
    force: bool = False,
) -> StockMovement | None:
    """
    Align current_stock with a physical count.

    Returns None when the count matches (no movement is written). A count
    below the quantity held by active reservations is refused unless force=True.
    """
    if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int):
        raise ValidationError("counted_quantity must be an integer")
    if counted_quantity < 0:
        raise ValidationError("counted_quantity must be >= 0")

    def _op():
        product = load_product(product_id, lock=True, require_tracked=True)
        delta = counted_quantity - product.current_stock
        if delta == 0:
            return None

        reserved = get_reserved_quantity(product.id)
        if counted_quantity < reserved and not force:
            raise BusinessRuleViolationError(
                "Counted quantity is below the quantity held by active reservations",
                details={
                    "product_id": product.id,
                    "counted_quantity": counted_quantity,
                    "reserved": reserved,
                },
            )

        movement = _apply_stock_change(
            product,
            quantity_change=delta,
            reason=MovementReason.RECONCILIATION,
            performed_by=performed_by,
            location_id=location_id,
            note=note,
        )
        append_audit_event(
            event_type="stock.reconciled",
            entity_type="product",
            entity_id=product.id,
            performed_by=performed_by,
            store_id=location_id,
            payload={"counted_quantity": counted_quantity, "delta": delta},
        )
        return movement

    return run_in_transaction(_op)


def get_stock_summary(product_id: str) -> dict:
    product = load_product(product_id)
    reserved = get_reserved_quantity(product_id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock_tracked": product.stock_tracked,
        "current_stock": product.current_stock,
        "reserved": reserved,
        "available": product.current_stock - reserved,
        "reorder_threshold": product.reorder_threshold,
        "needs_reorder": product.needs_reorder,
    }


def list_stock_movements(
    *,
    product_id: str | None = None,
    reference_id: str | None = None,
    reason: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    if reference_id:
        q = q.filter(StockMovement.reference_id == reference_id)
    if reason:
        q = q.filter(StockMovement.reason == reason)
    return q.order_by(StockMovement.occurred_at.desc()).limit(limit).all()


def list_low_stock_products(company_id: str) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.company_id == company_id,
            Product.is_active.is_(True),
            Product.stock_tracked.is_(True),
            Product.current_stock <= Product.reorder_threshold,
        )
        .order_by(Product.sku)
        .all()
    )
