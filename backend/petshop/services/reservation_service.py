# Overview: Inventory reservation engine; holds, releases and consumes product quantity for appointments and transactions.

from __future__ import annotations

from datetime import datetime

from ..errors import (
    BusinessRuleViolationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Appointment, InventoryReservation, Product, Store, Transaction
from ..models.appointments import AppointmentStatus
from ..models.financial import PaymentStatus
from ..models.inventory import MovementReason, OwnerRef, OwnerType, ReservationStatus
from ..time_utils import normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .stock_service import _apply_stock_change, get_reserved_quantity, load_product
"""
Reservation lifecycle:

    active -> released   (hold dropped, no stock change)
    active -> consumed   (current_stock decremented, consumption movement written)

Both terminal states are final. Lock order is always product row first, then
reservation rows, so creation, consumption and sale completion cannot deadlock
against each other.

The *_inner helpers neither lock the product nor commit; the appointment and
transaction services use them to put several reservation changes into one unit
of work.
"""


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a positive integer")
    if quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def _validate_expiry(expires_at) -> datetime | None:
    try:
        dt = normalize_datetime(expires_at)
    except ValueError:
        raise ValidationError("expires_at must be an ISO-8601 datetime")
    if dt is not None and dt <= utcnow():
        raise ValidationError("Expiry must be in the future")
    return dt


def _load_owner(owner: OwnerRef, *, company_id: str):
    """
    Lock the owning entity; it must exist, belong to `company_id` and not be
    in a terminal state. Callers lock the product first.
    """
    if owner.kind == OwnerType.APPOINTMENT:
        entity = lock_for_update(db.session.query(Appointment).filter_by(id=owner.id)).first()
        label, key = "appointment", "appointment_id"
    else:
        entity = lock_for_update(db.session.query(Transaction).filter_by(id=owner.id)).first()
        label, key = "transaction", "transaction_id"

    # Another company's owner answers the same as a missing one
    owner_company = (
        db.session.query(Store.company_id).filter_by(id=entity.store_id).scalar()
        if entity is not None else None
    )
    if entity is None or owner_company != company_id:
        raise NotFoundError(f"Target {label} not found", details={key: owner.id})

    if owner.kind == OwnerType.APPOINTMENT:
        if entity.status in AppointmentStatus.TERMINAL:
            raise BusinessRuleViolationError(
                f"Cannot reserve stock for an appointment with status {entity.status}",
                details={"appointment_id": owner.id, "status": entity.status},
            )
    elif entity.payment_status != PaymentStatus.PENDING:
        raise BusinessRuleViolationError(
            f"Cannot reserve stock for a transaction with status {entity.payment_status}",
            details={"transaction_id": owner.id, "status": entity.payment_status},
        )
    return entity


def owner_store_id(owner: OwnerRef) -> str | None:
    if owner.kind == OwnerType.APPOINTMENT:
        return db.session.query(Appointment.store_id).filter_by(id=owner.id).scalar()
    return db.session.query(Transaction.store_id).filter_by(id=owner.id).scalar()


def _create_reservation_inner(
    *,
    product: Product,
    quantity: int,
    owner: OwnerRef,
    performed_by: str,
    expires_at: datetime | None = None,
    store_id: str | None = None,
) -> InventoryReservation:
    """
    Availability check + insert. The product row must already be locked.

    Manager override of an insufficient-stock failure is a future extension
    point; today the check is unconditional.
    """
    if not product.stock_tracked:
        raise ValidationError(
            f"Product {product.name} ({product.sku}) is not stock-tracked. "
            "Reservations can only be created for stock-tracked products.",
            details={"product_id": product.id},
        )
    if not product.is_active:
        raise ValidationError("Product is inactive", details={"product_id": product.id})

    available = product.current_stock - get_reserved_quantity(product.id)
    if available < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name} ({product.sku}). "
            f"Available: {available}, Required: {quantity}",
            product_id=product.id,
            requested=quantity,
            available=available,
        )

    reservation = InventoryReservation(
        product_id=product.id,
        quantity=quantity,
        reserved_for_type=owner.kind,
        reserved_for_id=owner.id,
        status=ReservationStatus.ACTIVE,
        expires_at=expires_at,
        created_by=performed_by,
    )
    db.session.add(reservation)
    db.session.flush()

    append_audit_event(
        event_type="reservation.created",
        entity_type="inventory_reservation",
        entity_id=reservation.id,
        performed_by=performed_by,
        store_id=store_id,
        payload={
            "product_id": product.id,
            "quantity": quantity,
            "reserved_for": owner.to_dict(),
            "available_before": available,
        },
    )
    return reservation


def create_reservation(
    *,
    product_id: str,
    quantity: int,
    owner: OwnerRef,
    performed_by: str,
    expires_at=None,
) -> InventoryReservation:
    """
    Hold `quantity` of a product for an appointment or transaction.

    The availability check and the insert run in one unit of work with the
    product row locked, so two concurrent reservations cannot both pass the
    check against the same stale availability.
    """
    _require_quantity(quantity)
    expires_dt = _validate_expiry(expires_at)

    def _op():
        product = load_product(product_id, lock=True)
        owner_entity = _load_owner(owner, company_id=product.company_id)
        return _create_reservation_inner(
            product=product,
            quantity=quantity,
            owner=owner,
            performed_by=performed_by,
            expires_at=expires_dt,
            store_id=owner_entity.store_id,
        )

    return run_in_transaction(_op)


def _lock_active_reservation(reservation_id: str) -> InventoryReservation:
    reservation = lock_for_update(
        db.session.query(InventoryReservation).filter_by(id=reservation_id)
    ).first()
    if reservation is None or reservation.status != ReservationStatus.ACTIVE:
        raise NotFoundError(
            "Active reservation not found",
            details={
                "reservation_id": reservation_id,
                "status": reservation.status if reservation else None,
            },
        )
    return reservation


def _release_reservation_inner(
    reservation: InventoryReservation,
    *,
    performed_by: str,
    note: str | None = None,
) -> InventoryReservation:
    reservation.status = ReservationStatus.RELEASED
    reservation.closed_by = performed_by
    reservation.closed_at = utcnow()
    db.session.flush()

    append_audit_event(
        event_type="reservation.released",
        entity_type="inventory_reservation",
        entity_id=reservation.id,
        performed_by=performed_by,
        note=note,
        payload={
            "product_id": reservation.product_id,
            "quantity": reservation.quantity,
            "reserved_for": reservation.owner.to_dict(),
        },
    )
    return reservation


def release_reservation(reservation_id: str, *, performed_by: str, note: str | None = None) -> InventoryReservation:
    """
    Drop an active hold. current_stock is not touched.

    Releasing an absent, released or consumed reservation raises NotFoundError
    and changes nothing, so a repeated release can never credit availability
    twice.
    """
    def _op():
        reservation = _lock_active_reservation(reservation_id)
        return _release_reservation_inner(reservation, performed_by=performed_by, note=note)

    return run_in_transaction(_op)


def _consume_reservation_inner(
    reservation: InventoryReservation,
    product: Product,
    *,
    performed_by: str,
    location_id: str | None = None,
) -> InventoryReservation:
    """Both rows must already be locked."""
    if product.current_stock - reservation.quantity < 0:
        # Possible after a forced reconciliation below the reserved quantity
        raise BusinessRuleViolationError(
            "Consuming this reservation would make current stock negative",
            details={
                "reservation_id": reservation.id,
                "product_id": product.id,
                "current_stock": product.current_stock,
                "quantity": reservation.quantity,
            },
        )

    movement = _apply_stock_change(
        product,
        quantity_change=-reservation.quantity,
        reason=MovementReason.CONSUMPTION,
        performed_by=performed_by,
        location_id=location_id,
        reference_id=reservation.reserved_for_id,
        note=f"Consumed reservation {reservation.id}",
    )

    reservation.status = ReservationStatus.CONSUMED
    reservation.closed_by = performed_by
    reservation.closed_at = utcnow()
    db.session.flush()

    append_audit_event(
        event_type="reservation.consumed",
        entity_type="inventory_reservation",
        entity_id=reservation.id,
        performed_by=performed_by,
        store_id=location_id,
        payload={
            "product_id": product.id,
            "quantity": reservation.quantity,
            "movement_id": movement.id,
            "reserved_for": reservation.owner.to_dict(),
        },
    )
    return reservation


def consume_reservation(reservation_id: str, *, performed_by: str) -> InventoryReservation:
    """
    Convert an active hold into a permanent decrement.

    Stock decrement, consumption movement and status change commit together
    or not at all.
    """
    def _op():
        peek = db.session.query(InventoryReservation).filter_by(id=reservation_id).first()
        if peek is None:
            raise NotFoundError("Active reservation not found", details={"reservation_id": reservation_id})

        product = load_product(peek.product_id, lock=True)
        reservation = _lock_active_reservation(reservation_id)
        return _consume_reservation_inner(
            reservation,
            product,
            performed_by=performed_by,
            location_id=owner_store_id(reservation.owner),
        )

    return run_in_transaction(_op)


def get_reservation(reservation_id: str) -> InventoryReservation:
    reservation = db.session.query(InventoryReservation).filter_by(id=reservation_id).first()
    if reservation is None:
        raise NotFoundError("Reservation not found", details={"reservation_id": reservation_id})
    return reservation


def list_reservations(
    *,
    product_id: str | None = None,
    owner: OwnerRef | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[InventoryReservation]:
    q = db.session.query(InventoryReservation)
    if product_id:
        q = q.filter(InventoryReservation.product_id == product_id)
    if owner is not None:
        q = q.filter(
            InventoryReservation.reserved_for_type == owner.kind,
            InventoryReservation.reserved_for_id == owner.id,
        )
    if status:
        q = q.filter(InventoryReservation.status == status)
    return q.order_by(InventoryReservation.created_at.asc()).limit(limit).all()


def active_reservations_for(owner: OwnerRef, *, product_id: str | None = None) -> list[InventoryReservation]:
    q = db.session.query(InventoryReservation).filter(
        InventoryReservation.reserved_for_type == owner.kind,
        InventoryReservation.reserved_for_id == owner.id,
        InventoryReservation.status == ReservationStatus.ACTIVE,
    )
    if product_id:
        q = q.filter(InventoryReservation.product_id == product_id)
    return q.order_by(InventoryReservation.product_id, InventoryReservation.created_at).all()


def lock_active_reservations_for(owner: OwnerRef, *, product_id: str | None = None) -> list[InventoryReservation]:
    """Locking variant for use inside a unit of work; lock the products first."""
    q = db.session.query(InventoryReservation).filter(
        InventoryReservation.reserved_for_type == owner.kind,
        InventoryReservation.reserved_for_id == owner.id,
        InventoryReservation.status == ReservationStatus.ACTIVE,
    )
    if product_id:
        q = q.filter(InventoryReservation.product_id == product_id)
    q = q.order_by(InventoryReservation.product_id, InventoryReservation.created_at)
    return lock_for_update(q).all()


def release_expired_reservations(
    *,
    performed_by: str,
    now: datetime | None = None,
    dry_run: bool = False,
) -> list[InventoryReservation]:
    """
    Manual sweep: release active reservations whose expires_at has passed.

    Nothing calls this on a schedule; operators run it from the CLI. Each
    release is its own unit of work so one failure does not block the rest.
    """
    now = now or utcnow()
    expired = (
        db.session.query(InventoryReservation)
        .filter(
            InventoryReservation.status == ReservationStatus.ACTIVE,
            InventoryReservation.expires_at.isnot(None),
            InventoryReservation.expires_at <= now,
        )
        .order_by(InventoryReservation.expires_at)
        .all()
    )
    if dry_run:
        return expired

    released = []
    for reservation_id in [r.id for r in expired]:
        try:
            released.append(
                release_reservation(reservation_id, performed_by=performed_by, note="expired")
            )
        except NotFoundError:
            # Closed by someone else since the scan
            continue
    return released
