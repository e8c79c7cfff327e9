# Overview: Appointment lifecycle; coordinates scheduling with inventory reservation and consumption.

"""
Appointment Lifecycle

    booked -> confirmed -> completed
    booked | confirmed -> cancelled

Create is a single unit of work: the appointment row and every reservation for
its consumed items commit together, so a failed reservation leaves neither the
appointment nor any earlier reservation behind.

Complete and cancel are sagas: every reservation step (or, with a
consumed_items override, every product) is its own unit of work. The list of
steps is recomputed from the reservations that are still active, so calling
the transition again after a partial failure resumes with the remainder only.
The appointment status only advances once no active reservation is left.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import exists

from ..errors import (
    BusinessRuleViolationError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Appointment,
    AppointmentServiceLine,
    Customer,
    Pet,
    Product,
    Service,
    StockMovement,
    Store,
    User,
)
from ..models.appointments import AppointmentStatus
from ..models.auth import ROLE_MANAGER, ROLE_OWNER, ROLE_STAFF
from ..models.inventory import MovementReason, OwnerRef
from ..time_utils import normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .reservation_service import (
    _consume_reservation_inner,
    _create_reservation_inner,
    _release_reservation_inner,
    active_reservations_for,
    consume_reservation,
    lock_active_reservations_for,
    release_reservation,
)
from .schedule_service import check_booking_window
from .stock_service import _apply_stock_change, get_reserved_quantity, load_product

BOOKABLE_ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_OWNER)


@dataclass
class StepOutcome:
    """Result of one saga step (one reservation, or one product on the override path)."""
    product_id: str
    action: str  # consumed | released | decremented | skipped
    quantity: int
    ok: bool = True
    reservation_id: str | None = None
    error: dict | None = None

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "product_id": self.product_id,
            "action": self.action,
            "quantity": self.quantity,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass
class LifecycleResult:
    appointment: Appointment
    status: str  # completed | cancelled | partial
    steps: list[StepOutcome] = field(default_factory=list)
    pending_reservation_ids: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.status == "partial"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "appointment": self.appointment.to_dict(),
            "steps": [s.to_dict() for s in self.steps],
            "pending_reservation_ids": self.pending_reservation_ids,
        }


def _error_info(exc: ServiceError) -> dict:
    return {"code": exc.code, "message": exc.message, "details": exc.details}


def get_appointment(appointment_id: str) -> Appointment:
    appointment = db.session.query(Appointment).filter_by(id=appointment_id).first()
    if appointment is None:
        raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})
    return appointment


def _lock_appointment(appointment_id: str) -> Appointment:
    appointment = lock_for_update(db.session.query(Appointment).filter_by(id=appointment_id)).first()
    if appointment is None:
        raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})
    return appointment


# =============================================================================
# Create
# =============================================================================

def _normalize_service_lines(service_lines) -> list[dict]:
    if not service_lines:
        raise ValidationError("At least one service line is required")
    if not isinstance(service_lines, list):
        raise ValidationError("service_lines must be a list")

    cleaned = []
    for i, raw in enumerate(service_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"service_lines[{i}] must be an object")
        service_id = raw.get("service_id")
        if not service_id:
            raise ValidationError(f"service_lines[{i}].service_id is required")
        quantity = raw.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"service_lines[{i}].quantity must be a positive integer")
        override = raw.get("price_override_cents")
        if override is not None:
            if isinstance(override, bool) or not isinstance(override, int) or override < 0:
                raise ValidationError(f"service_lines[{i}].price_override_cents must be an integer >= 0")
        cleaned.append({"service_id": service_id, "quantity": quantity, "price_override_cents": override})
    return cleaned


def _parse_window(start_at, end_at):
    try:
        start_dt = normalize_datetime(start_at)
        end_dt = normalize_datetime(end_at)
    except ValueError:
        raise ValidationError("start_at and end_at must be ISO-8601 datetimes")
    if start_dt is None or end_dt is None:
        raise ValidationError("start_at and end_at are required")
    if start_dt >= end_dt:
        raise ValidationError("start_at must be before end_at")
    return start_dt, end_dt


def _overlapping(column, value, start_at, end_at, exclude_id: str | None = None):
    q = db.session.query(Appointment).filter(
        column == value,
        Appointment.status != AppointmentStatus.CANCELLED,
        Appointment.start_at < end_at,
        Appointment.end_at > start_at,
    )
    if exclude_id:
        q = q.filter(Appointment.id != exclude_id)
    return q.all()


def _check_conflicts(*, staff_id: str, pet_id: str, start_at, end_at) -> None:
    """Half-open windows: touching appointments are not conflicts."""
    staff_conflicts = _overlapping(Appointment.staff_id, staff_id, start_at, end_at)
    if staff_conflicts:
        raise ConflictError(
            "Staff member is already booked for an overlapping appointment. "
            f"Conflicts with {len(staff_conflicts)} existing appointment(s).",
            details={"staff_id": staff_id, "conflicting_ids": [a.id for a in staff_conflicts]},
        )

    pet_conflicts = _overlapping(Appointment.pet_id, pet_id, start_at, end_at)
    if pet_conflicts:
        raise ConflictError(
            "Pet is already booked for an overlapping appointment. "
            f"Conflicts with {len(pet_conflicts)} existing appointment(s).",
            details={"pet_id": pet_id, "conflicting_ids": [a.id for a in pet_conflicts]},
        )


def _planned_consumption(lines: list[tuple[Service, int]]) -> dict[str, int]:
    """Aggregate consumed items per product across all service lines."""
    planned: dict[str, int] = {}
    for service, quantity in lines:
        if not service.consumes_inventory:
            continue
        for item in service.consumed_items:
            planned[item.product_id] = planned.get(item.product_id, 0) + item.quantity * quantity
    return planned


def create_appointment(
    *,
    store_id: str,
    customer_id: str,
    pet_id: str,
    staff_id: str,
    start_at,
    end_at,
    service_lines: list[dict],
    performed_by: str,
    notes: str | None = None,
    reservation_expires_at=None,
) -> Appointment:
    start_dt, end_dt = _parse_window(start_at, end_at)
    if start_dt < utcnow():
        raise ValidationError("Appointment cannot start in the past", details={"start_at": start_at})
    lines = _normalize_service_lines(service_lines)
    try:
        expires_dt = normalize_datetime(reservation_expires_at)
    except ValueError:
        raise ValidationError("reservation_expires_at must be an ISO-8601 datetime")
    if expires_dt is not None and expires_dt <= utcnow():
        raise ValidationError("Expiry must be in the future")

    def _op():
        store = db.session.query(Store).filter_by(id=store_id).first()
        if store is None or not store.is_active:
            raise NotFoundError("Store not found", details={"store_id": store_id})

        # Locking the staff row serializes bookings for the same staff member
        staff = lock_for_update(db.session.query(User).filter_by(id=staff_id)).first()
        if staff is None or staff.company_id != store.company_id or not staff.is_active:
            raise NotFoundError("Staff member not found", details={"staff_id": staff_id})
        if not staff.has_any_role(*BOOKABLE_ROLES):
            raise ValidationError("Assigned user cannot take appointments", details={"staff_id": staff_id})
        check_booking_window(store=store, staff=staff, start_at=start_dt, end_at=end_dt)

        customer = db.session.query(Customer).filter_by(id=customer_id).first()
        if customer is None or customer.company_id != store.company_id:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        pet = db.session.query(Pet).filter_by(id=pet_id).first()
        if pet is None or pet.customer_id != customer.id:
            raise NotFoundError("Pet not found for customer", details={"pet_id": pet_id})

        resolved: list[tuple[Service, dict]] = []
        for line in lines:
            service = db.session.query(Service).filter_by(id=line["service_id"]).first()
            if service is None or service.company_id != store.company_id or not service.is_active:
                raise NotFoundError("Service not found", details={"service_id": line["service_id"]})
            resolved.append((service, line))

        _check_conflicts(staff_id=staff.id, pet_id=pet.id, start_at=start_dt, end_at=end_dt)

        appointment = Appointment(
            store_id=store.id,
            customer_id=customer.id,
            pet_id=pet.id,
            staff_id=staff.id,
            start_at=start_dt,
            end_at=end_dt,
            status=AppointmentStatus.BOOKED,
            notes=notes,
            created_by=performed_by,
        )
        for position, (service, line) in enumerate(resolved):
            appointment.service_lines.append(
                AppointmentServiceLine(
                    service_id=service.id,
                    position=position,
                    quantity=line["quantity"],
                    unit_price_cents=service.price_cents,
                    price_override_cents=line["price_override_cents"],
                )
            )
        db.session.add(appointment)
        db.session.flush()

        owner = OwnerRef.appointment(appointment.id)
        planned = _planned_consumption([(s, line["quantity"]) for s, line in resolved])
        reservation_ids = []
        # Sorted product order keeps lock acquisition order stable
        for product_id in sorted(planned):
            product = load_product(product_id, lock=True)
            if not product.stock_tracked:
                continue
            reservation = _create_reservation_inner(
                product=product,
                quantity=planned[product_id],
                owner=owner,
                performed_by=performed_by,
                expires_at=expires_dt,
                store_id=store.id,
            )
            reservation_ids.append(reservation.id)

        append_audit_event(
            event_type="appointment.booked",
            entity_type="appointment",
            entity_id=appointment.id,
            performed_by=performed_by,
            store_id=store.id,
            payload={
                "staff_id": staff.id,
                "pet_id": pet.id,
                "start_at": start_dt,
                "end_at": end_dt,
                "reservation_ids": reservation_ids,
            },
        )
        return appointment

    return run_in_transaction(_op)


# =============================================================================
# Confirm
# =============================================================================

def confirm_appointment(appointment_id: str, *, performed_by: str) -> Appointment:
    """Staff acknowledgement; no inventory effect."""
    def _op():
        appointment = _lock_appointment(appointment_id)
        if appointment.status != AppointmentStatus.BOOKED:
            raise BusinessRuleViolationError(
                f"Cannot confirm appointment with status: {appointment.status}",
                details={"appointment_id": appointment.id, "status": appointment.status},
            )
        appointment.status = AppointmentStatus.CONFIRMED
        appointment.confirmed_at = utcnow()
        appointment.confirmed_by = performed_by

        append_audit_event(
            event_type="appointment.confirmed",
            entity_type="appointment",
            entity_id=appointment.id,
            performed_by=performed_by,
            store_id=appointment.store_id,
        )
        return appointment

    return run_in_transaction(_op)


# =============================================================================
# Complete
# =============================================================================

def _normalize_consumed_items(consumed_items, *, company_id: str) -> dict[str, int] | None:
    if consumed_items is None:
        return None
    if not isinstance(consumed_items, list):
        raise ValidationError("consumed_items must be a list")

    actual: dict[str, int] = {}
    for i, raw in enumerate(consumed_items):
        if not isinstance(raw, dict) or not raw.get("product_id"):
            raise ValidationError(f"consumed_items[{i}].product_id is required")
        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(f"consumed_items[{i}].quantity must be an integer >= 0")
        actual[raw["product_id"]] = actual.get(raw["product_id"], 0) + quantity

    for product_id in actual:
        product = db.session.query(Product).filter_by(id=product_id).first()
        if product is None or product.company_id != company_id:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        if not product.stock_tracked:
            raise ValidationError(
                f"Product {product.sku} is not stock-tracked",
                details={"product_id": product_id},
            )
    return actual


def _already_consumed(appointment_id: str, product_id: str) -> bool:
    return db.session.query(
        exists().where(
            StockMovement.reference_id == appointment_id,
            StockMovement.product_id == product_id,
            StockMovement.reason == MovementReason.CONSUMPTION,
        )
    ).scalar()


def _settle_product(appointment: Appointment, product_id: str, actual: int, performed_by: str) -> list[StepOutcome]:
    """
    One override step: reconcile planned reservations for a product with the
    quantity actually used. Runs as a single unit of work.
    """
    owner = OwnerRef.appointment(appointment.id)

    def _op():
        product = load_product(product_id, lock=True)
        reservations = lock_active_reservations_for(owner, product_id=product_id)
        if not reservations and _already_consumed(appointment.id, product_id):
            return []

        reserved = sum(r.quantity for r in reservations)
        outcomes: list[StepOutcome] = []

        if reservations and actual == reserved:
            for reservation in reservations:
                _consume_reservation_inner(
                    reservation, product, performed_by=performed_by, location_id=appointment.store_id
                )
                outcomes.append(StepOutcome(product_id, "consumed", reservation.quantity, reservation_id=reservation.id))
            return outcomes

        for reservation in reservations:
            _release_reservation_inner(reservation, performed_by=performed_by, note="replaced by actual consumption")
            outcomes.append(StepOutcome(product_id, "released", reservation.quantity, reservation_id=reservation.id))

        if actual > 0:
            available = product.current_stock - get_reserved_quantity(product.id)
            if available < actual:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name} ({product.sku}). "
                    f"Available: {available}, Required: {actual}",
                    product_id=product.id,
                    requested=actual,
                    available=available,
                )
            _apply_stock_change(
                product,
                quantity_change=-actual,
                reason=MovementReason.CONSUMPTION,
                performed_by=performed_by,
                location_id=appointment.store_id,
                reference_id=appointment.id,
                note=f"Actual consumption for appointment {appointment.id}",
            )
            outcomes.append(StepOutcome(product_id, "decremented", actual))
        return outcomes

    return run_in_transaction(_op)


def _pending_ids(appointment_id: str) -> list[str]:
    return [r.id for r in active_reservations_for(OwnerRef.appointment(appointment_id))]


def complete_appointment(
    appointment_id: str,
    *,
    performed_by: str,
    consumed_items: list[dict] | None = None,
) -> LifecycleResult:
    """
    confirmed -> completed, consuming every active reservation.

    With consumed_items, actual usage replaces the planned reservations:
    matching reservations are consumed, the rest are released and the actual
    quantities decremented directly.

    Returns a partial LifecycleResult (appointment still confirmed) when a step
    fails; calling again retries only what is still pending.
    """
    appointment = get_appointment(appointment_id)
    if appointment.status == AppointmentStatus.COMPLETED:
        raise BusinessRuleViolationError(
            "Appointment is already completed",
            details={"appointment_id": appointment.id},
        )
    if appointment.status != AppointmentStatus.CONFIRMED:
        raise BusinessRuleViolationError(
            f"Cannot complete appointment with status: {appointment.status}",
            details={"appointment_id": appointment.id, "status": appointment.status},
        )

    company_id = db.session.query(Store.company_id).filter_by(id=appointment.store_id).scalar()
    actual = _normalize_consumed_items(consumed_items, company_id=company_id)
    owner = OwnerRef.appointment(appointment.id)
    steps: list[StepOutcome] = []
    failed = False

    if actual is None:
        for reservation in active_reservations_for(owner):
            step = StepOutcome(reservation.product_id, "consumed", reservation.quantity, reservation_id=reservation.id)
            try:
                consume_reservation(reservation.id, performed_by=performed_by)
            except ServiceError as exc:
                step.ok = False
                step.error = _error_info(exc)
                failed = True
            steps.append(step)
            if failed:
                break
    else:
        planned_products = {r.product_id for r in active_reservations_for(owner)}
        for product_id in sorted(planned_products | set(actual)):
            try:
                steps.extend(_settle_product(appointment, product_id, actual.get(product_id, 0), performed_by))
            except ServiceError as exc:
                steps.append(
                    StepOutcome(product_id, "settle", actual.get(product_id, 0), ok=False, error=_error_info(exc))
                )
                failed = True
                break

    if failed:
        appointment = get_appointment(appointment_id)
        pending = _pending_ids(appointment.id)
        current_app.logger.warning(
            "Appointment %s completion stopped with %d reservation(s) pending", appointment.id, len(pending)
        )
        return LifecycleResult(appointment, "partial", steps, pending)

    def _finalize():
        locked = _lock_appointment(appointment_id)
        if locked.status != AppointmentStatus.CONFIRMED:
            raise BusinessRuleViolationError(
                f"Cannot complete appointment with status: {locked.status}",
                details={"appointment_id": locked.id, "status": locked.status},
            )
        if _pending_ids(locked.id):
            return None
        locked.status = AppointmentStatus.COMPLETED
        locked.completed_at = utcnow()
        locked.completed_by = performed_by
        append_audit_event(
            event_type="appointment.completed",
            entity_type="appointment",
            entity_id=locked.id,
            performed_by=performed_by,
            store_id=locked.store_id,
            payload={"steps": [s.to_dict() for s in steps], "override": actual is not None},
        )
        return locked

    completed = run_in_transaction(_finalize)
    if completed is None:
        # A reservation was added for the appointment while the steps ran
        appointment = get_appointment(appointment_id)
        return LifecycleResult(appointment, "partial", steps, _pending_ids(appointment.id))
    return LifecycleResult(completed, "completed", steps, [])


# =============================================================================
# Cancel
# =============================================================================

def cancel_appointment(
    appointment_id: str,
    *,
    performed_by: str,
    reason: str | None = None,
    no_show: bool = False,
) -> LifecycleResult:
    """
    booked | confirmed -> cancelled, releasing every active reservation.

    A reason is required unless the customer did not show up.
    """
    reason = (reason or "").strip() or None
    if not reason and not no_show:
        raise ValidationError("Cancellation reason is required")

    appointment = get_appointment(appointment_id)
    if appointment.status not in AppointmentStatus.CANCELLABLE:
        raise BusinessRuleViolationError(
            f"Cannot cancel appointment with status: {appointment.status}",
            details={"appointment_id": appointment.id, "status": appointment.status},
        )

    steps: list[StepOutcome] = []
    failed = False
    for reservation in active_reservations_for(OwnerRef.appointment(appointment.id)):
        step = StepOutcome(reservation.product_id, "released", reservation.quantity, reservation_id=reservation.id)
        try:
            release_reservation(reservation.id, performed_by=performed_by, note="appointment cancelled")
        except NotFoundError:
            # Already closed since the scan; nothing left to release
            step.action = "skipped"
        except ServiceError as exc:
            step.ok = False
            step.error = _error_info(exc)
            failed = True
        steps.append(step)
        if failed:
            break

    if failed:
        appointment = get_appointment(appointment_id)
        return LifecycleResult(appointment, "partial", steps, _pending_ids(appointment.id))

    def _finalize():
        locked = _lock_appointment(appointment_id)
        if locked.status not in AppointmentStatus.CANCELLABLE:
            raise BusinessRuleViolationError(
                f"Cannot cancel appointment with status: {locked.status}",
                details={"appointment_id": locked.id, "status": locked.status},
            )
        if _pending_ids(locked.id):
            return None
        locked.status = AppointmentStatus.CANCELLED
        locked.no_show = bool(no_show)
        locked.cancellation_reason = reason or "no_show"
        locked.cancelled_at = utcnow()
        locked.cancelled_by = performed_by
        append_audit_event(
            event_type="appointment.cancelled",
            entity_type="appointment",
            entity_id=locked.id,
            performed_by=performed_by,
            store_id=locked.store_id,
            note=locked.cancellation_reason,
            payload={
                "no_show": locked.no_show,
                "released": [s.reservation_id for s in steps if s.action == "released"],
            },
        )
        return locked

    cancelled = run_in_transaction(_finalize)
    if cancelled is None:
        appointment = get_appointment(appointment_id)
        return LifecycleResult(appointment, "partial", steps, _pending_ids(appointment.id))
    return LifecycleResult(cancelled, "cancelled", steps, [])


# =============================================================================
# Queries
# =============================================================================

def search_appointments(
    *,
    store_id: str | None = None,
    staff_id: str | None = None,
    customer_id: str | None = None,
    pet_id: str | None = None,
    status: str | None = None,
    start_from=None,
    start_to=None,
    limit: int = 200,
) -> list[Appointment]:
    q = db.session.query(Appointment)
    if store_id:
        q = q.filter(Appointment.store_id == store_id)
    if staff_id:
        q = q.filter(Appointment.staff_id == staff_id)
    if customer_id:
        q = q.filter(Appointment.customer_id == customer_id)
    if pet_id:
        q = q.filter(Appointment.pet_id == pet_id)
    if status:
        q = q.filter(Appointment.status == status)
    start_from = normalize_datetime(start_from)
    start_to = normalize_datetime(start_to)
    if start_from is not None:
        q = q.filter(Appointment.start_at >= start_from)
    if start_to is not None:
        q = q.filter(Appointment.start_at <= start_to)
    return q.order_by(Appointment.start_at.asc()).limit(limit).all()
