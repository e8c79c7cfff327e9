from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import new_id


class ReservationStatus:
    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"


class OwnerType:
    APPOINTMENT = "appointment"
    TRANSACTION = "transaction"

    ALL = frozenset({APPOINTMENT, TRANSACTION})


@dataclass(frozen=True)
class OwnerRef:
    """
    The entity a reservation is held for: an appointment or a transaction.

    Constructed through the named constructors so an unknown owner type can
    never reach the database.
    """
    kind: str
    id: str

    def __post_init__(self):
        if self.kind not in OwnerType.ALL:
            raise ValueError(f"unknown reservation owner type: {self.kind!r}")
        if not self.id:
            raise ValueError("reservation owner id is required")

    @classmethod
    def appointment(cls, appointment_id: str) -> "OwnerRef":
        return cls(OwnerType.APPOINTMENT, appointment_id)

    @classmethod
    def transaction(cls, transaction_id: str) -> "OwnerRef":
        return cls(OwnerType.TRANSACTION, transaction_id)

    def to_dict(self) -> dict:
        return {"type": self.kind, "id": self.id}


class MovementReason:
    RECEIPT = "receipt"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RESERVATION_RELEASE = "reservation_release"
    CONSUMPTION = "consumption"
    RECONCILIATION = "reconciliation"

    ALL = frozenset({RECEIPT, SALE, ADJUSTMENT, RESERVATION_RELEASE, CONSUMPTION, RECONCILIATION})


class InventoryReservation(db.Model):
    """
    Provisional hold on product quantity.

    A reservation never changes Product.current_stock by itself; it only lowers
    availability (current_stock - sum of active reservations). It ends either
    released (hold dropped) or consumed (converted into a stock decrement).
    Both terminal states are final.

    Owned by the appointment/transaction named in reserved_for_*; it must not
    stay active past its owner's terminal status.
    """
    __tablename__ = "inventory_reservations"
    __table_args__ = (
        db.Index("ix_reservations_product_status", "product_id", "status"),
        db.Index("ix_reservations_owner", "reserved_for_type", "reserved_for_id"),
        db.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    reserved_for_type = db.Column(db.String(16), nullable=False)
    reserved_for_id = db.Column(db.String(36), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ReservationStatus.ACTIVE, index=True)

    # Advisory only: nothing releases expired holds automatically
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_by = db.Column(db.String(64), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef(self.reserved_for_type, self.reserved_for_id)

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved_for_id": self.reserved_for_id,
            "reserved_for_type": self.reserved_for_type,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "is_expired": self.is_active and self.is_expired(),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "closed_by": self.closed_by,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
        }


class StockMovement(db.Model):
    """
    Immutable stock ledger entry. One row per change of Product.current_stock.

    reference_id points back to the appointment/transaction/purchase document
    by id only. Rows are never updated or deleted (enforced below).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_movements_reference", "reference_id", "reason"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    location_id = db.Column(db.String(36), nullable=True, index=True)
    performed_by = db.Column(db.String(64), nullable=False)
    reference_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Stock level right after this movement; makes the ledger self-checking
    resulting_stock = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
            "location_id": self.location_id,
            "performed_by": self.performed_by,
            "reference_id": self.reference_id,
            "note": self.note,
            "resulting_stock": self.resulting_stock,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise RuntimeError("stock movements are append-only")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise RuntimeError("stock movements are append-only")
