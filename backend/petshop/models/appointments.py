from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import new_id


class AppointmentStatus:
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({COMPLETED, CANCELLED})
    CANCELLABLE = frozenset({BOOKED, CONFIRMED})


class Appointment(db.Model):
    """
    Scheduled visit of a pet with a staff member.

    Lifecycle:
        booked -> confirmed -> completed
        booked | confirmed -> cancelled (optionally flagged no_show)

    Time window is half-open: [start_at, end_at). Two appointments that merely
    touch (one ends at 11:00, the next starts at 11:00) do not overlap.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        db.Index("ix_appointments_staff_window", "staff_id", "start_at", "end_at"),
        db.Index("ix_appointments_pet_window", "pet_id", "start_at", "end_at"),
        db.Index("ix_appointments_store_status_start", "store_id", "status", "start_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    store_id = db.Column(db.String(36), db.ForeignKey("stores.id"), nullable=False)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)
    pet_id = db.Column(db.String(36), db.ForeignKey("pets.id"), nullable=False)
    staff_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)

    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_at = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=AppointmentStatus.BOOKED, index=True)
    notes = db.Column(db.Text, nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.String(64), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)

    # Cancellation audit trail
    no_show = db.Column(db.Boolean, nullable=False, default=False)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    service_lines = db.relationship(
        "AppointmentServiceLine",
        backref="appointment",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="AppointmentServiceLine.position",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def estimated_total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.service_lines)

    def overlaps(self, start_at, end_at) -> bool:
        return self.start_at < end_at and start_at < self.end_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "pet_id": self.pet_id,
            "staff_id": self.staff_id,
            "start_at": to_utc_z(self.start_at),
            "end_at": to_utc_z(self.end_at),
            "status": self.status,
            "notes": self.notes,
            "service_lines": [line.to_dict() for line in self.service_lines],
            "estimated_total_cents": self.estimated_total_cents,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "no_show": self.no_show,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class AppointmentServiceLine(db.Model):
    __tablename__ = "appointment_service_lines"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    appointment_id = db.Column(db.String(36), db.ForeignKey("appointments.id"), nullable=False, index=True)
    service_id = db.Column(db.String(36), db.ForeignKey("services.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    # Snapshot of the service price at booking time
    unit_price_cents = db.Column(db.Integer, nullable=False)
    price_override_cents = db.Column(db.Integer, nullable=True)

    service = db.relationship("Service")

    @property
    def effective_unit_price_cents(self) -> int:
        if self.price_override_cents is not None:
            return self.price_override_cents
        return self.unit_price_cents

    @property
    def line_total_cents(self) -> int:
        return self.effective_unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "price_override_cents": self.price_override_cents,
            "line_total_cents": self.line_total_cents,
        }
