"""
Reservation engine tests.

Verifies:
- Availability = current_stock - active reservations, never overcommitted
- Release is a no-op on stock and cannot double-credit availability
- Consumption decrements stock and writes one consumption movement
- Owner and product validation
- Manual expiry sweep
"""

from datetime import timedelta

import pytest

from petshop.errors import (
    BusinessRuleViolationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from petshop.extensions import db
from petshop.models import Appointment, Product, StockMovement, Transaction
from petshop.models.appointments import AppointmentStatus
from petshop.models.inventory import MovementReason, OwnerRef, ReservationStatus
from petshop.services import reservation_service, stock_service
from petshop.time_utils import utcnow


@pytest.fixture
def appointment_factory(db_session, store, customer, pet, staff):
    def _make(status=AppointmentStatus.BOOKED, hour=9):
        start = utcnow().replace(microsecond=0) + timedelta(days=1, hours=hour)
        appointment = Appointment(
            store_id=store.id,
            customer_id=customer.id,
            pet_id=pet.id,
            staff_id=staff.id,
            start_at=start,
            end_at=start + timedelta(minutes=30),
            status=status,
            created_by=staff.id,
        )
        db_session.add(appointment)
        db_session.commit()
        return OwnerRef.appointment(appointment.id)

    return _make


def _movements(product_id):
    return db.session.query(StockMovement).filter_by(product_id=product_id).all()


# =============================================================================
# CREATE
# =============================================================================


class TestCreateReservation:

    def test_reservation_holds_availability_but_not_stock(self, make_product, appointment_factory):
        product = make_product(5)
        owner = appointment_factory()

        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=3, owner=owner, performed_by="u1"
        )

        assert reservation.status == ReservationStatus.ACTIVE
        assert reservation.owner == owner
        summary = stock_service.get_stock_summary(product.id)
        assert summary["current_stock"] == 5
        assert summary["reserved"] == 3
        assert summary["available"] == 2
        # Only the fixture receipt; reserving writes no movement
        assert [m.reason for m in _movements(product.id)] == [MovementReason.RECEIPT]

    def test_overbooking_scenario(self, make_product, appointment_factory):
        product = make_product(5)
        a1 = appointment_factory(hour=9)
        a2 = appointment_factory(hour=11)

        first = reservation_service.create_reservation(product_id=product.id, quantity=3, owner=a1, performed_by="u1")
        assert stock_service.get_available_stock(product.id) == 2

        with pytest.raises(InsufficientStockError) as exc:
            reservation_service.create_reservation(product_id=product.id, quantity=3, owner=a2, performed_by="u1")
        assert exc.value.requested == 3
        assert exc.value.available == 2
        assert exc.value.details["product_id"] == product.id
        assert stock_service.get_available_stock(product.id) == 2
        assert len(reservation_service.list_reservations(product_id=product.id)) == 1

        reservation_service.release_reservation(first.id, performed_by="u1")
        assert stock_service.get_available_stock(product.id) == 5

        second = reservation_service.create_reservation(product_id=product.id, quantity=3, owner=a2, performed_by="u1")
        assert second.status == ReservationStatus.ACTIVE
        assert stock_service.get_available_stock(product.id) == 2

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
    def test_rejects_non_positive_or_non_integer_quantity(self, make_product, appointment_factory, quantity):
        product = make_product(5)
        with pytest.raises(ValidationError):
            reservation_service.create_reservation(
                product_id=product.id, quantity=quantity, owner=appointment_factory(), performed_by="u1"
            )

    def test_rejects_untracked_product(self, make_product, appointment_factory):
        product = make_product(0, tracked=False)
        with pytest.raises(ValidationError):
            reservation_service.create_reservation(
                product_id=product.id, quantity=1, owner=appointment_factory(), performed_by="u1"
            )

    def test_rejects_missing_product(self, appointment_factory):
        with pytest.raises(NotFoundError):
            reservation_service.create_reservation(
                product_id="does-not-exist", quantity=1, owner=appointment_factory(), performed_by="u1"
            )

    def test_rejects_missing_owner(self, make_product):
        product = make_product(5)
        with pytest.raises(NotFoundError):
            reservation_service.create_reservation(
                product_id=product.id, quantity=1, owner=OwnerRef.appointment("missing"), performed_by="u1"
            )

    def test_rejects_terminal_owner(self, make_product, appointment_factory):
        product = make_product(5)
        owner = appointment_factory(status=AppointmentStatus.CANCELLED)
        with pytest.raises(BusinessRuleViolationError):
            reservation_service.create_reservation(product_id=product.id, quantity=1, owner=owner, performed_by="u1")
        assert stock_service.get_reserved_quantity(product.id) == 0

    def test_rejects_owner_of_another_company(self, make_product, db_session, other_store):
        product = make_product(5)
        foreign_sale = Transaction(store_id=other_store.id, created_by="them")
        db_session.add(foreign_sale)
        db_session.commit()

        with pytest.raises(NotFoundError):
            reservation_service.create_reservation(
                product_id=product.id, quantity=1, owner=OwnerRef.transaction(foreign_sale.id), performed_by="u1"
            )
        assert stock_service.get_reserved_quantity(product.id) == 0

    def test_rejects_product_of_another_company(self, appointment_factory, db_session, other_store):
        foreign = Product(
            company_id=other_store.company_id, sku="F-1", name="Foreign",
            unit_price_cents=100, stock_tracked=True, current_stock=5,
        )
        db_session.add(foreign)
        db_session.commit()

        with pytest.raises(NotFoundError):
            reservation_service.create_reservation(
                product_id=foreign.id, quantity=1, owner=appointment_factory(), performed_by="u1"
            )
        assert stock_service.get_reserved_quantity(foreign.id) == 0

    def test_reservation_for_pending_sale(self, make_product, db_session, store):
        product = make_product(5)
        sale = Transaction(store_id=store.id, created_by="u1")
        db_session.add(sale)
        db_session.commit()

        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=2, owner=OwnerRef.transaction(sale.id), performed_by="u1"
        )
        assert reservation.owner == OwnerRef.transaction(sale.id)
        assert stock_service.get_available_stock(product.id) == 3

    def test_rejects_expiry_in_the_past(self, make_product, appointment_factory):
        product = make_product(5)
        with pytest.raises(ValidationError):
            reservation_service.create_reservation(
                product_id=product.id,
                quantity=1,
                owner=appointment_factory(),
                performed_by="u1",
                expires_at=utcnow() - timedelta(minutes=5),
            )

    def test_owner_ref_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            OwnerRef("invoice", "abc")


# =============================================================================
# RELEASE
# =============================================================================


class TestReleaseReservation:

    def test_create_then_release_restores_availability(self, make_product, appointment_factory):
        product = make_product(7)
        before = stock_service.get_stock_summary(product.id)

        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=4, owner=appointment_factory(), performed_by="u1"
        )
        released = reservation_service.release_reservation(reservation.id, performed_by="u2")

        assert released.status == ReservationStatus.RELEASED
        assert released.closed_by == "u2"
        after = stock_service.get_stock_summary(product.id)
        assert after["current_stock"] == before["current_stock"]
        assert after["available"] == before["available"]

    def test_second_release_is_benign_not_found(self, make_product, appointment_factory):
        product = make_product(7)
        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=4, owner=appointment_factory(), performed_by="u1"
        )
        reservation_service.release_reservation(reservation.id, performed_by="u1")

        with pytest.raises(NotFoundError):
            reservation_service.release_reservation(reservation.id, performed_by="u1")

        summary = stock_service.get_stock_summary(product.id)
        assert summary["current_stock"] == 7
        assert summary["available"] == 7

    def test_release_of_consumed_reservation_changes_nothing(self, make_product, appointment_factory):
        product = make_product(7)
        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=4, owner=appointment_factory(), performed_by="u1"
        )
        reservation_service.consume_reservation(reservation.id, performed_by="u1")

        with pytest.raises(NotFoundError):
            reservation_service.release_reservation(reservation.id, performed_by="u1")

        summary = stock_service.get_stock_summary(product.id)
        assert summary["current_stock"] == 3
        assert summary["available"] == 3
        assert reservation_service.get_reservation(reservation.id).status == ReservationStatus.CONSUMED


# =============================================================================
# CONSUME
# =============================================================================


class TestConsumeReservation:

    def test_consume_decrements_and_writes_movement(self, make_product, appointment_factory, store):
        product = make_product(10)
        owner = appointment_factory()
        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=2, owner=owner, performed_by="u1"
        )

        consumed = reservation_service.consume_reservation(reservation.id, performed_by="u3")

        assert consumed.status == ReservationStatus.CONSUMED
        assert stock_service.load_product(product.id).current_stock == 8
        movement = (
            db.session.query(StockMovement)
            .filter_by(product_id=product.id, reason=MovementReason.CONSUMPTION)
            .one()
        )
        assert movement.quantity_change == -2
        assert movement.reference_id == owner.id
        assert movement.location_id == store.id
        assert movement.performed_by == "u3"
        assert movement.resulting_stock == 8

    def test_consume_refuses_to_drive_stock_negative(self, make_product, appointment_factory):
        product = make_product(3)
        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=3, owner=appointment_factory(), performed_by="u1"
        )
        # Physical count found less than was held
        stock_service.reconcile_stock(product_id=product.id, counted_quantity=1, performed_by="u1", force=True)

        with pytest.raises(BusinessRuleViolationError):
            reservation_service.consume_reservation(reservation.id, performed_by="u1")

        assert stock_service.load_product(product.id).current_stock == 1
        assert reservation_service.get_reservation(reservation.id).status == ReservationStatus.ACTIVE
        assert not db.session.query(StockMovement).filter_by(reason=MovementReason.CONSUMPTION).count()

    def test_consume_twice_raises_not_found(self, make_product, appointment_factory):
        product = make_product(3)
        reservation = reservation_service.create_reservation(
            product_id=product.id, quantity=1, owner=appointment_factory(), performed_by="u1"
        )
        reservation_service.consume_reservation(reservation.id, performed_by="u1")
        with pytest.raises(NotFoundError):
            reservation_service.consume_reservation(reservation.id, performed_by="u1")
        assert stock_service.load_product(product.id).current_stock == 2


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpirySweep:

    def test_expired_reservations_still_count_until_swept(self, make_product, appointment_factory):
        product = make_product(5)
        reservation = reservation_service.create_reservation(
            product_id=product.id,
            quantity=2,
            owner=appointment_factory(),
            performed_by="u1",
            expires_at=utcnow() + timedelta(minutes=10),
        )
        later = utcnow() + timedelta(hours=1)

        assert stock_service.get_available_stock(product.id) == 3

        would_release = reservation_service.release_expired_reservations(performed_by="cli", now=later, dry_run=True)
        assert [r.id for r in would_release] == [reservation.id]
        assert stock_service.get_available_stock(product.id) == 3

        released = reservation_service.release_expired_reservations(performed_by="cli", now=later)
        assert [r.id for r in released] == [reservation.id]
        assert stock_service.get_available_stock(product.id) == 5

    def test_unexpired_reservations_are_left_alone(self, make_product, appointment_factory):
        product = make_product(5)
        reservation_service.create_reservation(
            product_id=product.id,
            quantity=2,
            owner=appointment_factory(),
            performed_by="u1",
            expires_at=utcnow() + timedelta(days=1),
        )
        assert reservation_service.release_expired_reservations(performed_by="cli") == []
        assert stock_service.get_available_stock(product.id) == 3

    def test_expiry_flag_is_reported_while_active(self, make_product, appointment_factory):
        product = make_product(5)
        reservation = reservation_service.create_reservation(
            product_id=product.id,
            quantity=1,
            owner=appointment_factory(),
            performed_by="u1",
            expires_at=utcnow() + timedelta(minutes=10),
        )
        assert reservation.to_dict()["is_expired"] is False
        assert reservation.is_expired(utcnow() + timedelta(hours=1))

        released = reservation_service.release_reservation(reservation.id, performed_by="u1")
        assert released.to_dict()["is_expired"] is False
