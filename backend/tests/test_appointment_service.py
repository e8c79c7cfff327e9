"""
Appointment lifecycle tests.

Verifies:
- Booking reserves consumed items atomically with the appointment
- Staff and pet double-booking is rejected on half-open windows
- Completion consumes reservations step by step and resumes after a partial failure
- Actual-consumption override releases the plan and decrements what was used
- Cancellation releases every hold and records the reason
"""

import pytest

from petshop.errors import (
    BusinessRuleViolationError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from petshop.extensions import db
from petshop.models import Appointment, AuditEvent, InventoryReservation, Pet, StockMovement
from petshop.models.appointments import AppointmentStatus
from petshop.models.inventory import MovementReason, OwnerRef, ReservationStatus
from petshop.services import appointment_service, reservation_service, schedule_service, stock_service


def _reservations(appointment_id, status=None):
    return reservation_service.list_reservations(owner=OwnerRef.appointment(appointment_id), status=status)


def _consumptions(appointment_id, product_id=None):
    q = db.session.query(StockMovement).filter_by(reference_id=appointment_id, reason=MovementReason.CONSUMPTION)
    if product_id:
        q = q.filter_by(product_id=product_id)
    return q.all()


@pytest.fixture
def confirmed(book, staff):
    def _confirmed(services):
        appointment = book(services)
        return appointment_service.confirm_appointment(appointment.id, performed_by=staff.id)

    return _confirmed


# =============================================================================
# BOOKING
# =============================================================================


class TestCreateAppointment:

    def test_booking_reserves_consumed_items(self, book, grooming, shampoo):
        appointment = book([grooming])

        assert appointment.status == AppointmentStatus.BOOKED
        assert len(appointment.service_lines) == 1
        assert appointment.service_lines[0].unit_price_cents == 2500

        reservations = _reservations(appointment.id)
        assert len(reservations) == 1
        assert reservations[0].product_id == shampoo.id
        assert reservations[0].quantity == 2
        assert stock_service.get_available_stock(shampoo.id) == 8
        assert stock_service.load_product(shampoo.id).current_stock == 10

    def test_quantities_aggregate_per_product(self, book, make_service, shampoo, grooming):
        bath = make_service("Bath", consumes=[(shampoo, 1)])
        appointment = book([grooming, bath])

        reservations = _reservations(appointment.id)
        assert [(r.product_id, r.quantity) for r in reservations] == [(shampoo.id, 3)]

    def test_service_without_inventory_reserves_nothing(self, book, make_service):
        consult = make_service("Consultation", consumes=None)
        appointment = book([consult])
        assert _reservations(appointment.id) == []

    def test_untracked_consumable_is_skipped(self, book, make_service, make_product):
        towel = make_product(0, tracked=False, name="Disposable Towel")
        service = make_service("Towel Dry", consumes=[(towel, 1)])

        appointment = book([service])
        assert _reservations(appointment.id) == []

    def test_insufficient_stock_creates_nothing(self, book, make_product, make_service, shampoo):
        conditioner = make_product(1, name="Conditioner")
        spa = make_service("Spa Day", consumes=[(shampoo, 2), (conditioner, 3)])

        with pytest.raises(InsufficientStockError) as exc:
            book([spa])

        assert exc.value.product_id == conditioner.id
        assert db.session.query(Appointment).count() == 0
        assert db.session.query(InventoryReservation).count() == 0
        assert stock_service.get_available_stock(shampoo.id) == 10
        assert stock_service.get_available_stock(conditioner.id) == 1
        assert db.session.query(AuditEvent).filter_by(event_type="appointment.booked").count() == 0

    def test_rejects_inverted_window(self, book, grooming):
        with pytest.raises(ValidationError):
            book([grooming], start="2030-03-04T11:00:00Z", end="2030-03-04T10:00:00Z")

    def test_rejects_empty_service_lines(self, book):
        with pytest.raises(ValidationError):
            book([])

    def test_rejects_pet_of_another_customer(self, book, grooming, db_session, company):
        from petshop.models import Customer

        stranger = Customer(company_id=company.id, full_name="Rui Costa")
        db_session.add(stranger)
        db_session.flush()
        cat = Pet(customer_id=stranger.id, name="Mia", species="cat")
        db_session.add(cat)
        db_session.commit()

        with pytest.raises(NotFoundError):
            book([grooming], pet_id=cat.id)

    def test_rejects_user_without_bookable_role(self, book, grooming, accountant):
        with pytest.raises(ValidationError):
            book([grooming], staff_user=accountant)


class TestDoubleBooking:

    def test_overlapping_staff_booking_conflicts(self, book, grooming, db_session, customer):
        other_pet = Pet(customer_id=customer.id, name="Tareco", species="cat")
        db_session.add(other_pet)
        db_session.commit()

        book([grooming])
        with pytest.raises(ConflictError):
            book([grooming], start="2030-03-04T10:30:00Z", end="2030-03-04T11:30:00Z", pet_id=other_pet.id)

        assert db.session.query(Appointment).count() == 1
        # Failed booking left no reservation behind
        assert stock_service.get_reserved_quantity(grooming.consumed_items[0].product_id) == 2

    def test_touching_windows_do_not_conflict(self, book, grooming):
        book([grooming])
        second = book([grooming], start="2030-03-04T11:00:00Z", end="2030-03-04T12:00:00Z")
        assert second.status == AppointmentStatus.BOOKED

    def test_same_pet_with_other_staff_conflicts(self, book, grooming, second_staff):
        book([grooming])
        with pytest.raises(ConflictError) as exc:
            book([grooming], start="2030-03-04T10:15:00Z", end="2030-03-04T10:45:00Z", staff_user=second_staff)
        assert "pet_id" in exc.value.details

    def test_cancelled_appointment_frees_the_slot(self, book, grooming, staff):
        first = book([grooming])
        appointment_service.cancel_appointment(first.id, performed_by=staff.id, reason="customer called")

        again = book([grooming])
        assert again.id != first.id


# =============================================================================
# SCHEDULING RULES
# =============================================================================


WEEKDAY_HOURS = {day: {"open": "09:00", "close": "19:00"}
                 for day in ("monday", "tuesday", "wednesday", "thursday", "friday")}


class TestSchedulingRules:
    """2030-03-04 is a Monday; 2030-03-09 a Saturday."""

    def test_rejects_start_in_the_past(self, book, grooming, shampoo):
        with pytest.raises(ValidationError):
            book([grooming], start="2020-01-06T10:00:00Z", end="2020-01-06T11:00:00Z")
        assert stock_service.get_available_stock(shampoo.id) == 10

    def test_store_without_opening_hours_accepts_any_time(self, book, grooming):
        appointment = book([grooming], start="2030-03-09T22:00:00Z", end="2030-03-09T23:00:00Z")
        assert appointment.status == AppointmentStatus.BOOKED

    def test_inside_opening_hours_is_accepted(self, book, grooming, store, owner):
        schedule_service.set_store_opening_hours(
            store.id, WEEKDAY_HOURS, company_id=store.company_id, performed_by=owner.id
        )
        appointment = book([grooming], start="2030-03-04T09:00:00Z", end="2030-03-04T10:00:00Z")
        late = book([grooming], start="2030-03-04T18:00:00Z", end="2030-03-04T19:00:00Z")
        assert appointment.status == late.status == AppointmentStatus.BOOKED

    @pytest.mark.parametrize("start,end", [
        ("2030-03-04T08:30:00Z", "2030-03-04T09:30:00Z"),
        ("2030-03-04T18:30:00Z", "2030-03-04T19:30:00Z"),
        ("2030-03-09T10:00:00Z", "2030-03-09T11:00:00Z"),
    ])
    def test_outside_opening_hours_is_rejected(self, book, grooming, shampoo, store, owner, start, end):
        schedule_service.set_store_opening_hours(
            store.id, WEEKDAY_HOURS, company_id=store.company_id, performed_by=owner.id
        )
        with pytest.raises(BusinessRuleViolationError):
            book([grooming], start=start, end=end)
        assert stock_service.get_available_stock(shampoo.id) == 10

    def test_outside_staff_working_hours_is_rejected(self, book, grooming, staff, owner, company):
        schedule_service.set_staff_working_hours(
            staff.id, {"monday": {"start": "12:00", "end": "17:00"}},
            company_id=company.id, performed_by=owner.id,
        )
        with pytest.raises(BusinessRuleViolationError):
            book([grooming])
        appointment = book([grooming], start="2030-03-04T12:00:00Z", end="2030-03-04T13:00:00Z")
        assert appointment.staff_id == staff.id

    def test_staff_not_working_that_day_is_rejected(self, book, grooming, staff, owner, company):
        schedule_service.set_staff_working_hours(
            staff.id, {"tuesday": {"start": "09:00", "end": "17:00"}},
            company_id=company.id, performed_by=owner.id,
        )
        with pytest.raises(BusinessRuleViolationError):
            book([grooming])

    def test_staff_assigned_to_another_store_is_rejected(self, book, grooming, db_session, company, second_staff):
        from petshop.models import Store

        annex = Store(company_id=company.id, name="Lisboa Norte", code="LIS02")
        db_session.add(annex)
        db_session.flush()
        second_staff.store_id = annex.id
        db_session.commit()

        with pytest.raises(BusinessRuleViolationError):
            book([grooming], staff_user=second_staff)

    def test_staff_without_store_may_work_anywhere(self, book, grooming, db_session, second_staff):
        second_staff.store_id = None
        db_session.commit()
        appointment = book([grooming], staff_user=second_staff)
        assert appointment.staff_id == second_staff.id

    @pytest.mark.parametrize("hours", [
        {"funday": {"open": "09:00", "close": "19:00"}},
        {"monday": {"open": "9am", "close": "19:00"}},
        {"monday": {"open": "19:00", "close": "09:00"}},
        {"monday": {"open": "25:00", "close": "26:00"}},
        ["monday"],
    ])
    def test_invalid_hours_are_rejected(self, store, owner, hours):
        with pytest.raises(ValidationError):
            schedule_service.set_store_opening_hours(
                store.id, hours, company_id=store.company_id, performed_by=owner.id
            )
        assert store.opening_hours is None

    def test_hours_of_another_company_store_are_not_found(self, other_store, company, owner):
        with pytest.raises(NotFoundError):
            schedule_service.set_store_opening_hours(
                other_store.id, WEEKDAY_HOURS, company_id=company.id, performed_by=owner.id
            )

    def test_local_time_conversion(self):
        from datetime import datetime

        from petshop.time_utils import to_local

        assert to_local(datetime(2030, 3, 4, 10, 0), "UTC") == datetime(2030, 3, 4, 10, 0)
        with pytest.raises(ValueError):
            to_local(datetime(2030, 3, 4, 10, 0), "Mars/Olympus_Mons")


# =============================================================================
# CONFIRM
# =============================================================================


class TestConfirmAppointment:

    def test_confirm_has_no_inventory_effect(self, book, grooming, shampoo, staff):
        appointment = book([grooming])
        confirmed = appointment_service.confirm_appointment(appointment.id, performed_by=staff.id)

        assert confirmed.status == AppointmentStatus.CONFIRMED
        assert confirmed.confirmed_by == staff.id
        assert stock_service.get_available_stock(shampoo.id) == 8

    def test_confirm_twice_is_rejected(self, book, grooming, staff):
        appointment = book([grooming])
        appointment_service.confirm_appointment(appointment.id, performed_by=staff.id)
        with pytest.raises(BusinessRuleViolationError):
            appointment_service.confirm_appointment(appointment.id, performed_by=staff.id)


# =============================================================================
# COMPLETE
# =============================================================================


class TestCompleteAppointment:

    def test_complete_consumes_every_reservation(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])

        result = appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

        assert result.status == "completed"
        assert result.appointment.status == AppointmentStatus.COMPLETED
        assert result.pending_reservation_ids == []
        assert [s.action for s in result.steps] == ["consumed"]
        assert stock_service.load_product(shampoo.id).current_stock == 8
        assert stock_service.get_available_stock(shampoo.id) == 8
        assert len(_consumptions(appointment.id, shampoo.id)) == 1

    def test_complete_requires_confirmation(self, book, grooming, staff):
        appointment = book([grooming])
        with pytest.raises(BusinessRuleViolationError):
            appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

    def test_complete_twice_is_rejected(self, confirmed, grooming, staff):
        appointment = confirmed([grooming])
        appointment_service.complete_appointment(appointment.id, performed_by=staff.id)
        with pytest.raises(BusinessRuleViolationError):
            appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

    def test_partial_failure_then_resume(self, confirmed, make_product, make_service, staff):
        p1 = make_product(10, name="Ear Cleaner")
        p2 = make_product(10, name="Nail Polish")
        first, second = sorted([p1, p2], key=lambda p: p.id)
        service = make_service("Pamper", consumes=[(first, 2), (second, 3)])
        appointment = confirmed([service])

        # Shrink found on the second product after booking
        stock_service.reconcile_stock(product_id=second.id, counted_quantity=0, performed_by="u1", force=True)

        result = appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

        assert result.is_partial
        assert result.appointment.status == AppointmentStatus.CONFIRMED
        assert [s.ok for s in result.steps] == [True, False]
        assert result.steps[1].error["code"] == "BUSINESS_RULE_VIOLATION"
        pending = _reservations(appointment.id, status=ReservationStatus.ACTIVE)
        assert [r.product_id for r in pending] == [second.id]
        assert result.pending_reservation_ids == [pending[0].id]
        assert stock_service.load_product(first.id).current_stock == 8

        stock_service.receive_stock(product_id=second.id, quantity=5, performed_by="u1")
        retry = appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

        assert retry.status == "completed"
        assert [s.product_id for s in retry.steps] == [second.id]
        assert stock_service.load_product(first.id).current_stock == 8
        assert stock_service.load_product(second.id).current_stock == 2
        assert len(_consumptions(appointment.id, first.id)) == 1
        assert len(_consumptions(appointment.id, second.id)) == 1
        assert _reservations(appointment.id, status=ReservationStatus.ACTIVE) == []

    def test_override_with_more_than_planned(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])

        result = appointment_service.complete_appointment(
            appointment.id,
            performed_by=staff.id,
            consumed_items=[{"product_id": shampoo.id, "quantity": 3}],
        )

        assert result.status == "completed"
        assert [s.action for s in result.steps] == ["released", "decremented"]
        assert stock_service.load_product(shampoo.id).current_stock == 7
        movements = _consumptions(appointment.id, shampoo.id)
        assert [m.quantity_change for m in movements] == [-3]
        reservation = _reservations(appointment.id)[0]
        assert reservation.status == ReservationStatus.RELEASED

    def test_override_matching_plan_consumes_reservation(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])

        result = appointment_service.complete_appointment(
            appointment.id,
            performed_by=staff.id,
            consumed_items=[{"product_id": shampoo.id, "quantity": 2}],
        )

        assert [s.action for s in result.steps] == ["consumed"]
        assert _reservations(appointment.id)[0].status == ReservationStatus.CONSUMED
        assert stock_service.load_product(shampoo.id).current_stock == 8

    def test_override_with_nothing_used_releases_plan(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])

        result = appointment_service.complete_appointment(appointment.id, performed_by=staff.id, consumed_items=[])

        assert result.status == "completed"
        assert stock_service.load_product(shampoo.id).current_stock == 10
        assert stock_service.get_available_stock(shampoo.id) == 10
        assert _consumptions(appointment.id) == []

    def test_override_adds_unplanned_product(self, confirmed, grooming, shampoo, make_product, staff):
        bandage = make_product(4, name="Bandage")
        appointment = confirmed([grooming])

        appointment_service.complete_appointment(
            appointment.id,
            performed_by=staff.id,
            consumed_items=[
                {"product_id": shampoo.id, "quantity": 2},
                {"product_id": bandage.id, "quantity": 1},
            ],
        )

        assert stock_service.load_product(bandage.id).current_stock == 3
        assert stock_service.load_product(shampoo.id).current_stock == 8

    def test_override_rejects_negative_quantity(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])
        with pytest.raises(ValidationError):
            appointment_service.complete_appointment(
                appointment.id,
                performed_by=staff.id,
                consumed_items=[{"product_id": shampoo.id, "quantity": -1}],
            )
        assert _reservations(appointment.id)[0].status == ReservationStatus.ACTIVE

    def test_override_rejects_product_of_another_company(self, confirmed, grooming, shampoo, staff,
                                                         db_session, other_store):
        from petshop.models import Product

        foreign = Product(
            company_id=other_store.company_id, sku="F-1", name="Foreign Shampoo",
            unit_price_cents=100, stock_tracked=True, current_stock=5,
        )
        db_session.add(foreign)
        db_session.commit()
        appointment = confirmed([grooming])

        with pytest.raises(NotFoundError):
            appointment_service.complete_appointment(
                appointment.id,
                performed_by=staff.id,
                consumed_items=[{"product_id": foreign.id, "quantity": 2}],
            )

        assert stock_service.load_product(foreign.id).current_stock == 5
        assert _consumptions(appointment.id) == []
        assert _reservations(appointment.id)[0].status == ReservationStatus.ACTIVE
        assert appointment_service.get_appointment(appointment.id).status == AppointmentStatus.CONFIRMED


# =============================================================================
# CANCEL
# =============================================================================


class TestCancelAppointment:

    def test_cancel_releases_reservations(self, book, grooming, shampoo, staff):
        appointment = book([grooming])

        result = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="sick pet")

        assert result.status == "cancelled"
        assert result.appointment.status == AppointmentStatus.CANCELLED
        assert result.appointment.cancellation_reason == "sick pet"
        assert result.appointment.cancelled_by == staff.id
        assert stock_service.get_available_stock(shampoo.id) == 10
        assert stock_service.load_product(shampoo.id).current_stock == 10
        assert _reservations(appointment.id)[0].status == ReservationStatus.RELEASED

    def test_cancel_requires_reason(self, book, grooming, staff):
        appointment = book([grooming])
        with pytest.raises(ValidationError):
            appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="  ")
        assert appointment_service.get_appointment(appointment.id).status == AppointmentStatus.BOOKED

    def test_no_show_needs_no_reason(self, confirmed, grooming, staff):
        appointment = confirmed([grooming])
        result = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, no_show=True)

        assert result.appointment.no_show is True
        assert result.appointment.cancellation_reason == "no_show"

    def test_completed_appointment_cannot_be_cancelled(self, confirmed, grooming, shampoo, staff):
        appointment = confirmed([grooming])
        appointment_service.complete_appointment(appointment.id, performed_by=staff.id)

        with pytest.raises(BusinessRuleViolationError):
            appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="too late")
        assert stock_service.load_product(shampoo.id).current_stock == 8

    def test_cancel_skips_already_released_hold(self, book, grooming, staff):
        appointment = book([grooming])
        reservation = _reservations(appointment.id)[0]
        reservation_service.release_reservation(reservation.id, performed_by=staff.id)

        result = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="moved")
        assert result.status == "cancelled"
        assert result.steps == []

    def test_cancel_partial_failure_then_resume(self, book, make_product, make_service, staff, monkeypatch):
        p1 = make_product(10, name="Ear Cleaner")
        p2 = make_product(10, name="Nail Polish")
        first, second = sorted([p1, p2], key=lambda p: p.id)
        service = make_service("Pamper", consumes=[(first, 2), (second, 3)])
        appointment = book([service])

        real_release = appointment_service.release_reservation
        calls = []

        def flaky_release(reservation_id, **kwargs):
            calls.append(reservation_id)
            if len(calls) == 2:
                raise PersistenceError("Database operation failed")
            return real_release(reservation_id, **kwargs)

        monkeypatch.setattr(appointment_service, "release_reservation", flaky_release)
        result = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="rain")

        assert result.is_partial
        assert result.appointment.status == AppointmentStatus.BOOKED
        assert [s.ok for s in result.steps] == [True, False]
        assert result.steps[1].error["code"] == "PERSISTENCE_ERROR"
        pending = _reservations(appointment.id, status=ReservationStatus.ACTIVE)
        assert [r.product_id for r in pending] == [second.id]
        assert result.pending_reservation_ids == [pending[0].id]
        assert stock_service.get_available_stock(first.id) == 10
        assert stock_service.get_available_stock(second.id) == 7

        monkeypatch.setattr(appointment_service, "release_reservation", real_release)
        retry = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="rain")

        assert retry.status == "cancelled"
        assert [(s.product_id, s.action) for s in retry.steps] == [(second.id, "released")]
        assert retry.appointment.status == AppointmentStatus.CANCELLED
        assert _reservations(appointment.id, status=ReservationStatus.ACTIVE) == []
        assert stock_service.get_available_stock(second.id) == 10

    def test_hold_closed_during_cancel_is_reported_skipped(self, book, grooming, shampoo, staff, monkeypatch):
        appointment = book([grooming])
        real_release = appointment_service.release_reservation

        def release_twice(reservation_id, **kwargs):
            # Someone else releases it between the scan and our release
            real_release(reservation_id, performed_by="sweeper")
            return real_release(reservation_id, **kwargs)

        monkeypatch.setattr(appointment_service, "release_reservation", release_twice)
        result = appointment_service.cancel_appointment(appointment.id, performed_by=staff.id, reason="moved")

        assert result.status == "cancelled"
        assert [s.action for s in result.steps] == ["skipped"]
        assert all(s.ok for s in result.steps)
        event = db.session.query(AuditEvent).filter_by(event_type="appointment.cancelled").one()
        assert '"released": []' in event.payload


# =============================================================================
# SEARCH
# =============================================================================


class TestSearchAppointments:

    def test_filters_by_window_and_status(self, book, grooming, store, staff):
        a = book([grooming])
        b = book([grooming], start="2030-03-05T10:00:00Z", end="2030-03-05T11:00:00Z")
        appointment_service.confirm_appointment(b.id, performed_by=staff.id)

        by_day = appointment_service.search_appointments(
            store_id=store.id, start_from="2030-03-04T00:00:00Z", start_to="2030-03-04T23:59:59Z"
        )
        assert [x.id for x in by_day] == [a.id]

        by_status = appointment_service.search_appointments(store_id=store.id, status=AppointmentStatus.CONFIRMED)
        assert [x.id for x in by_status] == [b.id]
