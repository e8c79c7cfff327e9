# Overview: Store opening hours, staff working hours and the booking-time checks against them.

"""
Weekly hours are stored as JSON keyed by lowercase day name:

    Store.opening_hours  {"monday": {"open": "09:00", "close": "19:00"}, ...}
    User.working_hours   {"monday": {"start": "09:00", "end": "17:00"}, ...}

A day that is missing (or null) is closed / not working. A NULL column means
no restriction at all. Times are HH:MM wall-clock in the store's timezone.
"""

from __future__ import annotations

from datetime import datetime, time

from ..errors import BusinessRuleViolationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Store, User
from ..time_utils import to_local
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction

DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

STORE_HOURS_KEYS = ("open", "close")
STAFF_HOURS_KEYS = ("start", "end")


def _parse_hhmm(value, field: str) -> time:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an HH:MM string")
    try:
        hours, minutes = value.split(":")
        if len(hours) != 2 or len(minutes) != 2:
            raise ValueError(value)
        return time(int(hours), int(minutes))
    except ValueError:
        raise ValidationError(f"{field} must be an HH:MM string", details={"value": value})


def validate_weekly_hours(hours, *, keys: tuple[str, str]) -> dict | None:
    """Return a normalized copy of `hours`, or None to clear the restriction."""
    if hours is None:
        return None
    if not isinstance(hours, dict):
        raise ValidationError("hours must be an object keyed by day name")

    first, last = keys
    cleaned = {}
    for day, entry in hours.items():
        day_key = str(day).lower()
        if day_key not in DAYS:
            raise ValidationError(f"unknown day: {day}", details={"allowed": list(DAYS)})
        if entry is None:
            continue
        if not isinstance(entry, dict):
            raise ValidationError(f"{day_key} must be an object with {first} and {last}")
        begin = _parse_hhmm(entry.get(first), f"{day_key}.{first}")
        finish = _parse_hhmm(entry.get(last), f"{day_key}.{last}")
        if begin >= finish:
            raise ValidationError(f"{day_key}.{first} must be before {day_key}.{last}")
        cleaned[day_key] = {first: entry[first], last: entry[last]}
    return cleaned


def _within(hours: dict, keys: tuple[str, str], local_start: datetime, local_end: datetime) -> tuple[bool, str]:
    day = DAYS[local_start.weekday()]
    entry = hours.get(day)
    if not entry:
        return False, day
    if local_end.date() != local_start.date():
        return False, day
    first, last = keys
    begin = _parse_hhmm(entry[first], first)
    finish = _parse_hhmm(entry[last], last)
    return begin <= local_start.time() and local_end.time() <= finish, day


def check_booking_window(*, store: Store, staff: User, start_at: datetime, end_at: datetime) -> None:
    """
    Raise BusinessRuleViolationError unless `staff` may work the
    [start_at, end_at) slot at `store`.
    """
    if staff.store_id is not None and staff.store_id != store.id:
        raise BusinessRuleViolationError(
            "Staff member is not assigned to this store",
            details={"staff_id": staff.id, "store_id": store.id},
        )

    try:
        local_start = to_local(start_at, store.timezone)
        local_end = to_local(end_at, store.timezone)
    except ValueError as exc:
        raise BusinessRuleViolationError(str(exc), details={"store_id": store.id})

    if store.opening_hours is not None:
        ok, day = _within(store.opening_hours, STORE_HOURS_KEYS, local_start, local_end)
        if not ok:
            raise BusinessRuleViolationError(
                "Appointment is outside store opening hours",
                details={"store_id": store.id, "day": day, "hours": store.opening_hours.get(day)},
            )

    if staff.working_hours is not None:
        ok, day = _within(staff.working_hours, STAFF_HOURS_KEYS, local_start, local_end)
        if not ok:
            raise BusinessRuleViolationError(
                "Appointment is outside the staff member's working hours",
                details={"staff_id": staff.id, "day": day, "hours": staff.working_hours.get(day)},
            )


def set_store_opening_hours(store_id: str, hours, *, company_id: str, performed_by: str) -> Store:
    cleaned = validate_weekly_hours(hours, keys=STORE_HOURS_KEYS)

    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if store is None or store.company_id != company_id:
            raise NotFoundError("Store not found", details={"store_id": store_id})
        store.opening_hours = cleaned
        append_audit_event(
            event_type="store.opening_hours_set",
            entity_type="store",
            entity_id=store.id,
            performed_by=performed_by,
            store_id=store.id,
            payload={"opening_hours": cleaned},
        )
        return store

    return run_in_transaction(_op)


def set_staff_working_hours(user_id: str, hours, *, company_id: str, performed_by: str) -> User:
    cleaned = validate_weekly_hours(hours, keys=STAFF_HOURS_KEYS)

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if user is None or user.company_id != company_id:
            raise NotFoundError("User not found", details={"user_id": user_id})
        user.working_hours = cleaned
        append_audit_event(
            event_type="user.working_hours_set",
            entity_type="user",
            entity_id=user.id,
            performed_by=performed_by,
            store_id=user.store_id,
            payload={"working_hours": cleaned},
        )
        return user

    return run_in_transaction(_op)
