from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException

from conftest import MONDAY, at_office_time
from seatserve.errors import PolicyRejection

TUESDAY = MONDAY + timedelta(days=1)
SATURDAY = MONDAY + timedelta(days=5)


def test_reject_weekend(env):
    with pytest.raises(PolicyRejection) as exc:
        env["service"].create_booking(env["alice"], env["desk_a"], SATURDAY)
    assert exc.value.reason == "weekend"


def test_reject_outside_horizon(env):
    with pytest.raises(PolicyRejection) as exc:
        env["service"].create_booking(env["alice"], env["desk_a"], MONDAY + timedelta(days=3))
    assert exc.value.reason == "out-of-horizon"


def test_reject_holiday(env):
    env["repo"].add_holiday(TUESDAY, "Diwali")
    with pytest.raises(PolicyRejection) as exc:
        env["service"].create_booking(env["alice"], env["desk_a"], TUESDAY)
    assert exc.value.reason == "holiday"


def test_booking_scenario(env):
    svc = env["service"]
    created = svc.create_booking(env["alice"], env["desk_a"], TUESDAY)
    assert created.user_name == "Alice"

    with pytest.raises(PolicyRejection) as exc:
        svc.create_booking(env["bob"], env["desk_a"], TUESDAY)
    assert exc.value.reason == "double-booking-desk"

    with pytest.raises(PolicyRejection) as exc:
        svc.create_booking(env["alice"], env["desk_b"], TUESDAY)
    assert exc.value.reason == "double-booking-employee"


def test_same_day_cutoff(env):
    svc = env["service"]
    env["clock"].now = at_office_time(MONDAY, 14)
    with pytest.raises(PolicyRejection) as exc:
        svc.create_booking(env["alice"], env["desk_a"], MONDAY)
    assert exc.value.reason == "cutoff"

    env["clock"].now = at_office_time(MONDAY, 13, 59)
    booking = svc.create_booking(env["alice"], env["desk_a"], MONDAY)

    env["clock"].now = at_office_time(MONDAY, 14, 5)
    with pytest.raises(PolicyRejection) as exc:
        svc.cancel_booking(env["alice"], booking.booking_id)
    assert exc.value.reason == "cutoff"


def test_cancel_restores_free_desk(env):
    svc = env["service"]
    booking = svc.create_booking(env["alice"], env["desk_a"], TUESDAY)
    assert svc.free_desks(TUESDAY) == [env["desk_b"]]

    svc.cancel_booking(env["alice"], booking.booking_id)
    assert svc.free_desks(TUESDAY) == [env["desk_a"], env["desk_b"]]


def test_cannot_cancel_other_users_booking(env):
    svc = env["service"]
    booking = svc.create_booking(env["alice"], env["desk_a"], TUESDAY)
    with pytest.raises(HTTPException) as exc:
        svc.cancel_booking(env["bob"], booking.booking_id)
    assert exc.value.status_code == 403

    svc.cancel_booking(env["admin"], booking.booking_id)
    assert svc.bookings_for_user(env["alice"]) == []


def test_admin_books_on_behalf_of_employee(env):
    svc = env["service"]
    booking = svc.create_booking(env["admin"], env["desk_b"], TUESDAY, employee_id=env["carol"].user_id)
    assert booking.user_id == env["carol"].user_id
    assert booking.user_name == "Carol"

    with pytest.raises(HTTPException) as exc:
        svc.create_booking(env["alice"], env["desk_a"], TUESDAY, employee_id=env["bob"].user_id)
    assert exc.value.status_code == 403


def test_calendar_marks_bookable_and_history(env):
    svc = env["service"]
    repo = env["repo"]
    last_friday = MONDAY - timedelta(days=3)
    repo.create_booking(env["alice"].user_id, "Alice", env["desk_a"], last_friday)
    repo.add_holiday(TUESDAY, "Diwali")

    days = {d.date: d for d in svc.calendar(env["alice"], last_friday, MONDAY + timedelta(days=4))}
    assert days[last_friday].selectable and not days[last_friday].bookable
    assert days[last_friday].booked
    assert days[MONDAY].bookable
    assert days[TUESDAY].holiday == "Diwali" and not days[TUESDAY].bookable
    # horizon moved to Thursday by the holiday
    assert days[MONDAY + timedelta(days=3)].bookable
    assert not days[MONDAY + timedelta(days=4)].bookable


def test_daily_bookings_sorted_by_name(env):
    svc = env["service"]
    svc.create_booking(env["bob"], env["desk_a"], TUESDAY)
    svc.create_booking(env["alice"], env["desk_b"], TUESDAY)
    assert [b.user_name for b in svc.bookings_for_day(TUESDAY)] == ["Alice", "Bob"]


def test_cannot_remove_booked_desk(env):
    svc = env["service"]
    svc.create_booking(env["alice"], env["desk_a"], TUESDAY)
    with pytest.raises(HTTPException) as exc:
        svc.admin_delete_desk(env["admin"], env["desk_a"])
    assert exc.value.status_code == 409
    svc.admin_delete_desk(env["admin"], env["desk_b"])
    assert [d.desk_id for d in svc.list_desks()] == [env["desk_a"]]


def test_duplicate_desk_and_holiday_rejected(env):
    svc = env["service"]
    with pytest.raises(HTTPException) as exc:
        svc.admin_add_desk(env["admin"], env["desk_a"])
    assert exc.value.status_code == 409

    svc.admin_add_holiday(env["admin"], TUESDAY, "Diwali")
    with pytest.raises(HTTPException) as exc:
        svc.admin_add_holiday(env["admin"], TUESDAY, "Another")
    assert exc.value.status_code == 409


def test_non_admin_cannot_manage(env):
    with pytest.raises(HTTPException) as exc:
        env["service"].admin_add_desk(env["alice"], "6.W.WS.200")
    assert exc.value.status_code == 403


def test_seed_desks_only_when_empty(repo, clock):
    from seatserve.services import BookingService

    svc = BookingService(repo=repo, clock=clock)
    admin = repo.upsert_user("Ada Admin", "ada@t-systems.com", is_admin=True)
    result = svc.admin_seed_desks(admin)
    assert result["created"] == 117
    desks = [d.desk_id for d in svc.list_desks()]
    assert desks[0] == "6.W.WS.019" and desks[-1] == "6.W.WS.135"

    assert svc.admin_seed_desks(admin)["created"] == 0


def test_last_admin_is_protected(env):
    svc = env["service"]
    admin = env["admin"]
    with pytest.raises(HTTPException) as exc:
        svc.admin_set_user_enabled(admin, admin.user_id, False)
    assert exc.value.status_code == 409
    with pytest.raises(HTTPException):
        svc.admin_delete_user(admin, admin.user_id)
    with pytest.raises(HTTPException):
        svc.admin_upsert_user(admin, admin.email, admin.name, is_admin=False)

    svc.admin_upsert_user(admin, "bob@t-systems.com", "Bob", is_admin=True, team="Platform")
    disabled = svc.admin_set_user_enabled(admin, admin.user_id, False)
    assert not disabled.enabled


def test_first_user_becomes_admin(repo, clock):
    from seatserve.services import BookingService

    svc = BookingService(repo=repo, clock=clock)
    first = svc.ensure_user_for_email("first@t-systems.com", "First User")
    second = svc.ensure_user_for_email("second@t-systems.com")
    assert first.is_admin and first.name == "First User"
    assert not second.is_admin and second.name == "second"


def test_backup_created_on_write(env):
    env["service"].create_booking(env["alice"], env["desk_a"], TUESDAY)
    assert list(env["repo"].backup_dir.glob("*.xlsx"))
