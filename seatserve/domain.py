"""Booking policy: date legality, booking and cancellation rules.

Everything here is pure. Callers hand in a snapshot and the current instant
and get a verdict back; nothing reads storage or the wall clock.

Office time is the UTC instant shifted by a fixed offset (UTC+05:30 by
default), with no timezone database lookup and no DST.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Collection, Iterable

from seatserve.constants import (
    CUTOFF_HOUR,
    HORIZON_WORKING_DAYS,
    OFFICE_OFFSET_MINUTES,
    REASON_CUTOFF,
    REASON_DESK_BOOKED,
    REASON_EMPLOYEE_BOOKED,
    REASON_HOLIDAY,
    REASON_MESSAGES,
    REASON_OUT_OF_HORIZON,
    REASON_PAST_DATE,
    REASON_UNKNOWN_DESK,
    REASON_WEEKEND,
    WEEKEND,
)
from seatserve.errors import PolicyRejection
from seatserve.models import BookingRecord, DeskRecord, HolidayRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PolicyConfig:
    cutoff_hour: int = CUTOFF_HOUR
    offset_minutes: int = OFFICE_OFFSET_MINUTES
    horizon_working_days: int = HORIZON_WORKING_DAYS


DEFAULT_POLICY = PolicyConfig()


def validate_policy_config(config: PolicyConfig) -> None:
    if not 0 <= config.cutoff_hour <= 24:
        raise ValueError("cutoff_hour must be between 0 and 24")
    if not -24 * 60 < config.offset_minutes < 24 * 60:
        raise ValueError("offset_minutes must be less than a day in either direction")
    if config.horizon_working_days < 1:
        raise ValueError("horizon_working_days must be >= 1")


@dataclass(frozen=True)
class Snapshot:
    desks: tuple[DeskRecord, ...] = ()
    bookings: tuple[BookingRecord, ...] = ()
    holidays: tuple[HolidayRecord, ...] = ()
    revision: int = 0

    @property
    def holiday_dates(self) -> frozenset[date]:
        return frozenset(item.date for item in self.holidays)

    @property
    def desk_ids(self) -> frozenset[str]:
        return frozenset(item.desk_id for item in self.desks)


@dataclass(frozen=True)
class BookingRequest:
    employee_id: str
    desk_id: str
    date: date


@dataclass(frozen=True)
class Verdict:
    ok: bool
    reason: str | None = None
    message: str = field(default="", compare=False)

    @classmethod
    def accept(cls) -> "Verdict":
        return cls(ok=True)

    @classmethod
    def reject(cls, reason: str) -> "Verdict":
        return cls(ok=False, reason=reason, message=REASON_MESSAGES.get(reason, reason))

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_rejection(self, exc_type: type[PolicyRejection] = PolicyRejection) -> None:
        if not self.ok:
            raise exc_type(self.reason or "rejected", self.message or None)


def office_now(now: datetime, offset_minutes: int = OFFICE_OFFSET_MINUTES) -> datetime:
    """Shift a UTC instant to naive office wall time.

    Naive inputs are taken to be UTC already.
    """
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    return now + timedelta(minutes=offset_minutes)


def office_today(now: datetime, config: PolicyConfig = DEFAULT_POLICY) -> date:
    return office_now(now, config.offset_minutes).date()


def past_cutoff(now: datetime, config: PolicyConfig = DEFAULT_POLICY) -> bool:
    return office_now(now, config.offset_minutes).hour >= config.cutoff_hour


def is_weekend(value: date) -> bool:
    return value.weekday() in WEEKEND


def is_holiday(value: date, holidays: Collection[date]) -> bool:
    return value in holidays


def is_working_day(value: date, holidays: Collection[date]) -> bool:
    return not is_weekend(value) and not is_holiday(value, holidays)


def booking_horizon(
    today: date,
    holidays: Collection[date],
    working_days: int = HORIZON_WORKING_DAYS,
) -> date:
    """Date of the n-th working day after ``today``."""
    found = 0
    cursor = today
    while found < working_days:
        cursor += timedelta(days=1)
        if is_working_day(cursor, holidays):
            found += 1
    return cursor


def check_date(
    value: date,
    holidays: Collection[date],
    now: datetime,
    config: PolicyConfig = DEFAULT_POLICY,
) -> Verdict:
    if is_weekend(value):
        return Verdict.reject(REASON_WEEKEND)
    if is_holiday(value, holidays):
        return Verdict.reject(REASON_HOLIDAY)
    today = office_today(now, config)
    if value < today:
        return Verdict.reject(REASON_PAST_DATE)
    if value > booking_horizon(today, holidays, config.horizon_working_days):
        return Verdict.reject(REASON_OUT_OF_HORIZON)
    return Verdict.accept()


def is_date_bookable(
    value: date,
    holidays: Collection[date],
    now: datetime,
    config: PolicyConfig = DEFAULT_POLICY,
) -> bool:
    return check_date(value, holidays, now, config).ok


def is_date_selectable(
    value: date,
    holidays: Collection[date],
    now: datetime,
    own_booking_dates: Collection[date] = (),
    config: PolicyConfig = DEFAULT_POLICY,
) -> bool:
    """Whether a calendar should let the viewer pick ``value``.

    Past days the viewer booked stay selectable so their history is visible.
    This never makes a date bookable.
    """
    if value < office_today(now, config) and value in own_booking_dates:
        return True
    return is_date_bookable(value, holidays, now, config)


def can_create_booking(
    request: BookingRequest,
    snapshot: Snapshot,
    now: datetime,
    config: PolicyConfig = DEFAULT_POLICY,
) -> Verdict:
    # weekend is the first thing check_date looks at
    verdict = check_date(request.date, snapshot.holiday_dates, now, config)
    if not verdict:
        return verdict
    if request.date == office_today(now, config) and past_cutoff(now, config):
        return Verdict.reject(REASON_CUTOFF)
    if request.desk_id not in snapshot.desk_ids:
        return Verdict.reject(REASON_UNKNOWN_DESK)

    same_day = [item for item in snapshot.bookings if item.date == request.date]
    if any(item.user_id == request.employee_id for item in same_day):
        return Verdict.reject(REASON_EMPLOYEE_BOOKED)
    if any(item.desk_id == request.desk_id for item in same_day):
        return Verdict.reject(REASON_DESK_BOOKED)
    return Verdict.accept()


def can_cancel_booking(
    booking: BookingRecord,
    now: datetime,
    config: PolicyConfig = DEFAULT_POLICY,
) -> Verdict:
    if booking.date == office_today(now, config) and past_cutoff(now, config):
        return Verdict.reject(REASON_CUTOFF)
    return Verdict.accept()


def available_desks(
    value: date,
    desks: Iterable[DeskRecord],
    bookings: Iterable[BookingRecord],
) -> set[str]:
    booked = {item.desk_id for item in bookings if item.date == value}
    return {desk.desk_id for desk in desks} - booked


def normalize_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return False
