from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from fastapi import HTTPException, status

from seatserve.constants import SEED_DESK_PREFIX, SEED_DESK_RANGE
from seatserve.domain import (
    DEFAULT_POLICY,
    BookingRequest,
    PolicyConfig,
    Snapshot,
    available_desks,
    can_cancel_booking,
    can_create_booking,
    is_date_bookable,
    is_date_selectable,
    office_today,
    utcnow,
)
from seatserve.errors import PolicyRejection, StaleSuggestionConflict
from seatserve.logger import get_logger
from seatserve.models import (
    BookingRecord,
    CalendarDay,
    DeskRecord,
    HolidayRecord,
    SeatingSuggestion,
    UserRecord,
)
from seatserve.repository import DuplicateBookingError, ExcelRepository
from seatserve.suggestions import SeatingSuggestionOrchestrator

logger = get_logger(__name__)


@dataclass
class BookingService:
    repo: ExcelRepository
    clock: Callable[[], datetime] = utcnow
    policy: PolicyConfig = field(default=DEFAULT_POLICY)

    def today(self) -> date:
        return office_today(self.clock(), self.policy)

    # users

    def list_users(self) -> list[UserRecord]:
        return [user for user in self.repo.list_users() if user.enabled]

    def list_employees(self) -> list[UserRecord]:
        return [user for user in self.list_users() if not user.is_admin]

    def ensure_user_for_email(self, email: str, name: str | None = None) -> UserRecord:
        user = self.repo.get_user_by_email(email)
        if user:
            if not user.enabled:
                raise HTTPException(status_code=403, detail="User disabled")
            return user
        is_first = not self.repo.list_users()
        display_name = (name or "").strip() or email.split("@", 1)[0]
        user = self.repo.upsert_user(name=display_name, email=email, is_admin=is_first)
        if is_first:
            logger.info("First user %s created as admin", email)
        return user

    def get_user_or_404(self, user_id: str) -> UserRecord:
        user = self.repo.get_user(user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        if not user.enabled:
            raise HTTPException(status_code=403, detail="User disabled")
        return user

    # reads

    def snapshot(self) -> Snapshot:
        return self.repo.snapshot()

    def list_desks(self) -> list[DeskRecord]:
        return self.repo.list_desks()

    def list_holidays(self) -> list[HolidayRecord]:
        return self.repo.list_holidays()

    def free_desks(self, value_date: date) -> list[str]:
        snap = self.snapshot()
        return sorted(available_desks(value_date, snap.desks, snap.bookings))

    def bookings_for_day(self, value_date: date) -> list[BookingRecord]:
        rows = self.repo.list_bookings(value_date, value_date)
        return sorted(rows, key=lambda item: item.user_name.lower())

    def bookings_for_user(self, user: UserRecord) -> list[BookingRecord]:
        rows = [item for item in self.repo.list_bookings() if item.user_id == user.user_id]
        return sorted(rows, key=lambda item: item.date)

    def calendar(
        self,
        viewer: UserRecord,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[CalendarDay]:
        now = self.clock()
        today = office_today(now, self.policy)
        start = start_date or today
        end = end_date or (start + timedelta(days=13))
        if end < start:
            raise HTTPException(status_code=400, detail="end_date must not be before start_date")
        if (end - start).days > 366:
            raise HTTPException(status_code=400, detail="Calendar range is limited to one year")

        snap = self.snapshot()
        holidays = {item.date: item.name for item in snap.holidays}
        own_dates = {item.date for item in snap.bookings if item.user_id == viewer.user_id}

        days: list[CalendarDay] = []
        cursor = start
        while cursor <= end:
            days.append(
                CalendarDay(
                    date=cursor,
                    bookable=is_date_bookable(cursor, holidays.keys(), now, self.policy),
                    selectable=is_date_selectable(
                        cursor, holidays.keys(), now, own_dates, self.policy
                    ),
                    booked=cursor in own_dates,
                    holiday=holidays.get(cursor),
                )
            )
            cursor += timedelta(days=1)
        return days

    # bookings

    def create_booking(
        self,
        actor: UserRecord,
        desk_id: str,
        value_date: date,
        employee_id: str | None = None,
    ) -> BookingRecord:
        employee = self._resolve_employee(actor, employee_id)
        verdict = can_create_booking(
            BookingRequest(employee_id=employee.user_id, desk_id=desk_id, date=value_date),
            self.snapshot(),
            self.clock(),
            self.policy,
        )
        if not verdict:
            logger.info(
                "Booking of %s on %s for %s rejected: %s",
                desk_id,
                value_date,
                employee.user_id,
                verdict.reason,
            )
            verdict.raise_for_rejection()
        return self._insert_booking(employee, desk_id, value_date)

    def cancel_booking(self, actor: UserRecord, booking_id: str) -> None:
        booking = self.repo.get_booking(booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        if booking.user_id != actor.user_id and not actor.is_admin:
            raise HTTPException(status_code=403, detail="Cannot cancel other users bookings")
        can_cancel_booking(booking, self.clock(), self.policy).raise_for_rejection()
        deleted = self.repo.delete_booking(booking_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Booking not found")
        logger.info("Booking %s cancelled by %s", booking_id, actor.user_id)

    # suggestions

    def suggest_desk(
        self,
        actor: UserRecord,
        value_date: date,
        orchestrator: SeatingSuggestionOrchestrator,
        employee_id: str | None = None,
    ) -> SeatingSuggestion:
        employee = self._resolve_employee(actor, employee_id)
        return orchestrator.suggest(
            employee.name,
            value_date,
            self.repo.list_users(),
            self.snapshot(),
        )

    def book_suggestion(
        self,
        actor: UserRecord,
        desk_id: str,
        value_date: date,
        employee_id: str | None = None,
    ) -> BookingRecord:
        try:
            return self.create_booking(actor, desk_id, value_date, employee_id)
        except StaleSuggestionConflict:
            raise
        except PolicyRejection as exc:
            raise StaleSuggestionConflict(exc.reason, exc.message) from exc

    # admin

    def admin_upsert_user(
        self,
        actor: UserRecord,
        email: str,
        name: str,
        is_admin: bool,
        enabled: bool = True,
        team: str = "",
    ) -> UserRecord:
        self._require_admin(actor)
        existing = self.repo.get_user_by_email(email)
        if existing and existing.is_admin and existing.enabled and not (is_admin and enabled):
            self._require_other_admin(existing.user_id)
        return self.repo.upsert_user(
            name=name,
            email=email,
            enabled=enabled,
            is_admin=is_admin,
            team=team,
        )

    def admin_set_user_enabled(self, actor: UserRecord, user_id: str, enabled: bool) -> UserRecord:
        self._require_admin(actor)
        target = self.repo.get_user(user_id)
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
        if not enabled and target.is_admin:
            self._require_other_admin(user_id)
        updated = self.repo.set_user_enabled(user_id, enabled)
        if not updated:
            raise HTTPException(status_code=404, detail="User not found")
        return updated

    def admin_delete_user(self, actor: UserRecord, user_id: str) -> None:
        self._require_admin(actor)
        target = self.repo.get_user(user_id)
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
        if target.is_admin:
            self._require_other_admin(user_id)
        self.repo.delete_user(user_id)

    def admin_add_desk(self, actor: UserRecord, desk_id: str) -> DeskRecord:
        self._require_admin(actor)
        try:
            return self.repo.add_desk(desk_id.strip())
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    def admin_delete_desk(self, actor: UserRecord, desk_id: str) -> None:
        self._require_admin(actor)
        try:
            deleted = self.repo.delete_desk(desk_id)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Desk not found")

    def admin_seed_desks(self, actor: UserRecord) -> dict[str, object]:
        self._require_admin(actor)
        if self.repo.list_desks():
            return {"success": True, "created": 0, "message": "Desks already exist."}
        first, last = SEED_DESK_RANGE
        desk_ids = [f"{SEED_DESK_PREFIX}{number:03d}" for number in range(first, last + 1)]
        created = self.repo.add_desks(desk_ids)
        logger.info("Seeded %s desks", created)
        return {
            "success": True,
            "created": created,
            "message": f"Successfully created {created} desks.",
        }

    def admin_add_holiday(self, actor: UserRecord, value_date: date, name: str) -> HolidayRecord:
        self._require_admin(actor)
        try:
            return self.repo.add_holiday(value_date, name)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    def admin_delete_holiday(self, actor: UserRecord, holiday_id: str) -> None:
        self._require_admin(actor)
        if not self.repo.delete_holiday(holiday_id):
            raise HTTPException(status_code=404, detail="Holiday not found")

    def admin_stats(self, actor: UserRecord) -> dict[str, int]:
        self._require_admin(actor)
        return self.repo.stats()

    # helpers

    def _insert_booking(self, employee: UserRecord, desk_id: str, value_date: date) -> BookingRecord:
        try:
            booking = self.repo.create_booking(
                user_id=employee.user_id,
                user_name=employee.name,
                desk_id=desk_id,
                value_date=value_date,
            )
        except DuplicateBookingError as exc:
            logger.info("Concurrent booking lost for %s on %s: %s", desk_id, value_date, exc)
            raise PolicyRejection(exc.reason) from exc
        logger.info("Desk %s booked on %s for %s", desk_id, value_date, employee.user_id)
        return booking

    def _resolve_employee(self, actor: UserRecord, employee_id: str | None) -> UserRecord:
        if not employee_id or employee_id == actor.user_id:
            return actor
        self._require_admin(actor)
        return self.get_user_or_404(employee_id)

    def _require_admin(self, user: UserRecord) -> None:
        if not user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin required")

    def _require_other_admin(self, user_id: str) -> None:
        others = [
            user
            for user in self.repo.list_users()
            if user.is_admin and user.enabled and user.user_id != user_id
        ]
        if not others:
            raise HTTPException(
                status_code=409,
                detail="Cannot remove or disable the only active admin account.",
            )
