from __future__ import annotations

import shutil
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable

from filelock import FileLock
from openpyxl import Workbook, load_workbook

from seatserve.config import settings
from seatserve.constants import (
    BOOKINGS_HEADERS,
    DESKS_HEADERS,
    HOLIDAYS_HEADERS,
    META_HEADERS,
    REASON_DESK_BOOKED,
    REASON_EMPLOYEE_BOOKED,
    USERS_HEADERS,
)
from seatserve.domain import Snapshot, normalize_bool
from seatserve.feed import Listener, SnapshotFeed, Subscription
from seatserve.logger import get_logger
from seatserve.models import BookingRecord, DeskRecord, HolidayRecord, UserRecord

logger = get_logger(__name__)

REVISION_KEY = "revision"


class DuplicateBookingError(ValueError):
    def __init__(self, message: str, reason: str) -> None:
        self.reason = reason
        super().__init__(message)


@dataclass
class Tables:
    users: list[dict[str, Any]]
    desks: list[dict[str, Any]]
    bookings: list[dict[str, Any]]
    holidays: list[dict[str, Any]]
    meta: list[dict[str, Any]]


class ExcelRepository:
    def __init__(
        self,
        data_file: Path | None = None,
        backup_dir: Path | None = None,
        lock_file: Path | None = None,
    ) -> None:
        self.data_file = Path(data_file or settings.data_file)
        self.backup_dir = Path(backup_dir or settings.backup_dir)
        self.lock_file = Path(lock_file or settings.lock_file)
        self.lock = FileLock(str(self.lock_file))
        self.feed = SnapshotFeed(self.snapshot)

    def init_storage(self) -> None:
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        if self.data_file.exists():
            return

        wb = Workbook()
        default = wb.active
        wb.remove(default)
        for sheet_name, headers in self._sheet_headers().items():
            ws = wb.create_sheet(sheet_name)
            ws.append(headers)
        wb["meta"].append([REVISION_KEY, 0])
        wb.save(self.data_file)
        logger.info("Initialized storage at %s", self.data_file)

    # snapshot / feed

    def snapshot(self) -> Snapshot:
        tables = self._read_tables()
        return Snapshot(
            desks=tuple(self._desk(row) for row in tables.desks if row.get("desk_id")),
            bookings=tuple(self._booking(row) for row in tables.bookings if row.get("booking_id")),
            holidays=tuple(self._holiday(row) for row in tables.holidays if row.get("holiday_id")),
            revision=self._revision(tables),
        )

    def subscribe(self, listener: Listener) -> Subscription:
        return self.feed.subscribe(listener)

    # users

    def list_users(self) -> list[UserRecord]:
        tables = self._read_tables()
        return [self._user(row) for row in tables.users if row.get("user_id")]

    def get_user_by_name(self, name: str) -> UserRecord | None:
        normalized_name = name.strip().lower()
        for user in self.list_users():
            if user.name.strip().lower() == normalized_name:
                return user
        return None

    def get_user_by_email(self, email: str) -> UserRecord | None:
        normalized = email.lower()
        for user in self.list_users():
            if user.email and user.email.lower() == normalized:
                return user
        return None

    def get_user(self, user_id: str) -> UserRecord | None:
        for user in self.list_users():
            if user.user_id == user_id:
                return user
        return None

    def upsert_user(
        self,
        name: str,
        email: str,
        enabled: bool = True,
        is_admin: bool = False,
        team: str = "",
    ) -> UserRecord:
        now = _now_iso()
        normalized_email = email.lower().strip()

        def mutate(tables: Tables) -> dict[str, Any]:
            for row in tables.users:
                if str(row.get("email") or "").lower() == normalized_email:
                    row["name"] = name.strip()
                    row["enabled"] = enabled
                    row["is_admin"] = is_admin
                    row["team"] = team.strip()
                    return row
            row = {
                "user_id": uuid.uuid4().hex,
                "name": name.strip(),
                "email": normalized_email,
                "enabled": enabled,
                "is_admin": is_admin,
                "team": team.strip(),
                "created_at": now,
            }
            tables.users.append(row)
            return row

        return self._user(self._write_tables(mutate))

    def set_user_enabled(self, user_id: str, enabled: bool) -> UserRecord | None:
        def mutate(tables: Tables) -> dict[str, Any] | None:
            for row in tables.users:
                if row.get("user_id") == user_id:
                    row["enabled"] = enabled
                    return row
            return None

        row = self._write_tables(mutate)
        return self._user(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        def mutate(tables: Tables) -> bool:
            initial = len(tables.users)
            tables.users = [row for row in tables.users if row.get("user_id") != user_id]
            return len(tables.users) != initial

        return bool(self._write_tables(mutate))

    # desks

    def list_desks(self) -> list[DeskRecord]:
        tables = self._read_tables()
        return sorted(
            (self._desk(row) for row in tables.desks if row.get("desk_id")),
            key=lambda desk: desk.desk_id,
        )

    def get_desk(self, desk_id: str) -> DeskRecord | None:
        for desk in self.list_desks():
            if desk.desk_id == desk_id:
                return desk
        return None

    def add_desk(self, desk_id: str) -> DeskRecord:
        def mutate(tables: Tables) -> dict[str, Any]:
            if any(row.get("desk_id") == desk_id for row in tables.desks):
                raise ValueError("This desk number already exists.")
            row = {"desk_id": desk_id, "created_at": _now_iso()}
            tables.desks.append(row)
            return row

        return self._desk(self._write_tables(mutate))

    def add_desks(self, desk_ids: list[str]) -> int:
        def mutate(tables: Tables) -> int:
            existing = {row.get("desk_id") for row in tables.desks}
            now = _now_iso()
            added = 0
            for desk_id in desk_ids:
                if desk_id in existing:
                    continue
                tables.desks.append({"desk_id": desk_id, "created_at": now})
                existing.add(desk_id)
                added += 1
            return added

        return self._write_tables(mutate)

    def delete_desk(self, desk_id: str) -> bool:
        def mutate(tables: Tables) -> bool:
            if any(row.get("desk_id") == desk_id for row in tables.bookings):
                raise ValueError("Cannot remove desk with active bookings.")
            initial = len(tables.desks)
            tables.desks = [row for row in tables.desks if row.get("desk_id") != desk_id]
            return len(tables.desks) != initial

        return bool(self._write_tables(mutate))

    # bookings

    def list_bookings(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[BookingRecord]:
        tables = self._read_tables()
        rows: list[BookingRecord] = []
        for row in tables.bookings:
            if not row.get("booking_id"):
                continue
            value_date = self._parse_date(row["date"])
            if start_date and value_date < start_date:
                continue
            if end_date and value_date > end_date:
                continue
            rows.append(self._booking(row))
        return rows

    def get_booking(self, booking_id: str) -> BookingRecord | None:
        for item in self.list_bookings():
            if item.booking_id == booking_id:
                return item
        return None

    def create_booking(
        self,
        user_id: str,
        user_name: str,
        desk_id: str,
        value_date: date,
    ) -> BookingRecord:
        """Insert a booking, re-checking uniqueness under the write lock.

        Policy checks run against a snapshot the caller read earlier, so two
        requests can both pass them. Only one of them gets past this point.
        """

        def mutate(tables: Tables) -> dict[str, Any]:
            for existing in tables.bookings:
                if self._parse_date(existing["date"]) != value_date:
                    continue
                if existing["user_id"] == user_id:
                    raise DuplicateBookingError(
                        "User already has a desk on this date", REASON_EMPLOYEE_BOOKED
                    )
                if existing["desk_id"] == desk_id:
                    raise DuplicateBookingError(
                        "Desk already booked on this date", REASON_DESK_BOOKED
                    )
            row = {
                "booking_id": uuid.uuid4().hex,
                "desk_id": desk_id,
                "date": value_date.isoformat(),
                "user_id": user_id,
                "user_name": user_name,
                "created_at": _now_iso(),
            }
            tables.bookings.append(row)
            return row

        return self._booking(self._write_tables(mutate))

    def delete_booking(self, booking_id: str) -> bool:
        def mutate(tables: Tables) -> bool:
            initial = len(tables.bookings)
            tables.bookings = [
                row for row in tables.bookings if row.get("booking_id") != booking_id
            ]
            return len(tables.bookings) != initial

        return bool(self._write_tables(mutate))

    # holidays

    def list_holidays(self) -> list[HolidayRecord]:
        tables = self._read_tables()
        return sorted(
            (self._holiday(row) for row in tables.holidays if row.get("holiday_id")),
            key=lambda item: item.date,
        )

    def add_holiday(self, value_date: date, name: str) -> HolidayRecord:
        def mutate(tables: Tables) -> dict[str, Any]:
            for existing in tables.holidays:
                if self._parse_date(existing["date"]) == value_date:
                    raise ValueError("A holiday on this date already exists.")
            row = {
                "holiday_id": uuid.uuid4().hex,
                "date": value_date.isoformat(),
                "name": name.strip(),
            }
            tables.holidays.append(row)
            return row

        return self._holiday(self._write_tables(mutate))

    def delete_holiday(self, holiday_id: str) -> bool:
        def mutate(tables: Tables) -> bool:
            initial = len(tables.holidays)
            tables.holidays = [
                row for row in tables.holidays if row.get("holiday_id") != holiday_id
            ]
            return len(tables.holidays) != initial

        return bool(self._write_tables(mutate))

    def stats(self) -> dict[str, int]:
        tables = self._read_tables()
        return {
            "total_bookings": len([r for r in tables.bookings if r.get("booking_id")]),
            "active_users": len(
                [r for r in tables.users if r.get("user_id") and normalize_bool(r["enabled"])]
            ),
            "desks": len([r for r in tables.desks if r.get("desk_id")]),
            "holidays": len([r for r in tables.holidays if r.get("holiday_id")]),
        }

    # workbook plumbing

    def _sheet_headers(self) -> dict[str, list[str]]:
        return {
            "users": USERS_HEADERS,
            "desks": DESKS_HEADERS,
            "bookings": BOOKINGS_HEADERS,
            "holidays": HOLIDAYS_HEADERS,
            "meta": META_HEADERS,
        }

    def _load(self, wb: Workbook) -> Tables:
        return Tables(
            users=self._read_sheet(wb, "users", USERS_HEADERS),
            desks=self._read_sheet(wb, "desks", DESKS_HEADERS),
            bookings=self._read_sheet(wb, "bookings", BOOKINGS_HEADERS),
            holidays=self._read_sheet(wb, "holidays", HOLIDAYS_HEADERS),
            meta=self._read_sheet(wb, "meta", META_HEADERS),
        )

    def _read_tables(self) -> Tables:
        self.init_storage()
        wb = load_workbook(self.data_file)
        try:
            return self._load(wb)
        finally:
            wb.close()

    def _write_tables(self, mutator: Callable[[Tables], Any]) -> Any:
        self.init_storage()
        with self.lock:
            wb = load_workbook(self.data_file)
            try:
                tables = self._load(wb)
                result = mutator(tables)
                revision = self._bump_revision(tables)
                for name, headers in self._sheet_headers().items():
                    self._write_sheet(wb, name, headers, getattr(tables, name))
                self._persist_workbook(wb)
            finally:
                wb.close()
        logger.debug("Storage write committed at revision %s", revision)
        self.feed.publish()
        return result

    def _revision(self, tables: Tables) -> int:
        for row in tables.meta:
            if row.get("key") == REVISION_KEY:
                return int(row.get("value") or 0)
        return 0

    def _bump_revision(self, tables: Tables) -> int:
        revision = self._revision(tables) + 1
        for row in tables.meta:
            if row.get("key") == REVISION_KEY:
                row["value"] = revision
                return revision
        tables.meta.append({"key": REVISION_KEY, "value": revision})
        return revision

    def _persist_workbook(self, workbook: Workbook) -> None:
        with NamedTemporaryFile(suffix=".xlsx", delete=False) as tmp:
            temp_path = Path(tmp.name)
        try:
            workbook.save(temp_path)
            if self.data_file.exists():
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
                backup_path = self.backup_dir / f"seatserve-{stamp}.xlsx"
                shutil.copy2(self.data_file, backup_path)
            shutil.move(str(temp_path), str(self.data_file))
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _read_sheet(self, workbook: Workbook, name: str, headers: list[str]) -> list[dict[str, Any]]:
        if name not in workbook.sheetnames:
            return []
        ws = workbook[name]
        rows: list[dict[str, Any]] = []
        for row in ws.iter_rows(min_row=2, values_only=True):
            if all(item is None for item in row):
                continue
            payload: dict[str, Any] = {}
            for index, header in enumerate(headers):
                payload[header] = row[index] if index < len(row) else None
            rows.append(payload)
        return rows

    def _write_sheet(
        self,
        workbook: Workbook,
        name: str,
        headers: list[str],
        rows: list[dict[str, Any]],
    ) -> None:
        if name not in workbook.sheetnames:
            workbook.create_sheet(name)
        ws = workbook[name]
        ws.delete_rows(1, ws.max_row)
        ws.append(headers)
        for row in rows:
            ws.append([row.get(header) for header in headers])

    # row -> record

    def _user(self, row: dict[str, Any]) -> UserRecord:
        return UserRecord(
            user_id=row["user_id"],
            name=self._normalize_user_name(row),
            email=row.get("email") or None,
            enabled=normalize_bool(row["enabled"]),
            is_admin=normalize_bool(row["is_admin"]),
            team=str(row.get("team") or "").strip(),
            created_at=self._parse_datetime(row["created_at"]),
        )

    def _desk(self, row: dict[str, Any]) -> DeskRecord:
        return DeskRecord(desk_id=str(row["desk_id"]))

    def _booking(self, row: dict[str, Any]) -> BookingRecord:
        return BookingRecord(
            booking_id=row["booking_id"],
            desk_id=str(row["desk_id"]),
            date=self._parse_date(row["date"]),
            user_id=row["user_id"],
            user_name=str(row.get("user_name") or ""),
            created_at=self._parse_datetime(row["created_at"]),
        )

    def _holiday(self, row: dict[str, Any]) -> HolidayRecord:
        return HolidayRecord(
            holiday_id=row["holiday_id"],
            date=self._parse_date(row["date"]),
            name=str(row.get("name") or ""),
        )

    def _parse_date(self, raw: Any) -> date:
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        return date.fromisoformat(str(raw))

    def _parse_datetime(self, raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        return datetime.fromisoformat(str(raw))

    def _normalize_user_name(self, row: dict[str, Any]) -> str:
        name = str(row.get("name") or "").strip()
        if name:
            return name
        email = str(row.get("email") or "").strip()
        if "@" in email:
            return email.split("@", 1)[0]
        return email or "user"


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
