from __future__ import annotations

from datetime import date as DateType, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserRecord(BaseModel):
    user_id: str
    name: str
    email: EmailStr | None = None
    enabled: bool = True
    is_admin: bool = False
    team: str = ""
    created_at: datetime

    @property
    def role(self) -> str:
        return "admin" if self.is_admin else "user"


class DeskRecord(BaseModel):
    desk_id: str


class BookingRecord(BaseModel):
    booking_id: str
    desk_id: str
    date: DateType
    user_id: str
    user_name: str
    created_at: datetime


class HolidayRecord(BaseModel):
    holiday_id: str
    date: DateType
    name: str


class SnapshotResponse(BaseModel):
    revision: int
    desks: list[DeskRecord]
    bookings: list[BookingRecord]
    holidays: list[HolidayRecord]


class OTPRequest(BaseModel):
    email: EmailStr


class OTPVerify(BaseModel):
    email: EmailStr
    code: str = Field(min_length=4, max_length=10)
    name: str | None = None


class AuthToken(BaseModel):
    token: str
    user: UserRecord


class BookingCreate(BaseModel):
    desk_id: str
    date: DateType
    employee_id: str | None = None


class CalendarDay(BaseModel):
    date: DateType
    bookable: bool
    selectable: bool
    booked: bool
    holiday: str | None = None


class SuggestionRequest(BaseModel):
    date: DateType
    employee_id: str | None = None


class SeatingSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    desk_number: str = Field(alias="deskNumber")
    reasoning: str


class SuggestionBook(BaseModel):
    desk_id: str
    date: DateType
    employee_id: str | None = None


class AdminUserUpsert(BaseModel):
    email: EmailStr
    name: str
    is_admin: bool = False
    enabled: bool = True
    team: str = ""


class AdminUserEnabled(BaseModel):
    enabled: bool


class AdminDeskCreate(BaseModel):
    desk_id: str = Field(pattern=r"^[^.\s]+\.[^.\s]+\.[^.\s]+\.[^.\s]+$")


class AdminHolidayCreate(BaseModel):
    date: DateType
    name: str = Field(min_length=1)


class StatsResponse(BaseModel):
    total_bookings: int
    active_users: int
    desks: int
    holidays: int
