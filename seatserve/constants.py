from __future__ import annotations

WEEKEND = {5, 6}  # Sat, Sun with Python weekday mapping (Mon=0)

CUTOFF_HOUR = 14
OFFICE_OFFSET_MINUTES = 330  # UTC+05:30, fixed, no DST
HORIZON_WORKING_DAYS = 2

ROLE_ADMIN = "admin"
ROLE_USER = "user"

REASON_WEEKEND = "weekend"
REASON_HOLIDAY = "holiday"
REASON_PAST_DATE = "past-date"
REASON_OUT_OF_HORIZON = "out-of-horizon"
REASON_CUTOFF = "cutoff"
REASON_EMPLOYEE_BOOKED = "double-booking-employee"
REASON_DESK_BOOKED = "double-booking-desk"
REASON_UNKNOWN_DESK = "unknown-desk"

REASON_MESSAGES = {
    REASON_WEEKEND: "Bookings are not allowed on Saturdays or Sundays.",
    REASON_HOLIDAY: "This date is a public holiday.",
    REASON_PAST_DATE: "Cannot book a date in the past.",
    REASON_OUT_OF_HORIZON: "Bookings open two working days in advance.",
    REASON_CUTOFF: "Same-day bookings and cancellations are only allowed until 2 PM IST.",
    REASON_EMPLOYEE_BOOKED: "You can only book one desk per day.",
    REASON_DESK_BOOKED: "This desk is already booked on this date.",
    REASON_UNKNOWN_DESK: "Desk not found.",
}

# Date-shape rejections are bad input; the rest are conflicts with current state.
DATE_REASONS = {REASON_WEEKEND, REASON_HOLIDAY, REASON_PAST_DATE, REASON_OUT_OF_HORIZON}

SEED_DESK_PREFIX = "6.W.WS."
SEED_DESK_RANGE = (19, 135)

SHEETS = ["users", "desks", "bookings", "holidays", "meta"]

USERS_HEADERS = ["user_id", "name", "email", "enabled", "is_admin", "team", "created_at"]
DESKS_HEADERS = ["desk_id", "created_at"]
BOOKINGS_HEADERS = [
    "booking_id",
    "desk_id",
    "date",
    "user_id",
    "user_name",
    "created_at",
]
HOLIDAYS_HEADERS = ["holiday_id", "date", "name"]
META_HEADERS = ["key", "value"]
