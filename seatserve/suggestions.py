"""AI-assisted desk suggestion.

Given an employee and a date, collect the employee's teammates, the desks
they used before and the desks still free on that date, then ask the text
generator for one free desk plus a short rationale. The result is advisory:
committing it goes through the normal booking checks again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from pydantic import ValidationError

from seatserve.domain import Snapshot, available_desks
from seatserve.errors import SuggestionUnavailable
from seatserve.generation import TextGenerator, Tool
from seatserve.logger import get_logger
from seatserve.models import BookingRecord, DeskRecord, SeatingSuggestion, UserRecord

logger = get_logger(__name__)

PROMPT_TEMPLATE = """You are an AI assistant that suggests desk assignments for employees, taking into account their team affiliation and seating preferences. Given the employee's name and booking date, you will:

1. Check which desks are free on the given date (getAvailableDesksForDate).
2. Identify the employee's team members (getEmployeeTeam).
3. Retrieve the employee's past seating, if any (getPastSeatingForEmployee).
4. Suggest a free desk that is near the team members' usual desks or in the employee's preferred location. Availability on the given date is the highest priority: never suggest a desk that is not free.
5. Give a clear reasoning for the suggestion.

Desk ids read <building>.<wing>.<room>.<number>; desks sharing a room with close numbers sit near each other.

Employee Name: {employee_name}
Date: {date}
Team members: {team}
Past desks of the employee: {past}
Past desks of the team: {team_desks}
Free desks on {date}: {free}
"""


def team_members(employee_name: str, users: Iterable[UserRecord]) -> list[str]:
    users = list(users)
    employee = next((u for u in users if u.name == employee_name), None)
    if employee is None or not employee.team:
        return []
    return [
        u.name
        for u in users
        if u.team == employee.team and u.user_id != employee.user_id and u.enabled
    ]


def past_desks(employee_name: str, bookings: Iterable[BookingRecord]) -> list[str]:
    return sorted({b.desk_id for b in bookings if b.user_name == employee_name})


def free_desks(
    value_date: date,
    desks: Iterable[DeskRecord],
    bookings: Iterable[BookingRecord],
) -> list[str]:
    return sorted(available_desks(value_date, desks, bookings))


def suggestion_schema(free: list[str]) -> dict:
    return {
        "type": "object",
        "properties": {
            "deskNumber": {
                "type": "string",
                "enum": free,
                "description": "The recommended desk number that accommodates the employee's preferences.",
            },
            "reasoning": {
                "type": "string",
                "description": "The reasoning behind the desk assignment, including team proximity and past preferences.",
            },
        },
        "required": ["deskNumber", "reasoning"],
        "additionalProperties": False,
    }


@dataclass
class SeatingSuggestionOrchestrator:
    generator: TextGenerator

    def tools(self, users: list[UserRecord], snapshot: Snapshot) -> list[Tool]:
        name_param = {
            "type": "object",
            "properties": {"employeeName": {"type": "string"}},
            "required": ["employeeName"],
        }
        return [
            Tool(
                name="getEmployeeTeam",
                description="Get the team of a given employee by the employee's name.",
                parameters=name_param,
                handler=lambda employeeName: team_members(employeeName, users),
            ),
            Tool(
                name="getPastSeatingForEmployee",
                description="Get past desk bookings for a given employee by name.",
                parameters=name_param,
                handler=lambda employeeName: past_desks(employeeName, snapshot.bookings),
            ),
            Tool(
                name="getAvailableDesksForDate",
                description="Get a list of all available (unbooked) desks for a specific date.",
                parameters={
                    "type": "object",
                    "properties": {
                        "date": {"type": "string", "description": "The date in YYYY-MM-DD format."}
                    },
                    "required": ["date"],
                },
                handler=lambda date: free_desks(
                    _parse_day(date), snapshot.desks, snapshot.bookings
                ),
            ),
        ]

    def suggest(
        self,
        employee_name: str,
        value_date: date,
        users: list[UserRecord],
        snapshot: Snapshot,
    ) -> SeatingSuggestion:
        team = team_members(employee_name, users)
        past = past_desks(employee_name, snapshot.bookings)
        free = free_desks(value_date, snapshot.desks, snapshot.bookings)
        if not free:
            raise SuggestionUnavailable(f"No desks are free on {value_date.isoformat()}.")

        team_desks = sorted({d for name in team for d in past_desks(name, snapshot.bookings)})
        prompt = PROMPT_TEMPLATE.format(
            employee_name=employee_name,
            date=value_date.isoformat(),
            team=", ".join(team) or "none",
            past=", ".join(past) or "none",
            team_desks=", ".join(team_desks) or "none",
            free=", ".join(free),
        )

        try:
            raw = self.generator.generate(
                prompt,
                self.tools(users, snapshot),
                suggestion_schema(free),
                schema_name="desk_suggestion",
            )
            suggestion = SeatingSuggestion.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Malformed suggestion for %s on %s: %s", employee_name, value_date, exc)
            raise SuggestionUnavailable() from exc
        except Exception as exc:
            logger.exception("Suggestion generation failed for %s on %s", employee_name, value_date)
            raise SuggestionUnavailable() from exc

        if suggestion.desk_number not in free:
            logger.warning(
                "Generator suggested %s for %s on %s, which is not free",
                suggestion.desk_number,
                employee_name,
                value_date,
            )
        return suggestion


def _parse_day(raw: str) -> date:
    return date.fromisoformat(raw[:10])
