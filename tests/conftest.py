from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from seatserve.repository import ExcelRepository
from seatserve.services import BookingService

# Monday
MONDAY = date(2026, 10, 19)


def at_office_time(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant at which the office clock (UTC+05:30) reads day hour:minute."""
    office = datetime(day.year, day.month, day.day, hour, minute)
    return (office - timedelta(hours=5, minutes=30)).replace(tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock():
    return FrozenClock(at_office_time(MONDAY, 9))


@pytest.fixture()
def repo(tmp_path):
    repo = ExcelRepository(
        data_file=tmp_path / "seatserve.xlsx",
        backup_dir=tmp_path / "backups",
        lock_file=tmp_path / "seatserve.lock",
    )
    repo.init_storage()
    return repo


@pytest.fixture()
def env(repo, clock):
    svc = BookingService(repo=repo, clock=clock)

    admin = repo.upsert_user("Ada Admin", "ada@t-systems.com", is_admin=True)
    alice = repo.upsert_user("Alice", "alice@t-systems.com", team="Platform")
    bob = repo.upsert_user("Bob", "bob@t-systems.com", team="Platform")
    carol = repo.upsert_user("Carol", "carol@t-systems.com", team="Data")

    repo.add_desk("6.W.WS.019")
    repo.add_desk("6.W.WS.020")

    return {
        "repo": repo,
        "service": svc,
        "clock": clock,
        "admin": admin,
        "alice": alice,
        "bob": bob,
        "carol": carol,
        "desk_a": "6.W.WS.019",
        "desk_b": "6.W.WS.020",
    }
