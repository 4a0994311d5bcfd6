from __future__ import annotations

import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import MONDAY
from seatserve.config import Settings
from seatserve.errors import StaleSuggestionConflict, SuggestionUnavailable
from seatserve.generation import GenerationError, OpenAIGenerator
from seatserve.suggestions import (
    SeatingSuggestionOrchestrator,
    free_desks,
    past_desks,
    team_members,
)

TUESDAY = MONDAY + timedelta(days=1)
LAST_WEEK = MONDAY - timedelta(days=7)


class FakeGenerator:
    """Picks the first free desk that a teammate used before, else the first free desk."""

    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    def generate(self, prompt, tools, schema, schema_name="result"):
        self.calls.append({"prompt": prompt, "tools": tools, "schema": schema})
        if self.error:
            raise self.error
        if self.answer is not None:
            return self.answer
        by_name = {tool.name: tool for tool in tools}
        free = by_name["getAvailableDesksForDate"](date=TUESDAY.isoformat())
        team = by_name["getEmployeeTeam"](employeeName="Alice")
        preferred = [
            desk
            for name in team
            for desk in by_name["getPastSeatingForEmployee"](employeeName=name)
            if desk in free
        ]
        desk = (preferred or free)[0]
        return {"deskNumber": desk, "reasoning": f"{desk} is near the team."}


@pytest.fixture()
def seated(env):
    repo = env["repo"]
    repo.add_desk("6.W.WS.021")
    # Bob (Alice's teammate) sat at 6.W.WS.021 last week, Carol is on another team
    repo.create_booking(env["bob"].user_id, "Bob", "6.W.WS.021", LAST_WEEK)
    repo.create_booking(env["carol"].user_id, "Carol", env["desk_a"], LAST_WEEK)
    repo.create_booking(env["alice"].user_id, "Alice", env["desk_b"], LAST_WEEK - timedelta(days=1))
    return env


def test_team_members_excludes_self_other_teams_and_disabled(seated):
    repo = seated["repo"]
    repo.upsert_user("Dave", "dave@t-systems.com", team="Platform", enabled=False)
    users = repo.list_users()
    assert team_members("Alice", users) == ["Bob"]
    assert team_members("Ada Admin", users) == []
    assert team_members("Nobody", users) == []


def test_past_desks_are_distinct(seated):
    repo = seated["repo"]
    repo.create_booking(seated["alice"].user_id, "Alice", seated["desk_b"], LAST_WEEK + timedelta(days=1))
    assert past_desks("Alice", repo.snapshot().bookings) == [seated["desk_b"]]
    assert past_desks("Nobody", repo.snapshot().bookings) == []


def test_suggestion_prefers_teammate_desk(seated):
    generator = FakeGenerator()
    orchestrator = SeatingSuggestionOrchestrator(generator)
    svc = seated["service"]

    suggestion = svc.suggest_desk(seated["alice"], TUESDAY, orchestrator)

    assert suggestion.desk_number == "6.W.WS.021"
    assert suggestion.desk_number in svc.free_desks(TUESDAY)
    call = generator.calls[0]
    assert "Team members: Bob" in call["prompt"]
    assert "Past desks of the team: 6.W.WS.021" in call["prompt"]
    assert call["schema"]["properties"]["deskNumber"]["enum"] == svc.free_desks(TUESDAY)


def test_suggestion_avoids_teammate_desk_when_taken(seated):
    svc = seated["service"]
    svc.create_booking(seated["carol"], "6.W.WS.021", TUESDAY)

    suggestion = svc.suggest_desk(seated["alice"], TUESDAY, SeatingSuggestionOrchestrator(FakeGenerator()))

    assert suggestion.desk_number != "6.W.WS.021"
    assert suggestion.desk_number in free_desks(TUESDAY, *_desks_and_bookings(svc))


def test_generation_failure_is_unavailable(seated):
    orchestrator = SeatingSuggestionOrchestrator(FakeGenerator(error=GenerationError("timeout")))
    with pytest.raises(SuggestionUnavailable):
        seated["service"].suggest_desk(seated["alice"], TUESDAY, orchestrator)


def test_malformed_answer_is_unavailable(seated):
    orchestrator = SeatingSuggestionOrchestrator(FakeGenerator(answer={"desk": "6.W.WS.021"}))
    with pytest.raises(SuggestionUnavailable):
        seated["service"].suggest_desk(seated["alice"], TUESDAY, orchestrator)


def test_no_free_desks_is_unavailable(seated):
    svc = seated["service"]
    svc.create_booking(seated["alice"], seated["desk_a"], TUESDAY)
    svc.create_booking(seated["bob"], seated["desk_b"], TUESDAY)
    svc.create_booking(seated["carol"], "6.W.WS.021", TUESDAY)
    generator = FakeGenerator()
    with pytest.raises(SuggestionUnavailable):
        svc.suggest_desk(seated["admin"], TUESDAY, SeatingSuggestionOrchestrator(generator))
    assert generator.calls == []


def test_stale_suggestion_is_rejected_at_commit(seated):
    svc = seated["service"]
    suggestion = svc.suggest_desk(seated["alice"], TUESDAY, SeatingSuggestionOrchestrator(FakeGenerator()))

    # someone else takes the desk before Alice confirms
    svc.create_booking(seated["bob"], suggestion.desk_number, TUESDAY)

    with pytest.raises(StaleSuggestionConflict) as exc:
        svc.book_suggestion(seated["alice"], suggestion.desk_number, TUESDAY)
    assert exc.value.reason == "double-booking-desk"


def test_non_free_desk_from_generator_fails_revalidation(seated):
    svc = seated["service"]
    svc.create_booking(seated["carol"], "6.W.WS.021", TUESDAY)
    ignoring = FakeGenerator(answer={"deskNumber": "6.W.WS.021", "reasoning": "Bob sat here."})

    suggestion = svc.suggest_desk(seated["alice"], TUESDAY, SeatingSuggestionOrchestrator(ignoring))
    assert suggestion.desk_number == "6.W.WS.021"

    with pytest.raises(StaleSuggestionConflict):
        svc.book_suggestion(seated["alice"], suggestion.desk_number, TUESDAY)


def test_book_suggestion_commits_valid_desk(seated):
    svc = seated["service"]
    suggestion = svc.suggest_desk(seated["alice"], TUESDAY, SeatingSuggestionOrchestrator(FakeGenerator()))
    booking = svc.book_suggestion(seated["alice"], suggestion.desk_number, TUESDAY)
    assert booking.desk_id == "6.W.WS.021"
    assert booking.user_id == seated["alice"].user_id


# --- OpenAI client plumbing ---

def _message(content=None, tool_calls=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))]
    )


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(
        id=call_id,
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )


class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        return self.responses.pop(0)


def _client(responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_openai_generator_runs_tools_then_parses_answer(seated):
    client, completions = _client(
        [
            _message(tool_calls=[_tool_call("c1", "getEmployeeTeam", {"employeeName": "Alice"})]),
            _message(content=json.dumps({"deskNumber": "6.W.WS.021", "reasoning": "Next to Bob."})),
        ]
    )
    orchestrator = SeatingSuggestionOrchestrator(OpenAIGenerator(client=client, config=Settings()))

    suggestion = seated["service"].suggest_desk(seated["alice"], TUESDAY, orchestrator)

    assert suggestion.desk_number == "6.W.WS.021"
    assert len(completions.requests) == 2
    first = completions.requests[0]
    assert {t["function"]["name"] for t in first["tools"]} == {
        "getEmployeeTeam",
        "getPastSeatingForEmployee",
        "getAvailableDesksForDate",
    }
    assert first["response_format"]["json_schema"]["strict"] is True
    tool_reply = completions.requests[1]["messages"][-1]
    assert tool_reply["role"] == "tool" and tool_reply["tool_call_id"] == "c1"
    assert json.loads(tool_reply["content"]) == ["Bob"]


def test_openai_generator_gives_up_after_tool_rounds(seated):
    endless = [
        _message(tool_calls=[_tool_call(f"c{i}", "getEmployeeTeam", {"employeeName": "Alice"})])
        for i in range(10)
    ]
    client, completions = _client(endless)
    generator = OpenAIGenerator(client=client, config=Settings(openai_max_tool_rounds=2))

    with pytest.raises(SuggestionUnavailable):
        seated["service"].suggest_desk(
            seated["alice"], TUESDAY, SeatingSuggestionOrchestrator(generator)
        )
    assert len(completions.requests) == 3


def test_openai_generator_rejects_non_json(seated):
    client, _ = _client([_message(content="Desk 21 looks great")])
    orchestrator = SeatingSuggestionOrchestrator(OpenAIGenerator(client=client, config=Settings()))
    with pytest.raises(SuggestionUnavailable):
        seated["service"].suggest_desk(seated["alice"], TUESDAY, orchestrator)


def _desks_and_bookings(svc):
    snap = svc.snapshot()
    return snap.desks, snap.bookings
