from __future__ import annotations

from seatserve.constants import REASON_MESSAGES


class PolicyRejection(Exception):
    """A booking or cancellation refused by policy, tagged with a reason."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or REASON_MESSAGES.get(reason, reason)
        super().__init__(self.message)


class StaleSuggestionConflict(PolicyRejection):
    """A suggested desk failed re-validation at commit time."""


class SuggestionUnavailable(Exception):
    def __init__(self, message: str = "Failed to get AI suggestion. Please try again.") -> None:
        self.message = message
        super().__init__(message)
