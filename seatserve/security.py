from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from seatserve.config import Settings, settings as default_settings
from seatserve.logger import get_logger
from seatserve.mailer import EmailOptions, is_configured, send_email

logger = get_logger(__name__)


@dataclass
class OTPState:
    code: str
    expires_at: datetime
    attempts_left: int


@dataclass
class SessionState:
    user_id: str
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuthStore:
    def __init__(self, config: Settings = default_settings) -> None:
        self.config = config
        self._otp_by_email: dict[str, OTPState] = {}
        self._sessions: dict[str, SessionState] = {}

    def validate_email_domain(self, email: str) -> None:
        if not email.lower().endswith(self.config.allowed_domain):
            raise ValueError(f"Only {self.config.allowed_domain} emails are allowed")

    def issue_otp(self, email: str) -> str:
        self.validate_email_domain(email)
        code = "".join(secrets.choice("0123456789") for _ in range(self.config.otp_length))
        self._otp_by_email[email.lower()] = OTPState(
            code=code,
            expires_at=_now() + timedelta(minutes=self.config.otp_ttl_minutes),
            attempts_left=self.config.otp_max_attempts,
        )
        return code

    def verify_otp(self, email: str, code: str) -> bool:
        self.validate_email_domain(email)
        key = email.lower()
        state = self._otp_by_email.get(key)
        if state is None:
            return False
        if _now() > state.expires_at:
            self._otp_by_email.pop(key, None)
            return False
        if state.attempts_left <= 0:
            self._otp_by_email.pop(key, None)
            return False
        if state.code != code:
            state.attempts_left -= 1
            return False
        self._otp_by_email.pop(key, None)
        return True

    def create_session(self, user_id: str) -> str:
        token = uuid.uuid4().hex
        self._sessions[token] = SessionState(
            user_id=user_id,
            expires_at=_now() + timedelta(hours=self.config.session_ttl_hours),
        )
        return token

    def get_session_user(self, token: str) -> str | None:
        state = self._sessions.get(token)
        if state is None:
            return None
        if _now() > state.expires_at:
            self._sessions.pop(token, None)
            return None
        return state.user_id

    def logout(self, token: str) -> None:
        self._sessions.pop(token, None)


def send_otp_email(recipient: str, code: str, config: Settings = default_settings) -> None:
    if not is_configured(config):
        logger.warning("SMTP not configured; OTP for %s: %s", recipient, code)
        return

    minutes = config.otp_ttl_minutes
    send_email(
        EmailOptions(
            to=recipient,
            subject="Your SeatServe sign-in code",
            text=(
                f"Hello,\n\nYour SeatServe sign-in code is {code}. "
                f"It expires in {minutes} minutes.\n\n"
                "If you did not request this, please ignore this email.\n\n"
                "Thanks,\nThe SeatServe Team"
            ),
            html=(
                f"<p>Hello,</p><p>Your SeatServe sign-in code is <b>{code}</b>. "
                f"It expires in {minutes} minutes.</p>"
                "<p>If you did not request this, please ignore this email.</p>"
                "<p>Thanks,<br/>The SeatServe Team</p>"
            ),
        ),
        config,
    )
