from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    data_file: Path = Path(os.getenv("SEATSERVE_DATA_FILE", "data/seatserve.xlsx"))
    backup_dir: Path = Path(os.getenv("SEATSERVE_BACKUP_DIR", "data/backups"))
    lock_file: Path = Path(os.getenv("SEATSERVE_LOCK_FILE", "data/seatserve.lock"))
    allowed_domain: str = os.getenv("SEATSERVE_ALLOWED_DOMAIN", "@t-systems.com")
    otp_ttl_minutes: int = int(os.getenv("SEATSERVE_OTP_TTL_MINUTES", "10"))
    otp_max_attempts: int = int(os.getenv("SEATSERVE_OTP_MAX_ATTEMPTS", "5"))
    otp_length: int = int(os.getenv("SEATSERVE_OTP_LENGTH", "6"))
    session_ttl_hours: int = int(os.getenv("SEATSERVE_SESSION_TTL_HOURS", "12"))
    cutoff_hour: int = int(os.getenv("SEATSERVE_CUTOFF_HOUR", "14"))
    office_offset_minutes: int = int(os.getenv("SEATSERVE_OFFICE_OFFSET_MINUTES", "330"))
    horizon_working_days: int = int(os.getenv("SEATSERVE_HORIZON_WORKING_DAYS", "2"))
    smtp_host: str | None = os.getenv("SMTP_HOST")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: str | None = os.getenv("SMTP_USERNAME")
    smtp_password: str | None = os.getenv("SMTP_PASSWORD")
    smtp_from: str = os.getenv("SMTP_FROM", '"SeatServe" <no-reply@example.com>')
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_max_tool_rounds: int = int(os.getenv("OPENAI_MAX_TOOL_ROUNDS", "4"))
    log_level: str = os.getenv("SEATSERVE_LOG_LEVEL", "INFO")


settings = Settings()
