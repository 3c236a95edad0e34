from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    id: str
    email: str
    display_name: str
    photo_url: Optional[str] = None
    password: Optional[str] = None
    is_email_verified: bool = False
    is_active: bool = False
    role: str = "user"
    plan: str = "free"
    email_verification_otp: Optional[str] = None
    email_verification_otp_expires_at: Optional[datetime] = None
    login_otp: Optional[str] = None
    login_otp_expires_at: Optional[datetime] = None
    password_reset_otp: Optional[str] = None
    password_reset_otp_expires_at: Optional[datetime] = None
    failed_login_attempts: int = 0
    last_failed_login_at: Optional[datetime] = None
    account_locked_until: Optional[datetime] = None
    api_requests_count: int = 0
    api_requests_limit: int = 1000
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None

    @property
    def can_login(self) -> bool:
        return self.is_active and self.is_email_verified and bool(self.password)

    def is_locked(self, now: datetime) -> bool:
        return self.account_locked_until is not None and self.account_locked_until > now


ACCOUNT_DATETIME_FIELDS = frozenset(
    {
        "email_verification_otp_expires_at",
        "login_otp_expires_at",
        "password_reset_otp_expires_at",
        "last_failed_login_at",
        "account_locked_until",
        "created_at",
        "updated_at",
        "last_login_at",
    }
)
