"""One-time passcode generation and checking.

Codes are six decimal digits drawn from a CSPRNG. Checking is pure: the
caller passes the stored code, its expiry and the current time.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

OTP_MIN = 100000
OTP_MAX = 999999


class OTPKind(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    PASSWORD_RESET = "password-reset"

    @property
    def code_field(self) -> str:
        return _OTP_FIELDS[self][0]

    @property
    def expiry_field(self) -> str:
        return _OTP_FIELDS[self][1]

    def fields(self) -> tuple[str, str]:
        return _OTP_FIELDS[self]


_OTP_FIELDS = {
    OTPKind.SIGNUP: ("email_verification_otp", "email_verification_otp_expires_at"),
    OTPKind.LOGIN: ("login_otp", "login_otp_expires_at"),
    OTPKind.PASSWORD_RESET: ("password_reset_otp", "password_reset_otp_expires_at"),
}


class OTPStatus(str, Enum):
    VALID = "valid"
    MISSING = "missing"
    MISMATCH = "mismatch"
    EXPIRED = "expired"


def generate_otp() -> str:
    return str(secrets.randbelow(OTP_MAX - OTP_MIN + 1) + OTP_MIN)


def otp_expiry(now: datetime, ttl_minutes: int) -> datetime:
    return now + timedelta(minutes=ttl_minutes)


def check_otp(
    submitted: Optional[str],
    stored: Optional[str],
    expires_at: Optional[datetime],
    now: datetime,
) -> OTPStatus:
    """Classify a submitted code against the stored one.

    A stored code without an expiry is treated as missing. Mismatch is
    reported before expiry.
    """
    if not stored or expires_at is None:
        return OTPStatus.MISSING
    if not submitted or not hmac.compare_digest(
        submitted.encode("utf-8"), stored.encode("utf-8")
    ):
        return OTPStatus.MISMATCH
    if now >= expires_at:
        return OTPStatus.EXPIRED
    return OTPStatus.VALID


def is_valid_otp(
    submitted: Optional[str],
    stored: Optional[str],
    expires_at: Optional[datetime],
    now: datetime,
) -> bool:
    return check_otp(submitted, stored, expires_at, now) is OTPStatus.VALID


__all__ = [
    "OTPKind",
    "OTPStatus",
    "generate_otp",
    "otp_expiry",
    "check_otp",
    "is_valid_otp",
]
