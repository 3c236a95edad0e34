from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from passgate.config import Settings
from passgate.logging import get_logger
from passgate.service.email import Mailer, redact_email
from passgate.service.errors import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidCodeError,
    LockedError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from passgate.service.otp import OTPKind, OTPStatus, check_otp, generate_otp, otp_expiry
from passgate.service.passwords import PasswordHasher
from passgate.service.tokens import TokenIssuer, TokenPurpose
from passgate.storage.common import Equals, OrderBy, RecordStore
from passgate.storage.errors import ConstraintViolation
from passgate.storage.models import Account, utcnow

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")

GENERIC_RESET_MESSAGE = (
    "If an account with this email exists, a password reset OTP has been sent"
)
INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"


@dataclass
class StepResult:
    message: str
    account_id: str
    email: str


@dataclass
class LoginChallenge:
    message: str
    account_id: str
    email: str
    requires_otp: bool = True


@dataclass
class PublicUser:
    id: str
    email: str
    display_name: str
    role: str
    plan: str


@dataclass
class LoginSession:
    message: str
    token: str
    user: PublicUser


@dataclass
class ResetGrant:
    message: str
    reset_token: str


@dataclass
class TokenRefresh:
    message: str
    token: str


@dataclass
class ProfileView:
    id: str
    email: str
    display_name: str
    photo_url: Optional[str]
    role: str
    is_active: bool
    last_login_at: Optional[datetime]
    plan: str
    api_requests_count: int
    api_requests_limit: int
    is_email_verified: bool


@dataclass
class Pagination:
    current_page: int
    total_pages: int
    total_users: int
    has_next_page: bool
    has_prev_page: bool


@dataclass
class AccountPage:
    users: List[ProfileView]
    pagination: Pagination


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_PATTERN.fullmatch(email) is not None


def _public_user(account: Account) -> PublicUser:
    return PublicUser(
        id=account.id,
        email=account.email,
        display_name=account.display_name,
        role=account.role,
        plan=account.plan,
    )


def _profile_view(account: Account) -> ProfileView:
    return ProfileView(
        id=account.id,
        email=account.email,
        display_name=account.display_name,
        photo_url=account.photo_url,
        role=account.role,
        is_active=account.is_active,
        last_login_at=account.last_login_at,
        plan=account.plan,
        api_requests_count=account.api_requests_count,
        api_requests_limit=account.api_requests_limit,
        is_email_verified=account.is_email_verified,
    )


def _cleared(kind: OTPKind) -> dict:
    code_field, expiry_field = kind.fields()
    return {code_field: None, expiry_field: None}


class AuthService:
    """Signup, login and password recovery, each gated by an emailed passcode.

    Every entry point is a coroutine that either returns a result object or
    raises a ``ServiceError`` subclass. Mail is sent through a worker thread
    so blocking SMTP calls do not stall the event loop.
    """

    def __init__(
        self,
        store: RecordStore[Account],
        mailer: Mailer,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
        otp_generator: Callable[[], str] = generate_otp,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.hasher = hasher
        self.tokens = tokens
        self.settings = settings
        self._clock = clock
        self._otp_generator = otp_generator
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    # -- helpers ------------------------------------------------------------

    def _fresh_otp(self, kind: OTPKind) -> tuple[str, dict]:
        otp = self._otp_generator()
        code_field, expiry_field = kind.fields()
        expires_at = otp_expiry(self._now(), self.settings.otp_ttl_minutes)
        return otp, {code_field: otp, expiry_field: expires_at}

    def _check_otp(self, account: Account, kind: OTPKind, submitted: str) -> None:
        code_field, expiry_field = kind.fields()
        status = check_otp(
            submitted,
            getattr(account, code_field),
            getattr(account, expiry_field),
            self._now(),
        )
        if status is OTPStatus.VALID:
            return
        self.logger.info("otp_rejected", account_id=account.id, kind=kind.value, status=status.value)
        if status is OTPStatus.EXPIRED:
            raise ExpiredError("OTP has expired")
        raise InvalidCodeError("Invalid OTP")

    async def _send(self, method: str, *args: str) -> bool:
        send = getattr(self.mailer, method)
        try:
            sent = await asyncio.to_thread(send, *args)
        except Exception as exc:
            self.logger.error(
                "mail_dispatch_error",
                method=method,
                to=redact_email(args[0]),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        if not sent:
            self.logger.warning("mail_dispatch_failed", method=method, to=redact_email(args[0]))
        return bool(sent)

    def _require_account(self, email: str) -> Account:
        account = self.store.get_by_email(email)
        if not account:
            raise NotFoundError("User not found")
        return account

    def _require_fields(self, message: str, *values: Optional[str]) -> None:
        if any(not value or not str(value).strip() for value in values):
            raise ValidationError(message)

    def _check_password_length(self, password: str) -> None:
        minimum = self.settings.min_password_length
        if len(password) < minimum:
            raise ValidationError(f"Password must be at least {minimum} characters long")

    def _update(self, account_id: str, changes: dict) -> Account:
        updated = self.store.update(account_id, changes)
        if not updated:
            raise NotFoundError("User not found")
        return updated

    # -- signup -------------------------------------------------------------

    async def initiate_signup(self, email: str, display_name: str) -> StepResult:
        self._require_fields("Email and display name are required", email, display_name)
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")
        if self.store.get_by_email(email):
            raise ConflictError("User already exists")

        otp, otp_fields = self._fresh_otp(OTPKind.SIGNUP)
        try:
            account = self.store.create(
                email=email,
                display_name=display_name.strip(),
                role="user",
                plan="free",
                is_active=False,
                is_email_verified=False,
                failed_login_attempts=0,
                api_requests_count=0,
                api_requests_limit=self.settings.default_api_requests_limit,
                **otp_fields,
            )
        except ConstraintViolation as exc:
            raise ConflictError("User already exists") from exc

        if not await self._send("send_signup_otp", email, otp):
            try:
                self.store.delete(account.id)
            except Exception as exc:
                self.logger.error(
                    "signup_rollback_failed", account_id=account.id, error=str(exc)
                )
            else:
                self.logger.info("signup_rolled_back", account_id=account.id)
            raise UpstreamError("Failed to send verification email")

        self.logger.info("signup_initiated", account_id=account.id)
        return StepResult("Verification OTP sent to your email", account.id, email)

    async def verify_signup_email(self, email: str, otp: str) -> StepResult:
        self._require_fields("Email and OTP are required", email, otp)
        account = self._require_account(email)
        if account.is_email_verified:
            raise ConflictError("Email already verified")
        self._check_otp(account, OTPKind.SIGNUP, otp)

        self._update(account.id, {"is_email_verified": True, **_cleared(OTPKind.SIGNUP)})
        self.logger.info("email_verified", account_id=account.id)
        await self._send("send_email_verified", email)
        return StepResult(
            "Email verified successfully. You can now set your password.",
            account.id,
            email,
        )

    async def set_signup_password(self, email: str, password: str) -> StepResult:
        self._require_fields("Email and password are required", email, password)
        self._check_password_length(password)
        account = self._require_account(email)
        if not account.is_email_verified:
            raise ForbiddenError("Email must be verified before setting password")
        if account.password:
            raise ConflictError("Password already set")

        digest = self.hasher.hash(password)
        self._update(account.id, {"password": digest, "is_active": True})
        self.logger.info("signup_password_set", account_id=account.id)
        await self._send("send_password_set", email)
        return StepResult("Password set successfully. You can now log in.", account.id, email)

    # -- login --------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginChallenge:
        self._require_fields("Email and password are required", email, password)
        account = self.store.get_by_email(email)
        if not account:
            self.hasher.verify_dummy(password)
            self.logger.info("login_unknown_account", email=redact_email(email))
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        if not account.is_active:
            raise ForbiddenError("Account is inactive")
        if not account.is_email_verified:
            raise ForbiddenError("Email must be verified before login")
        if not account.password:
            raise ForbiddenError("Password not set. Please complete your signup.")

        now = self._now()
        if account.is_locked(now):
            self.logger.warning("login_blocked_locked", account_id=account.id)
            raise LockedError(
                "Account is temporarily locked due to multiple failed attempts",
                detail={"locked_until": account.account_locked_until.isoformat()},
            )

        if not self.hasher.verify(password, account.password):
            self._record_failed_login(account, now)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        otp, changes = self._fresh_otp(OTPKind.LOGIN)
        if (
            account.failed_login_attempts > 0
            or account.account_locked_until is not None
            or account.last_failed_login_at is not None
        ):
            changes.update(
                failed_login_attempts=0,
                last_failed_login_at=None,
                account_locked_until=None,
            )
        self._update(account.id, changes)

        if not await self._send("send_login_otp", email, otp):
            raise UpstreamError("Failed to send login OTP")
        self.logger.info("login_otp_issued", account_id=account.id)
        return LoginChallenge("Login OTP sent to your email", account.id, email)

    def _record_failed_login(self, account: Account, now: datetime) -> None:
        attempts = self.store.increment(account.id, "failed_login_attempts")
        if attempts is None:
            return
        changes: dict = {"last_failed_login_at": now}
        if attempts >= self.settings.max_failed_login_attempts:
            changes["account_locked_until"] = now + timedelta(
                minutes=self.settings.lockout_minutes
            )
        self.store.update(account.id, changes)
        if "account_locked_until" in changes:
            self.logger.warning("account_locked", account_id=account.id, attempts=attempts)
        else:
            self.logger.info("login_failed", account_id=account.id, attempts=attempts)

    async def verify_login_otp(self, email: str, otp: str) -> LoginSession:
        self._require_fields("Email and OTP are required", email, otp)
        account = self._require_account(email)
        if not account.is_active:
            raise ForbiddenError("Account is inactive")
        self._check_otp(account, OTPKind.LOGIN, otp)

        account = self._update(
            account.id, {**_cleared(OTPKind.LOGIN), "last_login_at": self._now()}
        )
        token = self.tokens.issue_session(account.id, account.email, account.role, account.plan)
        self.logger.info("login_completed", account_id=account.id)
        return LoginSession("Login successful", token, _public_user(account))

    # -- password reset -----------------------------------------------------

    async def forgot_password(self, email: str) -> str:
        self._require_fields("Email is required", email)
        account = self.store.get_by_email(email)
        if not account or not account.is_active:
            self.logger.info("password_reset_skipped", email=redact_email(email))
            return GENERIC_RESET_MESSAGE

        otp, changes = self._fresh_otp(OTPKind.PASSWORD_RESET)
        self._update(account.id, changes)
        if not await self._send("send_password_reset_otp", email, otp):
            self.logger.error("password_reset_mail_failed", account_id=account.id)
        else:
            self.logger.info("password_reset_otp_issued", account_id=account.id)
        return GENERIC_RESET_MESSAGE

    async def verify_reset_otp(self, email: str, otp: str) -> ResetGrant:
        self._require_fields("Email and OTP are required", email, otp)
        account = self._require_account(email)
        if not account.is_active:
            raise ForbiddenError("Account is inactive")
        self._check_otp(account, OTPKind.PASSWORD_RESET, otp)

        self._update(account.id, _cleared(OTPKind.PASSWORD_RESET))
        reset_token = self.tokens.issue_purpose(email, TokenPurpose.PASSWORD_RESET)
        self.logger.info("password_reset_otp_verified", account_id=account.id)
        return ResetGrant(
            "OTP verified successfully. You can now set a new password.", reset_token
        )

    async def set_new_password(self, reset_token: str, new_password: str) -> str:
        self._require_fields(
            "Reset token and new password are required", reset_token, new_password
        )
        claims = self.tokens.verify_purpose(reset_token)
        if not claims or claims.purpose != TokenPurpose.PASSWORD_RESET.value:
            raise ValidationError("Invalid or expired reset token")
        self._check_password_length(new_password)
        account = self._require_account(claims.email)
        if not account.is_active:
            raise ForbiddenError("Account is inactive")

        digest = self.hasher.hash(new_password)
        self._update(
            account.id,
            {
                "password": digest,
                **_cleared(OTPKind.PASSWORD_RESET),
                "failed_login_attempts": 0,
                "last_failed_login_at": None,
                "account_locked_until": None,
            },
        )
        self.logger.info("password_reset_completed", account_id=account.id)
        await self._send("send_password_set", account.email)
        return "Password reset successfully. You can now log in with your new password."

    # -- session-backed operations -----------------------------------------

    async def refresh(self, account_id: str) -> TokenRefresh:
        account = self.store.get(account_id)
        if not account or not account.is_active:
            raise AuthenticationError("User not found or inactive")
        token = self.tokens.issue_session(account.id, account.email, account.role, account.plan)
        return TokenRefresh("Token refreshed successfully", token)

    async def get_profile(self, account_id: str) -> ProfileView:
        account = self.store.get(account_id)
        if not account:
            raise NotFoundError("User not found")
        return _profile_view(account)

    async def update_profile(
        self,
        account_id: str,
        *,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> str:
        changes: dict = {}
        if display_name is not None and display_name.strip():
            changes["display_name"] = display_name.strip()
        if photo_url is not None and photo_url.strip():
            changes["photo_url"] = photo_url.strip()
        if changes:
            self._update(account_id, changes)
            self.logger.info("profile_updated", account_id=account_id, fields=sorted(changes))
        elif not self.store.get(account_id):
            raise NotFoundError("User not found")
        return "Profile updated successfully"

    async def logout(self, account_id: str) -> str:
        # Tokens are stateless; they stay valid until they expire
        self.logger.info("logout", account_id=account_id)
        return "Logged out successfully"

    async def list_accounts(
        self,
        *,
        role: Optional[str] = None,
        plan: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> AccountPage:
        if page < 1 or page_size < 1:
            raise ValidationError("page and limit must be positive integers")
        constraints: list = []
        if role:
            constraints.append(Equals("role", role))
        if plan:
            constraints.append(Equals("plan", plan))
        constraints.append(OrderBy("created_at"))

        rows = self.store.find(constraints)
        total = len(rows)
        start = (page - 1) * page_size
        end = start + page_size
        return AccountPage(
            users=[_profile_view(row) for row in rows[start:end]],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total / page_size),
                total_users=total,
                has_next_page=end < total,
                has_prev_page=page > 1,
            ),
        )


__all__ = [
    "AuthService",
    "StepResult",
    "LoginChallenge",
    "LoginSession",
    "PublicUser",
    "ResetGrant",
    "TokenRefresh",
    "ProfileView",
    "Pagination",
    "AccountPage",
    "GENERIC_RESET_MESSAGE",
    "INVALID_CREDENTIALS_MESSAGE",
    "is_valid_email",
]
