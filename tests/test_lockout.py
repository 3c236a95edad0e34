"""Tests for failed-login bookkeeping and the lockout window."""

from datetime import timedelta

import pytest

from passgate.service.errors import AuthenticationError, LockedError

EMAIL = "alice@example.com"
PASSWORD = "CorrectHorse1"
WRONG = "WrongPassword1"


async def _fail(auth_service, times):
    for _ in range(times):
        with pytest.raises(AuthenticationError):
            await auth_service.login(EMAIL, WRONG)


class TestLockout:
    async def test_failures_are_counted(self, auth_service, active_account, clock):
        await _fail(auth_service, 3)
        account = auth_service.store.get(active_account.id)
        assert account.failed_login_attempts == 3
        assert account.last_failed_login_at == clock.now
        assert account.account_locked_until is None

    async def test_fifth_failure_locks_for_thirty_minutes(self, auth_service, active_account, clock):
        await _fail(auth_service, 5)
        account = auth_service.store.get(active_account.id)
        assert account.failed_login_attempts == 5
        assert account.account_locked_until == clock.now + timedelta(minutes=30)

    async def test_locked_account_rejects_correct_password(self, auth_service, active_account, mailer):
        await _fail(auth_service, 5)
        sent_before = len(mailer.sent)
        with pytest.raises(LockedError) as exc:
            await auth_service.login(EMAIL, PASSWORD)
        assert exc.value.status_code == 423
        assert len(mailer.sent) == sent_before

    async def test_locked_account_does_not_count_further_attempts(self, auth_service, active_account):
        await _fail(auth_service, 5)
        with pytest.raises(LockedError):
            await auth_service.login(EMAIL, WRONG)
        assert auth_service.store.get(active_account.id).failed_login_attempts == 5

    async def test_lock_does_not_reset_counter(self, auth_service, active_account, clock):
        await _fail(auth_service, 5)
        clock.advance(minutes=30, seconds=1)
        # Still past the threshold: one more failure re-locks immediately
        await _fail(auth_service, 1)
        account = auth_service.store.get(active_account.id)
        assert account.failed_login_attempts == 6
        assert account.account_locked_until == clock.now + timedelta(minutes=30)

    async def test_correct_password_after_window_resets(self, auth_service, active_account, clock):
        await _fail(auth_service, 5)
        clock.advance(minutes=30, seconds=1)

        challenge = await auth_service.login(EMAIL, PASSWORD)
        assert challenge.requires_otp
        account = auth_service.store.get(active_account.id)
        assert account.failed_login_attempts == 0
        assert account.last_failed_login_at is None
        assert account.account_locked_until is None
        assert account.login_otp is not None

    async def test_success_below_threshold_resets(self, auth_service, active_account):
        await _fail(auth_service, 2)
        await auth_service.login(EMAIL, PASSWORD)
        assert auth_service.store.get(active_account.id).failed_login_attempts == 0

    async def test_window_boundary(self, auth_service, active_account, clock):
        await _fail(auth_service, 5)
        clock.advance(minutes=29, seconds=59)
        with pytest.raises(LockedError):
            await auth_service.login(EMAIL, PASSWORD)
        clock.advance(seconds=1)
        # account_locked_until == now is no longer in the future
        assert (await auth_service.login(EMAIL, PASSWORD)).requires_otp
