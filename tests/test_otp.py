"""Tests for one-time passcode generation and checking."""

from datetime import datetime, timedelta, timezone

from passgate.service.otp import (
    OTPKind,
    OTPStatus,
    check_otp,
    generate_otp,
    is_valid_otp,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestGenerateOtp:
    def test_six_digits_in_range(self):
        for _ in range(200):
            code = generate_otp()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self):
        codes = {generate_otp() for _ in range(50)}
        assert len(codes) > 1


class TestCheckOtp:
    def test_matching_code_before_expiry_is_valid(self):
        expires = NOW + timedelta(minutes=10)
        assert check_otp("123456", "123456", expires, NOW) is OTPStatus.VALID
        assert is_valid_otp("123456", "123456", expires, NOW)

    def test_mismatch(self):
        expires = NOW + timedelta(minutes=10)
        assert check_otp("654321", "123456", expires, NOW) is OTPStatus.MISMATCH
        assert not is_valid_otp("654321", "123456", expires, NOW)

    def test_expiry_equal_to_now_is_expired(self):
        assert check_otp("123456", "123456", NOW, NOW) is OTPStatus.EXPIRED
        assert not is_valid_otp("123456", "123456", NOW, NOW)

    def test_past_expiry_is_expired(self):
        expires = NOW - timedelta(seconds=1)
        assert check_otp("123456", "123456", expires, NOW) is OTPStatus.EXPIRED

    def test_absent_stored_code(self):
        expires = NOW + timedelta(minutes=10)
        assert check_otp("123456", None, expires, NOW) is OTPStatus.MISSING
        assert not is_valid_otp("123456", None, expires, NOW)

    def test_stored_code_without_expiry_is_never_accepted(self):
        assert check_otp("123456", "123456", None, NOW) is OTPStatus.MISSING

    def test_no_normalization(self):
        expires = NOW + timedelta(minutes=10)
        assert check_otp(" 123456", "123456", expires, NOW) is OTPStatus.MISMATCH
        assert check_otp("", "123456", expires, NOW) is OTPStatus.MISMATCH

    def test_mismatch_reported_before_expiry(self):
        expires = NOW - timedelta(minutes=1)
        assert check_otp("000000", "123456", expires, NOW) is OTPStatus.MISMATCH


def test_otp_kinds_map_to_account_fields():
    assert OTPKind.SIGNUP.fields() == (
        "email_verification_otp",
        "email_verification_otp_expires_at",
    )
    assert OTPKind.LOGIN.code_field == "login_otp"
    assert OTPKind.PASSWORD_RESET.expiry_field == "password_reset_otp_expires_at"
