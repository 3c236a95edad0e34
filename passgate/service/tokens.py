"""Signed bearer tokens.

Tokens are compact HS256 JWTs. Session tokens identify an account for a
week; purpose tokens authorise one follow-up step (such as setting a new
password) for a few minutes. The ``token_type`` claim keeps the two apart.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from passgate.config import Settings
from passgate.logging import get_logger
from passgate.storage.models import utcnow

logger = get_logger(__name__)


class TokenPurpose(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    PASSWORD_RESET = "password-reset"


SESSION_TOKEN = "session"
PURPOSE_TOKEN = "purpose"


@dataclass(frozen=True)
class SessionClaims:
    account_id: str
    email: str
    role: str
    plan: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class PurposeClaims:
    email: str
    purpose: str
    issued_at: datetime
    expires_at: datetime


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _unverified_payload(token: str) -> Optional[dict[str, Any]]:
    try:
        _, payload_b64, _ = token.split(".")
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, TypeError, AttributeError):
        return None
    return payload if isinstance(payload, dict) else None


class TokenIssuer:
    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not settings.jwt_secret:
            raise ValueError("jwt_secret is required")
        self._secret = settings.jwt_secret.encode()
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.session_ttl = timedelta(minutes=settings.session_token_ttl_minutes)
        self.purpose_ttl = timedelta(minutes=settings.purpose_token_ttl_minutes)
        self._leeway = timedelta(seconds=settings.token_clock_skew_seconds)
        self._clock = clock

    # -- issuing ------------------------------------------------------------

    def issue_session(self, account_id: str, email: str, role: str, plan: str) -> str:
        return self._issue(
            {
                "sub": account_id,
                "email": email,
                "role": role,
                "plan": plan,
                "token_type": SESSION_TOKEN,
            },
            self.session_ttl,
        )

    def issue_purpose(self, email: str, purpose: TokenPurpose | str) -> str:
        purpose_value = TokenPurpose(purpose).value
        return self._issue(
            {"email": email, "purpose": purpose_value, "token_type": PURPOSE_TOKEN},
            self.purpose_ttl,
        )

    def _issue(self, claims: dict[str, Any], ttl: timedelta) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        return self._encode_jwt(payload)

    # -- verification -------------------------------------------------------

    def verify_session(self, token: str) -> Optional[SessionClaims]:
        payload = self._decode_jwt(token)
        if not payload or payload.get("token_type") != SESSION_TOKEN:
            return None
        try:
            return SessionClaims(
                account_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                plan=str(payload["plan"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def verify_purpose(self, token: str) -> Optional[PurposeClaims]:
        payload = self._decode_jwt(token)
        if not payload or payload.get("token_type") != PURPOSE_TOKEN:
            return None
        try:
            return PurposeClaims(
                email=str(payload["email"]),
                purpose=str(payload["purpose"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def expires_at(self, token: str) -> Optional[datetime]:
        """Expiry read from the payload without checking the signature."""
        payload = _unverified_payload(token)
        if not payload:
            return None
        try:
            return datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def is_expired(self, token: str) -> bool:
        exp = self.expires_at(token)
        if exp is None:
            return True
        return exp <= self._clock()

    # -- wire format --------------------------------------------------------

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        if not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 so "none" or RS* headers cannot be replayed
        try:
            header = json.loads(_decode_segment(header_b64))
        except Exception:
            logger.warning("jwt_header_decode_failed")
            return None
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8", "replace")):
            return None
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except Exception as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, str):
            valid_aud = aud == self.audience
        elif isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = False
        if not valid_aud:
            return None
        exp = payload.get("exp")
        if exp is None:
            return None
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        if exp_ts <= (self._clock() - self._leeway).timestamp():
            return None
        return payload


__all__ = [
    "TokenIssuer",
    "TokenPurpose",
    "SessionClaims",
    "PurposeClaims",
    "SESSION_TOKEN",
    "PURPOSE_TOKEN",
]
