from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from passgate.config import Plan, Role, plan_rank
from passgate.logging import get_logger
from passgate.service.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServiceError,
)
from passgate.service.tokens import TokenIssuer
from passgate.storage.common import RecordStore
from passgate.storage.models import Account

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    account_id: str
    email: str
    role: str
    plan: str


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No token provided")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise AuthenticationError("Invalid token format")
    return token


class SessionGuard:
    """Per-request checks for protected operations.

    Identity comes from the session token; the account record is re-read on
    every request so deactivation takes effect before the token expires.
    Role and plan are taken from the token claims.
    """

    def __init__(self, tokens: TokenIssuer, store: RecordStore[Account]) -> None:
        self.tokens = tokens
        self.store = store

    def authenticate(self, authorization: Optional[str]) -> Identity:
        token = _bearer_token(authorization)
        claims = self.tokens.verify_session(token)
        if not claims:
            if self.tokens.is_expired(token):
                raise AuthenticationError("Token has expired")
            raise AuthenticationError("Invalid or expired token")
        account = self.store.get(claims.account_id)
        if not account:
            raise NotFoundError("User not found")
        if not account.is_active:
            raise ForbiddenError("User account is inactive")
        return Identity(
            account_id=claims.account_id,
            email=claims.email,
            role=claims.role,
            plan=claims.plan,
        )

    def optional_authenticate(self, authorization: Optional[str]) -> Optional[Identity]:
        if not authorization:
            return None
        try:
            return self.authenticate(authorization)
        except ServiceError as exc:
            logger.debug("optional_auth_rejected", reason=exc.error_code)
            return None

    def require_role(
        self, identity: Optional[Identity], allowed: Iterable[Role | str]
    ) -> Identity:
        if identity is None:
            raise AuthenticationError("Authentication required")
        allowed_values = {getattr(r, "value", r) for r in allowed}
        if identity.role not in allowed_values:
            logger.info(
                "role_denied",
                account_id=identity.account_id,
                role=identity.role,
                allowed=sorted(allowed_values),
            )
            raise ForbiddenError("Insufficient permissions")
        return identity

    def require_subscription(
        self, identity: Optional[Identity], min_plan: Plan | str
    ) -> Identity:
        if identity is None:
            raise AuthenticationError("Authentication required")
        required = min_plan.value if isinstance(min_plan, Plan) else min_plan
        if plan_rank(identity.plan) < plan_rank(required):
            raise ForbiddenError(
                "Higher subscription plan required",
                detail={"current_plan": identity.plan, "required_plan": required},
            )
        return identity

    def enforce_request_quota(self, identity: Optional[Identity]) -> int:
        """Count one request against the account quota; returns the new count."""
        if identity is None:
            raise AuthenticationError("Authentication required")
        account = self.store.get(identity.account_id)
        if not account:
            raise NotFoundError("User not found")
        if account.api_requests_count >= account.api_requests_limit:
            raise RateLimitedError(
                "API request limit exceeded",
                detail={
                    "limit": account.api_requests_limit,
                    "current": account.api_requests_count,
                },
            )
        new_count = self.store.increment(identity.account_id, "api_requests_count")
        if new_count is None:
            raise NotFoundError("User not found")
        return new_count


__all__ = ["Identity", "SessionGuard"]
