"""FastAPI dependencies wrapping the session guard.

Each dependency raises a ``ServiceError`` that the registered exception
handlers render as an error envelope.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header

from passgate.config import Plan, Role
from passgate.service.runtime import get_runtime
from passgate.service.session import Identity


async def get_identity(authorization: Optional[str] = Header(None)) -> Identity:
    return get_runtime().sessions.authenticate(authorization)


async def get_optional_identity(
    authorization: Optional[str] = Header(None),
) -> Optional[Identity]:
    return get_runtime().sessions.optional_authenticate(authorization)


def require_role(*allowed: Role | str) -> Callable:
    async def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return get_runtime().sessions.require_role(identity, allowed)

    return dependency


def require_subscription(min_plan: Plan | str) -> Callable:
    async def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return get_runtime().sessions.require_subscription(identity, min_plan)

    return dependency


async def enforce_request_quota(identity: Identity = Depends(get_identity)) -> Identity:
    get_runtime().sessions.enforce_request_quota(identity)
    return identity


__all__ = [
    "get_identity",
    "get_optional_identity",
    "require_role",
    "require_subscription",
    "enforce_request_quota",
]
