from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from passgate.api.deps import (
    enforce_request_quota,
    get_identity,
    get_optional_identity,
    require_role,
)
from passgate.api.schemas import (
    CredentialsRequest,
    Envelope,
    ForgotPasswordRequest,
    HealthResponse,
    LoginChallengeResponse,
    LoginSessionResponse,
    MessageResponse,
    OTPVerifyRequest,
    PaginationResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    ResetGrantResponse,
    SessionStatusResponse,
    SetNewPasswordRequest,
    SignupInitiateRequest,
    StepResponse,
    TokenResponse,
    UsageResponse,
    UserListResponse,
    UserSummary,
)
from passgate.config import Role
from passgate.logging import get_logger
from passgate.service.auth import ProfileView, PublicUser, StepResult
from passgate.service.runtime import get_runtime
from passgate.service.session import Identity
from passgate.storage.models import utcnow

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])
health_router = APIRouter(tags=["health"])

MAX_PAGE_SIZE = 100


def _ok(data: BaseModel) -> Envelope:
    return Envelope(success=True, data=data.model_dump(by_alias=True, mode="json"))


def _step(result: StepResult) -> Envelope:
    return _ok(
        StepResponse(message=result.message, user_id=result.account_id, email=result.email)
    )


def _summary(user: PublicUser) -> UserSummary:
    return UserSummary(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        plan=user.plan,
    )


def _profile(view: ProfileView) -> ProfileResponse:
    return ProfileResponse(
        id=view.id,
        email=view.email,
        display_name=view.display_name,
        photo_url=view.photo_url,
        role=view.role,
        is_active=view.is_active,
        last_login_at=view.last_login_at,
        plan=view.plan,
        api_requests_count=view.api_requests_count,
        api_requests_limit=view.api_requests_limit,
        is_email_verified=view.is_email_verified,
    )


# -- signup -----------------------------------------------------------------


@router.post("/signup/initiate", response_model=Envelope, response_model_exclude_none=True)
async def signup_initiate(body: SignupInitiateRequest):
    """Start signup: create a pending account and mail a verification code."""
    result = await get_runtime().auth.initiate_signup(body.email, body.display_name)
    return _step(result)


@router.post("/signup/verify-email", response_model=Envelope, response_model_exclude_none=True)
async def signup_verify_email(body: OTPVerifyRequest):
    result = await get_runtime().auth.verify_signup_email(body.email, body.otp)
    return _step(result)


@router.post("/signup/set-password", response_model=Envelope, response_model_exclude_none=True)
async def signup_set_password(body: CredentialsRequest):
    result = await get_runtime().auth.set_signup_password(body.email, body.password)
    return _step(result)


# -- login ------------------------------------------------------------------


@router.post("/login", response_model=Envelope, response_model_exclude_none=True)
async def login(body: CredentialsRequest):
    """Check the password and mail a login code.

    Raises:
        401: unknown email or wrong password
        403: account not active, not verified or without a password
        423: account locked after repeated failures
    """
    challenge = await get_runtime().auth.login(body.email, body.password)
    return _ok(
        LoginChallengeResponse(
            message=challenge.message,
            user_id=challenge.account_id,
            email=challenge.email,
            requires_otp=challenge.requires_otp,
        )
    )


@router.post("/login/verify-otp", response_model=Envelope, response_model_exclude_none=True)
async def login_verify_otp(body: OTPVerifyRequest):
    session = await get_runtime().auth.verify_login_otp(body.email, body.otp)
    return _ok(
        LoginSessionResponse(
            message=session.message,
            token=session.token,
            user=_summary(session.user),
        )
    )


# -- password reset ---------------------------------------------------------


@router.post("/forgot-password", response_model=Envelope, response_model_exclude_none=True)
async def forgot_password(body: ForgotPasswordRequest):
    message = await get_runtime().auth.forgot_password(body.email)
    return _ok(MessageResponse(message=message))


@router.post(
    "/reset-password/verify-otp", response_model=Envelope, response_model_exclude_none=True
)
async def reset_password_verify_otp(body: OTPVerifyRequest):
    grant = await get_runtime().auth.verify_reset_otp(body.email, body.otp)
    return _ok(ResetGrantResponse(message=grant.message, reset_token=grant.reset_token))


@router.post(
    "/reset-password/set-new-password",
    response_model=Envelope,
    response_model_exclude_none=True,
)
async def reset_password_set_new(body: SetNewPasswordRequest):
    message = await get_runtime().auth.set_new_password(body.reset_token, body.new_password)
    return _ok(MessageResponse(message=message))


# -- session-backed ---------------------------------------------------------


@router.post("/refresh-token", response_model=Envelope, response_model_exclude_none=True)
async def refresh_token(identity: Identity = Depends(get_identity)):
    refreshed = await get_runtime().auth.refresh(identity.account_id)
    return _ok(TokenResponse(message=refreshed.message, token=refreshed.token))


@router.get("/profile", response_model=Envelope, response_model_exclude_none=True)
async def get_profile(identity: Identity = Depends(get_identity)):
    view = await get_runtime().auth.get_profile(identity.account_id)
    return _ok(_profile(view))


@router.put("/profile", response_model=Envelope, response_model_exclude_none=True)
async def update_profile(
    body: ProfileUpdateRequest, identity: Identity = Depends(get_identity)
):
    message = await get_runtime().auth.update_profile(
        identity.account_id,
        display_name=body.display_name,
        photo_url=body.photo_url,
    )
    return _ok(MessageResponse(message=message))


@router.post("/logout", response_model=Envelope, response_model_exclude_none=True)
async def logout(identity: Identity = Depends(get_identity)):
    message = await get_runtime().auth.logout(identity.account_id)
    return _ok(MessageResponse(message=message))


@router.get("/users", response_model=Envelope, response_model_exclude_none=True)
async def list_users(
    role: Optional[str] = Query(None, max_length=32),
    plan: Optional[str] = Query(None, max_length=32),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    identity: Identity = Depends(require_role(Role.ADMIN)),
):
    result = await get_runtime().auth.list_accounts(
        role=role, plan=plan, page=page, page_size=limit
    )
    pagination = result.pagination
    return _ok(
        UserListResponse(
            users=[_profile(view) for view in result.users],
            pagination=PaginationResponse(
                current_page=pagination.current_page,
                total_pages=pagination.total_pages,
                total_users=pagination.total_users,
                has_next_page=pagination.has_next_page,
                has_prev_page=pagination.has_prev_page,
            ),
        )
    )


@router.get("/usage", response_model=Envelope, response_model_exclude_none=True)
async def usage(identity: Identity = Depends(enforce_request_quota)):
    view = await get_runtime().auth.get_profile(identity.account_id)
    return _ok(
        UsageResponse(
            api_requests_count=view.api_requests_count,
            api_requests_limit=view.api_requests_limit,
        )
    )


@router.get("/session", response_model=Envelope, response_model_exclude_none=True)
async def session_status(identity: Optional[Identity] = Depends(get_optional_identity)):
    if identity is None:
        return _ok(SessionStatusResponse(authenticated=False))
    view = await get_runtime().auth.get_profile(identity.account_id)
    return _ok(
        SessionStatusResponse(
            authenticated=True,
            user=UserSummary(
                id=view.id,
                email=view.email,
                display_name=view.display_name,
                role=identity.role,
                plan=identity.plan,
            ),
        )
    )


@health_router.get("/health", response_model=Envelope, response_model_exclude_none=True)
async def health():
    runtime = get_runtime()
    return _ok(
        HealthResponse(status="ok", service=runtime.settings.app_name, timestamp=utcnow())
    )
