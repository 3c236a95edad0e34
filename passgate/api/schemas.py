from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Upper bounds keep oversized bodies away from the hasher and the store
MAX_EMAIL_LENGTH = 320
MAX_PASSWORD_LENGTH = 1024
MAX_DISPLAY_NAME_LENGTH = 128
MAX_OTP_LENGTH = 16
MAX_TOKEN_LENGTH = 4096
MAX_URL_LENGTH = 2048


class Envelope(BaseModel):
    """Response envelope shared by every endpoint."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    code: Optional[str] = None


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_max_length=MAX_TOKEN_LENGTH)


class _Response(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# -- requests ---------------------------------------------------------------


class SignupInitiateRequest(_Request):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    display_name: str = Field(..., alias="displayName", max_length=MAX_DISPLAY_NAME_LENGTH)


class OTPVerifyRequest(_Request):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    otp: str = Field(..., max_length=MAX_OTP_LENGTH)

    @field_validator("otp", mode="before")
    @classmethod
    def _coerce_numeric_otp(cls, value: Any) -> Any:
        # Clients sometimes send the code as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class CredentialsRequest(_Request):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)


class ForgotPasswordRequest(_Request):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)


class SetNewPasswordRequest(_Request):
    reset_token: str = Field(..., alias="resetToken", max_length=MAX_TOKEN_LENGTH)
    new_password: str = Field(..., alias="newPassword", max_length=MAX_PASSWORD_LENGTH)


class ProfileUpdateRequest(_Request):
    display_name: Optional[str] = Field(
        default=None, alias="displayName", max_length=MAX_DISPLAY_NAME_LENGTH
    )
    photo_url: Optional[str] = Field(default=None, alias="photoURL", max_length=MAX_URL_LENGTH)


# -- responses --------------------------------------------------------------


class MessageResponse(_Response):
    message: str


class StepResponse(_Response):
    message: str
    user_id: str = Field(..., serialization_alias="userId")
    email: str


class LoginChallengeResponse(StepResponse):
    requires_otp: bool = Field(True, serialization_alias="requiresOTP")


class UserSummary(_Response):
    id: str
    email: str
    display_name: str = Field(..., serialization_alias="displayName")
    role: str
    plan: str


class LoginSessionResponse(_Response):
    message: str
    token: str
    user: UserSummary


class ResetGrantResponse(_Response):
    message: str
    reset_token: str = Field(..., serialization_alias="resetToken")


class TokenResponse(_Response):
    message: str
    token: str


class ProfileResponse(_Response):
    id: str
    email: str
    display_name: str = Field(..., serialization_alias="displayName")
    photo_url: Optional[str] = Field(default=None, serialization_alias="photoURL")
    role: str
    is_active: bool = Field(..., serialization_alias="isActive")
    last_login_at: Optional[datetime] = Field(default=None, serialization_alias="lastLoginAt")
    plan: str
    api_requests_count: int = Field(..., serialization_alias="apiRequestsCount")
    api_requests_limit: int = Field(..., serialization_alias="apiRequestsLimit")
    is_email_verified: bool = Field(..., serialization_alias="isEmailVerified")


class PaginationResponse(_Response):
    current_page: int = Field(..., serialization_alias="currentPage")
    total_pages: int = Field(..., serialization_alias="totalPages")
    total_users: int = Field(..., serialization_alias="totalUsers")
    has_next_page: bool = Field(..., serialization_alias="hasNextPage")
    has_prev_page: bool = Field(..., serialization_alias="hasPrevPage")


class UserListResponse(_Response):
    users: List[ProfileResponse]
    pagination: PaginationResponse


class UsageResponse(_Response):
    api_requests_count: int = Field(..., serialization_alias="apiRequestsCount")
    api_requests_limit: int = Field(..., serialization_alias="apiRequestsLimit")


class SessionStatusResponse(_Response):
    authenticated: bool
    user: Optional[UserSummary] = None


class HealthResponse(_Response):
    status: str
    service: str
    timestamp: datetime
