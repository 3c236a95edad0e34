from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from passgate.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """Account roles recognised by the session guard."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"


class Plan(str, Enum):
    """Subscription tiers, declared in ascending order."""

    FREE = "free"
    DEVELOPER = "developer"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


PLAN_HIERARCHY: dict[str, int] = {
    Plan.FREE.value: 0,
    Plan.DEVELOPER.value: 1,
    Plan.PROFESSIONAL.value: 2,
    Plan.ENTERPRISE.value: 3,
}


def plan_rank(plan: str) -> int:
    """Rank of a plan in the hierarchy; unknown plans rank as free."""
    return PLAN_HIERARCHY.get(plan, 0)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the credential service.

    Constructed once at startup and handed to the token issuer, mail
    dispatcher and orchestrator; business logic never reads the environment
    directly.
    """

    app_name: str = env_field("Passgate", "APP_NAME")
    shared_fs_root: str = env_field("/srv/passgate", "SHARED_FS_ROOT")
    persist_store: bool = env_field(
        True,
        "PERSIST_STORE",
        description="Snapshot the in-memory account store to SHARED_FS_ROOT",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    # Token signing
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("passgate", "JWT_ISSUER")
    jwt_audience: str = env_field("passgate-clients", "JWT_AUDIENCE")
    session_token_ttl_minutes: int = env_field(
        60 * 24 * 7,
        "SESSION_TOKEN_TTL_MINUTES",
        description="Lifetime of session tokens (7 days)",
    )
    purpose_token_ttl_minutes: int = env_field(
        10,
        "PURPOSE_TOKEN_TTL_MINUTES",
        description="Lifetime of single-purpose tokens such as reset tokens",
    )
    token_clock_skew_seconds: int = env_field(0, "TOKEN_CLOCK_SKEW_SECONDS")

    # One-time passcodes and lockout
    otp_ttl_minutes: int = env_field(10, "OTP_TTL_MINUTES")
    max_failed_login_attempts: int = env_field(5, "MAX_FAILED_LOGIN_ATTEMPTS")
    lockout_minutes: int = env_field(30, "LOCKOUT_MINUTES")
    min_password_length: int = env_field(8, "MIN_PASSWORD_LENGTH")
    default_api_requests_limit: int = env_field(1000, "DEFAULT_API_REQUESTS_LIMIT")

    # Password hashing cost (argon2id)
    password_hash_time_cost: int = env_field(3, "PASSWORD_HASH_TIME_COST")
    password_hash_memory_cost: int = env_field(65536, "PASSWORD_HASH_MEMORY_COST")
    password_hash_parallelism: int = env_field(4, "PASSWORD_HASH_PARALLELISM")

    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Passgate", "EMAIL_FROM_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "session_token_ttl_minutes",
        "purpose_token_ttl_minutes",
        "otp_ttl_minutes",
        "max_failed_login_attempts",
        "lockout_minutes",
        "min_password_length",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("jwt_secret")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Persist a generated secret so tokens survive restarts
        fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/passgate"))
        secret_path = fs_root / ".jwt_secret"

        try:
            fs_root.mkdir(parents=True, exist_ok=True)
            os.chmod(fs_root, 0o700)
        except PermissionError:
            pass
        except Exception as exc:
            logger.warning(
                "jwt_secret_dir_setup",
                error=str(exc),
                path=str(fs_root),
            )

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except Exception as exc:
                logger.error(
                    "jwt_secret_read_failed", error=str(exc), path=str(secret_path)
                )

        generated = secrets.token_urlsafe(64)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except Exception as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "jwt_secret_persist_failed", error=str(exc), path=str(secret_path)
            )
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET env var or make SHARED_FS_ROOT writable"
            ) from exc
        return generated


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
