from __future__ import annotations

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import HashingError, InvalidHash, VerificationError, VerifyMismatchError

from passgate.config import Settings
from passgate.logging import get_logger
from passgate.service.errors import UpstreamError

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing with a fixed cost profile taken from settings."""

    def __init__(self, settings: Settings) -> None:
        self._hasher = _Argon2Hasher(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
            type=Type.ID,
        )
        self._dummy_digest: str | None = None

    def hash(self, plaintext: str) -> str:
        try:
            return self._hasher.hash(plaintext)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise UpstreamError("failed to hash password") from exc

    def verify(self, plaintext: str, digest: str | None) -> bool:
        if not digest:
            return False
        try:
            return self._hasher.verify(digest, plaintext)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Spend one verification against a throwaway digest.

        Used when no account matches so unknown-email logins cost the same
        as wrong-password logins.
        """
        if self._dummy_digest is None:
            self._dummy_digest = self.hash("passgate-dummy-password")
        self.verify(plaintext, self._dummy_digest)
        return False


__all__ = ["PasswordHasher"]
