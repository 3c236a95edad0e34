from __future__ import annotations

import threading
from typing import Optional

from passgate.config import Settings, get_settings
from passgate.logging import get_logger
from passgate.service.auth import AuthService
from passgate.service.email import EmailService, Mailer
from passgate.service.passwords import PasswordHasher
from passgate.service.session import SessionGuard
from passgate.service.tokens import TokenIssuer
from passgate.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[MemoryStore] = None,
        mailer: Optional[Mailer] = None,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            persist_store=self.settings.persist_store,
            test_mode=self.settings.test_mode,
        )
        self.store = store or MemoryStore(
            fs_root=self.settings.shared_fs_root,
            persist=self.settings.persist_store,
        )
        self.email_service = EmailService.from_settings(self.settings)
        self.mailer: Mailer = mailer or self.email_service
        if not self.email_service.is_configured:
            logger.warning("email_service_unconfigured", fallback="log_only")
        self.hasher = PasswordHasher(self.settings)
        self.tokens = TokenIssuer(self.settings)
        self.auth = AuthService(
            self.store,
            self.mailer,
            self.hasher,
            self.tokens,
            self.settings,
        )
        self.sessions = SessionGuard(self.tokens, self.store)
        logger.info("runtime_init_completed", app_name=self.settings.app_name)


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked: the unlocked read is the fast path once the runtime
    exists, the locked re-check prevents two threads building it at once.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def set_runtime(instance: Optional[Runtime]) -> None:
    """Install a prebuilt runtime, e.g. one wired with a fake mailer."""
    global runtime
    with _runtime_lock:
        runtime = instance


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime
    with _runtime_lock:
        runtime = Runtime()
        return runtime


__all__ = ["Runtime", "get_runtime", "set_runtime", "reset_runtime_for_tests"]
