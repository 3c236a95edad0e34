import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="passgate_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("PERSIST_STORE", "false")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Cheap argon2 parameters keep the suite fast
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "1024")
os.environ.setdefault("PASSWORD_HASH_PARALLELISM", "1")
for _smtp_var in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "EMAIL_FROM_ADDRESS"):
    os.environ.pop(_smtp_var, None)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from passgate.config import Settings, reset_settings_cache  # noqa: E402
from passgate.service.auth import AuthService  # noqa: E402
from passgate.service.passwords import PasswordHasher  # noqa: E402
from passgate.service.runtime import reset_runtime_for_tests  # noqa: E402
from passgate.service.session import SessionGuard  # noqa: E402
from passgate.service.tokens import TokenIssuer  # noqa: E402
from passgate.storage.memory import MemoryStore  # noqa: E402

TEST_OTP = "123456"


class FakeMailer:
    """Records every send; methods named in ``failing`` report failure."""

    def __init__(self):
        self.sent = []
        self.failing = set()
        self.raising = set()

    def _record(self, method, to_email, otp=None):
        if method in self.raising:
            raise ConnectionError(f"{method} unavailable")
        if method in self.failing:
            return False
        self.sent.append((method, to_email, otp))
        return True

    def send_signup_otp(self, to_email, otp):
        return self._record("send_signup_otp", to_email, otp)

    def send_login_otp(self, to_email, otp):
        return self._record("send_login_otp", to_email, otp)

    def send_password_reset_otp(self, to_email, otp):
        return self._record("send_password_reset_otp", to_email, otp)

    def send_email_verified(self, to_email):
        return self._record("send_email_verified", to_email)

    def send_password_set(self, to_email):
        return self._record("send_password_set", to_email)

    def methods(self):
        return [entry[0] for entry in self.sent]


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_settings_cache()
    reset_runtime_for_tests()
    yield
    reset_settings_cache()
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        persist_store=False,
        password_hash_time_cost=1,
        password_hash_memory_cost=1024,
        password_hash_parallelism=1,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def memory_store():
    return MemoryStore(persist=False)


@pytest.fixture
def hasher(settings):
    return PasswordHasher(settings)


@pytest.fixture
def tokens(settings, clock):
    return TokenIssuer(settings, clock=clock)


@pytest.fixture
def auth_service(memory_store, mailer, hasher, tokens, settings, clock):
    return AuthService(
        memory_store,
        mailer,
        hasher,
        tokens,
        settings,
        clock=clock,
        otp_generator=lambda: TEST_OTP,
    )


@pytest.fixture
def session_guard(tokens, memory_store):
    return SessionGuard(tokens, memory_store)


@pytest.fixture
def active_account(auth_service):
    """Run the three signup steps and return the active account."""

    async def _signup():
        await auth_service.initiate_signup("alice@example.com", "Alice")
        await auth_service.verify_signup_email("alice@example.com", TEST_OTP)
        await auth_service.set_signup_password("alice@example.com", "CorrectHorse1")

    asyncio.run(_signup())
    return auth_service.store.get_by_email("alice@example.com")


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
