"""Tests for the admin bootstrap script."""

import importlib.util
from pathlib import Path

import pytest
from conftest import FakeMailer

from passgate.service.runtime import Runtime, set_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


bootstrap = _load_script()


@pytest.fixture
def runtime():
    instance = Runtime(mailer=FakeMailer())
    set_runtime(instance)
    return instance


def test_creates_admin(runtime):
    result = bootstrap.bootstrap_admin("root@example.com", "SecurePassword1", runtime=runtime)
    assert result["status"] == "created"
    account = runtime.store.get(result["account_id"])
    assert account.role == "admin"
    assert account.plan == "enterprise"
    assert account.can_login
    assert runtime.hasher.verify("SecurePassword1", account.password)


def test_existing_admin_untouched(runtime):
    bootstrap.bootstrap_admin("root@example.com", "SecurePassword1", runtime=runtime)
    result = bootstrap.bootstrap_admin("root@example.com", "OtherPassword1", runtime=runtime)
    assert result["status"] == "already_admin"
    account = runtime.store.get(result["account_id"])
    assert runtime.hasher.verify("SecurePassword1", account.password)


def test_promotes_pending_account(runtime):
    pending = runtime.store.create(email="bob@example.com", display_name="Bob")
    result = bootstrap.bootstrap_admin("bob@example.com", "SecurePassword1", runtime=runtime)
    assert result == {"account_id": pending.id, "email": "bob@example.com", "status": "promoted"}
    account = runtime.store.get(pending.id)
    assert account.role == "admin"
    assert account.is_active and account.is_email_verified
    assert runtime.hasher.verify("SecurePassword1", account.password)


def test_promotion_keeps_existing_password(runtime):
    digest = runtime.hasher.hash("OriginalPass1")
    runtime.store.create(
        email="carol@example.com",
        display_name="Carol",
        password=digest,
        is_active=True,
        is_email_verified=True,
    )
    bootstrap.bootstrap_admin("carol@example.com", "SecurePassword1", runtime=runtime)
    assert runtime.store.get_by_email("carol@example.com").password == digest


def test_dry_run_changes_nothing(runtime):
    result = bootstrap.bootstrap_admin(
        "root@example.com", "SecurePassword1", dry_run=True, runtime=runtime
    )
    assert result["status"] == "dry_run"
    assert runtime.store.get_by_email("root@example.com") is None


@pytest.mark.parametrize(
    "email,password",
    [("not-an-email", "SecurePassword1"), ("root@example.com", "short")],
)
def test_invalid_input(runtime, email, password):
    with pytest.raises(ValueError):
        bootstrap.bootstrap_admin(email, password, runtime=runtime)


class TestMain:
    def test_missing_email(self, runtime, monkeypatch):
        monkeypatch.delenv("ADMIN_EMAIL", raising=False)
        assert bootstrap.main(["--password", "SecurePassword1"]) == 1

    def test_missing_password(self, runtime, monkeypatch):
        monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
        assert bootstrap.main(["--email", "root@example.com"]) == 1

    def test_invalid_password_exit_code(self, runtime):
        assert bootstrap.main(["--email", "root@example.com", "--password", "short"]) == 1

    def test_success(self, runtime, capsys):
        code = bootstrap.main(["--email", "root@example.com", "--password", "SecurePassword1"])
        assert code == 0
        assert "Admin account created successfully" in capsys.readouterr().out
        assert runtime.store.get_by_email("root@example.com").role == "admin"
