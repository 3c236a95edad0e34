"""Tests for the in-memory account store and query constraints."""

import threading

import pytest

from passgate.storage.common import Equals, Limit, OrderBy, RecordStore, apply_constraints
from passgate.storage.errors import ConstraintViolation, UnknownFieldError
from passgate.storage.memory import MemoryStore


def _seed(store):
    store.create(email="c@example.com", display_name="C", role="user", plan="free")
    store.create(email="a@example.com", display_name="A", role="admin", plan="enterprise")
    store.create(email="b@example.com", display_name="B", role="user", plan="developer")


def test_memory_store_satisfies_record_store(memory_store):
    assert isinstance(memory_store, RecordStore)
    assert callable(getattr(RecordStore, "get_by_email", None))


class TestCrud:
    def test_create_assigns_id_and_defaults(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        assert account.id
        assert account.is_active is False
        assert account.is_email_verified is False
        assert account.role == "user"
        assert account.plan == "free"
        assert account.api_requests_limit == 1000
        assert memory_store.get(account.id) == account

    def test_duplicate_email_rejected(self, memory_store):
        memory_store.create(email="a@example.com", display_name="A")
        with pytest.raises(ConstraintViolation):
            memory_store.create(email="a@example.com", display_name="Other")

    def test_email_lookup_is_case_sensitive(self, memory_store):
        memory_store.create(email="Alice@example.com", display_name="A")
        assert memory_store.get_by_email("Alice@example.com") is not None
        assert memory_store.get_by_email("alice@example.com") is None

    def test_update_clears_with_none(self, memory_store):
        account = memory_store.create(
            email="a@example.com", display_name="A", login_otp="123456"
        )
        updated = memory_store.update(account.id, {"login_otp": None, "display_name": "B"})
        assert updated.login_otp is None
        assert updated.display_name == "B"
        assert updated.updated_at >= account.updated_at

    def test_update_unknown_field_rejected(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        with pytest.raises(UnknownFieldError):
            memory_store.update(account.id, {"nickname": "x"})
        with pytest.raises(UnknownFieldError):
            memory_store.update(account.id, {"id": "other"})

    def test_update_missing_returns_none(self, memory_store):
        assert memory_store.update("missing", {"display_name": "x"}) is None

    def test_returned_records_are_copies(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        account.role = "admin"
        assert memory_store.get(account.id).role == "user"

    def test_delete(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        assert memory_store.delete(account.id) is True
        assert memory_store.get(account.id) is None
        assert memory_store.delete(account.id) is False


class TestIncrement:
    def test_increment_returns_new_value(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        assert memory_store.increment(account.id, "failed_login_attempts") == 1
        assert memory_store.increment(account.id, "failed_login_attempts") == 2
        assert memory_store.get(account.id).failed_login_attempts == 2

    def test_increment_missing_account(self, memory_store):
        assert memory_store.increment("missing", "api_requests_count") is None

    def test_increment_non_counter_rejected(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")
        with pytest.raises(TypeError):
            memory_store.increment(account.id, "email")
        with pytest.raises(TypeError):
            memory_store.increment(account.id, "is_active")

    def test_concurrent_increments_are_not_lost(self, memory_store):
        account = memory_store.create(email="a@example.com", display_name="A")

        def worker():
            for _ in range(200):
                memory_store.increment(account.id, "api_requests_count")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert memory_store.get(account.id).api_requests_count == 1600


class TestQueries:
    def test_equals_filters(self, memory_store):
        _seed(memory_store)
        users = memory_store.find([Equals("role", "user")])
        assert {u.email for u in users} == {"b@example.com", "c@example.com"}

    def test_order_and_limit(self, memory_store):
        _seed(memory_store)
        rows = memory_store.find([OrderBy("email"), Limit(2)])
        assert [r.email for r in rows] == ["a@example.com", "b@example.com"]
        rows = memory_store.find([OrderBy("email", descending=True)])
        assert [r.email for r in rows] == ["c@example.com", "b@example.com", "a@example.com"]

    def test_count(self, memory_store):
        _seed(memory_store)
        assert memory_store.count() == 3
        assert memory_store.count([Equals("plan", "developer")]) == 1

    def test_unknown_field_in_query(self, memory_store):
        _seed(memory_store)
        with pytest.raises(UnknownFieldError):
            memory_store.find([Equals("nickname", "x")])

    def test_apply_constraints_none_values_sort_first(self):
        class Row:
            def __init__(self, v):
                self.v = v

        rows = apply_constraints([Row(2), Row(None), Row(1)], [OrderBy("v")])
        assert [r.v for r in rows] == [None, 1, 2]

    def test_limit_zero(self, memory_store):
        _seed(memory_store)
        assert memory_store.find([Limit(0)]) == []


class TestPersistence:
    def test_state_survives_reload(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        account = store.create(email="a@example.com", display_name="A")
        store.update(account.id, {"is_email_verified": True})
        store.increment(account.id, "failed_login_attempts")

        reloaded = MemoryStore(fs_root=str(tmp_path))
        restored = reloaded.get(account.id)
        assert restored.email == "a@example.com"
        assert restored.is_email_verified is True
        assert restored.failed_login_attempts == 1
        assert restored.created_at == account.created_at
        assert (tmp_path / "state" / "accounts.json").exists()

    def test_no_files_without_persistence(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path), persist=False)
        store.create(email="a@example.com", display_name="A")
        assert not (tmp_path / "state").exists()
