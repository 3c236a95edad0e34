from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from passgate.logging import get_logger
from passgate.storage.common import QueryConstraint, apply_constraints
from passgate.storage.errors import ConstraintViolation, UnknownFieldError
from passgate.storage.models import ACCOUNT_DATETIME_FIELDS, Account, utcnow

_ACCOUNT_FIELDS = frozenset(f.name for f in fields(Account))
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class MemoryStore:
    """In-memory account repository with optional JSON snapshots.

    Every public operation holds ``_data_lock`` for its whole duration, so
    each call is atomic with respect to the others. Records handed out are
    copies; callers change state only through ``update`` and ``increment``.
    """

    def __init__(self, fs_root: str | None = None, *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        # RLock so helpers can re-enter while a public call holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        self.persist = persist and self.fs_root is not None
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "accounts.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # -- repository surface -------------------------------------------------

    def create(self, **values: Any) -> Account:
        email = values.get("email")
        if not email:
            raise ValueError("email is required")
        unknown = set(values) - _ACCOUNT_FIELDS
        if unknown:
            raise UnknownFieldError(sorted(unknown)[0])
        with self._data_lock:
            if any(existing.email == email for existing in self.accounts.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            now = utcnow()
            values.setdefault("display_name", "")
            account = Account(
                **{
                    **values,
                    "id": str(uuid.uuid4()),
                    "created_at": now,
                    "updated_at": now,
                }
            )
            self.accounts[account.id] = account
            self._persist_state()
            return replace(account)

    def get(self, record_id: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(record_id)
            return replace(account) if account else None

    def get_by_email(self, email: str) -> Optional[Account]:
        with self._data_lock:
            for account in self.accounts.values():
                if account.email == email:
                    return replace(account)
            return None

    def update(self, record_id: str, changes: dict) -> Optional[Account]:
        """Apply ``changes`` to an account; ``None`` values clear a field."""

        for name in changes:
            if name not in _ACCOUNT_FIELDS or name in _IMMUTABLE_FIELDS:
                raise UnknownFieldError(name)
        with self._data_lock:
            account = self.accounts.get(record_id)
            if not account:
                return None
            new_email = changes.get("email")
            if new_email and new_email != account.email:
                if any(
                    other.email == new_email
                    for other in self.accounts.values()
                    if other.id != record_id
                ):
                    raise ConstraintViolation("email already exists", {"field": "email"})
            updated = replace(account, **changes)
            updated.updated_at = utcnow()
            self.accounts[record_id] = updated
            self._persist_state()
            return replace(updated)

    def delete(self, record_id: str) -> bool:
        with self._data_lock:
            if self.accounts.pop(record_id, None) is None:
                return False
            self._persist_state()
            return True

    def find(self, constraints: Sequence[QueryConstraint] = ()) -> List[Account]:
        with self._data_lock:
            rows = apply_constraints(self.accounts.values(), constraints)
            return [replace(row) for row in rows]

    def count(self, constraints: Sequence[QueryConstraint] = ()) -> int:
        with self._data_lock:
            return len(apply_constraints(self.accounts.values(), constraints))

    def increment(self, record_id: str, field_name: str, amount: int = 1) -> Optional[int]:
        """Atomically add ``amount`` to an integer field and return the new value."""

        if field_name not in _ACCOUNT_FIELDS:
            raise UnknownFieldError(field_name)
        with self._data_lock:
            account = self.accounts.get(record_id)
            if not account:
                return None
            current = getattr(account, field_name)
            if current is None:
                current = 0
            if not isinstance(current, int) or isinstance(current, bool):
                raise TypeError(f"field {field_name} is not an integer counter")
            new_value = current + amount
            setattr(account, field_name, new_value)
            account.updated_at = utcnow()
            self._persist_state()
            return new_value

    # -- persistence --------------------------------------------------------

    def _serialize_account(self, account: Account) -> dict:
        data = asdict(account)
        for name in ACCOUNT_DATETIME_FIELDS:
            if data.get(name) is not None:
                data[name] = self._serialize_datetime(data[name])
        return data

    def _deserialize_account(self, data: dict) -> Account:
        values = {k: v for k, v in data.items() if k in _ACCOUNT_FIELDS}
        for name in ACCOUNT_DATETIME_FIELDS:
            if values.get(name):
                values[name] = self._deserialize_datetime(values[name])
        values.setdefault("display_name", "")
        return Account(**values)

    def _persist_state(self) -> None:
        if not self.persist:
            return
        state = {
            "accounts": [self._serialize_account(a) for a in self.accounts.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except Exception as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}")

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as exc:
            self.logger.error("memory_store_state_corrupt", path=str(path), error=str(exc))
            return False
        self.accounts = {
            a["id"]: self._deserialize_account(a) for a in data.get("accounts", [])
        }
        self.logger.info("memory_store_state_loaded", accounts=len(self.accounts))
        return True
