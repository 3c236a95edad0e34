"""Repository interface and query constraints shared by store implementations.

Stores expose a narrow CRUD surface plus ``find`` over a list of query
constraints. Constraints are plain values so callers can build them without
knowing which backend is in use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    Union,
    runtime_checkable,
)

from passgate.storage.errors import UnknownFieldError

T = TypeVar("T")


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    count: int


QueryConstraint = Union[Equals, OrderBy, Limit]


@runtime_checkable
class RecordStore(Protocol[T]):
    """Generic repository over records of type ``T`` keyed by string id."""

    def create(self, **fields: Any) -> T: ...

    def get(self, record_id: str) -> Optional[T]: ...

    def get_by_email(self, email: str) -> Optional[T]: ...

    def update(self, record_id: str, changes: dict) -> Optional[T]: ...

    def delete(self, record_id: str) -> bool: ...

    def find(self, constraints: Sequence[QueryConstraint] = ()) -> List[T]: ...

    def count(self, constraints: Sequence[QueryConstraint] = ()) -> int: ...

    def increment(self, record_id: str, field_name: str, amount: int = 1) -> Optional[int]: ...


def _field_value(record: Any, name: str) -> Any:
    if not hasattr(record, name):
        raise UnknownFieldError(name)
    return getattr(record, name)


def _sort_key(name: str):
    # Missing values sort before present ones
    def key(record: Any):
        value = _field_value(record, name)
        return (value is not None, value if value is not None else 0)

    return key


def apply_constraints(records: Iterable[T], constraints: Sequence[QueryConstraint]) -> List[T]:
    """Filter, order and truncate ``records`` according to ``constraints``.

    All ``Equals`` constraints are applied first, then ``OrderBy`` clauses in
    the order given (the first clause is the primary key), then the smallest
    ``Limit``.
    """

    rows = list(records)
    filters = [c for c in constraints if isinstance(c, Equals)]
    orderings = [c for c in constraints if isinstance(c, OrderBy)]
    limits = [c.count for c in constraints if isinstance(c, Limit)]

    for cond in filters:
        rows = [row for row in rows if _field_value(row, cond.field) == cond.value]
    # Stable sorts applied from the least significant clause
    for ordering in reversed(orderings):
        rows.sort(key=_sort_key(ordering.field), reverse=ordering.descending)
    if limits:
        rows = rows[: max(0, min(limits))]
    return rows


__all__ = [
    "Equals",
    "OrderBy",
    "Limit",
    "QueryConstraint",
    "RecordStore",
    "apply_constraints",
]
