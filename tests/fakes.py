"""
In-memory stand-in for the supabase Client query builder.

Rows are stored already shaped the way the embedded selects return them (a
task row carries its sub_category -> category -> customer chain), so filters
on dotted paths like ``sub_category.category.customer.assigned_to`` work
without joins.
"""

import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError

_MISSING = object()


def _resolve(row: Dict[str, Any], path: str) -> Any:
    value: Any = row
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _split_clauses(filters: str) -> List[str]:
    """Split a PostgREST `or` list on the commas outside parentheses"""
    clauses, depth, current = [], 0, ""
    for char in filters:
        if char == "," and depth == 0:
            clauses.append(current)
            current = ""
            continue
        depth += {"(": 1, ")": -1}.get(char, 0)
        current += char
    clauses.append(current)
    return clauses


def _clause_matches(row: Dict[str, Any], clause: str) -> bool:
    """Evaluate the `col.is.null` and `col.not.in.(...)` clauses used by the services"""
    column, operator = clause.split(".", 1)
    actual = _resolve(row, column)
    if operator == "is.null":
        return actual is None or actual is _MISSING
    if operator.startswith("not.in.(") and operator.endswith(")"):
        values = [v.strip().strip('"') for v in operator[len("not.in.("):-1].split(",")]
        # SQL: NULL not in (...) is not true
        return actual is not None and actual is not _MISSING and actual not in values
    raise ValueError(f"Unsupported or_ clause: {clause}")


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.filters: List[tuple] = []
        self.order_by: List[tuple] = []
        self.row_limit: Optional[int] = None
        self._negate = False

    # builder

    def select(self, columns: str = "*", **kwargs):
        self.columns = columns
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, kind: str, column: str, value: Any):
        if self._negate:
            kind = f"not_{kind}"
            self._negate = False
        self.filters.append((kind, column, value))
        return self

    def eq(self, column: str, value: Any):
        return self._add("eq", column, value)

    def neq(self, column: str, value: Any):
        return self._add("neq", column, value)

    def in_(self, column: str, values):
        return self._add("in", column, list(values))

    def or_(self, filters: str, **kwargs):
        self.filters.append(("or", filters, None))
        return self

    def order(self, column: str, desc: bool = False, **kwargs):
        self.order_by.append((column, desc))
        return self

    def limit(self, size: int, **kwargs):
        self.row_limit = size
        return self

    # evaluation

    def _matches(self, row: Dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "or":
                if not any(_clause_matches(row, clause) for clause in _split_clauses(column)):
                    return False
                continue
            actual = _resolve(row, column)
            if kind == "eq" and (actual is _MISSING or actual != value):
                return False
            if kind == "neq" and actual == value:
                return False
            if kind == "in" and actual not in value:
                return False
            if kind == "not_in" and actual in value:
                return False
            if kind == "not_eq" and actual == value:
                return False
        return True

    def execute(self):
        self.client.calls.append(self)
        error = self.client.failures.get((self.table, self.op)) or self.client.failures.get((self.table, "*"))
        if error is not None:
            raise APIError(error)

        rows = self.client.tables.setdefault(self.table, [])
        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for payload in payloads:
                row = dict(payload)
                row.setdefault("id", self.client.next_id(self.table))
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return SimpleNamespace(data=inserted)

        matched = [row for row in rows if self._matches(row)]
        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=copy.deepcopy(matched))
        if self.op == "delete":
            self.client.tables[self.table] = [row for row in rows if row not in matched]
            return SimpleNamespace(data=copy.deepcopy(matched))

        for column, desc in reversed(self.order_by):
            matched = sorted(matched, key=lambda r: (_resolve(r, column) is None, str(_resolve(r, column))),
                             reverse=desc)
        if self.row_limit is not None:
            matched = matched[:self.row_limit]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeSupabase:
    """Records every executed query; ``fail(table, op)`` makes the next ones raise APIError"""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables or {})
        self.calls: List[FakeQuery] = []
        self.failures: Dict[tuple, Dict[str, Any]] = {}
        self._ids = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str = "*", message: str = "permission denied", code: str = "42501"):
        self.failures[(table, op)] = {"message": message, "code": code, "details": None, "hint": None}

    def next_id(self, table: str) -> str:
        self._ids += 1
        return f"{table}-new-{self._ids}"

    def executed(self, table: str, op: Optional[str] = None) -> List[FakeQuery]:
        return [q for q in self.calls if q.table == table and (op is None or q.op == op)]


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def task_row(task_id: str, status: str = "Not Started", last_updated: Optional[datetime] = None,
             phone: str = "+64 21 000 0001", servicer_id: Optional[str] = "servicer-a",
             customer_name: str = "Test Customer", sub_id: str = "sub-1", sub_name: str = "Power",
             category_id: str = "cat-1", category_name: str = "Utilities", money_saved: float = 0.0,
             bundle_group: Optional[str] = None, created_at: Optional[datetime] = None,
             **extra) -> Dict[str, Any]:
    """A task row with its full ownership chain embedded"""
    row = {
        "id": task_id,
        "sub_category_id": sub_id,
        "name": f"Task {task_id}",
        "status": status,
        "created_at": iso(created_at or datetime(2024, 1, 1, tzinfo=timezone.utc)),
        "last_updated": iso(last_updated),
        "communicated": False,
        "sub_category": {
            "id": sub_id,
            "category_id": category_id,
            "name": sub_name,
            "money_saved": money_saved,
            "bundle_group": bundle_group,
            "category": {
                "id": category_id,
                "customer_phone": phone,
                "name": category_name,
                "customer": {
                    "phone": phone,
                    "display_name": customer_name,
                    "assigned_to": servicer_id,
                },
            },
        },
    }
    row.update(extra)
    return row


NOW = datetime(2024, 1, 21, 12, 0, tzinfo=timezone.utc)

SERVICER_A = "11111111-1111-4111-8111-111111111111"
SERVICER_B = "22222222-2222-4222-8222-222222222222"


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
