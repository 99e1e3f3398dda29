"""
Pytest fixtures and test configuration for Medicus CRM tests.

``FakeSupabase`` reproduces the slice of the supabase-py query builder the
tools use, and raises ``APIError`` with Postgres wording for unknown
tables, unknown columns and NOT NULL violations.
"""

import copy
import os
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional

import pytest
from postgrest.exceptions import APIError

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")

from medicus_crm.context import CrmContext  # noqa: E402
from medicus_crm.mcp.server import set_context  # noqa: E402

_EMBED = re.compile(r"(\w+):(\w+)\s*\(")
_PLAIN_COLUMNS = re.compile(r"^\s*\w+(\s*,\s*\w+)*\s*$")
# column.ilike.value, where value is either bare (no commas) or double-quoted
_OR_CLAUSE = re.compile(r'([\w.]+?)\.ilike\.("(?:[^"\\]|\\.)*"|[^,]*)')


def api_error(message: str, code: Optional[str] = None) -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


def like_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate an ILIKE pattern (with backslash escapes) to a regex."""
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.I | re.S)


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data
        self.count = len(data)


class FakeTable:
    def __init__(self, name: str, columns: Iterable[str], not_null: Iterable[str] = ()):
        self.name = name
        self.columns = set(columns) | {"id"}
        self.not_null = set(not_null)
        self.rows: List[Dict[str, Any]] = []


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table_name = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Any] = []
        self._limit: Optional[int] = None

    # -- operations ---------------------------------------------------------

    def select(self, columns: str = "*", count=None):
        if self.op == "select":
            self.columns = columns
        return self

    def insert(self, values, **kwargs):
        self.op, self.payload = "insert", values
        return self

    def update(self, values, **kwargs):
        self.op, self.payload = "update", values
        return self

    def upsert(self, values, on_conflict: Optional[str] = None, **kwargs):
        self.op, self.payload, self.on_conflict = "upsert", values, on_conflict
        return self

    def delete(self, **kwargs):
        self.op = "delete"
        return self

    # -- filters -------------------------------------------------------------

    def eq(self, column: str, value: Any):
        self.filters.append(("eq", column, value))
        return self

    def ilike(self, column: str, pattern: str):
        self.filters.append(("ilike", column, pattern))
        return self

    def or_(self, filters: str):
        self.filters.append(("or", None, filters))
        return self

    def limit(self, size: int):
        self._limit = size
        return self

    # -- execution -----------------------------------------------------------

    def execute(self) -> FakeResponse:
        client = self.client
        payload = copy.deepcopy(self.payload)
        client.calls.append((self.table_name, self.op, payload))

        queued = client.failures.get((self.table_name, self.op))
        if queued:
            raise queued.pop(0)

        table = client.tables.get(self.table_name)
        if table is None:
            raise api_error(f'relation "public.{self.table_name}" does not exist', "42P01")

        self._check_filter_columns(table)
        if self.op == "select":
            return FakeResponse(self._select(table))
        if self.op == "insert":
            rows = payload if isinstance(payload, list) else [payload]
            return FakeResponse([self._insert(table, row) for row in rows])
        if self.op == "update":
            return FakeResponse(self._update(table, payload))
        if self.op == "upsert":
            return FakeResponse([self._upsert(table, payload)])
        if self.op == "delete":
            removed = [row for row in table.rows if self._matches(row)]
            table.rows = [row for row in table.rows if not self._matches(row)]
            return FakeResponse(copy.deepcopy(removed))
        raise AssertionError(f"unsupported op {self.op}")

    def _check_filter_columns(self, table: FakeTable) -> None:
        for kind, column, _ in self.filters:
            if kind != "or" and column not in table.columns:
                raise api_error(f"column {table.name}.{column} does not exist", "42703")
        if self.op == "select" and _PLAIN_COLUMNS.match(self.columns):
            for column in (c.strip() for c in self.columns.split(",")):
                if column not in table.columns:
                    raise api_error(f"column {table.name}.{column} does not exist", "42703")

    def _check_values(self, table: FakeTable, values: Dict[str, Any], inserting: bool) -> None:
        for key in values:
            if key not in table.columns:
                raise api_error(
                    f'column "{key}" of relation "{table.name}" does not exist', "42703"
                )
        for column in sorted(table.not_null):
            missing = inserting and values.get(column) is None
            if missing or (column in values and values[column] is None):
                raise api_error(
                    f'null value in column "{column}" of relation "{table.name}" '
                    "violates not-null constraint",
                    "23502",
                )

    def _insert(self, table: FakeTable, values: Dict[str, Any]) -> Dict[str, Any]:
        self._check_values(table, values, inserting=True)
        row = {column: None for column in table.columns}
        row["id"] = str(uuid.uuid4())
        row.update(values)
        table.rows.append(row)
        return copy.deepcopy(row)

    def _update(self, table: FakeTable, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._check_values(table, values, inserting=False)
        updated = []
        for row in table.rows:
            if self._matches(row):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def _upsert(self, table: FakeTable, values: Dict[str, Any]) -> Dict[str, Any]:
        key = self.on_conflict or "id"
        for row in table.rows:
            if key in values and row.get(key) == values[key]:
                self._check_values(table, values, inserting=False)
                row.update(values)
                return copy.deepcopy(row)
        return self._insert(table, values)

    def _select(self, table: FakeTable) -> List[Dict[str, Any]]:
        rows = [copy.deepcopy(row) for row in table.rows if self._matches(row)]
        if _PLAIN_COLUMNS.match(self.columns):
            wanted = [c.strip() for c in self.columns.split(",")]
            rows = [{c: row.get(c) for c in wanted} for row in rows]
        else:
            for alias, fk in _EMBED.findall(self.columns):
                target = self.client.tables.get(alias)
                for row in rows:
                    match = None
                    if target is not None:
                        match = next((r for r in target.rows if r["id"] == row.get(fk)), None)
                    row[alias] = copy.deepcopy(match)
        if self._limit is not None:
            rows = rows[: self._limit]
        return rows

    def _matches(self, row: Dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "eq" and row.get(column) != value:
                return False
            if kind == "ilike" and not like_to_regex(value).match(str(row.get(column) or "")):
                return False
            if kind == "or" and not self._matches_any(row, value):
                return False
        return True

    def _matches_any(self, row: Dict[str, Any], filters: str) -> bool:
        for column, value in _OR_CLAUSE.findall(filters):
            if "." in column:
                continue  # embedded columns are not modelled
            if value.startswith('"'):
                value = re.sub(r"\\(.)", r"\1", value[1:-1])
            if like_to_regex(value).match(str(row.get(column) or "")):
                return True
        return False


class FakeSupabase:
    """In-memory stand-in for ``supabase.Client``."""

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {}
        self.calls: List[Any] = []
        self.failures: Dict[Any, List[APIError]] = {}

    def add_table(
        self, name: str, columns: Iterable[str], not_null: Iterable[str] = ()
    ) -> FakeTable:
        self.tables[name] = FakeTable(name, columns, not_null)
        return self.tables[name]

    def seed(self, table_name: str, /, **values) -> Dict[str, Any]:
        table = self.tables[table_name]
        row = {column: None for column in table.columns}
        row["id"] = values.pop("id", None) or str(uuid.uuid4())
        row.update(values)
        table.rows.append(row)
        return copy.deepcopy(row)

    def fail(self, table: str, op: str, message: str, code: Optional[str] = None) -> None:
        self.failures.setdefault((table, op), []).append(api_error(message, code))

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def calls_for(self, op: str, table: Optional[str] = None) -> List[Any]:
        return [c for c in self.calls if c[1] == op and (table is None or c[0] == table)]


CONTACT_COLUMNS = [
    "first_name",
    "last_name",
    "full_name",
    "email",
    "phone",
    "company_id",
    "title",
    "notes",
    "created_at",
]
COMPANY_COLUMNS = ["name", "website", "phone", "address", "industry", "notes", "created_at"]
DEAL_COLUMNS = [
    "title",
    "status",
    "amount",
    "stage_id",
    "pipeline_id",
    "company_id",
    "contact_person_id",
    "notes",
    "created_at",
]
LEAD_COLUMNS = [
    "first_name",
    "last_name",
    "email",
    "phone",
    "company",
    "source",
    "status",
    "message",
    "created_at",
]
NOTE_COLUMNS = ["body", "author", "type", "activity_date", "company_id"]


@pytest.fixture
def fake_db() -> FakeSupabase:
    """A CRM schema with every optional feature present."""
    db = FakeSupabase()
    db.add_table("contacts", CONTACT_COLUMNS)
    db.add_table("companies", COMPANY_COLUMNS)
    db.add_table("deals", DEAL_COLUMNS)
    db.add_table("leads", LEAD_COLUMNS)
    db.add_table("deal_contacts", ["contact_id", "deal_id", "is_main_contact", "role_at_deal"])
    db.add_table("contact_notes", ["contact_id"] + NOTE_COLUMNS)
    db.add_table("company_notes", ["company_id"] + NOTE_COLUMNS[:-1])
    db.add_table("deal_notes", ["deal_id"] + NOTE_COLUMNS)
    db.add_table("lead_notes", ["lead_id"] + NOTE_COLUMNS)
    return db


@pytest.fixture
def ctx(fake_db) -> CrmContext:
    return CrmContext(db=fake_db, default_note_author="Claude via MCP", created_by_fallback="mcp")


@pytest.fixture
def server_ctx(ctx):
    """Install ``ctx`` as the MCP server's process-wide context."""
    set_context(ctx)
    yield ctx
    from medicus_crm.mcp.server import get_context

    if hasattr(get_context, "_instance"):
        delattr(get_context, "_instance")


def new_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def empty_db() -> FakeSupabase:
    """A backend with no tables; tests add the shape they need."""
    return FakeSupabase()
