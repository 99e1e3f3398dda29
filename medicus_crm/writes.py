"""Schema-tolerant write helpers.

Deployments of the CRM schema disagree on how notes are shaped (``body``
vs ``content``, ``author`` vs ``created_by``, an optional ``company_id``
that may also be NOT NULL). Rather than introspecting the schema, the note
inserter treats the first insert as a schema check and narrows the payload from
the error it gets back, following :data:`NOTE_RULES`.

- ``sanitize_updates`` - restrict an update patch to an allow-list
- ``resolve_owner`` - look up an entity's owning company, if the concept exists
- ``insert_adaptive`` - insert with bounded drop/rename retries
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from medicus_crm.database import OWNER_COLUMN
from medicus_crm.errors import (
    FaultKind,
    InsertExhaustedError,
    RecordNotFoundError,
    RequiredRelationshipError,
    StorageError,
    StoreFault,
    classify_error,
    translate_error,
)

logger = logging.getLogger(__name__)

BLOCKED_UPDATE_KEYS = frozenset({"id", "created_at"})

MAX_INSERT_ATTEMPTS = 8


# =============================================================================
# Field sanitizer
# =============================================================================


def sanitize_updates(
    raw_updates: Optional[Dict[str, Any]],
    allowed_keys: Iterable[str],
    blocked_keys: Iterable[str] = BLOCKED_UPDATE_KEYS,
) -> Dict[str, Any]:
    """Filter ``raw_updates`` down to allowed, non-blocked keys.

    Blocked keys win over the allow-list. An empty result means there is
    nothing to write and the caller should skip the storage call.
    """
    allowed = set(allowed_keys)
    blocked = set(blocked_keys)
    return {
        key: value
        for key, value in (raw_updates or {}).items()
        if key not in blocked and key in allowed
    }


# =============================================================================
# Association resolver
# =============================================================================


def resolve_owner(db: Client, table: str, entity_id: str) -> Optional[str]:
    """Return the owning company id of ``entity_id`` in ``table``.

    Returns None when the row has no owner, no row matches, or ``table``
    has no owner column at all. Any other lookup failure is classified
    and raised.
    """
    try:
        result = db.table(table).select(OWNER_COLUMN).eq("id", entity_id).limit(1).execute()
    except APIError as e:
        fault = translate_error(e)
        if fault.is_column(FaultKind.UNDEFINED_COLUMN, OWNER_COLUMN):
            logger.debug("%s has no %s column; skipping owner lookup", table, OWNER_COLUMN)
            return None
        classify_error(table, fault)

    rows = result.data or []
    if not rows:
        return None
    return rows[0].get(OWNER_COLUMN)


# =============================================================================
# Adaptive note inserter
# =============================================================================


@dataclass(frozen=True)
class NoteRule:
    """One recoverable (or terminal) reaction to a column-shape error.

    A rule fires when the fault has ``kind`` and names ``column``, and
    ``column`` is still present in the payload. ``rename_to`` moves the
    value to a new key instead of dropping it; ``fatal`` stops the loop.
    """

    kind: FaultKind
    column: str
    rename_to: Optional[str] = None
    fatal: bool = False
    value: Optional[Callable[[Dict[str, Any], Dict[str, Any]], Any]] = None

    def matches(self, fault: StoreFault, payload: Dict[str, Any]) -> bool:
        if not fault.is_column(self.kind, self.column):
            return False
        return self.fatal or self.column in payload

    def apply(self, payload: Dict[str, Any], initial: Dict[str, Any]) -> Dict[str, Any]:
        adjusted = {k: v for k, v in payload.items() if k != self.column}
        if self.rename_to is not None:
            if self.value is not None:
                adjusted[self.rename_to] = self.value(payload, initial)
            else:
                adjusted[self.rename_to] = payload[self.column]
        return adjusted


def _created_by(fallback: str) -> Callable[[Dict[str, Any], Dict[str, Any]], Any]:
    def value(payload: Dict[str, Any], initial: Dict[str, Any]) -> Any:
        return initial.get("author") or fallback

    return value


def note_rules(created_by_fallback: str = "mcp") -> List[NoteRule]:
    """Rules for note tables, in priority order."""
    return [
        NoteRule(FaultKind.NOT_NULL_VIOLATION, OWNER_COLUMN, fatal=True),
        NoteRule(FaultKind.UNDEFINED_COLUMN, OWNER_COLUMN),
        NoteRule(
            FaultKind.UNDEFINED_COLUMN,
            "author",
            rename_to="created_by",
            value=_created_by(created_by_fallback),
        ),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "created_by"),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "activity_date", rename_to="created_at"),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "created_at"),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "body", rename_to="content"),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "content"),
        NoteRule(FaultKind.UNDEFINED_COLUMN, "type"),
    ]


NOTE_RULES = note_rules()


def insert_adaptive(
    db: Client,
    table: str,
    initial_payload: Dict[str, Any],
    rules: Optional[List[NoteRule]] = None,
    max_attempts: int = MAX_INSERT_ATTEMPTS,
) -> Dict[str, Any]:
    """Insert ``initial_payload`` into ``table``, adapting it to the schema.

    Each failed attempt whose error matches a rule drops or renames one
    field and retries. Unmatched errors are classified and raised.

    Raises:
        RequiredRelationshipError: The owner column is NOT NULL and absent.
        InsertExhaustedError: ``max_attempts`` inserts all failed recoverably.
        CrmError: Any other classified storage failure.
    """
    if rules is None:
        rules = NOTE_RULES
    payload = dict(initial_payload)

    for attempt in range(1, max_attempts + 1):
        try:
            result = db.table(table).insert(payload).execute()
        except APIError as e:
            fault = translate_error(e)
            rule = next((r for r in rules if r.matches(fault, payload)), None)
            if rule is None:
                classify_error(table, fault)
            if rule.fatal:
                logger.warning(
                    "%s requires %s; giving up after attempt %d", table, rule.column, attempt
                )
                raise RequiredRelationshipError(
                    f"This CRM requires {rule.column} on {table}. Link the entity to a company "
                    f"or relax NOT NULL on {table}.{rule.column}.",
                    table=table,
                ) from e
            payload = rule.apply(payload, initial_payload)
            logger.debug(
                "Insert into %s failed on %s (attempt %d); retrying with keys %s",
                table,
                rule.column,
                attempt,
                sorted(payload),
            )
            continue

        rows = result.data or []
        if not rows:
            raise StorageError(f"Insert into {table} returned no row.", table=table)
        return rows[0]

    logger.warning("Giving up on insert into %s after %d attempts", table, max_attempts)
    raise InsertExhaustedError(
        f"Failed to insert into {table} after multiple attempts.", table=table
    )


# =============================================================================
# Single-statement writes
# =============================================================================


def insert_row(db: Client, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Insert one row and return it."""
    try:
        result = db.table(table).insert(values).execute()
    except APIError as e:
        classify_error(table, e)
    rows = result.data or []
    if not rows:
        raise StorageError(f"Insert into {table} returned no row.", table=table)
    return rows[0]


def upsert_row(db: Client, table: str, values: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
    """Insert or update one row keyed by ``on_conflict`` and return it."""
    try:
        result = (
            db.table(table)
            .upsert(values, on_conflict=on_conflict, ignore_duplicates=False)
            .execute()
        )
    except APIError as e:
        classify_error(table, e)
    rows = result.data or []
    if not rows:
        raise StorageError(f"Upsert into {table} returned no row.", table=table)
    return rows[0]


def update_by_id(db: Client, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Apply ``patch`` to the row with ``record_id`` and return the updated row."""
    try:
        result = db.table(table).update(patch).eq("id", record_id).execute()
    except APIError as e:
        classify_error(table, e)
    rows = result.data or []
    if not rows:
        raise RecordNotFoundError(f"No row in {table} with id {record_id}.", table=table)
    return rows[0]
