"""Storage error translation and classification.

Every decision the tools make about a failed storage call goes through
:func:`translate_error`, which maps the backend's message (and SQLSTATE
code, when one is present) onto a closed set of :class:`FaultKind` values.
If the backend's dialect changes, only the patterns in this module need
updating.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================


class CrmError(Exception):
    """Base for all CRM tool failures. Message is safe to show to the caller."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class RequiredRelationshipError(CrmError):
    """A NOT NULL relationship column the caller did not (or could not) supply."""

    pass


class PermissionDeniedError(CrmError):
    """Write rejected by row-level security."""

    pass


class ConstraintViolationError(CrmError):
    """Write rejected by a foreign key constraint."""

    pass


class StorageError(CrmError):
    """Any other storage failure; carries the raw backend message."""

    pass


class InsertExhaustedError(CrmError):
    """Adaptive insert ran out of attempts."""

    pass


class RecordNotFoundError(CrmError):
    """An update-by-id matched no row."""

    pass


# =============================================================================
# TRANSLATION
# =============================================================================


class FaultKind(str, Enum):
    UNDEFINED_COLUMN = "undefined_column"
    NOT_NULL_VIOLATION = "not_null_violation"
    UNDEFINED_RELATION = "undefined_relation"
    ROW_LEVEL_SECURITY = "row_level_security"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    OTHER = "other"


@dataclass(frozen=True)
class StoreFault:
    """A backend error reduced to its kind and the object it names."""

    kind: FaultKind
    message: str
    name: Optional[str] = None  # column or relation, when the message names one

    def is_column(self, kind: FaultKind, column: str) -> bool:
        return self.kind == kind and self.name == column

    def is_relation(self, relation: str) -> bool:
        return self.kind == FaultKind.UNDEFINED_RELATION and self.name == relation


_IDENT = r'"?(?:\w+\.)?(?P<name>\w+)"?'

# Order matters: the first matching pattern wins.
_PATTERNS = [
    (
        FaultKind.NOT_NULL_VIOLATION,
        re.compile(r"null value in column " + _IDENT + r".*violates not-null", re.I | re.S),
    ),
    (
        FaultKind.UNDEFINED_COLUMN,
        re.compile(r"column " + _IDENT + r'(?: of relation "?[\w.]+"?)? does not exist', re.I),
    ),
    (
        FaultKind.UNDEFINED_COLUMN,
        re.compile(
            r"could not find the '(?P<name>\w+)' column of '[\w.]+' in the schema cache", re.I
        ),
    ),
    (
        FaultKind.UNDEFINED_RELATION,
        re.compile(r"relation " + _IDENT + r" does not exist", re.I),
    ),
    (
        FaultKind.UNDEFINED_RELATION,
        re.compile(r"could not find the table '(?:\w+\.)?(?P<name>\w+)' in the schema cache", re.I),
    ),
    (FaultKind.ROW_LEVEL_SECURITY, re.compile(r"row-level security", re.I)),
    (FaultKind.FOREIGN_KEY_VIOLATION, re.compile(r"violates foreign key constraint", re.I)),
]

# SQLSTATE fallbacks for messages that carry no recognisable wording
_CODES = {
    "42501": FaultKind.ROW_LEVEL_SECURITY,
    "23503": FaultKind.FOREIGN_KEY_VIOLATION,
}


def error_message(error: Any) -> str:
    """Best-effort message extraction from a backend error."""
    if error is None:
        return "Unknown error"
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or "Unknown error"


def translate_error(error: Any) -> StoreFault:
    """Map a raw backend error (exception or message) onto a :class:`StoreFault`."""
    message = error if isinstance(error, str) else error_message(error)
    for kind, pattern in _PATTERNS:
        match = pattern.search(message)
        if match:
            name = match.groupdict().get("name")
            return StoreFault(kind=kind, message=message, name=name)

    code = getattr(error, "code", None)
    if code in _CODES:
        return StoreFault(kind=_CODES[code], message=message)
    return StoreFault(kind=FaultKind.OTHER, message=message)


def classify_error(table: str, error: Any) -> None:
    """Raise the caller-facing failure for a storage error on ``table``.

    Never returns.
    """
    fault = error if isinstance(error, StoreFault) else translate_error(error)
    logger.debug("Storage error on %s classified as %s: %s", table, fault.kind.value, fault.message)

    if fault.kind == FaultKind.ROW_LEVEL_SECURITY:
        raise PermissionDeniedError(
            f'Write blocked by Row Level Security on "{table}". '
            "Use a service-role key or adjust the RLS policy.",
            table=table,
        )
    if fault.kind == FaultKind.FOREIGN_KEY_VIOLATION:
        raise ConstraintViolationError(
            f'Foreign key error writing to "{table}": {fault.message}', table=table
        )
    raise StorageError(fault.message, table=table)
