"""Tests for storage error translation and classification."""

import pytest
from postgrest.exceptions import APIError

from medicus_crm.errors import (
    ConstraintViolationError,
    CrmError,
    FaultKind,
    PermissionDeniedError,
    StorageError,
    StoreFault,
    classify_error,
    error_message,
    translate_error,
)


def _api_error(message, code=None):
    return APIError({"message": message, "code": code, "hint": None, "details": None})


class TestTranslateError:
    @pytest.mark.parametrize(
        "message, kind, name",
        [
            (
                'null value in column "company_id" of relation "deal_notes" '
                "violates not-null constraint",
                FaultKind.NOT_NULL_VIOLATION,
                "company_id",
            ),
            (
                'column "author" of relation "deal_notes" does not exist',
                FaultKind.UNDEFINED_COLUMN,
                "author",
            ),
            ("column deals.company_id does not exist", FaultKind.UNDEFINED_COLUMN, "company_id"),
            (
                "Could not find the 'body' column of 'lead_notes' in the schema cache",
                FaultKind.UNDEFINED_COLUMN,
                "body",
            ),
            (
                'relation "public.deal_contacts" does not exist',
                FaultKind.UNDEFINED_RELATION,
                "deal_contacts",
            ),
            (
                "Could not find the table 'public.deal_contacts' in the schema cache",
                FaultKind.UNDEFINED_RELATION,
                "deal_contacts",
            ),
            (
                'new row violates row-level security policy for table "contacts"',
                FaultKind.ROW_LEVEL_SECURITY,
                None,
            ),
            (
                'insert or update on table "deals" violates foreign key constraint "x"',
                FaultKind.FOREIGN_KEY_VIOLATION,
                None,
            ),
            ("canceling statement due to statement timeout", FaultKind.OTHER, None),
        ],
    )
    def test_message_patterns(self, message, kind, name):
        fault = translate_error(_api_error(message))
        assert fault.kind == kind
        assert fault.name == name
        assert fault.message == message

    def test_accepts_plain_strings(self):
        fault = translate_error('column "type" does not exist')
        assert fault.is_column(FaultKind.UNDEFINED_COLUMN, "type")

    @pytest.mark.parametrize(
        "code, kind",
        [("42501", FaultKind.ROW_LEVEL_SECURITY), ("23503", FaultKind.FOREIGN_KEY_VIOLATION)],
    )
    def test_sqlstate_fallback(self, code, kind):
        assert translate_error(_api_error("permission problem", code)).kind == kind

    def test_message_wins_over_code(self):
        fault = translate_error(_api_error('column "x" does not exist', "42501"))
        assert fault.kind == FaultKind.UNDEFINED_COLUMN

    def test_is_relation_checks_name(self):
        fault = translate_error('relation "public.deal_contacts" does not exist')
        assert fault.is_relation("deal_contacts")
        assert not fault.is_relation("contacts")


class TestErrorMessage:
    def test_none(self):
        assert error_message(None) == "Unknown error"

    def test_prefers_message_attribute(self):
        assert error_message(_api_error("boom")) == "boom"

    def test_falls_back_to_str(self):
        assert error_message(RuntimeError("kaput")) == "kaput"


class TestClassifyError:
    def test_row_level_security(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            classify_error("contacts", _api_error("violates row-level security policy"))
        assert str(exc_info.value) == (
            'Write blocked by Row Level Security on "contacts". '
            "Use a service-role key or adjust the RLS policy."
        )
        assert exc_info.value.table == "contacts"

    def test_foreign_key(self):
        message = 'insert on table "deals" violates foreign key constraint "deals_company_id_fkey"'
        with pytest.raises(ConstraintViolationError) as exc_info:
            classify_error("deals", _api_error(message))
        assert str(exc_info.value) == f'Foreign key error writing to "deals": {message}'

    def test_other_keeps_raw_message(self):
        with pytest.raises(StorageError, match="^duplicate key value$"):
            classify_error("companies", _api_error("duplicate key value"))

    def test_accepts_translated_fault(self):
        fault = StoreFault(FaultKind.OTHER, "already translated")
        with pytest.raises(StorageError, match="already translated"):
            classify_error("leads", fault)

    def test_all_failures_are_crm_errors(self):
        for message in ("row-level security", "violates foreign key constraint", "other"):
            with pytest.raises(CrmError):
                classify_error("t", message)
