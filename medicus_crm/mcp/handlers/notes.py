"""Handlers for note tools: one per entity kind plus a generic dispatcher."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from medicus_crm.context import CrmContext
from medicus_crm.database import NOTE_TARGETS, OWNER_COLUMN
from medicus_crm.mcp.envelope import ToolResult
from medicus_crm.mcp.sanitize import optional_string, sanitize_string, validate_enum, validate_uuid
from medicus_crm.mcp.tool_definitions import NOTE_ENTITY_TYPES
from medicus_crm.writes import insert_adaptive, resolve_owner

NOTE_BODY_MAX = 10000

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _validate_note_fields(arguments: Dict[str, Any], sanitized: Dict[str, Any]) -> Dict[str, Any]:
    sanitized["body"] = sanitize_string(arguments.get("body"), "body", NOTE_BODY_MAX)
    sanitized["author"] = optional_string(arguments.get("author"), "author", 200)
    return sanitized


def _validate_typed_note(entity: str):
    id_field = f"{entity}_id"

    def validate(arguments: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {"entity_id": validate_uuid(arguments.get(id_field), id_field)}
        return _validate_note_fields(arguments, sanitized)

    return validate


validate_crm_add_contact_note = _validate_typed_note("contact")
validate_crm_add_company_note = _validate_typed_note("company")
validate_crm_add_deal_note = _validate_typed_note("deal")
validate_crm_add_lead_note = _validate_typed_note("lead")


def validate_crm_add_note(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["entity_type"] = validate_enum(
        arguments.get("entity_type"), "entity_type", NOTE_ENTITY_TYPES, required=True
    )
    sanitized["entity_id"] = validate_uuid(arguments.get("entity_id"), "entity_id")
    return _validate_note_fields(arguments, sanitized)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def add_note(
    ctx: CrmContext, entity_type: str, entity_id: str, body: str, author: Optional[str] = None
) -> ToolResult:
    """Attach a note to a record, adapting the insert to the notes table's shape.

    Company notes carry the company as their own owner; other kinds inherit
    the owning company of their record when the schema has one.
    """
    entity_table, notes_table, foreign_key = NOTE_TARGETS[entity_type]

    payload: Dict[str, Any] = {
        foreign_key: entity_id,
        "body": body,
        "author": author or ctx.default_note_author,
        "type": "note",
        "activity_date": datetime.now(timezone.utc).isoformat(),
    }
    if foreign_key != OWNER_COLUMN:
        owner_id = resolve_owner(ctx.db, entity_table, entity_id)
        if owner_id:
            payload[OWNER_COLUMN] = owner_id

    row = insert_adaptive(ctx.db, notes_table, payload, rules=ctx.rules)
    return ToolResult(f"Added note to {entity_type} {entity_id}.", row)


def _handle_typed_note(entity: str):
    def handle(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
        return add_note(ctx, entity, args["entity_id"], args["body"], args.get("author"))

    handle.__name__ = f"handle_crm_add_{entity}_note"
    return handle


handle_crm_add_contact_note = _handle_typed_note("contact")
handle_crm_add_company_note = _handle_typed_note("company")
handle_crm_add_deal_note = _handle_typed_note("deal")
handle_crm_add_lead_note = _handle_typed_note("lead")


def handle_crm_add_note(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    return add_note(ctx, args["entity_type"], args["entity_id"], args["body"], args.get("author"))


# ---------------------------------------------------------------------------
# Registry dicts
# ---------------------------------------------------------------------------

HANDLERS = {
    "crm_add_deal_note": handle_crm_add_deal_note,
    "crm_add_lead_note": handle_crm_add_lead_note,
    "crm_add_contact_note": handle_crm_add_contact_note,
    "crm_add_company_note": handle_crm_add_company_note,
    "crm_add_note": handle_crm_add_note,
}

VALIDATORS = {
    "crm_add_deal_note": validate_crm_add_deal_note,
    "crm_add_lead_note": validate_crm_add_lead_note,
    "crm_add_contact_note": validate_crm_add_contact_note,
    "crm_add_company_note": validate_crm_add_company_note,
    "crm_add_note": validate_crm_add_note,
}
