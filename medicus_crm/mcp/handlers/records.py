"""Handlers for record tools: create, update, upsert and cancel."""

from typing import Any, Dict

from medicus_crm.context import CrmContext
from medicus_crm.database import COMPANIES_TABLE, CONTACTS_TABLE, DEALS_TABLE, LEADS_TABLE
from medicus_crm.mcp.envelope import ToolResult
from medicus_crm.mcp.sanitize import (
    optional_number,
    optional_string,
    sanitize_string,
    validate_email,
    validate_enum,
    validate_updates,
    validate_uuid,
)
from medicus_crm.mcp.tool_definitions import CANCEL_STATUSES
from medicus_crm.writes import insert_row, sanitize_updates, update_by_id, upsert_row

CONTACT_FIELDS = [
    "first_name",
    "last_name",
    "email",
    "phone",
    "company_id",
    "title",
    "notes",
    "full_name",
]
COMPANY_FIELDS = ["name", "website", "phone", "address", "industry", "notes"]
LEAD_FIELDS = [
    "first_name",
    "last_name",
    "email",
    "phone",
    "company",
    "source",
    "status",
    "message",
]
DEAL_FIELDS = [
    "title",
    "status",
    "amount",
    "stage_id",
    "pipeline_id",
    "company_id",
    "contact_person_id",
    "notes",
]

NOTHING_TO_UPDATE = "No valid fields to update."

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _validate_generic_update(id_field: str):
    def validate(arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {
            id_field: validate_uuid(arguments.get(id_field), id_field),
            "updates": validate_updates(arguments.get("updates")),
        }

    return validate


validate_crm_update_contact = _validate_generic_update("contact_id")
validate_crm_update_company = _validate_generic_update("company_id")
validate_crm_update_lead = _validate_generic_update("lead_id")
validate_crm_update_deal_generic = _validate_generic_update("deal_id")


def validate_crm_create_contact(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["first_name"] = sanitize_string(arguments.get("first_name"), "first_name", 200)
    sanitized["last_name"] = sanitize_string(arguments.get("last_name"), "last_name", 200)
    sanitized["email"] = validate_email(arguments.get("email"))
    sanitized["phone"] = optional_string(arguments.get("phone"), "phone", 50)
    sanitized["company_id"] = validate_uuid(
        arguments.get("company_id"), "company_id", required=False
    )
    return sanitized


def validate_crm_upsert_company(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["name"] = sanitize_string(arguments.get("name"), "name", 300)
    sanitized["website"] = optional_string(arguments.get("website"), "website", 500)
    sanitized["phone"] = optional_string(arguments.get("phone"), "phone", 50)
    sanitized["address"] = optional_string(arguments.get("address"), "address", 1000)
    return sanitized


def validate_crm_create_lead(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["first_name"] = sanitize_string(arguments.get("first_name"), "first_name", 200)
    sanitized["last_name"] = sanitize_string(arguments.get("last_name"), "last_name", 200)
    sanitized["email"] = validate_email(arguments.get("email"))
    sanitized["phone"] = optional_string(arguments.get("phone"), "phone", 50)
    sanitized["company"] = optional_string(arguments.get("company"), "company", 300)
    sanitized["source"] = optional_string(arguments.get("source"), "source", 100) or "mcp"
    sanitized["status"] = optional_string(arguments.get("status"), "status", 100) or "new"
    sanitized["message"] = optional_string(arguments.get("message"), "message", 5000)
    return sanitized


def validate_crm_update_lead_status(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "lead_id": validate_uuid(arguments.get("lead_id"), "lead_id"),
        "status": sanitize_string(arguments.get("status"), "status", 100),
    }


def validate_crm_create_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["title"] = sanitize_string(arguments.get("title"), "title", 500)
    sanitized["amount"] = optional_number(arguments.get("amount"), "amount")
    sanitized["status"] = optional_string(arguments.get("status"), "status", 100)
    for field in ("stage_id", "pipeline_id", "company_id", "contact_person_id"):
        sanitized[field] = validate_uuid(arguments.get(field), field, required=False)
    return sanitized


def validate_crm_update_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["deal_id"] = validate_uuid(arguments.get("deal_id"), "deal_id")
    sanitized["stage_id"] = validate_uuid(arguments.get("stage_id"), "stage_id", required=False)
    sanitized["status"] = optional_string(arguments.get("status"), "status", 100)
    sanitized["amount"] = optional_number(arguments.get("amount"), "amount")
    return sanitized


def validate_crm_cancel_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["deal_id"] = validate_uuid(arguments.get("deal_id"), "deal_id")
    sanitized["status"] = validate_enum(
        arguments.get("status"), "status", CANCEL_STATUSES, "cancelled"
    )
    sanitized["reason"] = optional_string(arguments.get("reason"), "reason", 2000)
    return sanitized


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _generic_update(table: str, id_field: str, label: str, allowed: list):
    def handle(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
        patch = sanitize_updates(args["updates"], allowed)
        if not patch:
            return ToolResult(NOTHING_TO_UPDATE)
        record_id = args[id_field]
        row = update_by_id(ctx.db, table, record_id, patch)
        return ToolResult(f"Updated {label} {record_id}.", row)

    handle.__name__ = f"handle_crm_update_{label}"
    return handle


handle_crm_update_contact = _generic_update(CONTACTS_TABLE, "contact_id", "contact", CONTACT_FIELDS)
handle_crm_update_company = _generic_update(
    COMPANIES_TABLE, "company_id", "company", COMPANY_FIELDS
)
handle_crm_update_lead = _generic_update(LEADS_TABLE, "lead_id", "lead", LEAD_FIELDS)
handle_crm_update_deal_generic = _generic_update(DEALS_TABLE, "deal_id", "deal", DEAL_FIELDS)


def handle_crm_create_contact(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    values = {
        "first_name": args["first_name"],
        "last_name": args["last_name"],
        "company_id": args.get("company_id"),
    }
    for field in ("email", "phone"):
        if args.get(field) is not None:
            values[field] = args[field]
    row = insert_row(ctx.db, CONTACTS_TABLE, values)
    return ToolResult(
        f"Created contact {row.get('id')} ({row.get('first_name')} {row.get('last_name')}).", row
    )


def handle_crm_upsert_company(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    values = {"name": args["name"]}
    # Omitted fields must not overwrite existing values on conflict
    for field in ("website", "phone", "address"):
        if args.get(field) is not None:
            values[field] = args[field]
    row = upsert_row(ctx.db, COMPANIES_TABLE, values, on_conflict="name")
    return ToolResult(f"Upserted company {row.get('id')} ({row.get('name')}).", row)


def handle_crm_create_lead(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    values = {field: args[field] for field in LEAD_FIELDS if args.get(field) is not None}
    row = insert_row(ctx.db, LEADS_TABLE, values)
    return ToolResult(
        f"Created lead {row.get('id')} ({row.get('first_name')} {row.get('last_name')}).", row
    )


def handle_crm_update_lead_status(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    lead_id = args["lead_id"]
    row = update_by_id(ctx.db, LEADS_TABLE, lead_id, {"status": args["status"]})
    return ToolResult(f'Updated lead {lead_id} status to "{row.get("status")}".', row)


def handle_crm_create_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    values = {field: value for field, value in args.items() if value is not None}
    row = insert_row(ctx.db, DEALS_TABLE, values)
    return ToolResult(f"Created deal {row.get('id')} ({row.get('title')}).", row)


def handle_crm_update_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    patch = {
        field: args[field]
        for field in ("stage_id", "status", "amount")
        if args.get(field) is not None
    }
    if not patch:
        return ToolResult(NOTHING_TO_UPDATE)
    deal_id = args["deal_id"]
    row = update_by_id(ctx.db, DEALS_TABLE, deal_id, patch)
    return ToolResult(f"Updated deal {deal_id}.", row)


def handle_crm_cancel_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    deal_id = args["deal_id"]
    status = args.get("status", "cancelled")
    reason = args.get("reason")
    patch: Dict[str, Any] = {"status": status}
    if reason:
        patch["notes"] = reason

    row = update_by_id(ctx.db, DEALS_TABLE, deal_id, patch)

    summary = f"Deal {deal_id} moved to {status} status."
    if reason:
        summary += f" Reason: {reason}"
    return ToolResult(summary, row)


# ---------------------------------------------------------------------------
# Registry dicts
# ---------------------------------------------------------------------------

HANDLERS = {
    "crm_create_contact": handle_crm_create_contact,
    "crm_update_contact": handle_crm_update_contact,
    "crm_upsert_company": handle_crm_upsert_company,
    "crm_update_company": handle_crm_update_company,
    "crm_create_lead": handle_crm_create_lead,
    "crm_update_lead": handle_crm_update_lead,
    "crm_update_lead_status": handle_crm_update_lead_status,
    "crm_create_deal": handle_crm_create_deal,
    "crm_update_deal": handle_crm_update_deal,
    "crm_update_deal_generic": handle_crm_update_deal_generic,
    "crm_cancel_deal": handle_crm_cancel_deal,
}

VALIDATORS = {
    "crm_create_contact": validate_crm_create_contact,
    "crm_update_contact": validate_crm_update_contact,
    "crm_upsert_company": validate_crm_upsert_company,
    "crm_update_company": validate_crm_update_company,
    "crm_create_lead": validate_crm_create_lead,
    "crm_update_lead": validate_crm_update_lead,
    "crm_update_lead_status": validate_crm_update_lead_status,
    "crm_create_deal": validate_crm_create_deal,
    "crm_update_deal": validate_crm_update_deal,
    "crm_update_deal_generic": validate_crm_update_deal_generic,
    "crm_cancel_deal": validate_crm_cancel_deal,
}
