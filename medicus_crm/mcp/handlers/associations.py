"""Handlers for association tools: contact/company/deal links and deal lookups.

Contact-deal links live in the ``deal_contacts`` junction table when the
schema has one. Without it, a deal carries a single contact in
``deals.contact_person_id`` and the tools fall back to that column.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError

from medicus_crm.context import CrmContext
from medicus_crm.database import CONTACTS_TABLE, DEAL_CONTACTS_TABLE, DEALS_TABLE
from medicus_crm.errors import classify_error, translate_error
from medicus_crm.mcp.envelope import ToolResult
from medicus_crm.mcp.sanitize import (
    optional_string,
    validate_boolean,
    validate_limit,
    validate_uuid,
)
from medicus_crm.writes import update_by_id

logger = logging.getLogger(__name__)

DEAL_EMBEDS = (
    "companies!deals_company_id_fkey (id, name), "
    "pipeline_stages:stage_id (id, code, name, pipeline_id), "
    "pipelines!deals_pipeline_id_fkey (id, code, name)"
)
DIRECT_DEALS_SELECT = f"*, {DEAL_EMBEDS}"
JUNCTION_DEALS_SELECT = f"deals:deal_id (*, {DEAL_EMBEDS})"

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_crm_deals_by_contact(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contact_id": validate_uuid(arguments.get("contact_id"), "contact_id"),
        "limit": validate_limit(arguments.get("limit"), 50),
    }


def validate_crm_get_contact_deal_associations(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"contact_id": validate_uuid(arguments.get("contact_id"), "contact_id")}


def validate_crm_link_contact_company(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contact_id": validate_uuid(arguments.get("contact_id"), "contact_id"),
        "company_id": validate_uuid(arguments.get("company_id"), "company_id"),
    }


def validate_crm_unlink_contact_company(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"contact_id": validate_uuid(arguments.get("contact_id"), "contact_id")}


def validate_crm_link_contact_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["contact_id"] = validate_uuid(arguments.get("contact_id"), "contact_id")
    sanitized["deal_id"] = validate_uuid(arguments.get("deal_id"), "deal_id")
    sanitized["is_main_contact"] = validate_boolean(
        arguments.get("is_main_contact"), "is_main_contact", False
    )
    sanitized["role_at_deal"] = optional_string(arguments.get("role_at_deal"), "role_at_deal", 200)
    return sanitized


def validate_crm_unlink_contact_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contact_id": validate_uuid(arguments.get("contact_id"), "contact_id"),
        "deal_id": validate_uuid(arguments.get("deal_id"), "deal_id"),
    }


def validate_crm_link_company_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "company_id": validate_uuid(arguments.get("company_id"), "company_id"),
        "deal_id": validate_uuid(arguments.get("deal_id"), "deal_id"),
    }


def validate_crm_unlink_company_deal(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"deal_id": validate_uuid(arguments.get("deal_id"), "deal_id")}


# ---------------------------------------------------------------------------
# Deal lookups
# ---------------------------------------------------------------------------


def merge_deals(
    direct: Iterable[Dict[str, Any]], junction: Iterable[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Union of direct-match deals and junction rows, one entry per deal id.

    Direct rows win when a deal appears on both sides. Junction rows carry
    the deal under their ``deals`` key; rows without one are skipped.
    """
    merged: List[Dict[str, Any]] = []
    seen = set()
    candidates = list(direct) + [row.get("deals") for row in junction]
    for deal in candidates:
        if not deal:
            continue
        deal_id = deal.get("id")
        if deal_id in seen:
            continue
        seen.add(deal_id)
        merged.append(deal)
    return merged


def _junction_missing(error: APIError) -> bool:
    return translate_error(error).is_relation(DEAL_CONTACTS_TABLE)


def deals_for_contact(ctx: CrmContext, contact_id: str, limit: int) -> List[Dict[str, Any]]:
    """All deals for a contact, via ``contact_person_id`` and the junction table."""
    try:
        direct = (
            ctx.db.table(DEALS_TABLE)
            .select(DIRECT_DEALS_SELECT)
            .eq("contact_person_id", contact_id)
            .limit(limit)
            .execute()
        ).data or []
    except APIError as e:
        classify_error(DEALS_TABLE, e)

    try:
        junction = (
            ctx.db.table(DEAL_CONTACTS_TABLE)
            .select(JUNCTION_DEALS_SELECT)
            .eq("contact_id", contact_id)
            .limit(limit)
            .execute()
        ).data or []
    except APIError as e:
        if not _junction_missing(e):
            classify_error(DEAL_CONTACTS_TABLE, e)
        logger.debug("%s not present; using direct deals only", DEAL_CONTACTS_TABLE)
        junction = []

    return merge_deals(direct, junction)[:limit]


def handle_crm_get_deals_by_contact(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id = args["contact_id"]
    deals = deals_for_contact(ctx, contact_id, args["limit"])
    return ToolResult(f"Found {len(deals)} deals for contact {contact_id}.", deals)


def handle_crm_get_contact_deal_associations(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id = args["contact_id"]
    associations: Dict[str, Any] = {
        "contact_id": contact_id,
        "direct_deals": [],
        "junction_deals": [],
        "total_deals": 0,
    }

    try:
        associations["direct_deals"] = (
            ctx.db.table(DEALS_TABLE)
            .select("id, title, status, amount, contact_person_id, created_at")
            .eq("contact_person_id", contact_id)
            .execute()
        ).data or []
    except APIError as e:
        logger.info("Direct deal lookup failed for contact %s: %s", contact_id, e)

    try:
        associations["junction_deals"] = (
            ctx.db.table(DEAL_CONTACTS_TABLE)
            .select(
                "deal_id, is_main_contact, role_at_deal, "
                "deals:deal_id (id, title, status, amount, created_at)"
            )
            .eq("contact_id", contact_id)
            .execute()
        ).data or []
    except APIError as e:
        logger.info("Junction deal lookup failed for contact %s: %s", contact_id, e)

    associations["total_deals"] = len(associations["direct_deals"]) + len(
        associations["junction_deals"]
    )
    return ToolResult(
        f"Found {associations['total_deals']} deal associations for contact {contact_id}.",
        associations,
    )


# ---------------------------------------------------------------------------
# Link / unlink
# ---------------------------------------------------------------------------


def handle_crm_link_contact_company(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id, company_id = args["contact_id"], args["company_id"]
    row = update_by_id(ctx.db, CONTACTS_TABLE, contact_id, {"company_id": company_id})
    return ToolResult(f"Linked contact {contact_id} to company {company_id}.", row)


def handle_crm_unlink_contact_company(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id = args["contact_id"]
    row = update_by_id(ctx.db, CONTACTS_TABLE, contact_id, {"company_id": None})
    return ToolResult(f"Unlinked contact {contact_id} from any company.", row)


def handle_crm_link_contact_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id, deal_id = args["contact_id"], args["deal_id"]
    link = {
        "contact_id": contact_id,
        "deal_id": deal_id,
        "is_main_contact": args.get("is_main_contact", False),
    }
    if args.get("role_at_deal"):
        link["role_at_deal"] = args["role_at_deal"]

    try:
        result = ctx.db.table(DEAL_CONTACTS_TABLE).insert(link).execute()
    except APIError as e:
        if not _junction_missing(e):
            classify_error(DEAL_CONTACTS_TABLE, e)
        deal = update_by_id(ctx.db, DEALS_TABLE, deal_id, {"contact_person_id": contact_id})
        return ToolResult(
            f"Linked contact {contact_id} to deal {deal_id} (via deals.contact_person_id).", deal
        )

    rows = result.data or []
    return ToolResult(f"Linked contact {contact_id} to deal {deal_id}.", rows[0] if rows else None)


def handle_crm_unlink_contact_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    contact_id, deal_id = args["contact_id"], args["deal_id"]
    try:
        (
            ctx.db.table(DEAL_CONTACTS_TABLE)
            .delete()
            .eq("contact_id", contact_id)
            .eq("deal_id", deal_id)
            .execute()
        )
    except APIError as e:
        if not _junction_missing(e):
            classify_error(DEAL_CONTACTS_TABLE, e)
        deal = _clear_contact_person(ctx, deal_id, contact_id)
        return ToolResult(f"Unlinked contact {contact_id} from deal {deal_id} (fallback).", deal)

    return ToolResult(f"Unlinked contact {contact_id} from deal {deal_id}.")


def _clear_contact_person(
    ctx: CrmContext, deal_id: str, contact_id: str
) -> Optional[Dict[str, Any]]:
    """Clear deals.contact_person_id, only where it points at ``contact_id``."""
    try:
        result = (
            ctx.db.table(DEALS_TABLE)
            .update({"contact_person_id": None})
            .eq("id", deal_id)
            .eq("contact_person_id", contact_id)
            .execute()
        )
    except APIError as e:
        classify_error(DEALS_TABLE, e)
    rows = result.data or []
    return rows[0] if rows else None


def handle_crm_link_company_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    company_id, deal_id = args["company_id"], args["deal_id"]
    row = update_by_id(ctx.db, DEALS_TABLE, deal_id, {"company_id": company_id})
    return ToolResult(f"Linked company {company_id} to deal {deal_id}.", row)


def handle_crm_unlink_company_deal(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    deal_id = args["deal_id"]
    row = update_by_id(ctx.db, DEALS_TABLE, deal_id, {"company_id": None})
    return ToolResult(f"Unlinked company from deal {deal_id}.", row)


# ---------------------------------------------------------------------------
# Registry dicts
# ---------------------------------------------------------------------------

HANDLERS = {
    "crm_get_deals_by_contact": handle_crm_get_deals_by_contact,
    "crm_list_contact_deals": handle_crm_get_deals_by_contact,
    "crm_get_contact_deal_associations": handle_crm_get_contact_deal_associations,
    "crm_link_contact_company": handle_crm_link_contact_company,
    "crm_unlink_contact_company": handle_crm_unlink_contact_company,
    "crm_link_contact_deal": handle_crm_link_contact_deal,
    "crm_unlink_contact_deal": handle_crm_unlink_contact_deal,
    "crm_link_company_deal": handle_crm_link_company_deal,
    "crm_unlink_company_deal": handle_crm_unlink_company_deal,
}

VALIDATORS = {
    "crm_get_deals_by_contact": validate_crm_deals_by_contact,
    "crm_list_contact_deals": validate_crm_deals_by_contact,
    "crm_get_contact_deal_associations": validate_crm_get_contact_deal_associations,
    "crm_link_contact_company": validate_crm_link_contact_company,
    "crm_unlink_contact_company": validate_crm_unlink_contact_company,
    "crm_link_contact_deal": validate_crm_link_contact_deal,
    "crm_unlink_contact_deal": validate_crm_unlink_contact_deal,
    "crm_link_company_deal": validate_crm_link_company_deal,
    "crm_unlink_company_deal": validate_crm_unlink_company_deal,
}
