"""Handlers for search tools: contacts, companies, deals and leads."""

import logging
import re
from typing import Any, Dict, List

from postgrest.exceptions import APIError

from medicus_crm.context import CrmContext
from medicus_crm.database import COMPANIES_TABLE, CONTACTS_TABLE, DEALS_TABLE, LEADS_TABLE
from medicus_crm.errors import FaultKind, classify_error, translate_error
from medicus_crm.mcp.envelope import ToolResult
from medicus_crm.mcp.sanitize import sanitize_string, validate_limit

logger = logging.getLogger(__name__)

DEAL_SEARCH_SELECT = """
    *,
    companies!deals_company_id_fkey (id, name),
    contacts:contact_person_id (id, first_name, last_name, full_name),
    pipeline_stages:stage_id (id, code, name, pipeline_id),
    pipelines!deals_pipeline_id_fkey (id, code, name)
"""
DEAL_SIMPLE_SELECT = "*, companies!deals_company_id_fkey (id, name)"


def escape_like(query: str) -> str:
    """Escape SQL LIKE special characters to prevent injection."""
    # Escape backslash first, then %, then _
    return re.sub(r"([%_\\])", r"\\\1", query)


def _mentions_schema(message: str) -> bool:
    lowered = message.lower()
    return "relation" in lowered or "column" in lowered


def quote_filter_value(value: str) -> str:
    """Double-quote a PostgREST filter value so commas and parentheses stay literal."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _ilike_any(fields: List[str], query: str) -> str:
    pattern = quote_filter_value(f"%{query}%")
    return ",".join(f"{field}.ilike.{pattern}" for field in fields)


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_crm_search(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["query"] = sanitize_string(arguments.get("query"), "query", 200)
    sanitized["limit"] = validate_limit(arguments.get("limit"), 10)
    return sanitized


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _search_or(ctx: CrmContext, table: str, label: str, fields: List[str], args: Dict[str, Any]):
    query, limit = args["query"], args["limit"]
    try:
        result = (
            ctx.db.table(table)
            .select("*")
            .or_(_ilike_any(fields, query))
            .limit(limit)
            .execute()
        )
    except APIError as e:
        classify_error(table, e)
    rows = (result.data or [])[:limit]
    return ToolResult(f'Found {len(rows)} {label} matching "{query}".', rows)


def handle_crm_search_contacts(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    return _search_or(ctx, CONTACTS_TABLE, "contacts", ["first_name", "last_name", "email"], args)


def handle_crm_search_leads(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    return _search_or(
        ctx, LEADS_TABLE, "leads", ["first_name", "last_name", "email", "company"], args
    )


def handle_crm_search_companies(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    query, limit = args["query"], args["limit"]
    try:
        result = (
            ctx.db.table(COMPANIES_TABLE)
            .select("*")
            .ilike("name", f"%{query}%")
            .limit(limit)
            .execute()
        )
    except APIError as e:
        classify_error(COMPANIES_TABLE, e)
    rows = (result.data or [])[:limit]
    return ToolResult(f'Found {len(rows)} companies matching "{query}".', rows)


def handle_crm_search_deals(args: Dict[str, Any], ctx: CrmContext) -> ToolResult:
    """Match deals by title, company name or contact name.

    Falls back to a title-only match when the embedded relations are not
    available in this schema.
    """
    query, limit = args["query"], args["limit"]
    escaped = escape_like(query)

    try:
        result = (
            ctx.db.table(DEALS_TABLE)
            .select(DEAL_SEARCH_SELECT)
            .or_(_ilike_any(["title", "companies.name", "contacts.full_name"], escaped))
            .limit(limit)
            .execute()
        )
    except APIError as e:
        fault = translate_error(e)
        # Missing embeds surface as relation/relationship or column errors
        missing_embed = fault.kind in (
            FaultKind.UNDEFINED_RELATION,
            FaultKind.UNDEFINED_COLUMN,
        ) or (fault.kind == FaultKind.OTHER and _mentions_schema(fault.message))
        if not missing_embed:
            classify_error(DEALS_TABLE, fault)
        logger.info("Deal search falling back to title match: %s", fault.message)
        try:
            result = (
                ctx.db.table(DEALS_TABLE)
                .select(DEAL_SIMPLE_SELECT)
                .ilike("title", f"%{escaped}%")
                .limit(limit)
                .execute()
            )
        except APIError as simple_error:
            classify_error(DEALS_TABLE, simple_error)

    rows = (result.data or [])[:limit]
    return ToolResult(f'Found {len(rows)} deals matching "{query}".', rows)


# ---------------------------------------------------------------------------
# Registry dicts
# ---------------------------------------------------------------------------

HANDLERS = {
    "crm_search_contacts": handle_crm_search_contacts,
    "crm_search_companies": handle_crm_search_companies,
    "crm_search_deals": handle_crm_search_deals,
    "crm_search_leads": handle_crm_search_leads,
}

VALIDATORS = {
    "crm_search_contacts": validate_crm_search,
    "crm_search_companies": validate_crm_search,
    "crm_search_deals": validate_crm_search,
    "crm_search_leads": validate_crm_search,
}
