"""MCP tool schema definitions for Medicus CRM operations.

Each Tool() defines the name, description, and JSON Schema for one MCP tool.
Validators and handlers live in medicus_crm.mcp.handlers.
"""

from typing import Any, Dict

from mcp.types import Tool

NOTE_ENTITY_TYPES = ["contact", "company", "deal", "lead"]
CANCEL_STATUSES = ["cancelled", "lost", "closed_lost"]


def _id(description: str) -> Dict[str, Any]:
    return {"type": "string", "format": "uuid", "description": description}


def _text(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _limit(default: int) -> Dict[str, Any]:
    return {
        "type": "integer",
        "description": f"Maximum results (default: {default}, range: 1-100)",
        "default": default,
        "minimum": 1,
        "maximum": 100,
    }


_UPDATES = {
    "type": "object",
    "description": "Fields to change. Unknown and immutable fields (id, created_at) are ignored.",
    "additionalProperties": True,
}


def _note_tool(entity: str) -> Tool:
    return Tool(
        name=f"crm_add_{entity}_note",
        description=f"Add a note to a {entity}.",
        inputSchema={
            "type": "object",
            "properties": {
                f"{entity}_id": _id(f"ID of the {entity}"),
                "body": _text("Note text"),
                "author": _text("Author shown on the note (default: configured MCP author)"),
            },
            "required": [f"{entity}_id", "body"],
        },
    )


def _search_tool(name: str, description: str) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema={
            "type": "object",
            "properties": {
                "query": _text("Case-insensitive text to match"),
                "limit": _limit(10),
            },
            "required": ["query"],
        },
    )


TOOLS = [
    # ---------- records ----------
    Tool(
        name="crm_create_contact",
        description="Create a new contact record.",
        inputSchema={
            "type": "object",
            "properties": {
                "first_name": _text("First name"),
                "last_name": _text("Last name"),
                "email": {"type": "string", "format": "email", "description": "Email address"},
                "phone": _text("Phone number"),
                "company_id": _id("Company the contact belongs to"),
            },
            "required": ["first_name", "last_name"],
        },
    ),
    Tool(
        name="crm_update_contact",
        description="Update any allowed fields on a contact.",
        inputSchema={
            "type": "object",
            "properties": {"contact_id": _id("ID of the contact"), "updates": _UPDATES},
            "required": ["contact_id", "updates"],
        },
    ),
    Tool(
        name="crm_upsert_company",
        description="Create or update a company by name.",
        inputSchema={
            "type": "object",
            "properties": {
                "name": _text("Company name (unique key)"),
                "website": _text("Website URL"),
                "phone": _text("Phone number"),
                "address": _text("Postal address"),
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="crm_update_company",
        description="Update any allowed fields on a company.",
        inputSchema={
            "type": "object",
            "properties": {"company_id": _id("ID of the company"), "updates": _UPDATES},
            "required": ["company_id", "updates"],
        },
    ),
    Tool(
        name="crm_create_lead",
        description="Create a new lead record.",
        inputSchema={
            "type": "object",
            "properties": {
                "first_name": _text("First name"),
                "last_name": _text("Last name"),
                "email": {"type": "string", "format": "email", "description": "Email address"},
                "phone": _text("Phone number"),
                "company": _text("Company name as given by the lead"),
                "source": _text("Lead source (default: mcp)"),
                "status": _text("Lead status (default: new)"),
                "message": _text("Inbound message"),
            },
            "required": ["first_name", "last_name"],
        },
    ),
    Tool(
        name="crm_update_lead",
        description="Update any allowed fields on a lead.",
        inputSchema={
            "type": "object",
            "properties": {"lead_id": _id("ID of the lead"), "updates": _UPDATES},
            "required": ["lead_id", "updates"],
        },
    ),
    Tool(
        name="crm_update_lead_status",
        description="Update a lead's status.",
        inputSchema={
            "type": "object",
            "properties": {"lead_id": _id("ID of the lead"), "status": _text("New status")},
            "required": ["lead_id", "status"],
        },
    ),
    Tool(
        name="crm_create_deal",
        description="Create a new deal record.",
        inputSchema={
            "type": "object",
            "properties": {
                "title": _text("Deal title"),
                "amount": {"type": "number", "description": "Deal value"},
                "status": _text("Deal status"),
                "stage_id": _id("Pipeline stage"),
                "pipeline_id": _id("Pipeline"),
                "company_id": _id("Company the deal is with"),
                "contact_person_id": _id("Main contact"),
            },
            "required": ["title"],
        },
    ),
    Tool(
        name="crm_update_deal",
        description="Update a deal's stage and status.",
        inputSchema={
            "type": "object",
            "properties": {
                "deal_id": _id("ID of the deal"),
                "stage_id": _id("New pipeline stage"),
                "status": _text("New status"),
                "amount": {"type": "number", "description": "New deal value"},
            },
            "required": ["deal_id"],
        },
    ),
    Tool(
        name="crm_update_deal_generic",
        description="Update any allowed fields on a deal.",
        inputSchema={
            "type": "object",
            "properties": {"deal_id": _id("ID of the deal"), "updates": _UPDATES},
            "required": ["deal_id", "updates"],
        },
    ),
    Tool(
        name="crm_cancel_deal",
        description="Move a deal to cancelled/lost status.",
        inputSchema={
            "type": "object",
            "properties": {
                "deal_id": _id("ID of the deal"),
                "status": {
                    "type": "string",
                    "enum": CANCEL_STATUSES,
                    "description": "Terminal status (default: cancelled)",
                    "default": "cancelled",
                },
                "reason": _text("Why the deal was cancelled (stored in notes)"),
            },
            "required": ["deal_id"],
        },
    ),
    # ---------- notes ----------
    _note_tool("deal"),
    _note_tool("lead"),
    _note_tool("contact"),
    _note_tool("company"),
    Tool(
        name="crm_add_note",
        description="Attach a note to contact/company/deal/lead.",
        inputSchema={
            "type": "object",
            "properties": {
                "entity_type": {
                    "type": "string",
                    "enum": NOTE_ENTITY_TYPES,
                    "description": "Kind of record the note belongs to",
                },
                "entity_id": _id("ID of the record"),
                "body": _text("Note text"),
                "author": _text("Author shown on the note (default: configured MCP author)"),
            },
            "required": ["entity_type", "entity_id", "body"],
        },
    ),
    # ---------- search ----------
    _search_tool("crm_search_contacts", "Search for contacts by name or email."),
    _search_tool("crm_search_companies", "Search for companies by name."),
    _search_tool("crm_search_deals", "Search for deals by title, company, or contact person."),
    _search_tool("crm_search_leads", "Search for leads by name, email, or company."),
    # ---------- associations ----------
    Tool(
        name="crm_get_deals_by_contact",
        description="Get all deals associated with a specific contact ID.",
        inputSchema={
            "type": "object",
            "properties": {"contact_id": _id("ID of the contact"), "limit": _limit(50)},
            "required": ["contact_id"],
        },
    ),
    Tool(
        name="crm_list_contact_deals",
        description="List all deals for a specific contact (alias for crm_get_deals_by_contact).",
        inputSchema={
            "type": "object",
            "properties": {"contact_id": _id("ID of the contact"), "limit": _limit(50)},
            "required": ["contact_id"],
        },
    ),
    Tool(
        name="crm_get_contact_deal_associations",
        description="Get detailed information about how a contact is associated with deals.",
        inputSchema={
            "type": "object",
            "properties": {"contact_id": _id("ID of the contact")},
            "required": ["contact_id"],
        },
    ),
    Tool(
        name="crm_link_contact_company",
        description="Associate a contact with a company by setting company_id on the contact.",
        inputSchema={
            "type": "object",
            "properties": {
                "contact_id": _id("ID of the contact"),
                "company_id": _id("ID of the company"),
            },
            "required": ["contact_id", "company_id"],
        },
    ),
    Tool(
        name="crm_unlink_contact_company",
        description="Remove a contact's association with its company (sets company_id to null).",
        inputSchema={
            "type": "object",
            "properties": {"contact_id": _id("ID of the contact")},
            "required": ["contact_id"],
        },
    ),
    Tool(
        name="crm_link_contact_deal",
        description="Associate a contact with a deal (creates row in deal_contacts).",
        inputSchema={
            "type": "object",
            "properties": {
                "contact_id": _id("ID of the contact"),
                "deal_id": _id("ID of the deal"),
                "is_main_contact": {
                    "type": "boolean",
                    "description": "Whether this is the deal's main contact (default: false)",
                    "default": False,
                },
                "role_at_deal": _text("Contact's role on the deal"),
            },
            "required": ["contact_id", "deal_id"],
        },
    ),
    Tool(
        name="crm_unlink_contact_deal",
        description="Remove an association between a contact and a deal.",
        inputSchema={
            "type": "object",
            "properties": {
                "contact_id": _id("ID of the contact"),
                "deal_id": _id("ID of the deal"),
            },
            "required": ["contact_id", "deal_id"],
        },
    ),
    Tool(
        name="crm_link_company_deal",
        description="Associate a company to a deal by setting company_id on the deal.",
        inputSchema={
            "type": "object",
            "properties": {
                "company_id": _id("ID of the company"),
                "deal_id": _id("ID of the deal"),
            },
            "required": ["company_id", "deal_id"],
        },
    ),
    Tool(
        name="crm_unlink_company_deal",
        description="Remove company association on a deal.",
        inputSchema={
            "type": "object",
            "properties": {"deal_id": _id("ID of the deal")},
            "required": ["deal_id"],
        },
    ),
]
