"""Database utilities for Supabase integration."""

from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer the service-role key, fall back to the legacy name
        api_key = settings.supabase_service_role_key or settings.supabase_key
        if not api_key:
            raise ValueError("Either SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def reset_supabase_client() -> None:
    """Drop the cached client (tests and credential rotation)."""
    global _supabase_client
    _supabase_client = None


# =============================================================================
# Table Names
# =============================================================================

CONTACTS_TABLE = "contacts"
COMPANIES_TABLE = "companies"
DEALS_TABLE = "deals"
LEADS_TABLE = "leads"
DEAL_CONTACTS_TABLE = "deal_contacts"

# Entity kind -> (entity table, notes table, foreign key on the notes table)
NOTE_TARGETS = {
    "contact": (CONTACTS_TABLE, "contact_notes", "contact_id"),
    "company": (COMPANIES_TABLE, "company_notes", "company_id"),
    "deal": (DEALS_TABLE, "deal_notes", "deal_id"),
    "lead": (LEADS_TABLE, "lead_notes", "lead_id"),
}

# Column linking an entity (or a note) to its owning company
OWNER_COLUMN = "company_id"
