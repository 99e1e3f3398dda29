"""Medicus CRM - CRM records exposed as MCP tools over Supabase."""

__version__ = "0.1.0"

SERVER_NAME = "medicus-crm"
