"""Handler registry for MCP tools.

Merges HANDLERS and VALIDATORS from all sub-modules into unified dicts.
"""

from typing import Callable, Dict

from medicus_crm.mcp.handlers.associations import HANDLERS as _ASSOCIATIONS_H
from medicus_crm.mcp.handlers.associations import VALIDATORS as _ASSOCIATIONS_V
from medicus_crm.mcp.handlers.notes import HANDLERS as _NOTES_H
from medicus_crm.mcp.handlers.notes import VALIDATORS as _NOTES_V
from medicus_crm.mcp.handlers.records import HANDLERS as _RECORDS_H
from medicus_crm.mcp.handlers.records import VALIDATORS as _RECORDS_V
from medicus_crm.mcp.handlers.search import HANDLERS as _SEARCH_H
from medicus_crm.mcp.handlers.search import VALIDATORS as _SEARCH_V

HANDLERS: Dict[str, Callable] = {
    **_RECORDS_H,
    **_NOTES_H,
    **_SEARCH_H,
    **_ASSOCIATIONS_H,
}

VALIDATORS: Dict[str, Callable] = {
    **_RECORDS_V,
    **_NOTES_V,
    **_SEARCH_V,
    **_ASSOCIATIONS_V,
}
