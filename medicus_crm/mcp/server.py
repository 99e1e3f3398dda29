"""
Medicus CRM MCP Server - CRM records for Claude and other MCP clients.

This exposes contacts, companies, deals, leads and their notes and
associations as MCP tools backed by Supabase.

Security Features:
- Per-tool input validation and sanitization
- Caller-facing error messages without stack details
- Structured logging for debugging

Usage:
    medicus-crm stdio  # Start MCP server (stdio transport)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from medicus_crm import SERVER_NAME
from medicus_crm.context import CrmContext
from medicus_crm.errors import CrmError
from medicus_crm.mcp.envelope import ToolResult
from medicus_crm.mcp.handlers import HANDLERS, VALIDATORS
from medicus_crm.mcp.tool_definitions import TOOLS

logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = Server(SERVER_NAME)


class ToolCallError(Exception):
    """A tool failed; the message is what the caller sees."""

    pass


def get_context() -> CrmContext:
    """Get or create the process-wide CRM context."""
    if not hasattr(get_context, "_instance"):
        get_context._instance = CrmContext.from_settings()  # type: ignore[attr-defined]
    return get_context._instance  # type: ignore[attr-defined]


def set_context(ctx: CrmContext) -> None:
    """Replace the process-wide CRM context (tests, embedding)."""
    get_context._instance = ctx  # type: ignore[attr-defined]


# =============================================================================
# INPUT VALIDATION & DISPATCH
# =============================================================================


def validate_tool_input(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and sanitize MCP tool inputs."""
    try:
        if not isinstance(name, str):
            raise ValueError(f"tool name must be a string, got {type(name).__name__}")
        if not name:
            raise ValueError("tool name must not be empty")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments must be an object, got {type(arguments).__name__}")

        validator = VALIDATORS.get(name)
        if validator is None:
            raise ValueError(f"Unknown tool: {name}")
        return validator(arguments)

    except (ValueError, TypeError) as e:
        logger.warning(f"Input validation failed for tool {name}: {e}")
        raise ValueError(str(e)) from e


def dispatch_tool(
    name: str, arguments: Dict[str, Any], ctx: Optional[CrmContext] = None
) -> ToolResult:
    """Validate ``arguments`` and run the named tool.

    Validation runs before the context is touched, so rejected input never
    reaches storage.
    """
    sanitized_args = validate_tool_input(name, arguments)
    handler = HANDLERS[name]
    return handler(sanitized_args, ctx or get_context())


def describe_tool_error(e: Exception, tool_name: str, arguments: Any) -> str:
    """Turn a tool failure into a caller-facing message."""
    if isinstance(e, ValueError):
        # Input validation error
        logger.warning(f"Invalid input for tool {tool_name}: {e}")
        return f"Invalid input: {e}"

    elif isinstance(e, CrmError):
        logger.warning(f"Tool {tool_name} failed on {e.table or 'storage'}: {e}")
        return str(e)

    elif isinstance(e, ConnectionError):
        logger.error(f"Database connection error for tool {tool_name}")
        return "Service temporarily unavailable"

    else:
        # Unknown error - log full details but return generic message
        argument_keys = list(arguments.keys()) if isinstance(arguments, dict) else []
        logger.error(
            f"Internal error in tool {tool_name}",
            extra={
                "tool_name": tool_name,
                "arguments_keys": argument_keys,
                "error_type": type(e).__name__,
                "error_message": str(e),
            },
            exc_info=True,
        )
        return "Internal server error"


# =============================================================================
# MCP PROTOCOL HANDLERS
# =============================================================================


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List available CRM tools."""
    return list(TOOLS)


@mcp.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> List[TextContent]:
    """Handle tool calls; failures are raised so the client sees isError."""
    try:
        result = dispatch_tool(name, arguments)
    except Exception as e:
        raise ToolCallError(describe_tool_error(e, name, arguments)) from e
    return result.to_content()


async def run_server():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(
            read_stream,
            write_stream,
            mcp.create_initialization_options(),
        )


def main():
    """Entry point for the stdio MCP server."""
    get_context()  # fail fast on missing credentials
    logger.info("Medicus CRM MCP server starting on stdio")
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
