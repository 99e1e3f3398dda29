"""
Medicus CRM CLI - run the MCP server over stdio or HTTP.

Usage:
    medicus-crm                     # stdio (default)
    medicus-crm stdio
    medicus-crm http --port 3000
"""

import argparse
import logging
import sys

from pydantic import ValidationError

from medicus_crm import SERVER_NAME, __version__
from medicus_crm.config import get_settings

logger = logging.getLogger(__name__)


def cmd_stdio(args):
    from medicus_crm.mcp.server import main as mcp_main

    mcp_main()


def cmd_http(args):
    import uvicorn

    from medicus_crm.web import create_app

    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(
        app,
        host=args.host or settings.http_host,
        port=args.port or settings.http_port,
        log_level=args.log_level.lower(),
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="CRM tools (contacts, companies, deals, leads) over MCP",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("stdio", help="Serve MCP over stdin/stdout")

    p_http = subparsers.add_parser("http", help="Serve MCP JSON-RPC over HTTP")
    p_http.add_argument("--host", help="Bind address (default: HTTP_HOST setting)")
    p_http.add_argument("--port", type=int, help="Bind port (default: HTTP_PORT setting)")

    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        print(
            "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or use a .env file).",
            file=sys.stderr,
        )
        return 1

    args.log_level = args.log_level or settings.log_level.upper()
    # Logs go to stderr; stdout carries the stdio protocol
    logging.basicConfig(level=args.log_level, stream=sys.stderr)

    commands = {"stdio": cmd_stdio, "http": cmd_http}
    try:
        commands[args.command or "stdio"](args)
    except ValueError as e:
        logger.error("Startup failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
