"""Medicus CRM HTTP transport - FastAPI application.

Serves the same tool catalog as the stdio server as JSON-RPC 2.0 over
``POST /api/mcp``. When ``MCP_TOKEN`` is configured, MCP routes require a
matching ``?token=`` query parameter.
"""

import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from medicus_crm import SERVER_NAME, __version__
from medicus_crm.config import Settings, get_settings
from medicus_crm.mcp.server import describe_tool_error, dispatch_tool
from medicus_crm.mcp.tool_definitions import TOOLS

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"

SERVER_INFO = {
    "protocolVersion": MCP_PROTOCOL_VERSION,
    "capabilities": {"tools": {}},
    "serverInfo": {"name": SERVER_NAME, "version": __version__},
}


class MCPError(Exception):
    """MCP protocol error."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def require_token(request: Request) -> None:
    """Reject the request unless it carries the configured ``?token=``."""
    settings: Settings = request.app.state.settings
    required = settings.mcp_token
    if not required:
        return
    supplied = request.query_params.get("token") or ""
    if not secrets.compare_digest(supplied.encode(), required.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# =============================================================================
# JSON-RPC method handlers
# =============================================================================


def handle_initialize(params: Dict[str, Any]) -> Dict[str, Any]:
    return SERVER_INFO


def handle_ping(params: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def handle_tools_list(params: Dict[str, Any]) -> Dict[str, Any]:
    return {"tools": [tool.model_dump(exclude_none=True) for tool in TOOLS]}


def handle_tools_call(params: Dict[str, Any]) -> Dict[str, Any]:
    name = params.get("name")
    arguments = params.get("arguments") or {}
    if not isinstance(name, str) or not name:
        raise MCPError(-32602, "Missing tool name")

    try:
        result = dispatch_tool(name, arguments)
    except Exception as e:
        message = describe_tool_error(e, name, arguments)
        return {"content": [{"type": "text", "text": message}], "isError": True}

    return {
        "content": [item.model_dump(exclude_none=True) for item in result.to_content()],
        "isError": False,
    }


METHODS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "initialize": handle_initialize,
    "ping": handle_ping,
    "tools/list": handle_tools_list,
    "tools/call": handle_tools_call,
}


def dispatch_mcp_method(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Dispatch JSON-RPC method to handler."""
    handler = METHODS.get(method)
    if handler is None:
        raise MCPError(-32601, f"Method '{method}' not found")
    if not isinstance(params, dict):
        raise MCPError(-32602, "params must be an object")
    return handler(params)


# =============================================================================
# Application
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting %s HTTP transport", SERVER_NAME)
    yield
    logger.info("Shutting down %s HTTP transport", SERVER_NAME)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app with CORS configured from settings."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Medicus CRM MCP",
        description="CRM tools over the Model Context Protocol",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        """Liveness endpoint."""
        return {"service": SERVER_NAME, "version": __version__, "status": "ok"}

    @app.get("/health")
    async def health():
        """Health check with an actual storage round trip."""
        from medicus_crm.database import CONTACTS_TABLE, get_supabase_client

        try:
            db = get_supabase_client()
            db.table(CONTACTS_TABLE).select("id").limit(1).execute()
            db_status = "connected"
        except Exception as e:
            logger.warning("Health check storage query failed: %s", e)
            db_status = f"error: {str(e)[:50]}"

        overall_status = "healthy" if db_status == "connected" else "degraded"
        return {"status": overall_status, "database": db_status}

    @app.get("/api/mcp", dependencies=[Depends(require_token)])
    async def mcp_info():
        """Server info in MCP initialize-result form."""
        return {"jsonrpc": "2.0", "id": 1, "result": SERVER_INFO}

    @app.post("/api/mcp", dependencies=[Depends(require_token)])
    async def mcp_post(request: Request):
        """Handle MCP JSON-RPC 2.0 requests."""
        body = await request.body()
        try:
            msg = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse({"error": "Invalid JSON in request body"}, status_code=400)

        if not isinstance(msg, dict) or not isinstance(msg.get("method"), str):
            return JSONResponse(
                {
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {"code": -32600, "message": "Invalid Request"},
                },
                status_code=400,
            )

        method = msg["method"]
        params = msg.get("params") or {}
        msg_id = msg.get("id")
        logger.debug(f"MCP request: method={method}")

        # Notifications carry no id and get no response body
        if "id" not in msg:
            return Response(status_code=status.HTTP_202_ACCEPTED)

        try:
            result = dispatch_mcp_method(method, params)
            return {"jsonrpc": "2.0", "id": msg_id, "result": result}
        except MCPError as e:
            return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": e.code, "message": e.message}}
        except Exception as e:
            logger.error(f"MCP handler error: {e}", exc_info=True)
            return JSONResponse(
                {
                    "jsonrpc": "2.0",
                    "id": msg_id,
                    "error": {"code": -32603, "message": "Internal error"},
                },
                status_code=500,
            )

    return app
